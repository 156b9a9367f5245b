"""
Example: Generate and publish the CPAN Meta database.

Usage:
    export CPANMETA_MINICPAN=~/minicpan
    python examples/generate_metadb.py
"""

import logging
from pathlib import Path

from cpanmeta_generator import Generator, Publisher


def main():
    logging.basicConfig(level=logging.INFO)

    # Publish gz/bz2/lz artifacts into ./public
    publisher = Publisher(output_dir=Path("./public"))

    # Refresh the mirror from CPAN, then rebuild the database from scratch
    generator = Generator(
        sqlite=Path("./metadb.sqlite"),
        mirror={"remote": "https://www.cpan.org/", "local": Path.home() / "minicpan"},
        publisher=publisher,
        progress=True,
    )
    stats = generator.run()

    print(f"\n✅ {stats['visited']} releases written to: {generator.sqlite.absolute()}")


if __name__ == "__main__":
    main()
