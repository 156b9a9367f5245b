"""
Publisher — Packages the finished database for distribution.

Copies the generated SQLite file under its public name, compacts it and
writes compressed copies next to it.
"""

import bz2
import gzip
import logging
import lzma
import shutil
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)


# format name -> (suffix, opener)
COMPRESSORS = {
    "gz": (".gz", lambda path: gzip.open(path, "wb", compresslevel=9)),
    "bz2": (".bz2", lambda path: bz2.open(path, "wb", compresslevel=9)),
    "lz": (".lz", lambda path: lzma.open(path, "wb", format=lzma.FORMAT_ALONE)),
}


class Publisher:
    """
    Publishes a SQLite database as raw and/or compressed artifacts.

    Output structure for the defaults:
        output_dir/
        ├── cpanmeta.sqlite.gz
        ├── cpanmeta.sqlite.bz2
        └── cpanmeta.sqlite.lz
    """

    def __init__(
        self,
        output_dir: Path = Path("."),
        name: str = "cpanmeta.sqlite",
        raw: bool = False,
        gz: bool = True,
        bz2: bool = True,
        lz: bool = True,
    ):
        self.output_dir = Path(output_dir)
        self.name = name
        self.raw = raw
        self.formats = [fmt for fmt, enabled in (("gz", gz), ("bz2", bz2), ("lz", lz)) if enabled]

    def publish(self, source: Path) -> list[Path]:
        """
        Publish ``source``.

        Returns:
            Paths of the artifacts written.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        target = self.output_dir / self.name
        if target.resolve() == Path(source).resolve():
            raise ValueError(f"Refusing to publish {source} over itself")

        shutil.copyfile(source, target)
        conn = sqlite3.connect(str(target))
        try:
            conn.execute("VACUUM")
        finally:
            conn.close()

        produced = []
        for fmt in self.formats:
            suffix, opener = COMPRESSORS[fmt]
            artifact = target.with_name(target.name + suffix)
            with open(target, "rb") as src, opener(artifact) as out:
                shutil.copyfileobj(src, out)
            produced.append(artifact)
            logger.info(f"[Publish] Wrote {artifact}")

        if self.raw:
            produced.insert(0, target)
            logger.info(f"[Publish] Wrote {target}")
        else:
            target.unlink()

        return produced
