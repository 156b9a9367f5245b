"""
CPAN Meta Generator CLI — Builds the CPAN Meta SQLite database.

Usage:
    cpanmeta-generator generate --minicpan ~/minicpan --sqlite ./metadb.sqlite
    cpanmeta-generator generate --remote https://www.cpan.org/ --minicpan ~/minicpan --delta
    cpanmeta-generator prune --minicpan ~/minicpan --sqlite ./metadb.sqlite
"""

import logging

import click


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@click.group()
@click.version_option(package_name="cpanmeta-generator")
def cli():
    """CPAN Meta Generator — CPAN release metadata to SQLite."""
    pass


@cli.command()
@click.option(
    "--sqlite",
    "-s",
    type=click.Path(dir_okay=False),
    envvar="CPANMETA_SQLITE",
    default=None,
    help="Database to generate (default: ~/.cpanmeta/metadb.sqlite).",
)
@click.option(
    "--minicpan",
    "-m",
    type=click.Path(file_okay=False),
    envvar="CPANMETA_MINICPAN",
    default=None,
    help="Root of the local CPAN mirror.",
)
@click.option("--remote", "-r", type=str, default=None, help="Refresh the mirror from this CPAN URL first.")
@click.option("--skip-cleanup", is_flag=True, help="Keep archives the mirror index no longer lists.")
@click.option("--delta", is_flag=True, help="Update the existing database instead of rebuilding it.")
@click.option("--trace", is_flag=True, help="Log every visited release.")
@click.option("--no-acme", is_flag=True, help="Skip Acme-* releases.")
@click.option(
    "--publish-dir",
    "-o",
    type=click.Path(file_okay=False),
    default=".",
    help="Where to write the published cpanmeta.sqlite.* files.",
)
@click.option("--no-publish", is_flag=True, help="Don't publish the generated database.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def generate(sqlite, minicpan, remote, skip_cleanup, delta, trace, no_acme, publish_dir, no_publish, verbose):
    """Generate the CPAN Meta database from a local mirror."""
    from pathlib import Path

    from cpanmeta_generator.core.generator import Generator, GeneratorError
    from cpanmeta_generator.core.mirror import MirrorError
    from cpanmeta_generator.core.publish import Publisher

    _configure_logging(verbose)

    if not minicpan:
        raise click.UsageError("--minicpan is required (or set CPANMETA_MINICPAN)")

    mirror = None
    if remote:
        mirror = {"remote": remote, "skip_cleanup": skip_cleanup}

    generator = Generator(
        sqlite=sqlite,
        minicpan=minicpan,
        mirror=mirror,
        delta=delta,
        trace=trace,
        acme=not no_acme,
        publisher=None if no_publish else Publisher(output_dir=Path(publish_dir)),
        progress=True,
    )

    try:
        generator.run()
    except (GeneratorError, MirrorError) as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.option(
    "--sqlite",
    "-s",
    type=click.Path(dir_okay=False, exists=True),
    envvar="CPANMETA_SQLITE",
    required=True,
    help="Database to prune.",
)
@click.option(
    "--minicpan",
    "-m",
    type=click.Path(file_okay=False, exists=True),
    envvar="CPANMETA_MINICPAN",
    required=True,
    help="Root of the local CPAN mirror.",
)
def prune(sqlite, minicpan):
    """Remove releases whose archive is no longer in the mirror."""
    from pathlib import Path

    from cpanmeta_generator.core.reconciler import reconcile
    from cpanmeta_generator.core.schema import connect, ensure_schema

    _configure_logging(False)

    conn = connect(sqlite)
    try:
        ensure_schema(conn)
        seen = reconcile(conn, Path(minicpan))
        remaining = conn.execute("SELECT COUNT(*) FROM meta_dependency").fetchone()[0]
    finally:
        conn.close()

    click.echo(f"Releases kept: {len(seen)}")
    click.echo(f"Dependency rows kept: {remaining}")


if __name__ == "__main__":
    cli()
