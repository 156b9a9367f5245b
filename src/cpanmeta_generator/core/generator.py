"""
CPAN Meta Generator — Builds the CPAN Meta SQLite database.

Orchestrates one generation run:

1. Prepare the output directory.
2. Full mode: delete any existing database.
3. Refresh the local mirror (only when a mirror config is given).
4. Open the database and create the tables.
5. Delta mode: prune releases whose archive has gone.
6. Visit every release, extract its META.yml and write it in batches.
7. Commit the final batch and publish the database.

Every store or filesystem error here is fatal to the run. Only a single
release's unreadable META.yml is tolerated.
"""

import logging
import os
import sqlite3
import time
from collections.abc import Callable
from pathlib import Path

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from cpanmeta_generator.core.mirror import MirrorSync
from cpanmeta_generator.core.publish import Publisher
from cpanmeta_generator.core.reconciler import reconcile
from cpanmeta_generator.core.schema import connect, ensure_schema
from cpanmeta_generator.core.visitor import ReleaseVisitor, VisitedRelease
from cpanmeta_generator.core.writer import BATCH_SIZE, BatchedWriter
from cpanmeta_generator.parsers.meta_yml import extract

logger = logging.getLogger(__name__)


class GeneratorError(RuntimeError):
    """A fatal problem that stops the generation run."""


def default_sqlite_path() -> Path:
    """``$CPANMETA_SQLITE`` or ``~/.cpanmeta/metadb.sqlite``."""
    env = os.environ.get("CPANMETA_SQLITE")
    if env:
        return Path(env)
    return Path.home() / ".cpanmeta" / "metadb.sqlite"


class Generator:
    """
    Generates the CPAN Meta database from a local CPAN mirror.

    Args:
        sqlite: Path of the database to build.
        minicpan: Root of the local mirror. Falls back to ``$CPANMETA_MINICPAN``.
        mirror: MirrorSync options (``remote``, ``local``, ...). When given the
            mirror is refreshed first and its local root is used.
        delta: Update the existing database instead of rebuilding it.
        trace: Log every visited release.
        acme: Include ``Acme-*`` releases.
        publisher: Publishes the finished database; None to skip.
        progress: Show a progress display on the console.
    """

    def __init__(
        self,
        sqlite: Path | str | None = None,
        minicpan: Path | str | None = None,
        mirror: dict | None = None,
        delta: bool = False,
        trace: bool = False,
        acme: bool = True,
        publisher: Publisher | None = None,
        progress: bool = False,
        batch_size: int = BATCH_SIZE,
        console: Console | None = None,
        mirror_factory: Callable[..., MirrorSync] = MirrorSync,
    ):
        self.sqlite = Path(sqlite) if sqlite is not None else default_sqlite_path()
        if minicpan is None:
            minicpan = os.environ.get("CPANMETA_MINICPAN")
        self.minicpan = Path(minicpan) if minicpan else None
        self.mirror = dict(mirror) if mirror else None
        self.delta = delta
        self.trace = trace
        self.acme = acme
        self.publisher = publisher
        self.progress = progress
        self.batch_size = batch_size
        self.console = console or Console(stderr=True)
        self.mirror_factory = mirror_factory

        self.stats: dict = {
            "visited": 0,
            "parsed": 0,
            "unparsed": 0,
            "dependencies": 0,
            "skipped": 0,
            "failed": 0,
            "commits": 0,
            "start_time": 0.0,
        }

    @property
    def dir(self) -> Path:
        """Directory the database is written into."""
        return self.sqlite.parent

    @property
    def dsn(self) -> str:
        return f"sqlite:///{self.sqlite}"

    # ──────────────────────────────────────────────
    # Run Steps
    # ──────────────────────────────────────────────

    def _prepare_output_location(self) -> None:
        try:
            self.dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise GeneratorError(f"Failed to create '{self.dir}': {e}") from e
        if not self.dir.is_dir():
            raise GeneratorError(f"Failed to create '{self.dir}'")

    def _clear_store(self) -> None:
        """Delete the previous database, and any journal it left behind."""
        journal = self.sqlite.with_name(self.sqlite.name + "-journal")
        for path in (self.sqlite, journal):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.error(f"Failed to remove {path}: {e}")
        if self.sqlite.exists():
            raise GeneratorError(f"Failed to clear {self.sqlite}")

    def _refresh_mirror(self) -> Path:
        options = dict(self.mirror)
        options.setdefault("local", self.minicpan)
        return Path(self.mirror_factory(**options).update())

    def _open_store(self) -> sqlite3.Connection:
        try:
            return connect(self.sqlite)
        except sqlite3.Error as e:
            raise GeneratorError(f"connect: {e}") from e

    def _visit(self, writer: BatchedWriter, seen: frozenset[str]) -> None:
        """Extract and write every release the visitor hands us."""
        visitor = ReleaseVisitor(self.minicpan, acme=self.acme, ignore=seen)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TextColumn("{task.completed:.0f} releases"),
            TimeElapsedColumn(),
            console=self.console,
            disable=not self.progress,
        ) as progress:
            task_id = progress.add_task("[green]Visiting...[/green]", total=None)

            def handle(the: VisitedRelease) -> None:
                if self.trace:
                    logger.info(f"[{the.counter}] {the.release}")
                record = extract(the.tempdir, the.release)
                writer.write(record)

                self.stats["visited"] += 1
                self.stats["dependencies"] += len(record.dependencies)
                self.stats["parsed" if record.parsed else "unparsed"] += 1
                progress.advance(task_id)

            visitor.run(handle)

        self.stats["skipped"] = visitor.skipped
        self.stats["failed"] = visitor.failed

    # ──────────────────────────────────────────────
    # Main Run
    # ──────────────────────────────────────────────

    def run(self) -> dict:
        """
        Generate the database.

        Returns:
            Run statistics.

        Raises:
            GeneratorError: On output-location, clearing or connection failure.
            sqlite3.Error: On any schema, reconciliation or write failure.
        """
        self.stats["start_time"] = time.time()

        # Checked before the old store is deleted
        if self.minicpan is None and not (self.mirror and "local" in self.mirror):
            raise GeneratorError("No minicpan directory configured")

        self._prepare_output_location()
        if not self.delta:
            self._clear_store()

        if self.mirror:
            self.minicpan = self._refresh_mirror()

        conn = self._open_store()
        try:
            ensure_schema(conn)

            seen: frozenset[str] = frozenset()
            if self.delta:
                seen = reconcile(conn, self.minicpan)

            writer = BatchedWriter(conn, batch_size=self.batch_size)
            writer.begin()
            self._visit(writer, seen)
            writer.finish()
            self.stats["commits"] = writer.commits
        finally:
            conn.close()

        logger.info(f"Generated {self.sqlite} ({self.stats['visited']} releases)")

        if self.publisher is not None:
            logger.info("Publishing the generated database...")
            self.publisher.publish(self.sqlite)

        if self.progress:
            self._print_final_statistics()
        return self.stats

    def _print_final_statistics(self) -> None:
        elapsed = time.time() - self.stats["start_time"]
        self.console.print("\n[bold green][DONE] Generation Complete[/bold green]")
        self.console.print(
            f"Visited: {self.stats['visited']} | Parsed: {self.stats['parsed']} | "
            f"Unparsed: {self.stats['unparsed']} | Skipped: {self.stats['skipped']} | "
            f"Failed: {self.stats['failed']}"
        )
        self.console.print(
            f"[cyan]Dependencies:[/cyan] {self.stats['dependencies']} | "
            f"[cyan]Commits:[/cyan] {self.stats['commits']} | Elapsed: {elapsed:.0f}s"
        )
