"""
Delta reconciliation against the local CPAN mirror.

Before an incremental run, every release already in the database is checked
against its archive under ``authors/id``. Releases whose archive has gone
are deleted along with their dependency rows; the survivors are returned so
the visit can skip them.
"""

import logging
import sqlite3
from pathlib import Path

logger = logging.getLogger(__name__)


SELECT_RELEASES_SQL = "SELECT DISTINCT release FROM meta_distribution"

DELETE_DISTRIBUTION_SQL = "DELETE FROM meta_distribution WHERE release = ?"

DELETE_ORPHANS_SQL = (
    "DELETE FROM meta_dependency WHERE release NOT IN "
    "( SELECT release FROM meta_distribution )"
)


def archive_path(minicpan: Path, release: str) -> Path:
    """
    Location of a release's archive in the mirror.

    ``ADAMK/Foo-1.0.tar.gz`` lives at ``authors/id/A/AD/ADAMK/Foo-1.0.tar.gz``.
    """
    return Path(minicpan, "authors", "id", release[:1], release[:2], *release.split("/"))


def reconcile(conn: sqlite3.Connection, minicpan: Path) -> frozenset[str]:
    """
    Prune releases whose archive no longer exists.

    Runs in a single transaction which is rolled back if anything fails.

    Args:
        conn: Autocommit-mode connection to the database.
        minicpan: Root of the local mirror.

    Returns:
        The releases that are still present in both the database and the
        mirror.
    """
    seen = set()
    pruned = 0

    conn.execute("BEGIN")
    try:
        releases = [row[0] for row in conn.execute(SELECT_RELEASES_SQL).fetchall()]
        for release in releases:
            if archive_path(minicpan, release).is_file():
                seen.add(release)
                continue

            conn.execute(DELETE_DISTRIBUTION_SQL, (release,))
            pruned += 1
            logger.debug(f"[Delta] Pruned {release}")

        orphans = conn.execute(DELETE_ORPHANS_SQL).rowcount
        conn.execute("COMMIT")
    except Exception:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise

    logger.info(
        f"[Delta] Kept {len(seen)} releases, pruned {pruned} releases "
        f"and {orphans} dependency rows"
    )
    return frozenset(seen)
