"""
Schema management for the CPAN Meta database.
"""

import sqlite3


CREATE_DISTRIBUTION_SQL = """
CREATE TABLE IF NOT EXISTS meta_distribution (
    release TEXT NOT NULL,
    name TEXT,
    version TEXT,
    abstract TEXT,
    generated_by TEXT,
    version_from TEXT,
    license TEXT
)
"""

CREATE_DEPENDENCY_SQL = """
CREATE TABLE IF NOT EXISTS meta_dependency (
    release TEXT NOT NULL,
    phase TEXT NOT NULL,
    module TEXT NOT NULL,
    version TEXT NULL
)
"""

TABLES = ("meta_distribution", "meta_dependency")


def connect(db_path) -> sqlite3.Connection:
    """
    Open the database in autocommit mode.

    Transactions are opened and committed explicitly by the writer and the
    reconciler, so the driver must not start any on its own.
    """
    return sqlite3.connect(str(db_path), isolation_level=None)


def ensure_schema(conn: sqlite3.Connection) -> None:
    """Create both tables unless they already exist."""
    conn.execute(CREATE_DISTRIBUTION_SQL)
    conn.execute(CREATE_DEPENDENCY_SQL)
