"""
Batched Writer — Persists extracted records inside bounded transactions.

Inserts go into the currently open transaction, which is committed and
reopened every ``batch_size`` records. A crash therefore loses at most one
batch of uncommitted work.
"""

import logging
import sqlite3

from cpanmeta_generator.models.meta import MetaRecord

logger = logging.getLogger(__name__)


BATCH_SIZE = 100

INSERT_DISTRIBUTION_SQL = "INSERT INTO meta_distribution VALUES (?, ?, ?, ?, ?, ?, ?)"

INSERT_DEPENDENCY_SQL = "INSERT INTO meta_dependency VALUES (?, ?, ?, ?)"


class BatchedWriter:
    """
    Writes MetaRecords to the meta tables in batches.

    The connection must be in autocommit mode (see ``schema.connect``);
    this class issues BEGIN and COMMIT itself.
    """

    def __init__(self, conn: sqlite3.Connection, batch_size: int = BATCH_SIZE):
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.conn = conn
        self.batch_size = batch_size
        self.count = 0
        self.commits = 0
        self.dependencies = 0
        self.in_transaction = False

    def begin(self) -> None:
        """Open a new transaction."""
        self.conn.execute("BEGIN")
        self.in_transaction = True

    def commit(self) -> None:
        self.conn.execute("COMMIT")
        self.in_transaction = False
        self.commits += 1

    def write(self, record: MetaRecord) -> None:
        """Insert one release and its dependencies, committing on batch boundaries."""
        if not self.in_transaction:
            self.begin()

        self.conn.execute(INSERT_DISTRIBUTION_SQL, record.distribution.to_row())
        self.conn.executemany(INSERT_DEPENDENCY_SQL, [dep.to_row() for dep in record.dependencies])
        self.count += 1
        self.dependencies += len(record.dependencies)

        if self.count % self.batch_size == 0:
            self.commit()
            logger.debug(f"[SQLite] Committed batch at {self.count} releases")
            self.begin()

    def finish(self) -> None:
        """Commit whatever is left in the open transaction."""
        if self.in_transaction:
            self.commit()
        logger.info(
            f"[SQLite] Write complete: {self.count} releases, "
            f"{self.dependencies} dependencies, {self.commits} commits"
        )
