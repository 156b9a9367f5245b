"""
CPAN Meta Model — Distribution and dependency records.

Defines the rows stored in the ``meta_distribution`` and ``meta_dependency``
tables. One Distribution exists per visited release; Dependency rows hang off
it by the ``release`` identifier.
"""

from dataclasses import astuple, dataclass, field
from enum import Enum


# Version recorded for a requirement that names no minimum version
UNVERSIONED = "0"


class Phase(str, Enum):
    """Dependency phase, describing when a module is needed."""

    CONFIGURE = "configure"
    BUILD = "build"
    RUNTIME = "runtime"


# Manifest key for each phase, in row emission order
PHASE_KEYS: tuple[tuple[Phase, str], ...] = (
    (Phase.RUNTIME, "requires"),
    (Phase.BUILD, "build_requires"),
    (Phase.CONFIGURE, "configure_requires"),
)


@dataclass(frozen=True)
class Distribution:
    """
    One row of ``meta_distribution``.

    ``release`` is the author-relative archive path, e.g.
    ``ADAMK/ORDB-CPANMeta-0.03.tar.gz``. Every other field is None when the
    release's META.yml could not be parsed.
    """

    release: str
    name: str | None = None
    version: str | None = None
    abstract: str | None = None
    generated_by: str | None = None
    version_from: str | None = None
    license: str | None = None

    def to_row(self) -> tuple:
        """Column values in table order."""
        return astuple(self)


@dataclass(frozen=True)
class Dependency:
    """One row of ``meta_dependency``."""

    release: str
    phase: Phase
    module: str
    version: str = UNVERSIONED

    def to_row(self) -> tuple:
        return (self.release, self.phase.value, self.module, self.version)


@dataclass(frozen=True)
class MetaRecord:
    """Everything extracted from a single release."""

    distribution: Distribution
    dependencies: tuple[Dependency, ...] = field(default_factory=tuple)
    parsed: bool = True  # False when META.yml could not be loaded

    @property
    def release(self) -> str:
        return self.distribution.release
