"""
Release visitor for a local CPAN mirror.

Walks ``authors/id`` in a stable order, unpacks the top-level META.yml of
each release archive into a scratch directory and hands it to a callback.
"""

import logging
import shutil
import tarfile
import tempfile
import zipfile
from collections.abc import Callable, Container, Iterator
from dataclasses import dataclass
from pathlib import Path

from cpanmeta_generator.parsers.meta_yml import MANIFEST_NAME

logger = logging.getLogger(__name__)


ARCHIVE_SUFFIXES = (".tar.gz", ".tgz", ".tar.bz2", ".zip")


@dataclass(frozen=True)
class VisitedRelease:
    """What the callback receives for each visited release."""

    release: str  # e.g. "ADAMK/Foo-Bar-1.00.tar.gz"
    tempdir: Path
    counter: int  # 1-based
    archive: Path


def is_archive(path: Path) -> bool:
    return path.name.endswith(ARCHIVE_SUFFIXES)


def _manifest_member(names: list[str]) -> str | None:
    """Pick ``META.yml`` or ``<dist-dir>/META.yml`` out of an archive listing."""
    candidates = []
    for name in names:
        parts = [p for p in name.replace("\\", "/").split("/") if p not in ("", ".")]
        if parts and parts[-1] == MANIFEST_NAME and len(parts) <= 2:
            candidates.append((len(parts), name))
    return min(candidates)[1] if candidates else None


def extract_manifest(archive: Path, dest: Path) -> bool:
    """
    Copy the release's top-level META.yml into ``dest``.

    Member names are only used for matching, never as output paths.

    Returns:
        True if a manifest was found. Raises if the archive is unreadable.
    """
    target = dest / MANIFEST_NAME

    if archive.name.endswith(".zip"):
        with zipfile.ZipFile(archive) as zf:
            member = _manifest_member(zf.namelist())
            if member is None:
                return False
            with zf.open(member) as src, open(target, "wb") as out:
                shutil.copyfileobj(src, out)
            return True

    with tarfile.open(archive) as tf:
        files = {m.name: m for m in tf.getmembers() if m.isfile()}
        member = _manifest_member(list(files))
        if member is None:
            return False
        src = tf.extractfile(files[member])
        with src, open(target, "wb") as out:
            shutil.copyfileobj(src, out)
        return True


class ReleaseVisitor:
    """
    Iterates the release archives of a local mirror.

    Args:
        minicpan: Root of the local mirror.
        acme: Include ``Acme-*`` releases.
        ignore: Releases to skip, e.g. those already in the database.
    """

    def __init__(
        self,
        minicpan: Path,
        acme: bool = True,
        ignore: Container[str] | None = None,
    ):
        self.minicpan = Path(minicpan)
        self.acme = acme
        self.ignore = ignore if ignore is not None else frozenset()
        self.skipped = 0
        self.failed = 0

    @property
    def authors_dir(self) -> Path:
        return self.minicpan / "authors" / "id"

    def releases(self) -> Iterator[tuple[str, Path]]:
        """Yield ``(release, archive)`` pairs in sorted path order."""
        if not self.authors_dir.is_dir():
            logger.warning(f"No authors/id directory under {self.minicpan}")
            return

        for archive in sorted(self.authors_dir.rglob("*")):
            if not archive.is_file() or not is_archive(archive):
                continue
            if not self.acme and archive.name.startswith("Acme-"):
                continue

            parts = archive.relative_to(self.authors_dir).parts
            # X/XY/AUTHOR/...: anything shallower is not a release
            if len(parts) < 4:
                continue
            yield "/".join(parts[2:]), archive

    def run(self, callback: Callable[[VisitedRelease], None]) -> int:
        """
        Visit every release not in ``ignore``.

        Archives that cannot be opened are logged and skipped. Exceptions
        raised by the callback propagate.

        Returns:
            Number of releases handed to the callback.
        """
        counter = 0
        for release, archive in self.releases():
            if release in self.ignore:
                self.skipped += 1
                continue

            tempdir = Path(tempfile.mkdtemp(prefix="cpanmeta-"))
            try:
                try:
                    found = extract_manifest(archive, tempdir)
                except (OSError, tarfile.TarError, zipfile.BadZipFile) as e:
                    self.failed += 1
                    logger.warning(f"[Visit] Cannot unpack {release}: {e}")
                    continue

                if not found:
                    logger.debug(f"[Visit] {release} has no {MANIFEST_NAME}")

                counter += 1
                callback(VisitedRelease(release, tempdir, counter, archive))
            finally:
                shutil.rmtree(tempdir, ignore_errors=True)

        return counter
