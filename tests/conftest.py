"""Shared fixtures: a throwaway local CPAN mirror with release archives."""

import io
import tarfile
from pathlib import Path

import pytest

from cpanmeta_generator.core.reconciler import archive_path


SAMPLE_META = """---
name: Foo-Bar
version: 1.10
abstract: Does foo things
author:
  - Adam Kennedy <adamk@cpan.org>
generated_by: ExtUtils::MakeMaker version 6.54
license: perl
version_from: lib/Foo/Bar.pm
requires:
  Zeta: 0
  Alpha: 1.5
  Mu: ~
build_requires:
  Test::More: 0.47
configure_requires:
  ExtUtils::MakeMaker: 6.31
"""


def _add_file(tf: tarfile.TarFile, name: str, data: bytes) -> None:
    info = tarfile.TarInfo(name)
    info.size = len(data)
    tf.addfile(info, io.BytesIO(data))


def write_release(minicpan: Path, release: str, meta: str | None = SAMPLE_META) -> Path:
    """Write ``release`` as a .tar.gz under the mirror; no META.yml if ``meta`` is None."""
    archive = archive_path(minicpan, release)
    archive.parent.mkdir(parents=True, exist_ok=True)

    distdir = release.rsplit("/", 1)[-1].removesuffix(".tar.gz")
    with tarfile.open(archive, "w:gz") as tf:
        if meta is not None:
            _add_file(tf, f"{distdir}/META.yml", meta.encode("utf-8"))
        _add_file(tf, f"{distdir}/README", b"Nothing to see here.\n")
        _add_file(tf, f"{distdir}/t/META.yml", b"name: Not-The-Manifest\n")
    return archive


@pytest.fixture
def minicpan(tmp_path):
    root = tmp_path / "minicpan"
    (root / "authors" / "id").mkdir(parents=True)
    return root


@pytest.fixture
def make_release(minicpan):
    def _make(release: str, meta: str | None = SAMPLE_META) -> Path:
        return write_release(minicpan, release, meta)

    return _make
