"""
META.yml Parser.

Turns the META.yml manifest shipped inside a CPAN release into one
Distribution record plus its phase-tagged Dependency records.

Loading is best effort: a manifest that is missing or unreadable yields
``Unparsed`` and the release is still recorded, identified only by its
release path.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from cpanmeta_generator.models.meta import (
    PHASE_KEYS,
    UNVERSIONED,
    Dependency,
    Distribution,
    MetaRecord,
)

logger = logging.getLogger(__name__)


MANIFEST_NAME = "META.yml"

# Manifest keys copied verbatim onto the Distribution, by field name
DISTRIBUTION_FIELDS = ("name", "version", "abstract", "generated_by", "version_from", "license")


# ──────────────────────────────────────────────
# Load results
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class Parsed:
    """A manifest that loaded into a mapping."""

    fields: Mapping = field(default_factory=dict)


@dataclass(frozen=True)
class Unparsed:
    """A manifest that could not be loaded, with the reason."""

    reason: str


ManifestResult = Parsed | Unparsed


# ──────────────────────────────────────────────
# Requirement specs
# ──────────────────────────────────────────────


@dataclass(frozen=True)
class Single:
    """A requirement given as a bare module name."""

    name: str


@dataclass(frozen=True)
class Requires:
    """A requirement given as a module -> minimum version mapping."""

    modules: Mapping[str, str] = field(default_factory=dict)


RequirementSpec = Single | Requires


def decode_manifest(raw: bytes) -> str:
    """
    Decode manifest bytes as UTF-8, falling back to Latin-1.

    Older toolchains wrote META.yml in the author's locale, so author names
    like ``König`` often arrive as Latin-1. Latin-1 maps every byte, so
    decoding never fails.
    """
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def load_manifest(path: Path) -> ManifestResult:
    """
    Load a META.yml file.

    All scalars are kept as strings so that versions like ``1.10`` survive
    untouched. Only the first YAML document is used.

    Args:
        path: Location of the manifest file.

    Returns:
        ``Parsed`` with the document mapping, or ``Unparsed`` describing
        why it could not be read.
    """
    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        return Unparsed(f"{path.name} not found")
    except OSError as e:
        return Unparsed(f"cannot read {path.name}: {e}")

    try:
        documents = list(yaml.load_all(decode_manifest(raw), Loader=yaml.BaseLoader))
    except yaml.YAMLError as e:
        return Unparsed(f"invalid YAML: {e}")

    if not documents or not isinstance(documents[0], dict):
        return Unparsed("manifest is not a mapping")

    return Parsed(documents[0])


def _scalar(value) -> str | None:
    """Normalize a YAML scalar; ``~`` and empty strings are absent."""
    if isinstance(value, str):
        value = value.strip()
        if value in ("", "~"):
            return None
        return value
    if isinstance(value, list):
        # META 2.0 style license lists
        items = [v for v in (_scalar(item) for item in value) if v]
        return ", ".join(items) or None
    return None


def decode_requirements(value) -> RequirementSpec:
    """
    Decode one phase's requirement entry.

    A bare string is a single unversioned module. A mapping is taken as
    module -> version pairs, and a list as unversioned module names.
    Anything else, including an absent entry, decodes to no requirements.
    """
    if isinstance(value, str):
        name = _scalar(value)
        return Single(name) if name else Requires()

    if isinstance(value, dict):
        modules = {}
        for module, version in value.items():
            if not isinstance(module, str) or not module.strip():
                continue
            modules[module.strip()] = _scalar(version) if isinstance(version, str) else None
        return Requires({m: v or UNVERSIONED for m, v in modules.items()})

    if isinstance(value, list):
        names = (_scalar(item) for item in value if isinstance(item, str))
        return Requires({name: UNVERSIONED for name in names if name})

    return Requires()


def expand_requirements(spec: RequirementSpec) -> list[tuple[str, str]]:
    """(module, version) pairs sorted by module name."""
    match spec:
        case Single(name=name):
            return [(name, UNVERSIONED)]
        case Requires(modules=modules):
            return sorted(modules.items())


def extract(tempdir: Path, release: str) -> MetaRecord:
    """
    Extract the metadata record for one release.

    Args:
        tempdir: Directory the release's META.yml was extracted into.
        release: Author-relative release path.

    Returns:
        The Distribution and its Dependency rows, runtime first, then
        build, then configure, each phase sorted by module name.
    """
    result = load_manifest(Path(tempdir) / MANIFEST_NAME)

    match result:
        case Unparsed(reason=reason):
            logger.warning(f"[META] {release}: {reason}")
            return MetaRecord(Distribution(release=release), parsed=False)
        case Parsed(fields=doc):
            pass

    distribution = Distribution(
        release=release,
        **{name: _scalar(doc.get(name)) for name in DISTRIBUTION_FIELDS},
    )

    dependencies = []
    for phase, key in PHASE_KEYS:
        spec = decode_requirements(doc.get(key))
        dependencies.extend(
            Dependency(release=release, phase=phase, module=module, version=version)
            for module, version in expand_requirements(spec)
        )

    return MetaRecord(distribution, tuple(dependencies))
