"""
CPAN Meta Generator - Builds the CPAN Meta SQLite database.

Extracts name, version, abstract, license and phase-tagged dependencies from
the META.yml of every release in a local CPAN mirror into two SQLite tables,
``meta_distribution`` and ``meta_dependency``.
"""

__version__ = "1.0.0"


def __getattr__(name: str):
    """Lazy import for heavy dependencies."""
    if name == "Generator":
        from cpanmeta_generator.core.generator import Generator

        return Generator
    if name == "Publisher":
        from cpanmeta_generator.core.publish import Publisher

        return Publisher
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["Generator", "Publisher", "__version__"]
