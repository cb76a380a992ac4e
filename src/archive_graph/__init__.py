"""
archive-graph - Debian archive metadata ingestion and dependency analysis.

Fetches Packages and Sources indices for several architectures, builds one
cross-architecture dependency graph and answers reverse-dependency and
rebuild-order questions about it.
"""

__version__ = "1.0.0"


def __getattr__(name: str):
    """Lazy import for heavy dependencies."""
    if name == "ArchiveAnalyzer":
        from archive_graph.core.analyzer import ArchiveAnalyzer

        return ArchiveAnalyzer
    if name == "AnalysisConfig":
        from archive_graph.core.config import AnalysisConfig

        return AnalysisConfig
    if name == "PackageRecord":
        from archive_graph.models.package import PackageRecord

        return PackageRecord
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


__all__ = ["ArchiveAnalyzer", "AnalysisConfig", "PackageRecord", "__version__"]
