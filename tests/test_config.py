"""Tests for AnalysisConfig."""

from pathlib import Path

import pytest

from archive_graph.core.config import RELEASE_ARCHITECTURES, AnalysisConfig, default_cache_dir
from archive_graph.core.fetcher import Compression
from archive_graph.models.package import RUNTIME_RELATIONS, RelationKind


class TestAnalysisConfig:
    def test_defaults(self):
        config = AnalysisConfig()
        assert config.suite == "unstable"
        assert config.components == ["main"]
        assert config.target_architectures == frozenset(RELEASE_ARCHITECTURES)
        assert config.relation_kinds == RUNTIME_RELATIONS
        assert config.strict is False
        assert config.loads_sources is False

    def test_pseudo_architectures_dropped(self):
        config = AnalysisConfig(target_architectures={"amd64", "all", "source"})
        assert config.target_architectures == frozenset({"amd64"})

    def test_no_concrete_architecture(self):
        with pytest.raises(ValueError):
            AnalysisConfig(target_architectures={"all"})

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValueError):
            AnalysisConfig(max_concurrent_fetches=0)

    def test_relation_kinds_from_strings(self):
        config = AnalysisConfig(relation_kinds={"depends", "Build-Depends"})
        assert config.relation_kinds == {RelationKind.DEPENDS, RelationKind.BUILD_DEPENDS}
        assert config.follows_build_relations
        assert config.loads_sources

    def test_unknown_relation_kind(self):
        with pytest.raises(ValueError, match="Unknown relation kind"):
            AnalysisConfig(relation_kinds={"conflicts"})

    def test_include_sources(self):
        assert AnalysisConfig(include_sources=True).loads_sources

    def test_compressions_from_strings(self):
        config = AnalysisConfig(compressions=("gz", "raw"))
        assert config.compressions == (Compression.GZIP, Compression.RAW)

    def test_normalization(self):
        config = AnalysisConfig(mirror="http://example.org/debian/", components=[], cache_dir="/tmp/x")
        assert config.mirror == "http://example.org/debian"
        assert config.components == ["main"]
        assert config.cache_dir == Path("/tmp/x")

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("ARCHIVE_GRAPH_MIRROR", "http://env.example/debian")
        config = AnalysisConfig.from_env(suite="testing", mirror=None)
        assert config.mirror == "http://env.example/debian"
        assert config.suite == "testing"

    def test_from_env_override_wins(self, monkeypatch):
        monkeypatch.setenv("ARCHIVE_GRAPH_MIRROR", "http://env.example/debian")
        config = AnalysisConfig.from_env(mirror="http://cli.example/debian")
        assert config.mirror == "http://cli.example/debian"

    def test_default_cache_dir(self, monkeypatch, tmp_path):
        monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path))
        assert default_cache_dir() == tmp_path / "archive-graph"
        monkeypatch.delenv("XDG_CACHE_HOME")
        assert default_cache_dir() == Path.home() / ".cache" / "archive-graph"
