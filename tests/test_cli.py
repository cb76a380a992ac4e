"""Tests for the CLI entry points."""

import json

import pytest
from click.testing import CliRunner

from archive_graph.cli.main import cli
from tests.conftest import MIRROR, PACKAGES_AMD64


@pytest.fixture
def served(monkeypatch, mirror):
    """Route every analyzer transport to the fake mirror."""
    mirror.add_packages("amd64", PACKAGES_AMD64, "xz")
    monkeypatch.setattr("archive_graph.core.analyzer.HttpxTransport", mirror.transport)
    monkeypatch.delenv("ARCHIVE_GRAPH_MIRROR", raising=False)
    return mirror


def archive_args(tmp_path):
    return ["--mirror", MIRROR, "--arch", "amd64", "--cache-dir", str(tmp_path / "cache")]


class TestCLI:
    def test_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "archive-graph" in result.output
        for command in ("rdeps", "rebuild", "binnmus", "blockers", "clean"):
            assert command in result.output

    def test_rdeps_help(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["rdeps", "--help"])
        assert result.exit_code == 0
        for option in ("--suite", "--arch", "--strict", "--sources", "--jobs", "--format", "--relation"):
            assert option in result.output

    def test_version(self):
        runner = CliRunner()
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "1.0.0" in result.output

    def test_rdeps_jsonl(self, served, tmp_path):
        output = tmp_path / "rdeps.jsonl"
        runner = CliRunner()
        result = runner.invoke(
            cli, ["rdeps", "bar", *archive_args(tmp_path), "--format", "jsonl", "--output", str(output)]
        )
        assert result.exit_code == 0, result.output
        rows = [json.loads(line) for line in output.read_text().splitlines()]
        kinds = {row["kind"] for row in rows}
        assert "rebuild" not in kinds
        assert {row["package"] for row in rows if row["kind"] == "closure"} == {"bar", "foo", "baz"}

    def test_rebuild_text(self, served, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["rebuild", "bar", *archive_args(tmp_path)])
        assert result.exit_code == 0, result.output
        assert "Rebuild order" in result.output
        assert "Contributing architectures: amd64" in result.output

    def test_unknown_relation_kind(self, served, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["rebuild", "bar", "--relation", "conflicts", *archive_args(tmp_path)])
        assert result.exit_code == 2
        assert "Unknown relation kind" in result.output

    def test_missing_indices_fail(self, served, tmp_path):
        runner = CliRunner()
        result = runner.invoke(cli, ["rdeps", "bar", "--mirror", MIRROR, "--arch", "s390x", "--cache-dir", str(tmp_path)])
        assert result.exit_code == 1
        assert "No binary index could be loaded" in result.output

    def test_clean(self, tmp_path):
        stale = tmp_path / "unstable" / "main" / "amd64" / "abc.decoded.tmp-1234"
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b"junk")
        runner = CliRunner()
        result = runner.invoke(cli, ["clean", "--cache-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert "Removed 1 files" in result.output
        assert not stale.exists()

    def test_blockers_jsonl(self, served, tmp_path):
        served.add(
            "excuses.yaml",
            b"sources:\n"
            b"- item-name: app\n  source: app\n  new-version: '2.0'\n  old-version: '1.0'\n"
            b"  maintainer: Jane Doe <jane@example.org>\n  dependencies:\n    blocked-by:\n    - libfoo\n"
            b"- item-name: libfoo\n  source: libfoo\n  new-version: '1.1'\n  old-version: '1.0'\n",
        )
        output = tmp_path / "blockers.jsonl"
        runner = CliRunner()
        result = runner.invoke(
            cli,
            [
                "blockers",
                "--excuses-url",
                f"{MIRROR}/excuses.yaml",
                "--cache-dir",
                str(tmp_path / "cache"),
                "--format",
                "jsonl",
                "--output",
                str(output),
            ],
        )
        assert result.exit_code == 0, result.output
        (row,) = [json.loads(line) for line in output.read_text().splitlines()]
        assert row["kind"] == "blocker"
        assert row["package"] == "app"
        assert row["detail"]["blocked_by"] == ["libfoo"]
        assert row["detail"]["maintainer"] == "Jane Doe <jane@example.org>"
