"""End-to-end tests for ArchiveAnalyzer against a fake mirror."""

import asyncio

import httpx
import pytest

from archive_graph.core.analyzer import ArchiveAnalyzer
from archive_graph.core.config import AnalysisConfig
from archive_graph.core.errors import DecodeError, FetchError, ParseError, RecordErrorKind
from archive_graph.core.fetcher import FetchResult
from archive_graph.core.intern import InternTable
from archive_graph.core.transport import ExponentialBackoff, HttpxTransport
from tests.conftest import LAST_MODIFIED, MIRROR, PACKAGES_AMD64, PACKAGES_ARM64

EXCUSES_YAML = """\
sources:
- item-name: bar-src
  source: bar-src
  new-version: 2.1-1
  old-version: 2.0-1
  component: main
  policy_info:
    builtonbuildd:
      signed-by:
        amd64: someone@example.org
        arm64: buildd_arm64-arm-01@buildd.debian.org
      verdict: REJECTED_PERMANENTLY
"""


def make_config(tmp_path, **overrides):
    values = dict(
        mirror=MIRROR,
        target_architectures={"amd64", "arm64"},
        seeds=["bar"],
        cache_dir=tmp_path / "cache",
    )
    values.update(overrides)
    return AnalysisConfig(**values)


def described(report, ids):
    return {report.graph.describe(node) for node in ids}


class TestArchiveAnalyzer:
    @pytest.mark.asyncio
    async def test_analyze(self, tmp_path, mirror):
        mirror.add_packages("amd64", PACKAGES_AMD64, "xz")
        mirror.add_packages("arm64", PACKAGES_ARM64, "gz")
        analyzer = ArchiveAnalyzer(make_config(tmp_path), transport=mirror.transport())

        report = await analyzer.analyze()

        assert report.snapshot.contributing_architectures == ["amd64", "arm64"]
        assert report.snapshot.missing_architectures == []
        assert described(report, report.closure) == {"foo:amd64", "bar:amd64", "baz:amd64", "foo:arm64", "bar:arm64"}
        order = [report.graph.describe(node) for node in report.rebuild.order]
        assert order.index("bar:amd64") < order.index("foo:amd64") < order.index("baz:amd64")
        assert [e.kind for e in report.snapshot.record_errors] == [RecordErrorKind.MISSING_FIELD]
        assert report.missing_seeds == []
        assert analyzer.stats["indices_loaded"] == 2

    @pytest.mark.asyncio
    async def test_failed_architecture_is_reported(self, tmp_path, mirror):
        mirror.add_packages("amd64", PACKAGES_AMD64, "xz")
        mirror.fail("dists/unstable/main/binary-arm64/Packages.xz", 503)
        analyzer = ArchiveAnalyzer(make_config(tmp_path), transport=mirror.transport())

        report = await analyzer.analyze()

        snapshot = report.snapshot
        assert snapshot.contributing_architectures == ["amd64"]
        assert snapshot.missing_architectures == ["arm64"]
        (failed,) = snapshot.failed_indices
        assert failed.architecture == "arm64"
        assert "503" in failed.error
        assert described(report, report.closure) == {"foo:amd64", "bar:amd64", "baz:amd64"}

    @pytest.mark.asyncio
    async def test_corrupt_index_only_drops_that_file(self, tmp_path, mirror):
        mirror.add_packages("amd64", PACKAGES_AMD64, "xz")
        mirror.add("dists/unstable/main/binary-arm64/Packages.xz", b"not xz")
        analyzer = ArchiveAnalyzer(make_config(tmp_path), transport=mirror.transport())

        snapshot = await analyzer.load()

        assert snapshot.missing_architectures == ["arm64"]
        assert "Corrupt" in snapshot.failed_indices[0].error

    @pytest.mark.asyncio
    async def test_unwritable_cache_only_drops_that_architecture(self, tmp_path, mirror):
        mirror.add_packages("amd64", PACKAGES_AMD64, "xz")
        mirror.add_packages("arm64", PACKAGES_ARM64, "xz")
        blocked = tmp_path / "cache" / "unstable" / "main" / "arm64"
        blocked.parent.mkdir(parents=True)
        blocked.write_bytes(b"")
        analyzer = ArchiveAnalyzer(make_config(tmp_path), transport=mirror.transport())

        report = await analyzer.analyze()

        assert report.snapshot.contributing_architectures == ["amd64"]
        assert report.snapshot.missing_architectures == ["arm64"]
        assert "Cannot write cache entry" in report.snapshot.failed_indices[0].error

    def test_unreadable_index_is_a_failed_row(self, tmp_path):
        analyzer = ArchiveAnalyzer(make_config(tmp_path, target_architectures={"amd64"}))
        gone = FetchResult(f"{MIRROR}/Packages", tmp_path / "vanished", LAST_MODIFIED, False)

        snapshot = analyzer.ingest([("main", "amd64", gone, None)])

        (row,) = snapshot.coverage
        assert row.status == "failed"
        assert row.url == f"{MIRROR}/Packages"
        assert snapshot.records == []

    @pytest.mark.asyncio
    async def test_fetches_bounded_by_jobs(self, tmp_path, mirror):
        for arch in ("amd64", "arm64", "armhf", "i386", "ppc64el", "s390x"):
            mirror.add_packages(arch, PACKAGES_AMD64.replace("amd64", arch), "xz")
        in_flight = 0
        peak = 0

        async def handler(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            try:
                await asyncio.sleep(0.01)
                return mirror.handler(request)
            finally:
                in_flight -= 1

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        transport = HttpxTransport(client=client, backoff=ExponentialBackoff(base_delay=0, max_delay=0, max_retries=0))
        config = make_config(
            tmp_path,
            target_architectures={"amd64", "arm64", "armhf", "i386", "ppc64el", "s390x"},
            max_concurrent_fetches=2,
        )
        analyzer = ArchiveAnalyzer(config, transport=transport)

        snapshot = await analyzer.load()

        assert len(snapshot.contributing_architectures) == 6
        assert peak == 2

    @pytest.mark.asyncio
    async def test_nothing_loaded(self, tmp_path, mirror):
        analyzer = ArchiveAnalyzer(make_config(tmp_path), transport=mirror.transport())
        with pytest.raises(FetchError):
            await analyzer.analyze()

    @pytest.mark.asyncio
    async def test_second_run_uses_cache(self, tmp_path, mirror):
        mirror.add_packages("amd64", PACKAGES_AMD64, "xz")
        config = make_config(tmp_path, target_architectures={"amd64"})

        first = ArchiveAnalyzer(config, transport=mirror.transport())
        await first.analyze()
        second = ArchiveAnalyzer(config, transport=mirror.transport())
        report = await second.analyze()

        assert first.stats["downloads"] == 1
        assert second.stats["downloads"] == 0
        assert second.stats["cache_hits"] == 1
        assert report.snapshot.coverage[0].from_cache
        assert "Cache hits: 1" in second.get_stats_summary()

    @pytest.mark.asyncio
    async def test_strict_mode_fails_on_malformed_line(self, tmp_path, mirror):
        mirror.add_packages("amd64", PACKAGES_AMD64 + "\nthis line is broken\n", "xz")
        analyzer = ArchiveAnalyzer(make_config(tmp_path, target_architectures={"amd64"}, strict=True), transport=mirror.transport())
        with pytest.raises(ParseError):
            await analyzer.analyze()

    @pytest.mark.asyncio
    async def test_lenient_mode_records_warning(self, tmp_path, mirror):
        mirror.add_packages("amd64", PACKAGES_AMD64 + "\nthis line is broken\n", "xz")
        analyzer = ArchiveAnalyzer(make_config(tmp_path, target_architectures={"amd64"}), transport=mirror.transport())
        report = await analyzer.analyze()
        assert len(report.snapshot.parse_warnings) == 1
        assert len(report.graph) == 3

    @pytest.mark.asyncio
    async def test_build_relations_load_sources(self, tmp_path, mirror):
        mirror.add_packages("amd64", PACKAGES_AMD64, "xz")
        mirror.add_sources("Package: app\nVersion: 1.0-1\nArchitecture: any\nBuild-Depends: foo (>= 1.0)\n")
        config = make_config(
            tmp_path,
            target_architectures={"amd64"},
            relation_kinds={"depends", "build-depends"},
        )
        analyzer = ArchiveAnalyzer(config, transport=mirror.transport())

        report = await analyzer.analyze()

        assert {row.architecture for row in report.snapshot.coverage} == {"amd64", "source"}
        assert "app:source" in described(report, report.closure)

    @pytest.mark.asyncio
    async def test_shared_interner(self, tmp_path, mirror):
        mirror.add_packages("amd64", PACKAGES_AMD64, "xz")
        mirror.add_packages("arm64", PACKAGES_ARM64, "xz")
        table = InternTable()
        analyzer = ArchiveAnalyzer(make_config(tmp_path), transport=mirror.transport(), interner=table)

        snapshot = await analyzer.load()

        foos = [record for record in snapshot.records if record.name == "foo"]
        assert len(foos) == 2
        assert foos[0].name is foos[1].name
        assert "arm64" in table

    @pytest.mark.asyncio
    async def test_schedule_binnmus(self, tmp_path, mirror):
        mirror.add_packages("amd64", PACKAGES_AMD64, "xz")
        mirror.add("excuses.yaml", EXCUSES_YAML.encode())
        analyzer = ArchiveAnalyzer(make_config(tmp_path, target_architectures={"amd64"}), transport=mirror.transport())

        schedule = await analyzer.schedule_binnmus(f"{MIRROR}/excuses.yaml")

        assert [request.source for request in schedule.requests] == ["bar-src"]
        assert schedule.lines == ['nmu bar-src_2.1-1 . ANY . unstable . -m "Rebuild on buildd"']

    @pytest.mark.asyncio
    async def test_fetch_excuses(self, tmp_path, mirror):
        mirror.add("excuses.yaml", EXCUSES_YAML.encode())
        analyzer = ArchiveAnalyzer(make_config(tmp_path), transport=mirror.transport())

        excuses = await analyzer.fetch_excuses(f"{MIRROR}/excuses.yaml")

        assert [item.source for item in excuses.sources] == ["bar-src"]
        assert analyzer.stats["downloads"] == 1

    @pytest.mark.asyncio
    async def test_invalid_excuses_yaml(self, tmp_path, mirror):
        mirror.add("excuses.yaml", b"sources: [unclosed\n")
        analyzer = ArchiveAnalyzer(make_config(tmp_path), transport=mirror.transport())
        with pytest.raises(DecodeError):
            await analyzer.fetch_excuses(f"{MIRROR}/excuses.yaml")
