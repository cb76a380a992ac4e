"""
Archive Analyzer — orchestrates one analysis run.

Pipeline:
- fetch every (component, architecture) index concurrently, bounded by a
  semaphore
- parse and build records sequentially once all fetches have finished
- build the dependency graph from the merged records
- run the reverse-dependency and rebuild-set queries for the seeds

A failed index only removes its own contribution; the coverage table on the
snapshot tells the consumer what data the answer is based on.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

import yaml
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from archive_graph.core.cache import CacheStore
from archive_graph.core.config import AnalysisConfig
from archive_graph.core.errors import DecodeError, FetchError, ParseError, RecordError
from archive_graph.core.fetcher import FetchResult, IndexFetcher, iter_lines
from archive_graph.core.graph import DependencyGraph, build_graph
from archive_graph.core.intern import InternTable
from archive_graph.core.queries import RebuildSet, rebuild_set, resolve_seeds, reverse_closure
from archive_graph.core.records import build_records
from archive_graph.core.transport import HttpxTransport, Transport
from archive_graph.models.package import SOURCE_ARCHITECTURE, PackageRecord
from archive_graph.parsers.deb822 import StanzaParser
from archive_graph.parsers.excuses import (
    EXCUSES_URL,
    BinNMURequest,
    Excuses,
    binnmu_requests,
    format_nmu,
    load_excuses,
    ma_same_sources,
)

logger = logging.getLogger("ArchiveAnalyzer")


@dataclass
class IndexCoverage:
    """Outcome of loading one index file."""

    component: str
    architecture: str
    status: str  # "ok" or "failed"
    url: str | None = None
    from_cache: bool = False
    records: int = 0
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


@dataclass
class ArchiveSnapshot:
    """Records of one suite as fetched at one point in time."""

    suite: str
    fetched_at: float
    target_architectures: frozenset[str]
    records: list[PackageRecord] = field(default_factory=list)
    record_errors: list[RecordError] = field(default_factory=list)
    record_warnings: list[RecordError] = field(default_factory=list)
    parse_warnings: list[ParseError] = field(default_factory=list)
    coverage: list[IndexCoverage] = field(default_factory=list)

    @property
    def contributing_architectures(self) -> list[str]:
        return sorted({row.architecture for row in self.coverage if row.ok and row.architecture != SOURCE_ARCHITECTURE})

    @property
    def missing_architectures(self) -> list[str]:
        return sorted(self.target_architectures - set(self.contributing_architectures))

    @property
    def failed_indices(self) -> list[IndexCoverage]:
        return [row for row in self.coverage if not row.ok]


@dataclass
class AnalysisReport:
    """Everything one run produced, ready for a reporter."""

    config: AnalysisConfig
    snapshot: ArchiveSnapshot
    graph: DependencyGraph
    seeds: list[int]
    missing_seeds: list[str]
    closure: frozenset[int]
    rebuild: RebuildSet


@dataclass
class BinNMUSchedule:
    requests: list[BinNMURequest]
    lines: list[str]
    snapshot: ArchiveSnapshot


class ArchiveAnalyzer:
    """
    Loads archive indices and answers rebuild questions about them.

    The transport, cache and interning table can be injected; by default an
    httpx transport is opened per load and the cache lives in
    ``config.cache_dir``.
    """

    def __init__(
        self,
        config: AnalysisConfig,
        transport: Transport | None = None,
        cache: CacheStore | None = None,
        interner: InternTable | None = None,
        console: Console | None = None,
        show_progress: bool = False,
    ):
        self.config = config
        self.interner = interner if interner is not None else InternTable()
        self.cache = cache or CacheStore(config.cache_dir)
        self._transport = transport
        self.console = console or Console(stderr=True)
        self.show_progress = show_progress
        self.stats: dict = {
            "indices_requested": 0,
            "indices_loaded": 0,
            "downloads": 0,
            "cache_hits": 0,
            "start_time": 0.0,
        }

    # ──────────────────────────────────────────────
    # Fetching
    # ──────────────────────────────────────────────

    @asynccontextmanager
    async def _fetcher(self):
        transport = self._transport or HttpxTransport()
        fetcher = IndexFetcher(transport, self.cache, self.config.mirror)
        try:
            yield fetcher
        finally:
            self.stats["downloads"] += fetcher.downloads
            self.stats["cache_hits"] += fetcher.cache_hits
            if self._transport is None:
                await transport.aclose()

    def _index_targets(self) -> list[tuple[str, str]]:
        archs = sorted(self.config.target_architectures)
        if self.config.loads_sources:
            archs.append(SOURCE_ARCHITECTURE)
        return [(component, arch) for component in self.config.components for arch in archs]

    async def _fetch_all(self, fetcher: IndexFetcher):
        targets = self._index_targets()
        self.stats["indices_requested"] += len(targets)
        sem = asyncio.Semaphore(self.config.max_concurrent_fetches)

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=self.console,
            disable=not self.show_progress,
        ) as progress:
            task_id = progress.add_task("[green]Fetching indices...[/green]", total=len(targets))

            async def fetch_one(component: str, arch: str):
                async with sem:
                    try:
                        result = await fetcher.fetch_index(
                            self.config.suite, arch, component, self.config.compressions
                        )
                        return component, arch, result, None
                    except (FetchError, DecodeError) as e:
                        logger.warning(f"Failed to load {self.config.suite}/{component}/{arch}: {e}")
                        return component, arch, None, e
                    finally:
                        progress.advance(task_id)

            return await asyncio.gather(*(fetch_one(c, a) for c, a in targets))

    # ──────────────────────────────────────────────
    # Ingestion
    # ──────────────────────────────────────────────

    def ingest(self, outcomes) -> ArchiveSnapshot:
        """
        Parse fetched indices into a snapshot.

        Args:
            outcomes: Iterable of (component, architecture, FetchResult | None,
                error | None) tuples.
        """
        snapshot = ArchiveSnapshot(
            suite=self.config.suite,
            fetched_at=time.time(),
            target_architectures=self.config.target_architectures,
        )
        kinds = tuple(sorted(self.config.relation_kinds, key=lambda kind: kind.value))

        for component, arch, result, error in outcomes:
            if result is None:
                snapshot.coverage.append(
                    IndexCoverage(component, arch, "failed", url=getattr(error, "url", None), error=str(error))
                )
                continue
            parser = StanzaParser(strict=self.config.strict)
            try:
                batch = build_records(
                    parser.parse(iter_lines(result.path)),
                    self.interner,
                    kinds,
                    is_source=arch == SOURCE_ARCHITECTURE,
                    component=component,
                )
            except OSError as e:
                logger.warning(f"Failed to read {result.path}: {e}")
                snapshot.coverage.append(IndexCoverage(component, arch, "failed", url=result.url, error=str(e)))
                continue
            snapshot.records.extend(batch.records)
            snapshot.record_errors.extend(batch.errors)
            snapshot.record_warnings.extend(batch.warnings)
            snapshot.parse_warnings.extend(parser.warnings)
            snapshot.coverage.append(
                IndexCoverage(
                    component,
                    arch,
                    "ok",
                    url=result.url,
                    from_cache=result.from_cache,
                    records=len(batch.records),
                )
            )
            self.stats["indices_loaded"] += 1
            logger.info(f"Loaded {len(batch.records)} records from {component}/{arch} ({len(batch.errors)} rejected)")

        return snapshot

    async def load(self) -> ArchiveSnapshot:
        """Fetch and parse every configured index."""
        self.stats["start_time"] = time.time()
        async with self._fetcher() as fetcher:
            outcomes = await self._fetch_all(fetcher)

        snapshot = self.ingest(outcomes)
        if not snapshot.contributing_architectures:
            raise FetchError(f"No binary index could be loaded for {self.config.suite}")
        if snapshot.missing_architectures:
            logger.warning(f"Missing architectures: {', '.join(snapshot.missing_architectures)}")
        return snapshot

    # ──────────────────────────────────────────────
    # Analysis
    # ──────────────────────────────────────────────

    def analyze_snapshot(self, snapshot: ArchiveSnapshot) -> AnalysisReport:
        graph = build_graph(snapshot.records, self.config.target_architectures)
        seeds, missing = resolve_seeds(graph, self.config.seeds, self.config.target_architectures)
        for name in missing:
            logger.warning(f"Seed package not found in snapshot: {name}")

        closure = reverse_closure(graph, seeds)
        rebuild = rebuild_set(graph, seeds, self.config.relation_kinds)
        logger.info(
            f"{len(seeds)} seeds, {len(closure)} packages in closure, "
            f"{len(rebuild)} to rebuild, {len(rebuild.cycles)} cycles"
        )
        return AnalysisReport(self.config, snapshot, graph, seeds, missing, closure, rebuild)

    async def analyze(self) -> AnalysisReport:
        """Load the archive and run both queries for the configured seeds."""
        snapshot = await self.load()
        return self.analyze_snapshot(snapshot)

    async def fetch_excuses(self, excuses_url: str = EXCUSES_URL) -> Excuses:
        """Fetch and parse britney's excuses.yaml through the index cache."""
        async with self._fetcher() as fetcher:
            result: FetchResult = await fetcher.fetch_url(excuses_url, "britney", "excuses", "excuses.yaml")

        try:
            with open(result.path, encoding="utf-8") as handle:
                return load_excuses(handle)
        except (OSError, yaml.YAMLError) as e:
            raise DecodeError(f"Cannot load excuses from {excuses_url}: {e}", url=excuses_url) from e

    async def schedule_binnmus(self, excuses_url: str = EXCUSES_URL) -> BinNMUSchedule:
        """Fetch excuses.yaml and list binNMUs needed for testing migration."""
        excuses = await self.fetch_excuses(excuses_url)
        snapshot = await self.load()
        ma_same = ma_same_sources(snapshot.records)
        requests = binnmu_requests(excuses)
        lines = [format_nmu(request, self.config.suite, ma_same) for request in requests]
        return BinNMUSchedule(requests, lines, snapshot)

    def get_stats_summary(self) -> str:
        """Human-readable statistics summary."""
        elapsed = time.time() - self.stats["start_time"] if self.stats["start_time"] else 0.0
        return (
            f"Indices: {self.stats['indices_loaded']}/{self.stats['indices_requested']} | "
            f"Downloads: {self.stats['downloads']} | Cache hits: {self.stats['cache_hits']} | "
            f"Strings interned: {len(self.interner)} | Elapsed: {elapsed:.0f}s"
        )
