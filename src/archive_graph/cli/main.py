"""
archive-graph CLI — reverse dependencies and rebuild order for Debian archives.

Usage:
    archive-graph rdeps libfoo1 --suite unstable --arch amd64 --arch arm64
    archive-graph rebuild libfoo1 --relation depends --relation build-depends
    archive-graph binnmus --suite unstable --format jsonl --output nmus.jsonl
    archive-graph blockers --format jsonl
    archive-graph clean --cache-dir ~/.cache/archive-graph
"""

import asyncio
import functools
import logging

import click

RDEPS_KINDS = frozenset({"coverage", "closure", "unresolved", "record-error"})
REBUILD_KINDS = frozenset({"coverage", "rebuild", "cycle", "unresolved", "record-error"})


def _configure_logging(verbose: bool) -> None:
    log_level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def archive_options(func):
    """Options shared by every command that loads the archive."""
    options = [
        click.option("--suite", "-s", default="unstable", show_default=True, help="Suite to analyze."),
        click.option("--mirror", "-m", default=None, help="Mirror base URL (default: $ARCHIVE_GRAPH_MIRROR or deb.debian.org)."),
        click.option("--arch", "-a", "archs", multiple=True, help="Target architecture; repeatable. Default: release architectures."),
        click.option("--component", "-c", "components", multiple=True, help="Archive component; repeatable. Default: main."),
        click.option("--strict", is_flag=True, help="Fail on malformed index lines instead of skipping them."),
        click.option("--sources/--no-sources", default=False, help="Also load Sources indices."),
        click.option("--jobs", "-j", type=int, default=4, show_default=True, help="Concurrent index downloads."),
        click.option("--cache-dir", type=click.Path(), default=None, help="Index cache directory."),
        click.option("--format", "-f", "fmt", type=click.Choice(["text", "jsonl"]), default="text", help="Report format."),
        click.option("--output", "-o", type=click.Path(), default=None, help="Write the report to a file."),
        click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging."),
    ]
    for option in reversed(options):
        func = option(func)

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        _configure_logging(kwargs["verbose"])
        return func(*args, **kwargs)

    return wrapper


def _build_config(suite, mirror, archs, components, strict, sources, jobs, cache_dir, seeds=(), relations=None):
    from archive_graph.core.config import AnalysisConfig

    try:
        return AnalysisConfig.from_env(
            suite=suite,
            mirror=mirror,
            target_architectures=frozenset(archs) if archs else None,
            components=list(components) if components else None,
            strict=strict,
            include_sources=sources,
            max_concurrent_fetches=jobs,
            cache_dir=cache_dir,
            seeds=list(seeds),
            relation_kinds=frozenset(relations) if relations else None,
        )
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def _run(coro):
    from archive_graph.core.errors import ArchiveGraphError

    try:
        return asyncio.run(coro)
    except ArchiveGraphError as e:
        raise click.ClickException(str(e)) from e


async def _report(analyzer, fmt, output, kinds):
    from archive_graph.reporters import emit, get_reporter, report_records

    report = await analyzer.analyze()
    rows = (row for row in report_records(report) if row.kind in kinds)
    await emit(get_reporter(fmt, output), rows)
    return report


@click.group()
@click.version_option(package_name="archive-graph")
def cli():
    """archive-graph — dependency analysis for Debian archive metadata."""
    pass


@cli.command()
@click.argument("seeds", nargs=-1, required=True)
@click.option("--relation", "-r", "relations", multiple=True, help="Relation kind to follow; repeatable. Default: depends, pre-depends.")
@archive_options
def rdeps(seeds, relations, suite, mirror, archs, components, strict, sources, jobs, cache_dir, fmt, output, verbose):
    """List every package that transitively depends on SEEDS."""
    from archive_graph.core.analyzer import ArchiveAnalyzer

    config = _build_config(suite, mirror, archs, components, strict, sources, jobs, cache_dir, seeds, relations)
    analyzer = ArchiveAnalyzer(config, show_progress=True)
    _run(_report(analyzer, fmt, output, RDEPS_KINDS))
    logging.getLogger("ArchiveAnalyzer").info(analyzer.get_stats_summary())


@cli.command()
@click.argument("seeds", nargs=-1, required=True)
@click.option("--relation", "-r", "relations", multiple=True, help="Relation kind to follow; repeatable. Default: depends, pre-depends.")
@archive_options
def rebuild(seeds, relations, suite, mirror, archs, components, strict, sources, jobs, cache_dir, fmt, output, verbose):
    """Compute the rebuild order after SEEDS changed."""
    from archive_graph.core.analyzer import ArchiveAnalyzer

    config = _build_config(suite, mirror, archs, components, strict, sources, jobs, cache_dir, seeds, relations)
    analyzer = ArchiveAnalyzer(config, show_progress=True)
    report = _run(_report(analyzer, fmt, output, REBUILD_KINDS))
    if report.rebuild.cycles:
        click.echo(f"{len(report.rebuild.cycles)} dependency cycle(s) must be rebuilt as a group", err=True)
    logging.getLogger("ArchiveAnalyzer").info(analyzer.get_stats_summary())


@cli.command()
@click.option("--excuses-url", default=None, help="Location of britney's excuses.yaml.")
@archive_options
def binnmus(excuses_url, suite, mirror, archs, components, strict, sources, jobs, cache_dir, fmt, output, verbose):
    """Print nmu commands for uploads that need a rebuild on the buildds."""
    from archive_graph.core.analyzer import ArchiveAnalyzer
    from archive_graph.parsers.excuses import EXCUSES_URL
    from archive_graph.reporters import binnmu_records, emit, get_reporter

    config = _build_config(suite, mirror, archs, components, strict, sources, jobs, cache_dir)
    analyzer = ArchiveAnalyzer(config, show_progress=True)

    async def run():
        schedule = await analyzer.schedule_binnmus(excuses_url or EXCUSES_URL)
        await emit(get_reporter(fmt, output), binnmu_records(schedule))

    _run(run())


@cli.command()
@click.option("--excuses-url", default=None, help="Location of britney's excuses.yaml.")
@click.option("--cache-dir", type=click.Path(), default=None, help="Index cache directory.")
@click.option("--format", "-f", "fmt", type=click.Choice(["text", "jsonl"]), default="text", help="Report format.")
@click.option("--output", "-o", type=click.Path(), default=None, help="Write the report to a file.")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
def blockers(excuses_url, cache_dir, fmt, output, verbose):
    """List testing-migration items blocked by other items."""
    from archive_graph.core.analyzer import ArchiveAnalyzer
    from archive_graph.parsers.excuses import EXCUSES_URL
    from archive_graph.reporters import blocker_records, emit, get_reporter

    _configure_logging(verbose)
    config = _build_config("unstable", None, (), (), False, False, 1, cache_dir)
    analyzer = ArchiveAnalyzer(config)

    async def run():
        excuses = await analyzer.fetch_excuses(excuses_url or EXCUSES_URL)
        return await emit(get_reporter(fmt, output), blocker_records(excuses))

    count = _run(run())
    click.echo(f"{count} blocked items", err=True)


@cli.command()
@click.option("--cache-dir", type=click.Path(), default=None, help="Cache directory to clean.")
def clean(cache_dir):
    """Remove temp files and superseded entries from the index cache."""
    from pathlib import Path

    from archive_graph.core.cache import CacheStore
    from archive_graph.core.config import default_cache_dir

    logging.basicConfig(level=logging.INFO)
    removed = CacheStore(Path(cache_dir) if cache_dir else default_cache_dir()).clean()
    click.echo(f"Removed {removed} files")


if __name__ == "__main__":
    cli()
