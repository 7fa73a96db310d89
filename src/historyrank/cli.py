"""Command-line interface for the HistoryRank consensus engine.

Entry point: `hrank` command (defined in pyproject.toml).
"""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import click
from neo4j.exceptions import AuthError, ServiceUnavailable
from rich.console import Console
from rich.logging import RichHandler

from historyrank.config import Config
from historyrank.graph.store import EntityStore

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _open_store(config: Config) -> EntityStore:
    """Connect to the Neo4j-backed store."""
    from historyrank.graph.neo4j_store import Neo4jEntityStore

    store = Neo4jEntityStore(config)
    try:
        store.verify_connectivity()
    except Exception:
        store.close()
        raise
    return store


@contextmanager
def _store_session(config: Config) -> Iterator[EntityStore]:
    """Open the store for one command; exit 1 if the database is unreachable."""
    try:
        store = _open_store(config)
    except (ServiceUnavailable, AuthError) as e:
        console.print(f"[red]Error: cannot connect to Neo4j at {config.neo4j_uri}: {e}[/red]")
        sys.exit(1)
    try:
        yield store
    except (ServiceUnavailable, AuthError) as e:
        console.print(f"[red]Error: lost connection to Neo4j: {e}[/red]")
        sys.exit(1)
    finally:
        store.close()


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """HistoryRank: consensus rankings of historical figures."""
    setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["config"] = Config()


@main.command()
@click.option("--create/--no-create", default=True, help="Create missing constraints and indexes.")
@click.option("--verify/--no-verify", default=True, help="Verify schema after creation.")
@click.pass_context
def schema(ctx: click.Context, create: bool, verify: bool) -> None:
    """Create and verify the Neo4j schema.

    Idempotent, safe to run repeatedly.
    """
    from historyrank.graph.schema import create_schema, verify_schema

    config = ctx.obj["config"]

    try:
        if create:
            console.print("[cyan]Creating schema...[/cyan]")
            stats = create_schema(config)
            console.print(f"  Constraints: {stats['constraints_created']} created, "
                          f"{stats['constraints_existing']} existing")
            console.print(f"  Indexes: {stats['indexes_created']} created, "
                          f"{stats['indexes_existing']} existing")

        if verify:
            console.print("\n[cyan]Verifying schema...[/cyan]")
            result = verify_schema(config)
            console.print(f"  Constraints: {result['constraints']}")
            console.print(f"  Indexes:     {result['indexes']}")
            missing = result["missing_constraints"] + result["missing_indexes"]
            if missing:
                console.print(f"\n[red]Schema incomplete, missing: {', '.join(missing)}[/red]")
            else:
                console.print("\n[green]Schema OK[/green]")
    except (ServiceUnavailable, AuthError) as e:
        console.print(f"[red]Error: cannot connect to Neo4j at {config.neo4j_uri}: {e}[/red]")
        sys.exit(1)


@main.command(name="seed-aliases")
@click.argument("path", type=click.Path(), required=False)
@click.pass_context
def seed_aliases_cmd(ctx: click.Context, path: str | None) -> None:
    """Load curated aliases from a JSON seed file."""
    from historyrank.graph.dedup import load_alias_seed, seed_aliases

    config = ctx.obj["config"]
    seed_path = Path(path) if path else config.alias_seed_path
    if not seed_path.exists():
        console.print(f"[red]Error: alias seed not found at {seed_path}[/red]")
        sys.exit(1)

    pairs = load_alias_seed(seed_path)
    with _store_session(config) as store:
        stats = seed_aliases(store, pairs)

    console.print("\n[green]Alias seeding complete:[/green]")
    console.print(f"  Inserted:        {stats['inserted']}")
    console.print(f"  Already present: {stats['existing']}")
    console.print(f"  Missing figure:  {stats['missing_entity']}")
    console.print(f"  Invalid:         {stats['invalid']}")


@main.command(name="build-candidates")
@click.argument("raw_dir", type=click.Path(), required=False)
@click.pass_context
def build_candidates_cmd(ctx: click.Context, raw_dir: str | None) -> None:
    """Aggregate raw source lists into the candidate table."""
    from historyrank.candidates import build_candidates, detect_list_files

    config = ctx.obj["config"]
    list_dir = Path(raw_dir) if raw_dir else config.raw_dir

    list_files = detect_list_files(list_dir)
    if not list_files:
        console.print(f"[yellow]No source lists found in {list_dir}[/yellow]")
        return

    result = build_candidates(list_files)
    with _store_session(config) as store:
        store.replace_candidates(result.candidates)

    console.print("\n[green]Candidates built:[/green]")
    console.print(f"  Lists read:      {result.files_read}")
    console.print(f"  Lists failed:    {result.files_failed}")
    console.print(f"  Records skipped: {result.records_skipped}")
    console.print(f"  Candidates:      {len(result.candidates)}")


@main.command()
@click.option("--source-threshold", type=int, default=None, help="Minimum distinct sources.")
@click.option("--sample-threshold", type=int, default=None, help="Minimum total mentions.")
@click.option("--rank-threshold", type=float, default=None, help="Maximum average rank.")
@click.pass_context
def promote(
    ctx: click.Context,
    source_threshold: int | None,
    sample_threshold: int | None,
    rank_threshold: float | None,
) -> None:
    """Promote qualifying candidates into figures.

    A candidate qualifies if it meets ANY threshold.
    """
    from historyrank.candidates import CandidatePromoter, PromotionThresholds

    config = ctx.obj["config"]
    thresholds = PromotionThresholds.from_config(config)
    if source_threshold is not None:
        thresholds.min_sources = source_threshold
    if sample_threshold is not None:
        thresholds.min_mentions = sample_threshold
    if rank_threshold is not None:
        thresholds.max_avg_rank = rank_threshold

    console.print(
        f"[cyan]Thresholds: sources >= {thresholds.min_sources}, "
        f"mentions >= {thresholds.min_mentions}, "
        f"avg rank <= {thresholds.max_avg_rank:g}[/cyan]"
    )
    with _store_session(config) as store:
        promoted = CandidatePromoter(store).promote(thresholds=thresholds)

    console.print(f"[green]Promoted {promoted} candidates into figures[/green]")


@main.command(name="import-rankings")
@click.argument("raw_dir", type=click.Path(), required=False)
@click.pass_context
def import_rankings(ctx: click.Context, raw_dir: str | None) -> None:
    """Attach rankings from source lists to existing figures."""
    from historyrank.candidates import detect_list_files
    from historyrank.consensus import ConsensusAggregator
    from historyrank.graph.ingest import RankingIngestor

    config = ctx.obj["config"]
    list_dir = Path(raw_dir) if raw_dir else config.raw_dir

    list_files = detect_list_files(list_dir)
    if not list_files:
        console.print(f"[yellow]No source lists found in {list_dir}[/yellow]")
        return
    console.print(f"Found {len(list_files)} source lists to import")

    with _store_session(config) as store:
        ingestor = RankingIngestor(store, aggregator=ConsensusAggregator.from_config(config))
        console.print(f"Loaded {len(ingestor.alias_index)} aliases")
        result = ingestor.ingest_batch(list_files)

    console.print("\n[green]Import complete:[/green]")
    console.print(f"  Total lists:  {result['total']}")
    console.print(f"  Succeeded:    {result['succeeded']}")
    console.print(f"  Failed:       {result['failed']}")
    console.print(f"  Matched:      {result['matched']}")
    console.print(f"  Unmatched:    {result['unmatched']}")
    console.print(f"  Skipped:      {result['skipped']}")

    if result["errors"]:
        console.print("\n[yellow]Errors:[/yellow]")
        for err in result["errors"]:
            console.print(f"  - {err['list']}: {err['error']}")


@main.command()
@click.option(
    "--merge-table",
    type=click.Path(exists=True),
    default=None,
    help="Curated merge table JSON (default: data/merge_table.json if present).",
)
@click.option("--dry-run", is_flag=True, help="Report merges without writing anything.")
@click.pass_context
def resolve(ctx: click.Context, merge_table: str | None, dry_run: bool) -> None:
    """Detect and merge duplicate figures."""
    from historyrank.consensus import ConsensusAggregator
    from historyrank.graph.dedup import AliasIndex
    from historyrank.graph.merge import DuplicateResolver, MergeTable

    config = ctx.obj["config"]
    table_path = Path(merge_table) if merge_table else config.merge_table_path
    table = MergeTable.load(table_path) if table_path.exists() else MergeTable()
    if not table.merges:
        console.print("[yellow]No curated merge table, using strong keys only[/yellow]")

    with _store_session(config) as store:
        resolver = DuplicateResolver(
            merge_table=table,
            aggregator=ConsensusAggregator.from_config(config),
            alias_index=AliasIndex(store),
        )
        report = resolver.resolve_duplicates(store, dry_run=dry_run)

    title = "Dry run" if dry_run else "Resolution complete"
    console.print(f"\n[green]{title}:[/green]")
    console.print(f"  External-id groups:   {report.strong_key_groups}")
    console.print(f"  Curated entries:      {report.curated_entries}")
    console.print(f"  Merged:               {report.merged}")
    console.print(f"  Deleted:              {report.deleted}")
    console.print(f"  Rankings moved:       {report.contributions_moved}")
    console.print(f"  Aliases added:        {report.aliases_added}")
    console.print(f"  Renamed:              {report.renamed}")

    if report.skipped:
        console.print("\n[yellow]Skipped:[/yellow]")
        for message in report.skipped[:20]:
            console.print(f"  - {message}")
        if len(report.skipped) > 20:
            console.print(f"  ... and {len(report.skipped) - 20} more")


@main.command()
@click.argument("entity_id")
@click.argument("new_name")
@click.pass_context
def rename(ctx: click.Context, entity_id: str, new_name: str) -> None:
    """Change a figure's canonical name, keeping the old spelling as an alias."""
    from historyrank.graph.store import MissingEntityError

    config = ctx.obj["config"]
    with _store_session(config) as store:
        figure = store.get(entity_id)
        try:
            added = store.rename(entity_id, new_name)
        except (MissingEntityError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            sys.exit(1)

    console.print(
        f"[green]Renamed {entity_id}: {figure.canonical_name} -> {new_name.strip()}[/green]"
    )
    console.print(f"  Aliases added: {added}")


@main.command()
@click.pass_context
def recompute(ctx: click.Context) -> None:
    """Recompute consensus rank and variance for every figure."""
    from historyrank.consensus import ConsensusAggregator

    config = ctx.obj["config"]
    with _store_session(config) as store:
        results = ConsensusAggregator.from_config(config).recompute_all(store)

    console.print(f"[green]Consensus recalculated for {len(results)} figures[/green]")


@main.command(name="find-duplicates")
@click.option("--limit", type=int, default=None, help="Top-ranked figures to compare (default: 300).")
@click.option(
    "--output",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the likely duplicates as a merge table for `resolve --merge-table`.",
)
@click.pass_context
def find_duplicates(ctx: click.Context, limit: int | None, output: str | None) -> None:
    """List likely duplicate figures for manual review.

    Nothing is merged; with --output the safe pairs are written as a
    merge table to review and then apply.
    """
    from historyrank.graph.merge import merge_table_from_pairs
    from historyrank.models import utcnow
    from historyrank.names.fuzzy import find_duplicate_candidates

    config = ctx.obj["config"]
    with _store_session(config) as store:
        figures = store.figures()

    pairs = find_duplicate_candidates(
        figures,
        limit=limit or config.duplicate_report_limit,
        max_distance=config.fuzzy_max_distance,
    )
    if not pairs:
        console.print("[green]No likely duplicates found[/green]")
        return

    safe = [p for p in pairs if p.safe]
    review = [p for p in pairs if not p.safe]
    for heading, group in (("Likely duplicates", safe), ("Needs review", review)):
        if not group:
            continue
        console.print(f"\n[cyan]{heading} ({len(group)}):[/cyan]")
        for pair in group:
            console.print(
                f"  {pair.first.canonical_name} ({pair.first.id}, #{pair.first.consensus_rank:g})"
                f"  <->  {pair.second.canonical_name} ({pair.second.id}, "
                f"#{pair.second.consensus_rank:g})"
            )

    if output:
        table = merge_table_from_pairs(pairs, version=f"duplicate-scan-{utcnow():%Y-%m-%d}")
        table.save(Path(output))
        console.print(
            f"\n[green]Wrote {table.loser_count()} merges for {len(table.merges)} "
            f"survivors to {output}[/green]"
        )


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Verify that no alias or ranking points at a missing figure."""
    from historyrank.graph.store import IntegrityError

    config = ctx.obj["config"]
    with _store_session(config) as store:
        try:
            store.verify_integrity()
        except IntegrityError as e:
            console.print(f"[red]Integrity check failed: {e}[/red]")
            sys.exit(1)
        figure_count = len(store.figures())

    console.print(f"[green]Integrity OK ({figure_count} figures)[/green]")


if __name__ == "__main__":
    main()
