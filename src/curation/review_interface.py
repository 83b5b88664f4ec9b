"""CLI review interface.

Review extracted entities and facts of a project: list the pending queue,
confirm/reject/merge entities, confirm/reject facts, show and reconcile stats,
and invalidate cached extraction responses.
"""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table

from src.curation.access import Caller
from src.curation.audit import CurationAuditTrail
from src.curation.entity_resolver import EntityResolver
from src.curation.entity_review import EntityReviewService
from src.curation.fact_review import FactReviewService
from src.curation.projects import ProjectService
from src.extraction.cache import ExtractionCache
from src.storage.canon_store import CanonStore
from src.storage.schemas import Entity, Fact, ProjectStats
from src.utils.config import Config, load_config
from src.utils.errors import CanonError

app = typer.Typer(help="Review extracted canon: entities, facts and project stats.")

console = Console(color_system=None, force_terminal=False, width=120)

DEFAULT_USER = "local"


def create_store(config: Config) -> CanonStore:
    return CanonStore(config.storage).connect()


def _load(config_path: Path) -> Config:
    # Review commands never call the LLM, so credentials are not required.
    return load_config(config_path, validate=False)


def _caller(user: Optional[str]) -> Caller:
    return Caller(user_id=user or os.getenv("CANON_USER") or DEFAULT_USER)


@contextmanager
def _session(config_path: Path) -> Iterator[tuple[Config, CanonStore]]:
    cfg = _load(config_path)
    store = create_store(cfg)
    try:
        yield cfg, store
    except CanonError as exc:
        console.print(f"[red]{exc.user_message()}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        store.close()


def _render_entities(entities: Sequence[Entity], *, title: str) -> None:
    table = Table(title=title)
    table.add_column("Id", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Aliases")

    for entity in entities:
        table.add_row(
            entity.id,
            entity.name,
            entity.type.value,
            entity.status.value,
            ", ".join(entity.aliases[:3]) + (" ..." if len(entity.aliases) > 3 else ""),
        )
    console.print(table)


def _render_facts(facts: Sequence[Fact], *, title: str) -> None:
    table = Table(title=title)
    table.add_column("Id", style="dim")
    table.add_column("Subject", style="cyan")
    table.add_column("Predicate")
    table.add_column("Object")
    table.add_column("Conf", justify="right")
    table.add_column("Status")

    for fact in facts:
        table.add_row(
            fact.id,
            fact.subject,
            fact.predicate,
            fact.object,
            f"{fact.confidence:.2f}",
            fact.status.value,
        )
    console.print(table)


def _render_stats(stats: ProjectStats) -> None:
    console.print(f"Documents: {stats.document_count}")
    console.print(f"Entities: {stats.entity_count}")
    console.print(f"Facts: {stats.fact_count}")


def _audit(cfg: Config) -> CurationAuditTrail:
    return CurationAuditTrail.from_config(cfg.curation)


@app.command("projects")
def projects(
    user: Optional[str] = typer.Option(None, help="Acting user (defaults to $CANON_USER)."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """List your projects."""
    with _session(config) as (_cfg, store):
        rows = ProjectService(store).list(_caller(user))
        if not rows:
            console.print("[yellow]No projects found.[/yellow]")
            return

        table = Table(title="Projects")
        table.add_column("Id", style="dim")
        table.add_column("Name", style="cyan")
        table.add_column("Docs", justify="right")
        table.add_column("Entities", justify="right")
        table.add_column("Facts", justify="right")
        for project in rows:
            stats = project.stats or ProjectStats()
            table.add_row(
                project.id,
                project.name,
                str(stats.document_count),
                str(stats.entity_count),
                str(stats.fact_count),
            )
        console.print(table)


@app.command("queue")
def queue(
    project_id: str = typer.Argument(..., help="Project id."),
    limit: int = typer.Option(50, min=1, help="Max rows per table."),
    user: Optional[str] = typer.Option(None, help="Acting user (defaults to $CANON_USER)."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Show entities and facts waiting for review."""
    with _session(config) as (_cfg, store):
        caller = _caller(user)
        entities = EntityReviewService(store).list_pending(caller, project_id)
        facts = FactReviewService(store).list_pending(caller, project_id)

        if not entities and not facts:
            console.print("[green]Nothing to review.[/green]")
            return
        if entities:
            _render_entities(
                entities[:limit], title=f"Pending entities ({len(entities)})"
            )
        if facts:
            _render_facts(facts[:limit], title=f"Pending facts ({len(facts)})")


@app.command("confirm-entity")
def confirm_entity(
    entity_id: str = typer.Argument(..., help="Entity id."),
    user: Optional[str] = typer.Option(None, help="Acting user (defaults to $CANON_USER)."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Confirm a pending entity."""
    with _session(config) as (cfg, store):
        EntityReviewService(store, _audit(cfg)).confirm(_caller(user), entity_id)
        console.print(f"[green]Confirmed entity {entity_id}[/green]")


@app.command("reject-entity")
def reject_entity(
    entity_id: str = typer.Argument(..., help="Entity id."),
    user: Optional[str] = typer.Option(None, help="Acting user (defaults to $CANON_USER)."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Reject an entity; it is deleted together with its facts."""
    with _session(config) as (cfg, store):
        EntityReviewService(store, _audit(cfg)).reject(_caller(user), entity_id)
        console.print(f"[yellow]Rejected entity {entity_id}[/yellow]")


@app.command("merge")
def merge(
    source_id: str = typer.Argument(..., help="Entity to fold away."),
    target_id: str = typer.Argument(..., help="Entity that survives."),
    user: Optional[str] = typer.Option(None, help="Acting user (defaults to $CANON_USER)."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Merge one entity into another."""
    with _session(config) as (cfg, store):
        EntityReviewService(store, _audit(cfg)).merge(_caller(user), source_id, target_id)
        console.print(f"[green]Merged {source_id} into {target_id}[/green]")


@app.command("similar")
def similar(
    project_id: str = typer.Argument(..., help="Project id."),
    name: str = typer.Argument(..., help="Name to compare against."),
    exclude_id: Optional[str] = typer.Option(None, help="Entity id to leave out."),
    fuzzy: Optional[bool] = typer.Option(
        None, "--fuzzy/--no-fuzzy", help="Override review.fuzzy_similar."
    ),
    user: Optional[str] = typer.Option(None, help="Acting user (defaults to $CANON_USER)."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """List entities that may duplicate NAME."""
    with _session(config) as (cfg, store):
        resolver = EntityResolver(
            store,
            fuzzy_similar=cfg.review.fuzzy_similar if fuzzy is None else fuzzy,
            similarity_threshold=cfg.review.similarity_threshold,
        )
        matches: List[Entity] = resolver.find_similar(
            _caller(user), project_id, name, exclude_id=exclude_id
        )
        if not matches:
            console.print("[yellow]No similar entities.[/yellow]")
            return
        _render_entities(matches, title=f"Similar to '{name}'")


@app.command("confirm-fact")
def confirm_fact(
    fact_id: str = typer.Argument(..., help="Fact id."),
    user: Optional[str] = typer.Option(None, help="Acting user (defaults to $CANON_USER)."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Confirm a fact."""
    with _session(config) as (cfg, store):
        FactReviewService(store, _audit(cfg)).confirm(_caller(user), fact_id)
        console.print(f"[green]Confirmed fact {fact_id}[/green]")


@app.command("reject-fact")
def reject_fact(
    fact_id: str = typer.Argument(..., help="Fact id."),
    user: Optional[str] = typer.Option(None, help="Acting user (defaults to $CANON_USER)."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Reject a fact (kept, but no longer counted)."""
    with _session(config) as (cfg, store):
        FactReviewService(store, _audit(cfg)).reject(_caller(user), fact_id)
        console.print(f"[yellow]Rejected fact {fact_id}[/yellow]")


@app.command("stats")
def stats(
    project_id: str = typer.Argument(..., help="Project id."),
    reconcile: bool = typer.Option(False, help="Recount rows and fix counter drift."),
    user: Optional[str] = typer.Option(None, help="Acting user (defaults to $CANON_USER)."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Show project counters."""
    with _session(config) as (_cfg, store):
        caller = _caller(user)
        service = ProjectService(store)
        if reconcile:
            drift = service.reconcile_stats(caller, project_id)
            if drift:
                console.print(
                    "[yellow]Fixed drift: "
                    + ", ".join(f"{name}={value:+d}" for name, value in drift.items())
                    + "[/yellow]"
                )
            else:
                console.print("[green]Counters already match the rows.[/green]")

        project = service.get(caller, project_id)
        if project is None:
            console.print("[red]Project not found.[/red]")
            raise typer.Exit(code=1)
        console.print(f"[bold]{project.name}[/bold]")
        _render_stats(project.stats or ProjectStats())


@app.command("invalidate-cache")
def invalidate_cache(
    prompt_version: str = typer.Argument(..., help="Prompt version to invalidate."),
    input_hash: Optional[str] = typer.Option(None, help="Only this chunk hash."),
    config: Path = typer.Option(Path("config/config.yaml"), help="Path to config file."),
) -> None:
    """Delete cached extraction responses for a prompt version."""
    with _session(config) as (cfg, store):
        removed = ExtractionCache(store, cfg.cache).invalidate_cache(prompt_version, input_hash)
        console.print(f"Removed {removed} cache entries")


def run() -> None:
    """Entrypoint for Typer."""
    app()


if __name__ == "__main__":
    run()
