"""Command-line entry point.

``construo sync`` stands in for the public site: it loads the aggregate
through the stale-while-revalidate controller and prints what would render.
``construo certificates`` is the admin batch page.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from pathlib import Path
from typing import Annotated

import typer

from construo.certificates import DirectorySink
from construo.config import Settings
from construo.errors import ConstruoError
from construo.logging_config import configure_logging
from construo.models.cache import AggregatePayload, CachedEntitySet, Collection
from construo.models.registration import confirmed_participants
from construo.state import open_app_state
from construo.template import load_template

app = typer.Typer(
    name="construo",
    help="CONSTRUO 2026 site data sync and certificate generation.",
    no_args_is_help=True,
)


def _summarise(payload: AggregatePayload, cached: CachedEntitySet | None) -> None:
    site = payload.site_config or {}
    hero = site.get("hero") or {}
    typer.echo(f"site config: {'present' if payload.site_config else 'missing'}")
    if hero.get("title"):
        typer.echo(f"  hero: {hero['title']}")
    for name in ("events", "timeline", "speakers", "sponsors", "organizers"):
        typer.echo(f"{name}: {len(getattr(payload, name))}")
    if cached is None:
        typer.echo("cache: empty")
    else:
        fetched = datetime.fromtimestamp(cached.last_fetch / 1000, tz=UTC)
        typer.echo(f"cache: fetched {fetched:%Y-%m-%d %H:%M:%S} UTC, hash {cached.content_hash}")


def _load_settings() -> Settings:
    settings = Settings()
    configure_logging(settings.logging)
    return settings


async def _sync(refresh: bool) -> tuple[AggregatePayload, CachedEntitySet | None]:
    async with open_app_state(_load_settings()) as state:
        if refresh:
            payload = await state.sync.refresh_all_data()
        else:
            payload = await state.sync.load_all()
            task = state.sync.revalidation_task
            if task is not None:
                fresh: list[AggregatePayload] = []
                state.sync.subscribe(fresh.append)
                await task
                if fresh:
                    payload = fresh[-1]
        return payload, await state.sync.cached_entity(Collection.SITE_CONFIG)


async def _certificates(out: Path | None, ids: list[str]) -> int:
    settings = _load_settings()
    async with open_app_state(settings) as state:
        site_config = await state.gateway.fetch_site_config()
        template = load_template(site_config)
        participants = confirmed_participants(await state.gateway.get_registrations())
        if ids:
            participants = [p for p in participants if p.id in ids]
        sink = DirectorySink(out or settings.certificates.output_dir)
        documents = await state.renderer.generate(template, participants, sink)
        for path in sink.written:
            typer.echo(str(path))
        return len(documents)


async def _clear_cache() -> int:
    async with open_app_state(_load_settings()) as state:
        return await state.cache.clear_all()


@app.command("sync")
def sync_command(
    refresh: Annotated[
        bool, typer.Option("--refresh", help="Bypass the local cache and refetch everything.")
    ] = False,
) -> None:
    """Load the public-site data and print a summary."""
    try:
        payload, cached = asyncio.run(_sync(refresh))
    except ConstruoError as exc:
        typer.echo(f"error [{exc.code}]: {exc.message}", err=True)
        raise typer.Exit(1) from exc
    _summarise(payload, cached)


@app.command("certificates")
def certificates_command(
    out: Annotated[Path | None, typer.Option("--out", help="Output directory.")] = None,
    ids: Annotated[
        list[str] | None, typer.Option("--id", help="Only these registration ids.")
    ] = None,
) -> None:
    """Generate certificates for confirmed participants."""
    try:
        count = asyncio.run(_certificates(out, ids or []))
    except ConstruoError as exc:
        typer.echo(f"error [{exc.code}]: {exc.message}", err=True)
        raise typer.Exit(1) from exc
    typer.echo(f"Generated {count} certificate(s)")


@app.command("clear-cache")
def clear_cache_command() -> None:
    """Remove every cached entry for the current cache version."""
    deleted = asyncio.run(_clear_cache())
    typer.echo(f"Cleared {deleted} cached entr{'y' if deleted == 1 else 'ies'}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
