"""CLI entrypoint for the scraper orchestrator."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import List, Optional

import typer

from .config import Settings, get_settings
from .db.session import dispose_engine
from .errors import ScraperServiceError
from .jobs.models import TriggerType
from .logging_utils import configure_logging
from .services import build_services, build_session_manager
from .sites.base import ScraperOptions, credentials_from_settings
from .sites.merchants.plugin import MerchantDirectoryScraper

app = typer.Typer(help="Scraper orchestrator command line interface")


def _setup() -> Settings:
    settings = get_settings()
    configure_logging(settings.log_file, settings.log_level)
    return settings


@app.command()
def show_config() -> None:
    """Print the active configuration."""

    settings = get_settings()
    typer.echo(settings.model_dump_json(indent=2))


@app.command()
def enqueue(
    job_definition_id: str,
    trigger: TriggerType = typer.Option(TriggerType.MANUAL, help="Trigger type recorded on the execution"),
) -> None:
    """Queue an execution of a job definition and run the queue until it is idle."""

    settings = _setup()

    async def _main() -> None:
        services = build_services(settings)
        try:
            try:
                record = await services.queue.enqueue(job_definition_id, trigger)
            except ScraperServiceError as exc:
                typer.echo(f"Cannot enqueue {job_definition_id}: {exc}", err=True)
                raise typer.Exit(code=1)
            typer.echo(f"Queued execution {record.id}")
            await services.queue.wait_until_idle()
            final = await services.repository.get_execution(record.id)
            if final is not None:
                typer.echo(f"Execution {final.id} finished with status {final.status.value}")
        finally:
            await services.queue.shutdown()
            await dispose_engine()

    asyncio.run(_main())


@app.command()
def run_queue(
    forever: bool = typer.Option(False, help="Keep serving after the restored backlog is done"),
    max_concurrency: Optional[int] = typer.Option(None, min=1, help="Override the concurrency cap"),
) -> None:
    """Restore QUEUED executions from the database and run them."""

    settings = _setup()

    async def _main() -> None:
        services = build_services(settings)
        if max_concurrency:
            services.queue.set_max_concurrency(max_concurrency)
        try:
            restored = await services.queue.initialize()
            typer.echo(f"Restored {restored} queued executions")
            if forever:
                await asyncio.Event().wait()
            await services.queue.wait_until_idle()
        finally:
            await services.queue.shutdown()
            await dispose_engine()

    asyncio.run(_main())


@app.command()
def execute(execution_id: str) -> None:
    """Run one QUEUED execution directly, bypassing the queue."""

    settings = _setup()

    async def _main() -> None:
        services = build_services(settings)
        try:
            record = await services.executor.execute_task(execution_id)
            typer.echo(json.dumps(record.to_dict(), default=str, indent=2))
        finally:
            await dispose_engine()

    asyncio.run(_main())


@app.command()
def batch_scrape(
    urls: List[str] = typer.Argument(..., help="Merchant detail page URLs"),
    concurrency: Optional[int] = typer.Option(None, min=1, help="Worker pages"),
    credential_ref: Optional[str] = typer.Option(None, help="Key into the configured credentials"),
    max_items: Optional[int] = typer.Option(None, min=1, help="Scrape at most this many merchants"),
    output: Optional[Path] = typer.Option(None, help="Write the scraped records to this JSON file"),
) -> None:
    """Scrape merchant detail pages without creating an execution."""

    settings = _setup()

    async def _main() -> None:
        scraper = MerchantDirectoryScraper(settings, build_session_manager(settings))
        options = ScraperOptions(
            max_items=max_items,
            concurrency=concurrency,
            storage_dir=settings.storage_dir,
            credentials=credentials_from_settings(settings, credential_ref),
        )
        try:
            items = await scraper.scrape(urls, options) or []
        finally:
            await dispose_engine()
        records = [item.data for item in items]
        if output:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_text(json.dumps(records, default=str, indent=2), encoding="utf-8")
            typer.echo(f"Wrote {len(records)} merchants to {output}")
        else:
            typer.echo(json.dumps(records, default=str, indent=2))

    asyncio.run(_main())


@app.command()
def migrate(
    direction: str = typer.Argument("upgrade"),
    revision: Optional[str] = typer.Argument(None, help="Defaults to head for upgrade and -1 for downgrade"),
) -> None:
    """Run Alembic migrations."""

    import subprocess

    settings: Settings = get_settings()
    target = revision or ("-1" if direction == "downgrade" else "head")
    subprocess.run(["alembic", "-c", str(settings.alembic_ini_path), direction, target], check=True)


if __name__ == "__main__":
    app()
