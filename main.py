"""
Command line entry point for the Contact Enrichment Service
Runs bulk enrichment batches, single-contact enrichment, or the HTTP API
"""
# -*- coding: utf-8 -*-
import asyncio
import json
import os
import sys
from typing import List, Optional

import typer
import uvicorn
from loguru import logger

from bulk_enricher import BulkEnrichmentService, close_bulk_enrichment_service, get_bulk_enrichment_service
from config import get_settings
from models import BULK_PROVIDERS, BulkEnrichResponse, EnrichmentOutcome, ProviderName
from selector import CandidateFetchError

# CLI Application
app = typer.Typer(help="Contact Enrichment Service - fills missing contact emails and phones")


@app.callback()
def main():
    """Configure CLI logging before any command runs"""
    setup_cli_logging()


def _parse_services(services: Optional[List[str]]) -> List[ProviderName]:
    if not services:
        return list(BULK_PROVIDERS)
    parsed = []
    for service in services:
        try:
            provider = ProviderName(service.lower())
        except ValueError:
            provider = None
        if provider not in BULK_PROVIDERS:
            typer.echo(f"Unknown service {service!r}; choose from {[p.value for p in BULK_PROVIDERS]}", err=True)
            raise typer.Exit(1)
        parsed.append(provider)
    return parsed


def _echo_batch(response: BulkEnrichResponse, json_output: bool) -> None:
    if json_output:
        typer.echo(response.model_dump_json())
        return
    for result in response.results:
        outcomes = " ".join(f"{provider.value}={result.outcome_for(provider).value}" for provider in BULK_PROVIDERS)
        typer.echo(f"  {result.full_name} ({result.contact_id}): {outcomes}")
    typer.echo(f"Processed {response.processed} contact(s), cursor={response.last_id or '-'}, done={response.done}")


async def run_bulk_enrichment(
    service: BulkEnrichmentService,
    user_id: str,
    services: List[ProviderName],
    last_id: Optional[str],
    run_all: bool,
    max_batches: int,
    json_output: bool,
) -> int:
    """Run one batch, or every batch until done; returns the number of contacts processed"""
    total = 0
    limit = max_batches if run_all else 1
    async for response in service.run_until_done(user_id, services, last_id, max_batches=limit):
        _echo_batch(response, json_output)
        total += response.processed
    return total


@app.command()
def bulk_enrich(
    user_id: str = typer.Option(..., "--user-id", "-u", help="Owner of the contacts to enrich"),
    service: Optional[List[str]] = typer.Option(None, "--service", "-s", help="Provider to run (repeatable): hunter, apollo, lusha"),
    last_id: Optional[str] = typer.Option(None, "--last-id", help="Resume after this contact id"),
    run_all: bool = typer.Option(False, "--all", help="Keep paging until every candidate has been processed"),
    json_output: bool = typer.Option(False, "--json", help="Print each batch response as JSON"),
):
    """Enrich contacts that have no email and no phone"""
    services = _parse_services(service)
    settings = get_settings()

    async def run():
        enrichment_service = await get_bulk_enrichment_service()
        try:
            total = await run_bulk_enrichment(
                enrichment_service, user_id, services, last_id, run_all,
                settings.max_batches_per_run, json_output,
            )
            if not json_output:
                typer.echo(f"Bulk enrichment finished: {total} contact(s) processed")
        except CandidateFetchError as e:
            typer.echo(f"Failed to fetch contacts: {e}", err=True)
            raise typer.Exit(1)
        finally:
            await close_bulk_enrichment_service()

    asyncio.run(run())


@app.command()
def enrich_contact(
    contact_id: str = typer.Argument(..., help="Contact to enrich"),
    provider: ProviderName = typer.Argument(..., help="Provider to run"),
    user_id: str = typer.Option(..., "--user-id", "-u", help="Owner of the contact"),
):
    """Run one provider against a single contact"""
    async def run():
        enrichment_service = await get_bulk_enrichment_service()
        try:
            result = await enrichment_service.enrich_contact(user_id, contact_id, provider)
        except Exception as e:
            typer.echo(f"Enrichment failed: {e}", err=True)
            raise typer.Exit(1)
        finally:
            await close_bulk_enrichment_service()

        typer.echo(f"{provider.value}: {result.outcome.value}")
        if result.updates:
            typer.echo(json.dumps(result.updates, indent=2))
        if result.outcome == EnrichmentOutcome.ERROR:
            typer.echo(f"Error ({result.error_code}): {result.error}", err=True)
            raise typer.Exit(1)

    asyncio.run(run())


@app.command()
def usage(
    json_output: bool = typer.Option(False, "--json", help="Print the report as JSON"),
):
    """Show the remaining credits of every provider account"""
    async def run():
        enrichment_service = await get_bulk_enrichment_service()
        try:
            return await enrichment_service.provider_usage()
        finally:
            await close_bulk_enrichment_service()

    report = asyncio.run(run())
    if json_output:
        typer.echo(report.model_dump_json())
        return

    for entry in report.providers:
        line = f"{entry.provider.value:<10} {entry.status.value}"
        if entry.plan:
            line += f"  plan={entry.plan}"
        for label, counter in (("credits", entry.credits), ("searches", entry.searches), ("verifications", entry.verifications)):
            if counter is not None:
                line += f"  {label}={counter.remaining}/{counter.total}"
        if entry.error:
            line += f"  error={entry.error}"
        typer.echo(line)


@app.command()
def serve(
    port: int = typer.Option(8000, "--port", "-p", help="Port for the HTTP API"),
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host for the HTTP API"),
):
    """Run the HTTP API"""
    setup_production_logging()
    from api_service import app as api_app

    logger.info(f"Starting Contact Enrichment API Service on {host}:{port}")
    uvicorn.run(api_app, host=host, port=port, log_level="info", access_log=False)


def setup_production_logging():
    """Setup optimized logging for production background service"""
    settings = get_settings()
    logger.remove()  # Remove default handler

    # Production log format (more compact, structured)
    log_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan> | "
        "<level>{message}</level>"
    )

    logger.add(
        sys.stdout,
        level=settings.log_level,
        format=log_format,
        colorize=True,
        backtrace=False,  # Reduce noise in production
        diagnose=False    # Don't show variable values in production
    )

    if settings.log_file_enabled:
        os.makedirs(settings.log_file_path, exist_ok=True)

        if not settings.debug_mode:
            logger.add(
                f"{settings.log_file_path}/service.log",
                level=settings.log_level,
                format=log_format,
                rotation=settings.log_rotation,
                retention=settings.log_retention,
                compression="gz",
                colorize=False
            )

        logger.add(
            f"{settings.log_file_path}/errors.log",
            level="ERROR",
            format=log_format,
            rotation=settings.log_rotation,
            retention="90 days",
            compression="gz",
            colorize=False
        )

    logger.info(f"Production logging configured (level: {settings.log_level})")


def setup_cli_logging():
    """Setup logging for CLI commands"""
    settings = get_settings()
    logger.remove()  # Remove default handler

    # CLI log format (more detailed for debugging)
    cli_format = (
        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
        "<level>{level: <8}</level> | "
        "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
        "<level>{message}</level>"
    )

    logger.add(sys.stderr, level=settings.log_level, format=cli_format, colorize=True)


if __name__ == "__main__":
    app()
