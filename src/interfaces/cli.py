"""Command-line interface for the annotation closure service."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Optional

import typer
from dotenv import load_dotenv

from composition_root import ClosureServices, bootstrap_closure_services
from config.closure_config import get_closure_config
from domain.ontology_models import ClosureSource, TermShape

# --- Environment Loading ---
load_dotenv()


# --- Typer App ---
app = typer.Typer(
    help="Build, clear and inspect per-principal ontology closure indexes.",
    add_completion=False,
)


def _services() -> ClosureServices:
    config = get_closure_config()
    logging.basicConfig(
        level=getattr(logging, config.api.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    return bootstrap_closure_services(config)


async def _run(services: ClosureServices, work):
    try:
        return await work
    finally:
        await services.close()


# --- CLI Commands ---


@app.command()
def rebuild(principal: Optional[str] = typer.Argument(None, help="Principal name; all when omitted")):
    """Rebuild the closure index for one principal or for all of them."""
    services = _services()
    if principal:
        report = asyncio.run(_run(services, services.index.rebuild(principal)))
        reports = [report]
    else:
        reports = asyncio.run(_run(services, services.index.rebuild_all()))

    for report in reports:
        if not report.found:
            typer.echo(f"Principal '{report.principal}' not found, nothing to do")
            continue
        typer.echo(
            f"✅ {report.principal}: {report.tagged_count} terms indexed "
            f"({report.visited_count} in closure, {len(report.unreachable)} unreachable from a root)"
        )


@app.command()
def invalidate(principal: Optional[str] = typer.Argument(None, help="Principal name; all when omitted")):
    """Remove the closure index for one principal or for all of them."""
    services = _services()
    if principal:
        removed = asyncio.run(_run(services, services.index.invalidate(principal)))
    else:
        removed = asyncio.run(_run(services, services.index.invalidate_all()))
    typer.echo(f"Removed {removed} index tags")


@app.command()
def histogram(
    ontology: Optional[str] = typer.Option(None, "--ontology", help="Ontology acronym, e.g. CL"),
):
    """Print the number of datasets per count of annotated classes."""
    services = _services()
    try:
        counts = asyncio.run(_run(services, services.stats.annotation_count_histogram(ontology)))
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)
    typer.echo(json.dumps(counts))


@app.command()
def export(
    principal: str,
    shape: str = typer.Option("array", "--shape", help="array, keyed or deep"),
    source: str = typer.Option("index", "--source", help="index or direct"),
):
    """Write a principal's closure as JSON to stdout."""
    try:
        term_shape = TermShape.parse(shape)
        closure_source = ClosureSource.parse(source)
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(code=2)

    services = _services()

    async def write() -> None:
        async for chunk in services.serializer.stream_closure(principal, term_shape, closure_source):
            sys.stdout.buffer.write(chunk)
        sys.stdout.buffer.write(b"\n")
        sys.stdout.flush()

    asyncio.run(_run(services, write()))


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("application.api.main:app", host=host, port=port)


if __name__ == "__main__":
    app()
