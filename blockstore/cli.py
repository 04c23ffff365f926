"""blockstore CLI: run the server or benchmark a running one."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict

import anyio
import typer

app = typer.Typer(
    name="blockstore",
    help="Chunked blob store over HTTP.",
    no_args_is_help=True,
)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", envvar="BLOCKSTORE_HOST"),
    port: int = typer.Option(8787, "--port", envvar="BLOCKSTORE_PORT"),
    log_level: str = typer.Option("info", "--log-level"),
) -> None:
    """Serve the block store through uvicorn (settings come from BLOCKSTORE_* env)."""
    import uvicorn

    from blockstore.app import create_app

    uvicorn.run(create_app(), host=host, port=port, log_level=log_level)


@app.command()
def bench(
    url: str = typer.Argument(..., help="Base URL of a running block store"),
    total_chunks: int = typer.Option(200, "--total-chunks", min=1),
    chunk_size: int = typer.Option(128 * 1024, "--chunk-size", min=1),
    concurrency: int = typer.Option(5, "--concurrency", min=1),
    location_hint: str = typer.Option("wnam", "--location-hint"),
    steps: list[int] = typer.Option(
        [1, 10, 20, 30, 40, 50],
        "--step",
        help="Chunks per call; repeat to run several settings",
    ),
) -> None:
    """Push random chunks at several chunks-per-call settings and print timings as JSON."""
    from blockstore.bench import run_benchmark

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    async def _run():
        return await run_benchmark(
            url,
            total_chunks=total_chunks,
            chunk_size=chunk_size,
            concurrency=concurrency,
            location_hint=location_hint,
            steps=steps,
        )

    results = anyio.run(_run)
    typer.echo(json.dumps([asdict(result) for result in results], indent=2))


def main() -> None:
    app()
