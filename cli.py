"""
Product Reconciliation System — Command Line Interface

  reconcile INPUT [-o OUTPUT]  — reconcile a workbook file against product pages
  serve                        — run the HTTP API
"""
from __future__ import annotations
import asyncio
import dataclasses
import logging
import signal
from pathlib import Path
from typing import Optional

import typer

from config import Settings, configure_logging, get_settings
from fetch_orchestrator import FetchOrchestrator
from reconciler import ReconciliationPolicy
from transport import HttpxTransport
from workbook_driver import BatchReport, WorkbookError, reconcile_file

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Reconcile inventory workbooks against vendor product pages.",
    no_args_is_help=True,
    add_completion=False,
)


def _cancel_on_sigterm(task: asyncio.Task) -> None:
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, task.cancel)
    except NotImplementedError:
        logger.debug("SIGTERM handler not supported by this event loop")


async def _run_reconcile(
    input_path: Path,
    output_path: Path,
    settings: Settings,
    policy: ReconciliationPolicy,
    concurrency: Optional[int],
) -> BatchReport:
    _cancel_on_sigterm(asyncio.current_task())
    async with HttpxTransport.from_settings(settings) as transport:
        orchestrator = FetchOrchestrator.from_settings(transport, settings)
        if concurrency:
            orchestrator.concurrency = concurrency
        async with orchestrator:
            return await reconcile_file(input_path, output_path, orchestrator,
                                        settings, policy=policy)


def _print_report(report: BatchReport, output_path: Path) -> None:
    typer.echo(f"Fertig: {output_path}")
    typer.echo(f"  Datensätze:         {report.records}")
    typer.echo(f"  Erfolgreich:        {report.succeeded}")
    typer.echo(f"  Teilweise:          {report.partial}")
    typer.echo(f"  Fehlgeschlagen:     {report.failed}")
    typer.echo(f"  Nicht versucht:     {report.not_attempted}")
    verdicts = report.verdicts
    typer.echo(f"  Vergleiche:         {verdicts['match']} identisch, "
               f"{verdicts['mismatch']} abweichend, {verdicts['inconclusive']} offen")


@app.command("reconcile", help="Reconcile a workbook and write the processed copy.")
def reconcile_cmd(
    input_path: Path = typer.Argument(
        ..., exists=True, dir_okay=False, readable=True,
        help="Inventory workbook (.xlsx)",
    ),
    output: Optional[Path] = typer.Option(
        None, "-o", "--output",
        help="Output path (default: processed file next to the input)",
    ),
    concurrency: Optional[int] = typer.Option(
        None, "--concurrency", min=1,
        help="Parallel page fetches (default from settings)",
    ),
    tolerance: Optional[float] = typer.Option(
        None, "--tolerance", min=0.0,
        help="Weight tolerance in percent (default from settings, 0 = strict)",
    ),
):
    settings = get_settings()
    configure_logging(settings)

    output_path = output or input_path.with_name(settings.output_filename)
    policy = ReconciliationPolicy.from_settings(settings)
    if tolerance is not None:
        policy = dataclasses.replace(policy, weight_tolerance_pct=tolerance)

    try:
        report = asyncio.run(
            _run_reconcile(input_path, output_path, settings, policy, concurrency))
    except WorkbookError as e:
        typer.echo(f"Fehler: {e}", err=True)
        raise typer.Exit(1)
    except asyncio.CancelledError:
        typer.echo("Abgebrochen", err=True)
        raise typer.Exit(130)

    _print_report(report, output_path)


@app.command("serve", help="Run the HTTP API.")
def serve_cmd(
    host: Optional[str] = typer.Option(None, "--host"),
    port: Optional[int] = typer.Option(None, "--port"),
):
    import uvicorn

    settings = get_settings()
    configure_logging(settings)
    uvicorn.run("api:app", host=host or settings.host, port=port or settings.port,
                log_level=settings.log_level.lower())


if __name__ == "__main__":
    app()
