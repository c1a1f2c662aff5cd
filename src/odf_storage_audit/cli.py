"""Command-line entry point for the storage audit."""

from __future__ import annotations

from dataclasses import replace
import logging
from pathlib import Path
import sys
from typing import Annotated

import typer

from odf_storage_audit.audit import AuditFatalError, execute_audit, utc_now
from odf_storage_audit.cleanup import render_cleanup_script
from odf_storage_audit.config import ConfigError, load_config, resolve_output_dir
from odf_storage_audit.report import (
    CLEANUP_SH,
    ReportFormatError,
    load_report,
    render_summary,
    write_text_views,
)

LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

app = typer.Typer(
    name="odf-audit",
    help="Read-only audit of orphaned storage in an ODF/Ceph-backed cluster.",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


def configure_logging(*, verbose: bool, log_file: Path | None = None) -> None:
    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.DEBUG)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Client libraries are noisy at DEBUG.
    for name in ("urllib3", "kubernetes"):
        logging.getLogger(name).setLevel(logging.WARNING)


@app.command()
def run(
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", "-o", help="Directory for the report (default /tmp/odf-audit-<timestamp>)."),
    ] = None,
    kubeconfig: Annotated[str | None, typer.Option("--kubeconfig", help="Path to a kubeconfig file.")] = None,
    context: Annotated[str | None, typer.Option("--context", help="Kubeconfig context to use.")] = None,
    in_cluster: Annotated[
        bool,
        typer.Option("--in-cluster", help="Use the pod service account instead of a kubeconfig."),
    ] = False,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="YAML file overriding environment defaults."),
    ] = None,
    prometheus_endpoint: Annotated[
        str | None,
        typer.Option("--prometheus-endpoint", help="Skip discovery and query this metrics URL."),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug output.")] = False,
) -> None:
    """Run the full audit and write every report artifact."""
    configure_logging(verbose=verbose)
    logger = logging.getLogger("odf_storage_audit")
    try:
        config = load_config(config_file)
    except ConfigError as error:
        typer.echo(f"ERROR: {error}", err=True)
        raise typer.Exit(code=1) from error

    now = utc_now()
    config = replace(config, output_dir=output_dir or resolve_output_dir(config, now))
    if prometheus_endpoint:
        config = replace(config, prometheus_endpoint=prometheus_endpoint)
    try:
        configure_logging(verbose=verbose, log_file=config.output_dir / "audit.log")
    except OSError as error:
        typer.echo(f"ERROR: Unable to write to {config.output_dir}: {error}", err=True)
        raise typer.Exit(code=1) from error

    try:
        report, report_dir = execute_audit(
            config,
            kubeconfig_path=kubeconfig,
            context=context,
            in_cluster=in_cluster,
            now=now,
        )
    except AuditFatalError as error:
        logger.error("Audit aborted: %s", error)
        typer.echo(f"ERROR: {error}", err=True)
        raise typer.Exit(code=1) from error

    typer.echo(render_summary(report), nl=False)
    for failure in report.get("failures", []):
        typer.echo(f"WARNING: section '{failure['builder']}' is incomplete: {failure['error']}", err=True)
    logger.info("Report written to %s", report_dir)


@app.command()
def render(
    report_dir: Annotated[Path, typer.Argument(help="Directory containing report.json.")],
) -> None:
    """Regenerate every text artifact from an existing report.json."""
    report = _load_or_exit(report_dir)
    for path in write_text_views(report, report_dir):
        typer.echo(str(path))


@app.command()
def cleanup(
    report_dir: Annotated[Path, typer.Argument(help="Directory containing report.json.")],
) -> None:
    """Write the commented-out cleanup script for high-confidence orphans."""
    report = _load_or_exit(report_dir)
    path = report_dir / CLEANUP_SH
    path.write_text(render_cleanup_script(report), encoding="utf-8")
    typer.echo(f"Cleanup suggestions written to {path}. Every command is commented out; review before use.")


@app.command()
def summary(
    report_dir: Annotated[Path, typer.Argument(help="Directory containing report.json.")],
) -> None:
    """Print the one-page summary of an existing report."""
    typer.echo(render_summary(_load_or_exit(report_dir)), nl=False)


def _load_or_exit(report_dir: Path) -> dict:
    try:
        return load_report(report_dir)
    except ReportFormatError as error:
        typer.echo(f"ERROR: {error}", err=True)
        raise typer.Exit(code=2) from error


if __name__ == "__main__":
    app()
