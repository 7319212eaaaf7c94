"""CLI commands for building, applying, and verifying extension patch bundles."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

import typer

from .config import PatcherSettings, load_settings, resolve_created_at
from .errors import PatchError
from .patch import apply_patch, make_patch, verify_patch
from .tools.telemetry import TELEMETRY_LOGGER

APP_HELP = "Generate, apply, and verify binary-exact patches between extension trees."
LOG_HANDLER_NAME = "extpatch-cli"
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

app = typer.Typer(help=APP_HELP)

CONFIG_OPTION_HELP = "Path to a YAML settings file (defaults to ./extpatch.yaml when present)."
VERBOSE_OPTION_HELP = "Enable debug logging on stderr."


def configure_logging(settings: PatcherSettings, *, verbose: bool = False) -> None:
    """Attach a single stderr handler to the ``extpatch`` logger tree."""
    package_logger = logging.getLogger("extpatch")
    for handler in list(package_logger.handlers):
        if handler.get_name() == LOG_HANDLER_NAME:
            package_logger.removeHandler(handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(LOG_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    package_logger.addHandler(handler)
    package_logger.setLevel(logging.DEBUG if verbose else settings.logging.level)
    TELEMETRY_LOGGER.setLevel(logging.INFO if settings.logging.telemetry else logging.WARNING)


def _prepare(config: Optional[Path], verbose: bool) -> PatcherSettings:
    try:
        settings = load_settings(config)
    except PatchError as error:
        typer.echo(str(error), err=True)
        raise typer.Exit(code=1) from error
    configure_logging(settings, verbose=verbose)
    return settings


def _fail(error: Exception) -> typer.Exit:
    typer.echo(str(error), err=True)
    return typer.Exit(code=1)


@app.command()
def make(
    original: Path = typer.Option(..., "--original", help="Directory holding the original tree."),
    modified: Path = typer.Option(..., "--modified", help="Directory holding the modified tree."),
    out: Path = typer.Option(..., "--out", help="Destination path of the patch bundle zip."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help=VERBOSE_OPTION_HELP),
) -> None:
    """Diff two trees and write a patch bundle."""
    settings = _prepare(config, verbose)
    try:
        result = make_patch(
            original,
            modified,
            out,
            ignore=settings.ignore,
            created_at=resolve_created_at(settings),
            compression=settings.bundle.compression,
        )
    except (PatchError, OSError) as error:
        raise _fail(error) from error
    typer.echo(f"Patch bundle created at {result.bundle_path}")


@app.command()
def apply(
    patch: Path = typer.Option(..., "--patch", help="Patch bundle zip to apply."),
    input_path: Path = typer.Option(..., "--in", help="Original tree as a directory or zip archive."),
    out: Path = typer.Option(..., "--out", help="Output directory (absent or empty) or .zip archive."),
    check_against: Optional[Path] = typer.Option(
        None,
        "--check-against",
        help="Expected tree to compare the patched output with.",
    ),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help=VERBOSE_OPTION_HELP),
) -> None:
    """Validate an input tree against a bundle and write the patched result."""
    settings = _prepare(config, verbose)
    try:
        result = apply_patch(
            patch,
            input_path,
            out,
            check_against=check_against,
            compression=settings.bundle.compression,
        )
    except (PatchError, OSError) as error:
        raise _fail(error) from error
    typer.echo(f"Patch applied to {result.output}")
    if result.comparison is not None:
        if not result.comparison.ok:
            typer.echo(result.comparison.describe(), err=True)
            raise typer.Exit(code=1)
        typer.echo(result.comparison.describe())


@app.command()
def verify(
    patch: Path = typer.Option(..., "--patch", help="Patch bundle zip to check."),
    input_path: Path = typer.Option(..., "--in", help="Original tree as a directory or zip archive."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help=CONFIG_OPTION_HELP),
    verbose: bool = typer.Option(False, "--verbose", "-v", help=VERBOSE_OPTION_HELP),
) -> None:
    """Check that a bundle would apply cleanly to an input tree."""
    _prepare(config, verbose)
    try:
        report = verify_patch(patch, input_path)
    except (PatchError, OSError) as error:
        raise _fail(error) from error
    typer.echo(f"Verification successful ({len(report.fingerprints)} fingerprint(s) checked).")


if __name__ == "__main__":
    app()
