from __future__ import annotations

import logging
from pathlib import Path

import typer

from . import orchestrator
from .ams.client import AmsMediaKeyService
from .config import Settings, load_desired_state, load_settings
from .errors import DrmConfigError
from .fairplay import check_certificate
from .restriction import build_restriction


app = typer.Typer(help="Reconcile DRM authorization and delivery policies.")


def _configure_logging(verbose: int) -> None:
    log_level = logging.WARNING
    if verbose >= 2:
        log_level = logging.DEBUG
    elif verbose == 1:
        log_level = logging.INFO
    logging.basicConfig(level=log_level, format="%(levelname)s: %(message)s")


def build_service(settings: Settings):
    return AmsMediaKeyService.from_settings(settings)


@app.command("apply")
def apply(
    config: str = typer.Option(..., "-c", "--config", help="Path to the settings YAML file"),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase verbosity"),
):
    """Apply the configured DRM policies once and report success or failure.

    Widevine and PlayReady are always reconciled; FairPlay only when
    `fairplay.enabled` is set.
    """
    _configure_logging(verbose)
    if not Path(config).exists():
        raise typer.BadParameter(f"Settings file not found: {config}")

    try:
        settings = load_settings(config)
        desired = load_desired_state(settings)
        service = build_service(settings)
    except DrmConfigError as e:
        typer.echo(f"ERROR: {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo("Applying DRM configuration...")
    try:
        report = orchestrator.run(service, desired)
    finally:
        close = getattr(service, "close", None)
        if close is not None:
            close()

    for line in report.summary():
        typer.echo(line)

    if not report.ok:
        typer.echo("[FAIL] DRM configuration was not fully applied.", err=True)
        raise typer.Exit(code=1)
    typer.echo("[OK] DRM configuration applied.")


@app.command("check-config")
def check_config(
    config: str = typer.Option(..., "-c", "--config", help="Path to the settings YAML file"),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase verbosity"),
):
    """Validate settings, templates, keys and certificate without contacting the service."""
    _configure_logging(verbose)
    try:
        settings = load_settings(config)
        desired = load_desired_state(settings)
        build_restriction(desired.jwt_verification_key, desired.jwt_audience, desired.jwt_issuer)
        if desired.cbcs is not None:
            check_certificate(desired.cbcs.pfx, desired.cbcs.pfx_password)
    except DrmConfigError as e:
        typer.echo(f"[FAIL] {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo("[OK] Configuration is valid")
    typer.echo(f"  * CENC authorization policy: {desired.cenc.authorization_policy_name}")
    typer.echo(f"  * CENC delivery policy:      {desired.cenc.delivery_policy_name}")
    if desired.fairplay_enabled:
        typer.echo(f"  * CBCS authorization policy: {desired.cbcs.authorization_policy_name}")
        typer.echo(f"  * CBCS delivery policy:      {desired.cbcs.delivery_policy_name}")
    else:
        typer.echo("  * FairPlay:                  disabled")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
