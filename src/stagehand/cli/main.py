import typer
from pathlib import Path
from typing import Optional

from stagehand.artifacts.cache import ArtifactCache
from stagehand.cli.formatter import OutputFormatter
from stagehand.core.context import ProvisionContext
from stagehand.runtime.controller import LifecycleController
from stagehand.runtime.service import (
    ServiceState,
    StopOutcome,
    clear_service_metadata,
    inspect_service_state,
    stop_service,
)
from stagehand.infrastructure.staging import StagingLayout
from stagehand.utils.diagnostics import DownloadError

app = typer.Typer(name="stagehand", help="Stagehand build provisioning CLI", rich_markup_mode=None)


def _load_context(build_dir: Path, config: Optional[Path], artifact_version: Optional[str]) -> ProvisionContext:
    if config is not None and not config.exists():
        raise typer.BadParameter(f"Config file not found: {config}")
    context = ProvisionContext.from_build_dir(build_dir, config_path=config)
    return context.with_artifact_version(artifact_version)


@app.command()
def provision(
    build_dir: Path = typer.Argument(..., help="Staging directory that is packaged after the build."),
    cache_dir: Path = typer.Argument(..., help="Directory that persists downloads between builds."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to stagehand.yaml."),
    artifact_version: Optional[str] = typer.Option(None, "--artifact-version", help="Artifact version to install."),
):
    """
    Install the runtime and artifact, then apply the configuration script if present.
    """
    if not build_dir.is_dir():
        OutputFormatter.log(f"Build directory does not exist: {build_dir}", severity="error")
        raise typer.Exit(code=1)

    build_dir = build_dir.expanduser().resolve()
    cache_dir = cache_dir.expanduser().resolve()
    context = _load_context(build_dir, config, artifact_version)

    OutputFormatter.log(f"Provisioning artifact {context.settings.artifact_version} into {build_dir}.")
    controller = LifecycleController(build_dir=build_dir, cache_dir=cache_dir, context=context)
    result = controller.run()

    OutputFormatter.print_diagnostics(result.diagnostics)
    if result.exit_code == 0:
        OutputFormatter.log(f"Provisioning finished ({result.state.value}).", severity="success")
    else:
        OutputFormatter.log(f"Provisioning failed ({result.state.value}).", severity="error")
    raise typer.Exit(code=result.exit_code)


@app.command()
def resolve(
    cache_dir: Path = typer.Argument(..., help="Directory that persists downloads between builds."),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to stagehand.yaml."),
    artifact_version: Optional[str] = typer.Option(None, "--artifact-version", help="Artifact version to resolve."),
):
    """
    Download the artifact archive into the cache (if absent) and print its path.
    """
    context = _load_context(Path("."), config, artifact_version)
    settings = context.settings
    cache = ArtifactCache(
        url_template=settings.artifact_url_template,
        artifact_name=settings.artifact_name,
        attempts=context.download.attempts,
        retry_delay_seconds=context.download.retry_delay_seconds,
        timeout_seconds=context.download.timeout_seconds,
    )
    try:
        path = cache.resolve(settings.artifact_version, cache_dir.expanduser().resolve())
    except DownloadError as e:
        OutputFormatter.log(e.message, severity="error")
        raise typer.Exit(code=1)

    OutputFormatter.print_data(str(path))


@app.command()
def stop(
    build_dir: Path = typer.Argument(..., help="Staging directory of the build that started the service."),
    grace_seconds: float = typer.Option(30.0, "--grace-seconds", min=0, help="Seconds to wait after SIGTERM."),
):
    """
    Stop a transient service left running by an interrupted build.
    """
    layout = StagingLayout(build_dir)
    state = inspect_service_state(layout.state_dir)

    if state.state == ServiceState.ABSENT:
        OutputFormatter.log("No service metadata found.", severity="info")
        raise typer.Exit(code=0)

    if state.state == ServiceState.STALE or state.handle is None:
        clear_service_metadata(layout.state_dir)
        OutputFormatter.log(f"Cleared stale service metadata: {state.reason}", severity="warning")
        raise typer.Exit(code=0)

    outcome = stop_service(state.handle, grace_seconds=grace_seconds)
    clear_service_metadata(layout.state_dir)
    severity = "warning" if outcome == StopOutcome.FORCED else "success"
    OutputFormatter.log(f"Service pid={state.handle.pid} stopped ({outcome.value}).", severity=severity)


if __name__ == "__main__":
    app()
