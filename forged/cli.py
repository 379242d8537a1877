"""forge CLI: browse the catalog, check selections, preview scripts and run the daemon.

Everything except `serve` and `stop` works offline against the packaged
catalog; no daemon needs to be running.
"""

import sys
from pathlib import Path

import click
import psutil
from pydantic import ValidationError

from forge_library.compiler import ValidationFailedError
from forge_library.compiler import validate_selection
from forge_library.config import load_config
from forge_library.models import CompileOptions
from forge_library.registry import CatalogError
from forge_library.registry import ModuleRegistry
from forge_library.registry import UnknownModuleError
from forge_library.registry import UnknownPresetError
from forge_library.registry import load_registry
from forge_library.tasks import CompileExecutor


def _load_registry() -> ModuleRegistry:
    try:
        return load_registry()
    except CatalogError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def find_daemon_processes() -> list[psutil.Process]:
    """Find all running `python -m forged` processes.

    Returns:
        List of daemon Process objects (excluding this CLI)
    """
    current_pid = psutil.Process().pid
    daemon_processes = []

    for proc in psutil.process_iter(["pid", "cmdline", "status"]):
        try:
            if proc.info["pid"] == current_pid:
                continue
            if proc.info["status"] in (psutil.STATUS_ZOMBIE, psutil.STATUS_DEAD):
                continue

            cmdline = proc.info["cmdline"]
            if not cmdline or "-m" not in cmdline:
                continue

            module_index = cmdline.index("-m") + 1
            if module_index < len(cmdline) and cmdline[module_index] == "forged":
                daemon_processes.append(proc)

        except (psutil.NoSuchProcess, psutil.AccessDenied, ValueError, IndexError):
            continue

    return daemon_processes


def stop_process(proc: psutil.Process, name: str, timeout: int = 5) -> bool:
    """Stop a process gracefully.

    Args:
        proc: Process to stop
        name: Process name for logging
        timeout: Seconds to wait before force kill

    Returns:
        True if stopped successfully
    """
    try:
        click.echo(f"Stopping {name} (PID {proc.pid})...")
        proc.terminate()

        try:
            proc.wait(timeout=timeout)
            click.echo(f"{name} stopped successfully")
            return True
        except psutil.TimeoutExpired:
            click.echo(f"{name} did not stop gracefully, force killing...")
            proc.kill()
            proc.wait(timeout=2)
            click.echo(f"{name} force killed")
            return True

    except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
        click.echo(f"Failed to stop {name}: {e}", err=True)
        return False


@click.group()
def cli():
    """forge - compile nginx from source with a custom module set."""
    pass


@cli.command()
@click.option("--category", default=None, help="Only list modules in this category")
def modules(category: str | None):
    """List catalog modules grouped by category."""
    registry = _load_registry()
    names = {c.id: c.name for c in registry.list_categories()}

    for category_id, members in registry.modules_by_category().items():
        if category is not None and category_id != category:
            continue
        click.echo(f"{names[category_id]}:")
        for module in members:
            marker = "*" if module.default else " "
            kind = "third-party" if module.third_party else "official"
            click.echo(f"  {marker} {module.id:<34} {module.name} [{kind}, {module.compile_time.value}]")
            if module.requires:
                click.echo(f"      requires: {', '.join(module.requires)}")
            if module.warning:
                click.echo(f"      warning: {module.warning}")
        click.echo("")


@cli.command()
def versions():
    """List available source versions."""
    registry = _load_registry()
    for version in registry.list_versions():
        suffix = " (recommended)" if version.recommended else ""
        click.echo(f"{version.version:<10} {version.channel.value:<9} {version.release_date or ''}{suffix}")


@cli.command()
def presets():
    """List module presets."""
    registry = _load_registry()
    for preset in registry.list_presets():
        minutes = registry.estimate_compile_time(preset.modules)
        click.echo(f"{preset.id:<10} {preset.name} - {preset.description} ({len(preset.modules)} modules, ~{minutes} min)")


@cli.command()
@click.argument("module_id")
def closure(module_id: str):
    """Show every module MODULE_ID requires, directly or transitively."""
    registry = _load_registry()
    try:
        deps = registry.dependency_closure(module_id)
    except UnknownModuleError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if not deps:
        click.echo(f"{module_id} has no dependencies")
        return
    for dep in deps:
        click.echo(dep)


@cli.command()
@click.argument("module_ids", nargs=-1, required=True)
def validate(module_ids: tuple[str, ...]):
    """Check a module selection against requires and conflicts."""
    registry = _load_registry()
    result = validate_selection(module_ids, registry)

    if result.valid:
        click.echo(f"Selection is valid (~{registry.estimate_compile_time(module_ids)} min build)")
        return

    for error in result.errors:
        click.echo(f"  ✗ {error}", err=True)
    sys.exit(1)


@cli.command()
@click.option("--version", "version", default=None, help="Source version (default: recommended)")
@click.option("--preset", default=None, help="Start from a preset selection")
@click.option("-m", "--module", "module_ids", multiple=True, help="Add a module (repeatable)")
@click.option("--custom-module", "custom_modules", multiple=True, help="Extra module git URL (repeatable)")
@click.option("--install-path", default="/www/server/nginx", show_default=True, help="Installation prefix")
@click.option(
    "--opt-level",
    type=click.Choice(["O0", "O1", "O2", "O3", "Os"]),
    default="O2",
    show_default=True,
    help="Compiler optimization level",
)
@click.option("--debug", is_flag=True, help="Build with debug logging")
@click.option("-j", "--jobs", default=0, show_default=True, help="make -j value (0 = all cores)")
@click.option("-o", "--output", type=click.Path(dir_okay=False, path_type=Path), default=None, help="Write to file")
def preview(
    version: str | None,
    preset: str | None,
    module_ids: tuple[str, ...],
    custom_modules: tuple[str, ...],
    install_path: str,
    opt_level: str,
    debug: bool,
    jobs: int,
    output: Path | None,
):
    """Print the build script for a selection without running it."""
    registry = _load_registry()

    selection: list[str] = []
    if preset is not None:
        try:
            selection.extend(registry.get_preset(preset).modules)
        except UnknownPresetError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    selection.extend(module_ids)
    if not selection:
        selection = registry.default_selection()

    if version is None:
        recommended = registry.recommended_version()
        if recommended is None:
            click.echo("Error: catalog lists no versions, pass --version", err=True)
            sys.exit(1)
        version = recommended.version

    try:
        options = CompileOptions(
            version=version,
            modules=selection,
            custom_modules=list(custom_modules),
            install_path=install_path,
            optimization_level=opt_level,
            with_debug=debug,
            parallel_jobs=jobs,
        )
    except ValidationError as e:
        for error in e.errors():
            click.echo(f"  ✗ {'.'.join(str(p) for p in error['loc'])}: {error['msg']}", err=True)
        sys.exit(1)

    executor = CompileExecutor(registry, settings=load_config())
    try:
        script = executor.preview(options, software=registry.software)
    except ValidationFailedError as e:
        for error in e.errors:
            click.echo(f"  ✗ {error}", err=True)
        sys.exit(1)

    if output is None:
        click.echo(script, nl=False)
    else:
        output.write_text(script, encoding="utf-8")
        output.chmod(0o755)
        click.echo(f"Wrote {output} (~{registry.estimate_compile_time(options.modules)} min build)")


@cli.command()
@click.option("--host", default=None, help="Listen address (default: from config)")
@click.option("--port", type=int, default=None, help="Listen port (default: from config)")
def serve(host: str | None, port: int | None):
    """Run the forged daemon in the foreground."""
    import uvicorn

    config = load_config()
    uvicorn.run(
        "forged.main:app",
        host=host or config.host,
        port=port or config.port,
        log_level=config.log_level.lower(),
    )


@cli.command()
def stop():
    """Stop running forged daemons (running builds are cancelled)."""
    processes = find_daemon_processes()
    if not processes:
        click.echo("Daemon not running")
        return

    failed = [proc for proc in processes if not stop_process(proc, "Daemon", timeout=15)]
    if failed:
        sys.exit(1)


def main():
    """Entry point for forge CLI."""
    try:
        cli()
    except KeyboardInterrupt:
        click.echo("\nInterrupted")
        sys.exit(0)


if __name__ == "__main__":
    main()
