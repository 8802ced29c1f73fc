"""Thin CLI wrapper for fastboot_flasher.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TransferSpeedColumn,
)
from rich.table import Table

from fastboot_flasher import __version__
from fastboot_flasher.config import get_settings, print_settings_json
from fastboot_flasher.download.transfer import DownloadError
from fastboot_flasher.fastboot.commands import parse_getvar_output
from fastboot_flasher.flash.session import FlashError, SessionUpdate
from fastboot_flasher.images.extract import ExtractionError
from fastboot_flasher.images.manifest import Manifest, ManifestError, ManifestProvider
from fastboot_flasher.images.mirrors import MirrorStatus, select_best_mirror
from fastboot_flasher.images.validate import format_file_size
from fastboot_flasher.services import ProvisioningServices
from fastboot_flasher.types import DownloadProgress, LogLevel

app = typer.Typer(
    name="fbflash",
    help="Fastboot Flasher - discover devices, fetch images and flash partitions",
    no_args_is_help=True,
)
console = Console()

_LEVEL_STYLES = {
    LogLevel.INFO: "white",
    LogLevel.SUCCESS: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "red",
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"fastboot-flasher version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route log records through Rich at the given level."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, console=Console(stderr=True))],
        force=True,
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Fastboot Flasher - discover devices, fetch images and flash partitions."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


@contextmanager
def open_services() -> Iterator[ProvisioningServices]:
    """Build services from the current settings and close them afterwards."""
    services = ProvisioningServices.create(get_settings())
    try:
        yield services
    finally:
        services.close()


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings))
    else:
        fastboot_display = (
            str(settings.fastboot_path) if settings.fastboot_path else "(auto-detect)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  fastboot binary:     {fastboot_display}")
        console.print(f"  Download directory:  {settings.download_dir}")
        console.print(f"  Manifest source:     {settings.manifest_source or '(not set)'}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Erase partitions:    {', '.join(settings.erase_partitions)}")
        console.print()
        console.print("[bold]Downloads:[/bold]")
        console.print(f"  Max concurrent:      {settings.max_concurrent_downloads}")
        console.print(f"  Max retries:         {settings.download_max_retries}")
        console.print(f"  Retry delay:         {settings.download_retry_delay}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Command timeout:     {settings.command_timeout}")
        console.print(f"  HTTP timeout:        {settings.http_timeout}")


@app.command()
def devices(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List connected fastboot devices."""
    with open_services() as services:
        scan = services.discovery.probe()

    if json_output:
        output = {
            "devices": [
                {"identifier": d.identifier, "transport": d.transport.value}
                for d in scan.devices
            ],
            "error": scan.result.error_message if scan.failed and scan.result else None,
        }
        console.print(json.dumps(output, indent=2))
    elif scan.failed and scan.result is not None:
        console.print(f"[red]Device enumeration failed: {scan.result.error_message}[/red]")
    elif not scan.devices:
        console.print("[yellow]No fastboot devices found[/yellow]")
    else:
        console.print(f"[bold]Found {len(scan.devices)} device(s):[/bold]")
        for device in scan.devices:
            console.print(f"  [green]{device.identifier}[/green] ({device.transport.value})")

    if scan.failed:
        raise typer.Exit(code=1)


@app.command()
def getvar(
    name: Annotated[str, typer.Argument(help="Bootloader variable (e.g. product)")],
) -> None:
    """Query a bootloader variable."""
    with open_services() as services:
        result = services.commands.getvar(name)

    if not result.success:
        console.print(f"[red]getvar failed: {result.error_message}[/red]")
        raise typer.Exit(code=1)

    value = parse_getvar_output(name, result.output)
    console.print(value if value is not None else result.output)


@app.command()
def reboot() -> None:
    """Reboot the device out of the bootloader."""
    with open_services() as services:
        result = services.commands.reboot()

    if not result.success:
        console.print(f"[red]Reboot failed: {result.error_message}[/red]")
        raise typer.Exit(code=1)
    console.print("[green]✓ Device rebooted[/green]")


def _download_progress() -> Progress:
    return Progress(
        TextColumn("[bold]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        DownloadColumn(),
        TransferSpeedColumn(),
        console=console,
    )


def _progress_updater(
    progress: Progress, task: TaskID
) -> Callable[[DownloadProgress], None]:
    def update(record: DownloadProgress) -> None:
        progress.update(task, completed=record.downloaded, total=record.total)
        if record.warning:
            progress.console.print(f"[yellow]{record.warning}[/yellow]")

    return update


@app.command()
def download(
    url: Annotated[str, typer.Argument(help="URL to download")],
    dest: Annotated[
        Path | None,
        typer.Option("--dest", "-d", help="Destination directory (default: download_dir)"),
    ] = None,
    overwrite: Annotated[
        bool,
        typer.Option("--overwrite", help="Download again even if the file exists"),
    ] = False,
    no_resume: Annotated[
        bool,
        typer.Option("--no-resume", help="Discard any partial file and start over"),
    ] = False,
    sha256: Annotated[
        str | None,
        typer.Option("--sha256", help="Expected SHA-256 of the file"),
    ] = None,
) -> None:
    """Download a single file with resume and retry."""
    with open_services() as services:
        destination = dest or services.settings.download_dir
        options = services.queue.default_options
        options.overwrite = overwrite
        options.resume = not no_resume
        options.expected_checksum = sha256

        try:
            with _download_progress() as progress:
                task = progress.add_task(url.rsplit("/", 1)[-1] or url, total=None)
                handle = services.queue.submit(
                    url,
                    destination,
                    options,
                    on_progress=_progress_updater(progress, task),
                )
                path = handle.result()
        except DownloadError as e:
            console.print(f"[red]Download failed: {e}[/red]")
            raise typer.Exit(code=1) from None

    console.print(f"[green]✓ Saved to {path}[/green]")


# Image manifest commands


images_app = typer.Typer(help="Browse the image manifest")
app.add_typer(images_app, name="images")


def _manifest_provider(
    services: ProvisioningServices, source: str | None
) -> ManifestProvider:
    provider = services.manifest_provider(source)
    if provider is None:
        console.print(
            "[red]No manifest configured (use --manifest or FBFLASH_MANIFEST_SOURCE)[/red]"
        )
        raise typer.Exit(code=1)
    return provider


def _load_manifest(services: ProvisioningServices, source: str | None) -> Manifest:
    provider = _manifest_provider(services, source)
    try:
        return provider.get()
    except ManifestError as e:
        console.print(f"[red]Could not load manifest: {e}[/red]")
        raise typer.Exit(code=1) from None


@images_app.command("list")
def images_list(
    manifest: Annotated[
        str | None,
        typer.Option("--manifest", "-m", help="Manifest URL or file"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List the distributions offered by the manifest."""
    with open_services() as services:
        loaded = _load_manifest(services, manifest)

    distributions = loaded.distributions()
    if json_output:
        output = {
            "version": loaded.version,
            "boot": loaded.images.boot.model_dump(exclude_none=True),
            "distributions": {
                name: {
                    "cache": loaded.images.cache[name].model_dump(exclude_none=True),
                    "userdata": loaded.images.userdata[name].model_dump(exclude_none=True),
                }
                for name in distributions
            },
            "mirrors": loaded.mirrors(),
        }
        console.print(json.dumps(output, indent=2))
        return

    table = Table(title=f"Manifest {loaded.version}")
    table.add_column("Distribution", style="green")
    table.add_column("Cache image")
    table.add_column("Userdata image")
    for name in distributions:
        cache = loaded.images.cache[name]
        userdata = loaded.images.userdata[name]
        table.add_row(
            name,
            cache.size_human or cache.description,
            userdata.size_human or userdata.description,
        )
    console.print(table)
    if loaded.mirrors():
        console.print(f"Mirrors: {len(loaded.mirrors())}")



@images_app.command("mirrors")
def images_mirrors(
    manifest: Annotated[
        str | None,
        typer.Option("--manifest", "-m", help="Manifest URL or file"),
    ] = None,
    refresh: Annotated[
        bool,
        typer.Option("--refresh", help="Ignore cached test results"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Test the manifest's mirrors and show the fastest one."""
    with open_services() as services:
        loaded = _load_manifest(services, manifest)
        if not loaded.mirrors():
            console.print("[yellow]The manifest lists no mirrors[/yellow]")
            raise typer.Exit(code=1)
        results = services.mirrors.measure(
            loaded.mirrors(),
            sample_url=loaded.images.boot.url,
            force_refresh=refresh,
        )

    best = select_best_mirror(results)
    if json_output:
        output = {
            "mirrors": [
                {**asdict(result), "status": result.status.value} for result in results
            ],
            "best": best.mirror if best else None,
        }
        console.print(json.dumps(output, indent=2))
        return

    table = Table(title="Mirrors")
    table.add_column("Mirror", style="cyan")
    table.add_column("Region")
    table.add_column("Latency", justify="right")
    table.add_column("Speed", justify="right")
    table.add_column("Status")
    for result in results:
        if result.status == MirrorStatus.AVAILABLE:
            table.add_row(
                result.mirror,
                result.region,
                f"{result.latency:.0f} ms",
                f"{format_file_size(int(result.speed))}/s",
                "[green]available[/green]",
            )
        else:
            table.add_row(result.mirror, result.region, "-", "-", f"[red]{result.error}[/red]")
    console.print(table)
    if best is None:
        console.print("[red]No mirror is available[/red]")
        raise typer.Exit(code=1)
    console.print(f"Best mirror: [green]{best.mirror}[/green]")


# Flash


# --mirror value that selects the fastest manifest mirror
AUTO_MIRROR = "auto"


def _auto_mirror(services: ProvisioningServices, loaded: Manifest) -> str | None:
    if not loaded.mirrors():
        console.print("[yellow]The manifest lists no mirrors, downloading directly[/yellow]")
        return None
    console.print("Testing mirrors...")
    best = services.mirrors.best(loaded.mirrors(), sample_url=loaded.images.boot.url)
    if best is None:
        console.print("[yellow]No mirror is available, downloading directly[/yellow]")
        return None
    console.print(f"Using mirror [green]{best.mirror}[/green] ({best.region})")
    return best.mirror


class _ConsoleSink:
    """Prints session log entries as they arrive."""

    def deliver(self, update: SessionUpdate) -> None:
        if update.entry is None:
            return
        style = _LEVEL_STYLES[update.entry.level]
        console.print(f"[{style}]{update.progress:5.1f}%  {update.entry.message}[/{style}]")


@app.command()
def flash(
    boot: Annotated[
        Path | None,
        typer.Option("--boot", help="Image for the boot partition"),
    ] = None,
    cache: Annotated[
        Path | None,
        typer.Option("--cache", help="Image for the cache partition"),
    ] = None,
    userdata: Annotated[
        Path | None,
        typer.Option("--userdata", help="Image for the userdata partition"),
    ] = None,
    distribution: Annotated[
        str | None,
        typer.Option("--distribution", "-D", help="Fetch images of this distribution"),
    ] = None,
    manifest: Annotated[
        str | None,
        typer.Option("--manifest", "-m", help="Manifest URL or file"),
    ] = None,
    mirror: Annotated[
        str | None,
        typer.Option("--mirror", help="Mirror to download through, or 'auto' for the fastest"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Skip confirmation prompt"),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Erase and flash the device's partitions.

    Images come from --boot/--cache/--userdata, or are downloaded for
    --distribution; explicit paths override downloaded ones.
    """
    explicit = {"boot": boot, "cache": cache, "userdata": userdata}

    with open_services() as services:
        image_paths: dict[str, Path | None] = {}

        if distribution:
            loaded = _load_manifest(services, manifest)
            if mirror == AUTO_MIRROR:
                mirror = _auto_mirror(services, loaded)
            try:
                with _download_progress() as progress:
                    tasks = {
                        name: progress.add_task(name, total=None)
                        for name in ("boot", "cache", "userdata")
                    }

                    def on_progress(partition: str, record: DownloadProgress) -> None:
                        _progress_updater(progress, tasks[partition])(record)

                    image_paths.update(
                        services.acquirer.acquire(
                            loaded,
                            distribution,
                            services.settings.download_dir,
                            mirror=mirror,
                            on_progress=on_progress,
                        )
                    )
            except (ManifestError, DownloadError, ExtractionError) as e:
                console.print(f"[red]Could not prepare images: {e}[/red]")
                raise typer.Exit(code=1) from None

        image_paths.update({k: v for k, v in explicit.items() if v is not None})
        if not any(image_paths.values()):
            console.print("[red]No images given (use --boot/--cache/--userdata or --distribution)[/red]")
            raise typer.Exit(code=1)

        if not force:
            console.print("[bold red]WARNING:[/bold red] This will ERASE and OVERWRITE:")
            for partition in services.orchestrator.erase_partitions:
                console.print(f"  erase {partition}")
            for partition, path in image_paths.items():
                if path:
                    console.print(f"  flash {partition} <- {path}")
            if not typer.confirm("Are you sure you want to continue?", default=False):
                console.print("[yellow]Aborted[/yellow]")
                raise typer.Exit(code=0)

        unsubscribe = None
        if not json_output:
            unsubscribe = services.orchestrator.subscribe(_ConsoleSink())
        try:
            snapshot = services.orchestrator.run(image_paths)
        except FlashError as e:
            snapshot = services.orchestrator.snapshot()
            if json_output:
                console.print(json.dumps(snapshot.to_dict(), indent=2))
            else:
                console.print(f"[red]✗ Flash failed: {e.message}[/red]")
            raise typer.Exit(code=1) from None
        finally:
            if unsubscribe is not None:
                unsubscribe()

    if json_output:
        console.print(json.dumps(snapshot.to_dict(), indent=2))
    else:
        console.print("[green]✓ Flash succeeded[/green]")


@app.command()
def status(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the download queue limits and the fastboot binary in use."""
    with open_services() as services:
        queue_status = services.queue.status()
        binary = services.executor.binary_path
        version = services.commands.validate_fastboot()

    if json_output:
        output = {
            "fastboot": {
                "path": binary,
                "available": version.success,
                "version": version.output.splitlines()[0] if version.success and version.output else None,
            },
            "downloads": asdict(queue_status),
        }
        console.print(json.dumps(output, indent=2))
        return

    console.print(f"fastboot: {binary}")
    if version.success:
        console.print(f"  [green]{version.output.splitlines()[0] if version.output else 'available'}[/green]")
    else:
        console.print(f"  [red]unavailable: {version.error_message}[/red]")
    console.print(f"Max concurrent downloads: {queue_status.max_concurrent}")


if __name__ == "__main__":
    app()
