"""Thin CLI wrapper for godwoken_imagegen.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import logging
from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.logging import RichHandler

from godwoken_imagegen import __version__
from godwoken_imagegen.config import Settings, get_settings, print_settings_json

app = typer.Typer(
    name="gw-imagegen",
    help=(
        "Godwoken Image Generator - build or reuse components "
        "and release the prebuilt image"
    ),
    no_args_is_help=True,
)
console = Console()

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"godwoken-imagegen version {__version__}")
        raise typer.Exit()


def setup_logging(level: str) -> None:
    """Send log records to stderr through rich."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
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
    log_level: Annotated[
        str | None,
        typer.Option("--log-level", help="Logging level (overrides GW_IMG_LOG_LEVEL)"),
    ] = None,
) -> None:
    """Godwoken Image Generator - build or reuse components and release the prebuilt image."""
    level = (log_level or get_settings().log_level).upper()
    if level not in LOG_LEVELS:
        console.print(f"[red]Invalid log level: {log_level}[/red]")
        console.print(f"Valid values: {', '.join(LOG_LEVELS)}")
        raise typer.Exit(code=2)
    setup_logging(level)


def _settings(workspace: Path | None = None) -> Settings:
    settings = get_settings()
    if workspace is not None:
        settings = settings.model_copy(update={"workspace": workspace.resolve()})
    return settings


def _load_manifest(settings: Settings, manifest: Path | None) -> Any:
    """Load the manifest; fall back to the built-in one if no file exists."""
    from godwoken_imagegen.errors import ResolutionError
    from godwoken_imagegen.manifest.io import default_manifest, load_manifest

    path = settings.resolve_path(manifest or settings.manifest_path)
    if manifest is None and not path.exists():
        logging.getLogger(__name__).info(
            "No manifest at %s; using the built-in manifest", path
        )
        return default_manifest()
    try:
        return load_manifest(path)
    except ResolutionError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None


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
        console.print_json(print_settings_json(settings))
    else:
        context_dir_display = (
            str(settings.context_dir)
            if settings.context_dir
            else "(<workspace>/build/image-context)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Workspace:           {settings.workspace}")
        console.print(f"  Manifest:            {settings.manifest_path}")
        console.print(f"  Cache directory:     {settings.cache_dir}")
        console.print(f"  Database URL:        {settings.db_url}")
        console.print(f"  Logs directory:      {settings.logs_dir}")
        console.print(f"  Context directory:   {context_dir_display}")
        console.print(f"  Dockerfile:          {settings.dockerfile}")
        console.print()
        console.print("[bold]Image:[/bold]")
        console.print(f"  Registry:            {settings.registry}")
        console.print(f"  Image name:          {settings.image_name}")
        console.print(f"  Repository:          {settings.repository}")
        console.print(f"  Maintainer:          {settings.maintainer}")
        console.print(f"  Tag prefix:          {settings.tag_prefix or '(none)'}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Max builds:          {settings.max_concurrent_builds}")
        console.print(f"  Lock timeout:        {settings.lock_timeout}")


@app.command()
def manifest(
    path: Annotated[
        Path | None,
        typer.Option("--manifest", "-m", help="Manifest file (YAML or JSON)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the effective version manifest."""
    from godwoken_imagegen.manifest.io import manifest_to_yaml_string

    schema = _load_manifest(_settings(), path)
    if json_output:
        console.print_json(schema.model_dump_json(exclude_none=True))
    else:
        console.print(manifest_to_yaml_string(schema), end="")


@app.command()
def resolve(
    path: Annotated[
        Path | None,
        typer.Option("--manifest", "-m", help="Manifest file (YAML or JSON)"),
    ] = None,
    workspace: Annotated[
        Path | None,
        typer.Option("--workspace", "-w", help="Workspace holding the checkouts"),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            envvar="GITHUB_OUTPUT",
            help="Append key=value version outputs to this file",
        ),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Resolve component versions and content hashes."""
    from godwoken_imagegen.errors import ResolutionError
    from godwoken_imagegen.outputs import write_outputs
    from godwoken_imagegen.versions.resolver import VersionResolver, version_outputs

    settings = _settings(workspace)
    schema = _load_manifest(settings, path)
    resolver = VersionResolver(workspace=settings.workspace)

    try:
        resolved = resolver.resolve(schema.components)
    except ResolutionError as e:
        where = f" ({e.component})" if e.component else ""
        console.print(f"[red]Resolution failed{where}: {e}[/red]")
        raise typer.Exit(code=1) from None

    outputs = version_outputs(resolved)
    if output is not None:
        write_outputs(outputs, output)

    if json_output:
        console.print_json(data=outputs)
    else:
        console.print(f"[bold]Resolved {len(resolved)} component(s):[/bold]")
        console.print()
        for c in resolved:
            console.print(f"  [green]{c.name}[/green]")
            console.print(f"    Ref:    {c.ref}")
            console.print(f"    Commit: {c.commit}")
            console.print(f"    Hash:   {c.content_hash}")
            console.print()


@app.command()
def run(
    path: Annotated[
        Path | None,
        typer.Option("--manifest", "-m", help="Manifest file (YAML or JSON)"),
    ] = None,
    workspace: Annotated[
        Path | None,
        typer.Option("--workspace", "-w", help="Workspace holding the checkouts"),
    ] = None,
    ref: Annotated[
        str | None,
        typer.Option("--ref", envvar="GITHUB_REF", help="Triggering git ref"),
    ] = None,
    commit: Annotated[
        str | None,
        typer.Option("--commit", envvar="GITHUB_SHA", help="Invoking commit"),
    ] = None,
    event: Annotated[
        str | None,
        typer.Option(
            "--event",
            envvar="GITHUB_EVENT_NAME",
            help="Triggering event; pull_request never pushes",
        ),
    ] = None,
    repository: Annotated[
        str | None,
        typer.Option(
            "--repository", envvar="GITHUB_REPOSITORY", help="Source as owner/repo"
        ),
    ] = None,
    registry_user: Annotated[
        str | None,
        typer.Option("--registry-user", envvar="GITHUB_ACTOR", help="Registry user"),
    ] = None,
    registry_password: Annotated[
        str | None,
        typer.Option(
            "--registry-password",
            envvar="GITHUB_TOKEN",
            help="Registry password or token",
            show_default=False,
        ),
    ] = None,
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            envvar="GITHUB_OUTPUT",
            help="Append image_name/image_tag outputs to this file",
        ),
    ] = None,
    deadline: Annotated[
        float | None,
        typer.Option("--deadline", min=1, help="Abort the run after this many seconds"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Build or reuse every component and release the image.

    Pushes only for trusted events with registry credentials. SIGTERM or
    SIGINT aborts the run and terminates in-flight builds.
    """
    from godwoken_imagegen.errors import PipelineError, ReleaseDefect
    from godwoken_imagegen.pipeline.coordinator import (
        abort_on_signals,
        create_coordinator,
    )
    from godwoken_imagegen.release.docker import (
        PublishPolicy,
        RegistryCredentials,
        registry_host,
    )
    from godwoken_imagegen.release.handoff import HandoffRecord, downstream_env
    from godwoken_imagegen.release.tags import parse_trigger_ref

    if not ref:
        console.print("[red]Error: no triggering ref (use --ref or GITHUB_REF)[/red]")
        raise typer.Exit(code=1)
    if not commit:
        console.print("[red]Error: no invoking commit (use --commit or GITHUB_SHA)[/red]")
        raise typer.Exit(code=1)

    try:
        trigger = parse_trigger_ref(ref)
    except ReleaseDefect as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1) from None

    settings = _settings(workspace)
    if repository:
        settings = settings.model_copy(update={"repository": repository})
    schema = _load_manifest(settings, path)

    credentials = None
    if registry_user and registry_password:
        credentials = RegistryCredentials(
            registry=registry_host(settings.registry),
            username=registry_user,
            password=registry_password,
        )
    policy = PublishPolicy.from_event(event, credentials)

    coordinator = create_coordinator(settings, policy, output_path=output)
    try:
        # SIGTERM/SIGINT cancel the builds instead of orphaning them
        with abort_on_signals() as abort:
            descriptor = coordinator.run(
                schema.components,
                trigger=trigger,
                invoking_commit=commit,
                deadline=deadline,
                abort=abort,
            )
    except PipelineError as e:
        if json_output:
            console.print_json(data=e.to_dict())
        else:
            console.print(
                f"[red]Pipeline failed at {e.failed_component}: {e.cause}[/red]"
            )
            log_path = getattr(e.cause, "log_path", None)
            if log_path:
                console.print(f"  Log: {log_path}")
        raise typer.Exit(code=1) from None

    record = HandoffRecord(descriptor.image_name, descriptor.image_tag)
    env = downstream_env(record)
    if json_output:
        result = {
            "image_name": descriptor.image_name,
            "image_tag": descriptor.image_tag,
            "release_key": descriptor.release_key,
            "pushed": descriptor.pushed,
            "components": {
                name: {"ref": ref_, "content_hash": content_hash}
                for name, (ref_, content_hash) in descriptor.component_refs.items()
            },
            "cache_hits": dict(descriptor.cache_hits),
            "env": env,
        }
        console.print_json(data=result)
    else:
        console.print(f"[bold]Released {descriptor.image_reference}[/bold]")
        console.print(f"  Release key: {descriptor.release_key}")
        console.print(f"  Pushed:      {descriptor.pushed}")
        console.print()
        for name, (ref_, _content_hash) in descriptor.component_refs.items():
            hit_marker = " (cache hit)" if descriptor.cache_hits.get(name) else ""
            console.print(f"  [green]✓ {name}[/green] {ref_}{hit_marker}")
        console.print()
        for key, value in env.items():
            console.print(f"{key}={value}")


cache_app = typer.Typer(help="Inspect the component cache")
app.add_typer(cache_app, name="cache")


def _open_store(settings: Settings) -> Any:
    from godwoken_imagegen.cache.store import DiskCacheStore
    from godwoken_imagegen.db import create_all_tables, get_engine, get_session_factory

    engine = get_engine(settings.db_url)
    create_all_tables(engine)
    return DiskCacheStore(
        settings.cache_dir,
        get_session_factory(engine),
        lock_timeout=settings.lock_timeout,
    )


@cache_app.command("list")
def cache_list(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List cache entries."""
    store = _open_store(get_settings())
    entries = store.entries()

    if json_output:
        output = [
            {
                "key": e.key,
                "component": store.component_of(e.key),
                "produced_at": e.produced_at.isoformat(),
                "artifacts": len(e.artifacts),
            }
            for e in entries
        ]
        console.print_json(data=output)
        return

    if not entries:
        console.print("[yellow]Cache is empty[/yellow]")
        return
    noun = "entry" if len(entries) == 1 else "entries"
    console.print(f"[bold]Found {len(entries)} cache {noun}:[/bold]")
    console.print()
    for e in entries:
        console.print(f"  [green]{e.key}[/green]")
        console.print(f"    Component: {store.component_of(e.key) or '-'}")
        console.print(f"    Produced:  {e.produced_at.isoformat()}")
        console.print(f"    Artifacts: {len(e.artifacts)}")
        console.print()


@cache_app.command("show")
def cache_show(
    key: Annotated[str, typer.Argument(help="Cache key (sha256:...)")],
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show the artifacts stored under a cache key."""
    from godwoken_imagegen.errors import CacheMiss

    store = _open_store(get_settings())
    try:
        entry = store.fetch(key)
    except CacheMiss:
        console.print(f"[red]Cache key not found: {key}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        output = {
            "key": entry.key,
            "produced_at": entry.produced_at.isoformat(),
            "artifacts": [
                {
                    "name": a.name,
                    "path": str(a.path),
                    "sha256": a.sha256,
                    "size_bytes": a.size_bytes,
                }
                for a in entry.artifacts
            ],
        }
        console.print_json(data=output)
    else:
        console.print(f"[bold]{entry.key}[/bold]")
        console.print(f"  Produced: {entry.produced_at.isoformat()}")
        for a in entry.artifacts:
            console.print(f"  {a.name}")
            console.print(f"      sha256: {a.sha256}")
            console.print(f"      size:   {a.size_bytes}")


if __name__ == "__main__":
    app()
