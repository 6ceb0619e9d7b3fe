"""Thin CLI wrapper for native_rebuild.

This module provides the command-line interface using Typer.
All business logic is delegated to core modules.
"""

import json
import logging
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from native_rebuild import __version__
from native_rebuild.config import get_settings, print_settings_json

app = typer.Typer(
    name="native-rebuild",
    help="Rebuild native addons in a node_modules tree for a target runtime ABI",
    no_args_is_help=True,
)
console = Console()


def print_json(text: str) -> None:
    """Print JSON text without Rich markup, highlighting or wrapping."""
    console.print(text, soft_wrap=True, markup=False, highlight=False)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"native-rebuild version {__version__}")
        raise typer.Exit()


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
) -> None:
    """Rebuild native addons in a node_modules tree for a target runtime ABI."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


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
        print_json(print_settings_json(settings))
    else:
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Toolchain cache:     {settings.cache_dir}")
        console.print()
        console.print("[bold]Runtime:[/bold]")
        console.print(f"  Runtime name:        {settings.runtime_name}")
        console.print(f"  Headers URL:         {settings.headers_url}")
        console.print()
        console.print("[bold]Tools:[/bold]")
        console.print(f"  node-gyp:            {settings.node_gyp}")
        console.print(f"  prebuild-install:    {settings.prebuild_install}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Offline mode:        {settings.offline}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print(f"  Max builds:          {settings.max_concurrent_builds}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Download timeout:    {settings.download_timeout}")
        console.print(f"  Build timeout:       {settings.build_timeout}")


def _parse_types(types: list[str] | None) -> frozenset:
    from native_rebuild.types import DEFAULT_DEPENDENCY_CLASSES, DependencyClass

    if not types:
        return DEFAULT_DEPENDENCY_CLASSES
    try:
        return frozenset(
            DependencyClass(part.strip())
            for value in types
            for part in value.split(",")
            if part.strip()
        )
    except ValueError:
        console.print(f"[red]Invalid dependency type in: {escape(', '.join(types))}[/red]")
        console.print("Valid values: required, optional, development")
        raise typer.Exit(code=1) from None


@app.command("list")
def list_modules(
    path: Annotated[
        Path,
        typer.Argument(help="Project root containing package.json"),
    ] = Path("."),
    types: Annotated[
        list[str] | None,
        typer.Option("--types", "-t", help="Dependency classes to follow (can be repeated)"),
    ] = None,
    extra: Annotated[
        list[str] | None,
        typer.Option("--extra", "-e", help="Extra root-level module to walk (can be repeated)"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """List native-addon modules found in the dependency tree."""
    from native_rebuild.errors import StructuralTreeError
    from native_rebuild.tree.walker import walk_dependency_tree

    try:
        walk = walk_dependency_tree(path, types=_parse_types(types), extra_modules=extra)
    except StructuralTreeError as e:
        console.print(
            f"[red]Cannot read project at {escape(str(path))}: {escape(str(e))}[/red]"
        )
        raise typer.Exit(code=1) from None

    if json_output:
        output = {
            "root": str(walk.root),
            "visited": walk.visited,
            "modules": [c.to_dict() for c in walk.candidates],
            "errors": [e.to_dict() for e in walk.errors],
        }
        print_json(json.dumps(output, indent=2))
        return

    if not walk.candidates:
        console.print("[yellow]No native modules found[/yellow]")
    else:
        console.print(f"[bold]Native modules ({len(walk.candidates)}):[/bold]")
        for c in walk.candidates:
            version = f"@{c.version}" if c.version else ""
            label = escape(f"{c.name}{version} [{c.build_kind.value}]")
            console.print(f"  {label}")
            console.print(f"    Path: {escape(str(c.path))}")

    if walk.errors:
        console.print()
        console.print(f"[yellow]Tree errors ({len(walk.errors)}):[/yellow]")
        for e in walk.errors:
            console.print(f"  [yellow]{e.code}[/yellow] {escape(str(e))}")


@app.command()
def rebuild(
    runtime_version: Annotated[
        str,
        typer.Option("--version", "-v", help="Target runtime version (e.g. 28.1.0)"),
    ],
    path: Annotated[
        Path,
        typer.Argument(help="Project root containing package.json"),
    ] = Path("."),
    arch: Annotated[
        str | None,
        typer.Option("--arch", "-a", help="Target architecture (default: host)"),
    ] = None,
    only: Annotated[
        list[str] | None,
        typer.Option("--only", "-o", help="Only rebuild these modules (can be repeated)"),
    ] = None,
    ignore: Annotated[
        list[str] | None,
        typer.Option("--ignore", "-i", help="Never rebuild these modules (can be repeated)"),
    ] = None,
    extra: Annotated[
        list[str] | None,
        typer.Option("--extra", "-e", help="Extra root-level module to walk (can be repeated)"),
    ] = None,
    types: Annotated[
        list[str] | None,
        typer.Option("--types", "-t", help="Dependency classes to follow (can be repeated)"),
    ] = None,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Force rebuild even if already built"),
    ] = False,
    debug: Annotated[
        bool,
        typer.Option("--debug", "-d", help="Build the debug configuration"),
    ] = False,
    compiler: Annotated[
        str | None,
        typer.Option("--compiler", help="Alternative compiler bundled with the runtime"),
    ] = None,
    from_source: Annotated[
        bool,
        typer.Option("--from-source", help="Never download prebuilt binaries"),
    ] = False,
    sequential: Annotated[
        bool,
        typer.Option("--sequential", "-s", help="Build one module at a time"),
    ] = False,
    headers_url: Annotated[
        str | None,
        typer.Option("--headers-url", help="Override the runtime headers URL"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Rebuild native modules for a target runtime.

    Modules already built for the same version, architecture, build type
    and compiler are skipped unless --force is given.
    """
    from native_rebuild.errors import (
        RebuildCancelledError,
        RebuildError,
        StructuralTreeError,
        ToolchainAcquisitionError,
    )
    from native_rebuild.rebuild import RebuildOptions, only_modules_from
    from native_rebuild.rebuild import rebuild as run_rebuild
    from native_rebuild.types import (
        Architecture,
        LifecycleEvent,
        OutcomeStatus,
        TargetIdentity,
    )

    try:
        target = TargetIdentity(
            runtime_version=runtime_version,
            arch=Architecture(arch) if arch else Architecture.host(),
        )
    except ValueError as e:
        console.print(f"[red]Invalid target: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    options = RebuildOptions(
        only_modules=only_modules_from(only),
        ignore_modules=only_modules_from(ignore),
        extra_modules=tuple(extra or ()),
        types=_parse_types(types),
        force=force,
        debug=debug,
        compiler_override=compiler,
        build_from_source=from_source,
        sequential=sequential,
        headers_url=headers_url,
    )

    handle = run_rebuild(target, path, options)

    if not json_output:
        console.print(f"[blue]Rebuilding native modules for {handle.target}...[/blue]")

        def report(event: LifecycleEvent) -> None:
            name = escape(event.candidate.name)
            kind = event.kind.value
            if kind == "skip":
                console.print(f"  [dim]- {name} (up to date)[/dim]")
            elif kind == "start":
                console.print(f"  [blue]… {name}[/blue]")
            elif kind == "done":
                console.print(f"  [green]✓ {name} ({escape(event.detail or '')})[/green]")
            elif kind == "failed":
                console.print(f"  [red]✗ {name}[/red]")

        handle.lifecycle.on_any(report)

    try:
        result = handle.result()
    except RebuildError as e:
        if json_output:
            output = {
                "success": False,
                "code": e.code,
                "target": e.target.to_dict(),
                "outcomes": [o.to_dict() for o in e.outcomes],
            }
            print_json(json.dumps(output, indent=2))
        else:
            console.print()
            console.print(f"[red]Rebuild failed for {len(e.failures)} module(s):[/red]")
            for o in e.failures:
                console.print(
                    f"  [red]✗ {escape(o.candidate.name)}[/red] {escape(str(o.candidate.path))}"
                )
                console.print(f"      Error: {escape(o.reason or '')}")
                if o.log_path:
                    console.print(f"      Log: {escape(str(o.log_path))}")
        raise typer.Exit(code=1) from None
    except (ToolchainAcquisitionError, StructuralTreeError, RebuildCancelledError) as e:
        if json_output:
            output = {
                "success": False,
                "code": e.code,
                "message": str(e),
                "target": handle.target.to_dict(),
            }
            print_json(json.dumps(output, indent=2))
        else:
            console.print(f"[red]Rebuild aborted: {escape(str(e))}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        print_json(json.dumps(result.to_dict(), indent=2))
        return

    console.print()
    console.print("[bold]Rebuild Results:[/bold]")
    console.print(f"  [green]Built: {result.count(OutcomeStatus.BUILT)}[/green]")
    console.print(f"  [blue]Up to date: {result.count(OutcomeStatus.SKIPPED)}[/blue]")
    for o in result.outcomes:
        for warning in o.warnings:
            console.print(
                f"  [yellow]Warning ({escape(o.candidate.name)}): {escape(warning)}[/yellow]"
            )
    if result.tree_errors:
        console.print(f"  [yellow]Tree errors: {len(result.tree_errors)}[/yellow]")
        for e in result.tree_errors:
            console.print(f"    {e.code}: {escape(str(e))}")


if __name__ == "__main__":
    app()
