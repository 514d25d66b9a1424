# cli.py
from __future__ import annotations

import json
import os
import sys
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Iterable

import click

from reuseci.config import load_settings
from reuseci.dag import build as build_graph
from reuseci.errors import PipelineError
from reuseci.executor import ShellExecutor
from reuseci.loader import load_paths
from reuseci.resolver import Resolver, read_lock, write_lock
from reuseci.runner import PipelineRequest, PipelineRun
from reuseci.serialize import item_to_dict
from reuseci.store import DefinitionStore, LocalDefinitionStore
from reuseci.ui.console import Console, get_console, set_console


def open_store(ctx: click.Context) -> DefinitionStore:
    """The registry when one is configured, otherwise the local store directory."""
    registry = ctx.obj.get("registry")
    if registry:
        from reuseci.registry.client import RegistryClient
        return RegistryClient(registry)
    return LocalDefinitionStore(ctx.obj["store"])


def fail(ctx: click.Context, e: BaseException) -> None:
    """Print an error the way the console does and exit 1."""
    console = get_console()
    if isinstance(e, PipelineError):
        details = []
        for k in ("reference", "job", "step"):
            if getattr(e, k):
                details.append(f"{k}: {getattr(e, k)}")
        details.extend(f"{k}: {v}" for k, v in e.details.items())
        console.print_error(e.kind, e.message, details=details or None)
        if ctx.obj.get("debug", False):
            console.print_exception(e)
    else:
        console.print_exception(e)
    sys.exit(1)


def parse_pairs(pairs: Iterable[str], what: str) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint=what)
        out[key] = value
    return out


def parse_secrets(pairs: Iterable[str]) -> Dict[str, str]:
    """-s NAME=value, or -s NAME to read the value from the environment variable NAME."""
    out: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not key:
            raise click.BadParameter(f"expected NAME or NAME=VALUE, got {pair!r}", param_hint="--secret")
        if not sep:
            if key not in os.environ:
                raise click.BadParameter(f"environment variable {key} is not set", param_hint="--secret")
            value = os.environ[key]
        out[key] = value
    return out


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.option("--store", default=None, help="Local store directory (env: REUSECI_STORE)")
@click.option("--registry", default=None, help="Registry base URL; overrides --store (env: REUSECI_REGISTRY)")
@click.pass_context
def cli(ctx, debug, store, registry):
    """ReuseCI: versioned, reusable pipeline definitions."""
    settings = load_settings()
    set_console(Console(debug=debug))
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["settings"] = settings
    ctx.obj["store"] = store or settings.store
    ctx.obj["registry"] = registry or settings.registry


@cli.command()
@click.argument("paths", nargs=-1, required=True, type=click.Path(exists=True))
@click.pass_context
def publish(ctx, paths):
    """Publish definitions and bundles from YAML, JSON or Python files."""
    console = get_console()
    try:
        store = open_store(ctx)
        items = load_paths(paths)
        if not items:
            console.print_info("nothing to publish")
            return
        for item in items:
            created = item.reference not in store
            digest = store.publish(item)
            console.print_published(str(item.reference), digest, created)
    except (PipelineError, OSError) as e:
        fail(ctx, e)


@cli.command()
@click.argument("location")
@click.pass_context
def versions(ctx, location):
    """List the published versions of a location."""
    try:
        for v in open_store(ctx).versions(location):
            click.echo(v)
    except PipelineError as e:
        fail(ctx, e)


@cli.command()
@click.argument("reference")
@click.option("--resolved/--raw", default=False, help="Show the fully expanded form")
@click.pass_context
def show(ctx, reference, resolved):
    """Print a published definition or bundle as JSON."""
    try:
        resolver = Resolver(open_store(ctx))
        if resolved:
            data = resolver.resolve(reference).to_dict()
        else:
            published = resolver.fetch(reference)
            data = item_to_dict(published.item)
            data["digest"] = published.digest
        click.echo(json.dumps(data, indent=2, sort_keys=True))
    except PipelineError as e:
        fail(ctx, e)


@cli.command()
@click.argument("reference")
@click.pass_context
def graph(ctx, reference):
    """Print the job graph of a definition, level by level."""
    console = get_console()
    try:
        resolved = Resolver(open_store(ctx)).resolve_definition(reference)
        g = build_graph(resolved)
        console.print_plan(g.levels)
        for name in g.order:
            needs = g.needs(name)
            console.print_info(f"  {name} <- {', '.join(needs)}" if needs else f"  {name}")
    except PipelineError as e:
        fail(ctx, e)


@cli.command()
@click.argument("reference")
@click.option("-i", "--input", "inputs", multiple=True, help="Input binding KEY=VALUE (repeatable)")
@click.option("-s", "--secret", "secrets", multiple=True, help="Secret NAME=VALUE, or NAME to read $NAME")
@click.option("--workers", default=None, type=int, help="Max jobs running at once")
@click.option(
    "--halt-on-failure/--no-halt-on-failure",
    default=None,
    help="Skip all jobs not yet started after the first failure",
)
@click.option("--workdir", default=None, help="Directory steps run in (env: REUSECI_WORKDIR)")
@click.option("--lock", "lock_path", default=None, type=click.Path(), help="Lock file of reference digests")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the result as JSON")
@click.pass_context
def run(ctx, reference, inputs, secrets, workers, halt_on_failure, workdir, lock_path, as_json):
    """Resolve, bind and run a pipeline definition."""
    settings = ctx.obj["settings"]
    if as_json:
        set_console(Console(debug=ctx.obj["debug"], quiet=True))
    console = get_console()

    request = PipelineRequest(
        reference=reference,
        inputs=parse_pairs(inputs, "--input"),
        secrets=parse_secrets(secrets),
    )

    try:
        pins = read_lock(lock_path) if lock_path else None
        resolver = Resolver(open_store(ctx), pins=pins)
        prepared = PipelineRun.prepare(
            resolver,
            request,
            ShellExecutor(workdir or settings.workdir),
            coerce_inputs=True,
            max_workers=workers or settings.max_workers,
            halt_on_failure=settings.halt_on_failure if halt_on_failure is None else halt_on_failure,
        )
        if lock_path:
            write_lock(lock_path, resolver.pins())
            console.print_debug(f"wrote {lock_path}")
    except (PipelineError, OSError, ValueError) as e:
        fail(ctx, e)

    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="reuseci-run") as pool:
        fut = pool.submit(prepared.execute)
        interrupted = False
        try:
            result = fut.result()
        except KeyboardInterrupt:
            interrupted = True
            console.print_info("\nInterrupted by user, cancelling run")
            prepared.cancel()
            result = fut.result()

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        console.print_results(result)

    if interrupted:
        sys.exit(130)
    if not result.ok:
        sys.exit(1)


if __name__ == "__main__":
    cli()
