"""
terrastack — CLI entrypoint.

Usage:
    terrastack --help
    terrastack list --changed
    terrastack run -- terraform plan
    terrastack run-graph -o graph.dot
"""

from __future__ import annotations

import json
import posixpath
import sys
from pathlib import Path

import click

from terrastack import __version__
from terrastack.core.config.loader import automation_mode
from terrastack.core.observability.logging_config import resolve_level, setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="terrastack")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--chdir",
    "-C",
    "chdir",
    type=click.Path(exists=True, file_okay=False),
    default=None,
    help="Run as if started in this directory.",
)
@click.option("--automation", is_flag=True, help="Automation mode (also TERRASTACK_AUTOMATION / CI).")
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    chdir: str | None,
    automation: bool,
) -> None:
    """terrastack — orchestrate commands across infrastructure stacks."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet
    ctx.obj["debug"] = debug
    ctx.obj["start_dir"] = Path(chdir).resolve() if chdir else Path.cwd()
    ctx.obj["automation"] = automation_mode(automation)

    # ── Logging setup (once, at process start) ──────────────────
    if debug:
        level = "DEBUG"
    elif verbose:
        level = "INFO"
    elif quiet:
        level = "ERROR"
    else:
        level = None

    setup_logging(level=resolve_level(level))


# ── Shared options ──────────────────────────────────────────────


def selection_options(func):
    """Attach the stack selection flags to a command."""
    options = [
        click.option("--changed", is_flag=True, help="Only stacks changed against the base ref."),
        click.option("--git-change-base", "base_ref", default=None, help="Base ref for --changed."),
        click.option("--tags", "tags", multiple=True,
                     help="Tag filter; a,b means a AND b, repeat the flag for OR."),
        click.option("--no-tags", "no_tags", multiple=True,
                     help="Exclude stacks having any of these tags (a,b)."),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _request(changed: bool, base_ref: str | None, tags, no_tags, recursive: bool = True):
    from terrastack.core.use_cases.workspace import SelectionRequest

    return SelectionRequest(
        tags=tuple(tags),
        no_tags=tuple(no_tags),
        changed=changed,
        base_ref=base_ref,
        recursive=recursive,
    )


def _fail(message: str) -> None:
    click.secho(f"❌ {message}", fg="red", err=True)
    sys.exit(1)


def _display(path: str, working_dir: str) -> str:
    """Stack path relative to the working directory."""
    return posixpath.relpath(path, working_dir)


# ── list ────────────────────────────────────────────────────────


@cli.command("list")
@selection_options
@click.option("--why", is_flag=True, help="Show why each stack changed (needs --changed).")
@click.option("--run-order", "ordered", is_flag=True, help="List in run order.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_cmd(
    ctx: click.Context,
    changed: bool,
    base_ref: str | None,
    tags: tuple[str, ...],
    no_tags: tuple[str, ...],
    why: bool,
    ordered: bool,
    as_json: bool,
) -> None:
    """List the selected stacks.

    Examples:

        terrastack list

        terrastack list --changed --why

        terrastack list --tags prod,network --no-tags legacy
    """
    from terrastack.core.use_cases.list_stacks import list_stacks

    if why and not changed:
        raise click.UsageError("--why requires --changed")

    result = list_stacks(
        start_dir=ctx.obj["start_dir"],
        request=_request(changed, base_ref, tags, no_tags),
        ordered=ordered,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        _fail(result.error)

    for stack in result.stacks:
        display = _display(stack.path, result.working_dir)
        if why:
            click.echo(f"{display} - {result.reason(stack)}")
        else:
            click.echo(display)


# ── run ─────────────────────────────────────────────────────────


@cli.command(context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False})
@selection_options
@click.option("--reverse", is_flag=True, help="Run in reverse order.")
@click.option("--continue-on-error", is_flag=True, help="Keep going when a stack fails.")
@click.option("--no-recursive", is_flag=True, help="Only the stack in the working directory.")
@click.option("--dry-run", is_flag=True, help="Show what would run without running it.")
@click.option("--require-ids", is_flag=True, help="Fail when a selected stack has no id.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def run(
    ctx: click.Context,
    changed: bool,
    base_ref: str | None,
    tags: tuple[str, ...],
    no_tags: tuple[str, ...],
    reverse: bool,
    continue_on_error: bool,
    no_recursive: bool,
    dry_run: bool,
    require_ids: bool,
    as_json: bool,
    command: tuple[str, ...],
) -> None:
    """Run a command in every selected stack, in dependency order.

    Examples:

        terrastack run -- terraform init

        terrastack run --changed --continue-on-error -- terraform apply

        terrastack run --reverse -- terraform destroy
    """
    from terrastack.adapters.shell.command import ShellCommandAdapter
    from terrastack.core.engine.executor import InterruptChannel, SignalListener, StackRunHooks
    from terrastack.core.use_cases.run import run_command

    quiet = ctx.obj.get("quiet", False)
    hooks = StackRunHooks()
    if not as_json and not quiet:
        hooks.before = lambda stack: click.secho(f"🔹 {stack.path}", fg="cyan", err=True)
        hooks.after = _print_receipt

    # With --json, stdout is reserved for the report
    launcher = ShellCommandAdapter(stdout=2) if as_json else ShellCommandAdapter()

    channel = InterruptChannel()
    with SignalListener(channel):
        result = run_command(
            list(command),
            start_dir=ctx.obj["start_dir"],
            request=_request(changed, base_ref, tags, no_tags, recursive=not no_recursive),
            reverse=reverse,
            continue_on_error=continue_on_error,
            dry_run=dry_run,
            require_ids=require_ids,
            automation=ctx.obj.get("automation", False),
            launcher=launcher,
            interrupts=channel,
            hooks=hooks,
        )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(result.exit_code)

    if result.error:
        _fail(result.error)

    report = result.report
    if report is None:
        _fail("run produced no report")

    if not quiet:
        status_color = {"ok": "green", "partial": "yellow", "failed": "red"}.get(
            report.status, "white"
        )
        mode_label = "[dry-run] " if dry_run else ""
        click.secho(
            f"\n   {mode_label}Result: {report.succeeded}/{report.total} succeeded"
            f", {report.failed} failed, {report.canceled} canceled",
            fg=status_color,
            bold=True,
            err=True,
        )

    sys.exit(result.exit_code)


def _print_receipt(stack, receipt) -> None:
    timing = f" ({receipt.duration_ms}ms)" if receipt.duration_ms else ""
    if receipt.ok:
        click.secho(f"   ✓ {stack.path}{timing}", fg="green", err=True)
    elif receipt.failed:
        click.secho(f"   ✗ {stack.path}{timing} — {receipt.error}", fg="red", err=True)
    else:
        click.secho(f"   ⊘ {stack.path} ({receipt.status.value}: {receipt.error})", fg="yellow", err=True)


# ── run-order / run-graph ───────────────────────────────────────


@cli.command("run-order")
@selection_options
@click.option("--reverse", is_flag=True, help="Show the reverse order.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def run_order_cmd(
    ctx: click.Context,
    changed: bool,
    base_ref: str | None,
    tags: tuple[str, ...],
    no_tags: tuple[str, ...],
    reverse: bool,
    as_json: bool,
) -> None:
    """Print the order stacks would run in."""
    from terrastack.core.use_cases.order import compute_order

    result = compute_order(
        start_dir=ctx.obj["start_dir"],
        request=_request(changed, base_ref, tags, no_tags),
        reverse=reverse,
    )

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    if result.error:
        _fail(result.error)

    for stack in result.stacks:
        click.echo(stack.path)


@cli.command("run-graph")
@selection_options
@click.option(
    "--label",
    type=click.Choice(["basename", "stack.name", "stack.dir"]),
    default="basename",
    help="Node label.",
)
@click.option("--output", "-o", "output", type=click.Path(dir_okay=False), default=None,
              help="Write the graph to a file instead of stdout.")
@click.pass_context
def run_graph_cmd(
    ctx: click.Context,
    changed: bool,
    base_ref: str | None,
    tags: tuple[str, ...],
    no_tags: tuple[str, ...],
    label: str,
    output: str | None,
) -> None:
    """Print the dependency graph in DOT.  Cycle edges are red."""
    from terrastack.core.use_cases.order import compute_graph

    result = compute_graph(
        start_dir=ctx.obj["start_dir"],
        request=_request(changed, base_ref, tags, no_tags),
        label=label,
    )

    if result.error:
        _fail(result.error)

    if result.cycle:
        click.secho(f"⚠ cycle detected: {' -> '.join(result.cycle)}", fg="yellow", err=True)

    if output:
        Path(output).write_text(result.dot, encoding="utf-8")
        click.secho(f"✓ Graph written to {output}", fg="green", err=True)
    else:
        click.echo(result.dot, nl=False)


# ── create / trigger ────────────────────────────────────────────


@cli.command()
@click.argument("path", type=click.Path(file_okay=False))
@click.option("--id", "stack_id", default=None, help="Stack id (default: random UUID).")
@click.option("--name", default="", help="Stack name (default: directory name).")
@click.option("--description", default="", help="Stack description.")
@click.option("--tags", multiple=True, help="Tag (repeatable).")
@click.option("--after", multiple=True, help="Run after this stack or tag:query (repeatable).")
@click.option("--before", multiple=True, help="Run before this stack or tag:query (repeatable).")
@click.option("--ignore-existing", is_flag=True, help="Do nothing if the stack exists.")
@click.pass_context
def create(
    ctx: click.Context,
    path: str,
    stack_id: str | None,
    name: str,
    description: str,
    tags: tuple[str, ...],
    after: tuple[str, ...],
    before: tuple[str, ...],
    ignore_existing: bool,
) -> None:
    """Create a new stack in PATH."""
    from terrastack.core.use_cases.create import create_stack

    result = create_stack(
        Path(path),
        start_dir=ctx.obj["start_dir"],
        stack_id=stack_id,
        name=name,
        description=description,
        tags=tags,
        after=after,
        before=before,
        ignore_existing=ignore_existing,
    )

    if result.error:
        _fail(result.error)

    if not ctx.obj.get("quiet"):
        if result.created:
            click.secho(f"✓ Created stack {result.path}", fg="green")
        else:
            click.secho(f"⊘ Stack {result.path} already exists", fg="yellow")


@cli.command()
@click.argument("path", type=click.Path(file_okay=False))
@click.option("--reason", default="", help="Why the stack is triggered.")
@click.option("--ignore-change", "ignore", is_flag=True,
              help="Keep the stack out of the changed set instead.")
@click.pass_context
def trigger(ctx: click.Context, path: str, reason: str, ignore: bool) -> None:
    """Mark the stack in PATH as changed for the next --changed run."""
    from terrastack.core.use_cases.create import trigger_stack

    result = trigger_stack(Path(path), start_dir=ctx.obj["start_dir"], reason=reason, ignore=ignore)

    if result.error:
        _fail(result.error)

    if not ctx.obj.get("quiet"):
        click.secho(f"✓ Triggered stack {result.path}: {result.file}", fg="green")


if __name__ == "__main__":
    cli()
