"""
toolwarden CLI

Command-line interface for the mediation pipeline.

Commands:
    toolwarden route                  — Mediate one tool call read from stdin
    toolwarden check-command CMD      — Score a shell command
    toolwarden check-domain HOST      — Classify a host or URL
    toolwarden domains add|list       — Manage custom domain lists
    toolwarden score [--reset]        — Show or reset the session trust score
    toolwarden tools                  — List unknown tools seen this session
    toolwarden rules                  — List loaded custom rules
    toolwarden init                   — Write default config and domain lists

Usage as an agent pre-tool hook:
    echo '{"tool_name": "Bash", "tool_input": {"command": "ls"}}' | toolwarden route
    # exit 0 allow, 1 error, 2 block
"""

from __future__ import annotations

import json
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from toolwarden import __version__
from toolwarden.config import WardenConfig, default_config_path, load_config, write_default_config
from toolwarden.core.models import ExitCode, Verdict
from toolwarden.exceptions import ConfigLoadError, InjectionAttemptError, MalformedInputError, StateStoreError
from toolwarden.logging import configure_logging
from toolwarden.security.domains import DomainValidator, install_default_lists
from toolwarden.security.heuristics import EvasionDetector
from toolwarden.security.rules import CustomRuleSet, load_rules
from toolwarden.tools.router import HandlerRouter, MediationContext, parse_request

console = Console()
err_console = Console(stderr=True)

_VERDICT_COLORS = {Verdict.ALLOW: "green", Verdict.WARN: "yellow", Verdict.BLOCK: "bold red"}
_STATUS_COLORS = {
    "EXCELLENT": "green",
    "GOOD": "green",
    "WARNING": "yellow",
    "CRITICAL": "red",
    "BLOCKED": "bold red",
}


@click.group()
@click.version_option(version=__version__, prog_name="toolwarden")
@click.option("--config", "config_path", type=click.Path(dir_okay=False), default=None,
              help="Config file. Defaults to $TOOLWARDEN_CONFIG or ~/.toolwarden/config.json.")
@click.option("--session", "session_id", envvar="TOOLWARDEN_SESSION_ID", default=None,
              help="Session id. Defaults to $TOOLWARDEN_SESSION_ID, then 'default'.")
@click.option("--verbose", "-v", is_flag=True, help="Log at DEBUG level")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, session_id: str | None, verbose: bool) -> None:
    """toolwarden: safety mediation for AI agent tool calls."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["session_id"] = session_id
    ctx.obj["verbose"] = verbose


@cli.command()
@click.pass_context
def route(ctx: click.Context) -> None:
    """Mediate one tool call read from stdin."""
    raw = click.get_binary_stream("stdin").read()
    ctx.exit(_route(ctx, raw))


@cli.command("check-command")
@click.argument("command")
@click.pass_context
def check_command(ctx: click.Context, command: str) -> None:
    """Score a shell command with the evasion detector."""
    ctx.exit(_check_command(ctx, command))


@cli.command("check-domain")
@click.argument("host")
@click.pass_context
def check_domain(ctx: click.Context, host: str) -> None:
    """Classify a host or URL with the domain validator."""
    ctx.exit(_check_domain(ctx, host))


@cli.group()
def domains() -> None:
    """Manage custom domain lists."""


@domains.command("add")
@click.argument("host")
@click.option("--list", "list_type", type=click.Choice(["safe", "sensitive", "blocked"]),
              default="blocked", show_default=True, help="Target list")
@click.pass_context
def domains_add(ctx: click.Context, host: str, list_type: str) -> None:
    """Add HOST to a custom domain list."""
    ctx.exit(_domains_add(ctx, host, list_type))


@domains.command("list")
@click.pass_context
def domains_list(ctx: click.Context) -> None:
    """Show every loaded domain list entry."""
    _domains_list(ctx)


@cli.command()
@click.option("--reset", is_flag=True, help="Restore the starting score")
@click.pass_context
def score(ctx: click.Context, reset: bool) -> None:
    """Show the session trust score."""
    ctx.exit(_score(ctx, reset))


@cli.command()
@click.pass_context
def tools(ctx: click.Context) -> None:
    """List unknown tools seen in this session."""
    ctx.exit(_tools(ctx))


@cli.command()
@click.pass_context
def rules(ctx: click.Context) -> None:
    """List loaded custom rules."""
    _rules(ctx)


@cli.command()
@click.option("--force", is_flag=True, help="Overwrite the shipped system domain lists")
@click.pass_context
def init(ctx: click.Context, force: bool) -> None:
    """Write the default config file and system domain lists."""
    _init(ctx, force)


# ─── Implementations ───────────────────────────────────────


def _load(ctx: click.Context) -> WardenConfig:
    """Load config and configure logging once per invocation."""
    if "config" not in ctx.obj:
        try:
            config = load_config(ctx.obj["config_path"])
        except ConfigLoadError as e:
            err_console.print(f"[red]Config error:[/] {escape(str(e))}")
            ctx.exit(int(ExitCode.ERROR))
        level = "DEBUG" if ctx.obj["verbose"] else config.logging.level
        configure_logging(level=level, json_output=config.logging.json_output)
        ctx.obj["config"] = config
    return ctx.obj["config"]


def _session(ctx: click.Context, request_session: str | None = None) -> str:
    return request_session or ctx.obj["session_id"] or "default"


def _open_context(ctx: click.Context, session_id: str) -> MediationContext:
    config = _load(ctx)
    try:
        return MediationContext.from_config(config, session_id=session_id)
    except StateStoreError as e:
        err_console.print(f"[red]State error:[/] {escape(str(e))}")
        ctx.exit(int(ExitCode.ERROR))


def _route(ctx: click.Context, raw: bytes) -> int:
    _load(ctx)
    try:
        request = parse_request(raw)
    except MalformedInputError as e:
        click.echo(json.dumps({"decision": "error", "tool": "", "reason": str(e)}))
        click.echo(f"toolwarden: error: {e}", err=True)
        return int(ExitCode.ERROR)

    context = _open_context(ctx, _session(ctx, request.session_id))
    try:
        result = HandlerRouter(context).route(request)
    finally:
        context.close()

    sys.stdout.write(result.output)
    sys.stdout.flush()
    for warning in result.warnings:
        click.echo(f"toolwarden: warning: {warning}", err=True)
    if result.exit_status != ExitCode.ALLOW:
        label = "blocked" if result.blocked else "error"
        click.echo(f"toolwarden: {label}: {_reason(result.output)}", err=True)
    return int(result.exit_status)


def _check_command(ctx: click.Context, command: str) -> int:
    config = _load(ctx)
    custom = load_rules(config.heuristics.rules_file) if config.heuristics.rules_file else []
    detector = EvasionDetector(extra_rules=[CustomRuleSet(custom)])
    finding = detector.check(command)
    color = _VERDICT_COLORS[finding.verdict]
    console.print(f"  Verdict:    [{color}]{finding.verdict.name}[/]")
    console.print(f"  Confidence: {finding.confidence}")
    console.print(f"  Category:   {finding.category.value}")
    console.print(f"  Reason:     {finding.reason}", markup=False, highlight=False)
    return int(ExitCode.BLOCK) if finding.verdict == Verdict.BLOCK else int(ExitCode.ALLOW)


def _check_domain(ctx: click.Context, host: str) -> int:
    config = _load(ctx)
    validator = DomainValidator(config.domains.resolved_dir(), config.domains.default_policy)
    decision = validator.check(host)
    color = _VERDICT_COLORS[decision.verdict]
    console.print(f"  Host:    {decision.classification.host}", markup=False, highlight=False)
    console.print(f"  Tier:    {decision.classification.tier.value}")
    console.print(f"  Matched: {decision.classification.matched_rule or '-'}", markup=False, highlight=False)
    console.print(f"  Verdict: [{color}]{decision.verdict.name}[/]")
    if validator.degraded:
        console.print("  [yellow]Domain lists unavailable: TIER1-only mode[/]")
    return int(ExitCode.BLOCK) if decision.verdict == Verdict.BLOCK else int(ExitCode.ALLOW)


def _domains_add(ctx: click.Context, host: str, list_type: str) -> int:
    config = _load(ctx)
    validator = DomainValidator(config.domains.resolved_dir(), config.domains.default_policy)
    try:
        added = validator.add_custom(host, list_type)
    except InjectionAttemptError as e:
        err_console.print(f"[bold red]Rejected:[/] {escape(str(e))}", markup=True, highlight=False)
        return int(ExitCode.ERROR)
    except ValueError as e:
        err_console.print(f"[red]Error:[/] {escape(str(e))}", highlight=False)
        return int(ExitCode.ERROR)
    if added:
        console.print(f"  [green]+[/] Added {host} to the {list_type} list", highlight=False)
    else:
        console.print(f"  [dim]{host} already covered by the {list_type} list[/]", highlight=False)
    return int(ExitCode.ALLOW)


def _domains_list(ctx: click.Context) -> None:
    config = _load(ctx)
    validator = DomainValidator(config.domains.resolved_dir(), config.domains.default_policy)
    _print_header(f"Domain lists ({validator.config_dir})")
    for list_type, entries in validator.lists.as_dict().items():
        console.print(f"  [bold]{list_type}[/] ({len(entries)})")
        for entry in entries:
            console.print(f"    {entry}", markup=False, highlight=False)
    console.print(f"\n  Unclassified policy: {validator.default_policy}")


def _score(ctx: click.Context, reset: bool) -> int:
    context = _open_context(ctx, _session(ctx))
    try:
        scoring = context.scoring
        if reset:
            scoring.reset()
            console.print(f"  Trust score reset for session {context.session_id}", highlight=False)
        trust = scoring.get_trust()
        color = _STATUS_COLORS[trust.status.value]
        _print_header(f"Trust score: session {context.session_id}")
        console.print(f"  Score:  {trust.value}")
        console.print(f"  Status: [{color}]{trust.status.value}[/]")
        console.print(f"  Trend:  {scoring.trend()}")

        changes = scoring.history()[-10:]
        if changes:
            table = Table(title="Recent changes", show_lines=False)
            table.add_column("Time")
            table.add_column("Change", justify="right")
            table.add_column("Severity")
            table.add_column("Reason", overflow="fold")
            for change in reversed(changes):
                table.add_row(
                    change.timestamp[:19],
                    f"{change.previous} → {change.value}",
                    change.severity.value if change.severity else "-",
                    change.reason,
                )
            console.print(table)
    except StateStoreError as e:
        err_console.print(f"[red]State error:[/] {escape(str(e))}")
        return int(ExitCode.ERROR)
    finally:
        context.close()
    return int(ExitCode.ALLOW)


def _tools(ctx: click.Context) -> int:
    context = _open_context(ctx, _session(ctx))
    try:
        records = context.registry.all_unknown()
    except StateStoreError as e:
        err_console.print(f"[red]State error:[/] {escape(str(e))}")
        return int(ExitCode.ERROR)
    finally:
        context.close()

    _print_header(f"Unknown tools: session {context.session_id}")
    if not records:
        console.print("  No unknown tools seen.")
        return int(ExitCode.ALLOW)
    table = Table()
    table.add_column("Tool")
    table.add_column("Count", justify="right")
    table.add_column("First seen")
    table.add_column("Last seen")
    for record in records:
        table.add_row(record.name, str(record.count), record.first_seen[:19], record.last_seen[:19])
    console.print(table)
    return int(ExitCode.ALLOW)


def _rules(ctx: click.Context) -> None:
    config = _load(ctx)
    if not config.heuristics.rules_file:
        console.print("  No rules file configured (heuristics.rules_file).")
        return
    loaded = load_rules(config.heuristics.rules_file)
    _print_header(f"Custom rules ({config.heuristics.rules_file})")
    if not loaded:
        console.print("  No valid rules loaded.")
        return
    table = Table()
    table.add_column("Name")
    table.add_column("Action")
    table.add_column("Severity")
    table.add_column("Pattern", overflow="fold")
    for rule in loaded:
        table.add_row(rule.name, rule.action.value, rule.severity.value, rule.pattern)
    console.print(table)


def _init(ctx: click.Context, force: bool) -> None:
    config_path = ctx.obj["config_path"] or default_config_path()
    written = write_default_config(config_path)
    config = _load(ctx)
    console.print(f"  Config:  {written}", highlight=False)
    for path in install_default_lists(config.domains.resolved_dir(), overwrite=force):
        console.print(f"  [green]+[/] {path}", highlight=False)
    console.print(f"  Domain lists: {config.domains.resolved_dir()}", highlight=False)


def _print_header(title: str) -> None:
    """Print a formatted header."""
    console.print(f"\n  {'=' * 60}")
    console.print(f"  {title}", markup=False, highlight=False)
    console.print(f"  {'=' * 60}\n")


def _reason(output: str) -> str:
    try:
        return json.loads(output).get("reason", output)
    except (ValueError, AttributeError):
        return output


if __name__ == "__main__":
    cli()
