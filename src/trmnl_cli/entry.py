#!/usr/bin/env python3
# -*- coding: utf-8 -*-
import json
import logging
import os
import select
import signal
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Optional

import click
from rich.logging import RichHandler
from rich.markup import escape

from trmnl_cli import __version__
from trmnl_cli.client import WebhookClient
from trmnl_cli.config_store import ConfigStore, CONFIG_PATH
from trmnl_cli.display import (
    console,
    err_console,
    error_panel,
    format_entry,
    format_size_limit,
    format_validation,
)
from trmnl_cli.history import HistoryFilter, HistoryLog
from trmnl_cli.key_manager import compose_content
from trmnl_cli.utils import SendResult, TIER_LIMITS
from trmnl_cli.validator import create_payload, validate_payload
from trmnl_cli.webhook import WebhookDispatcher, WEBHOOK_ENV

STDIN_WAIT_SECONDS = 0.1
TIER_CHOICE = click.Choice(sorted(TIER_LIMITS))


class IsoDateTime(click.ParamType):
    name = "datetime"

    def convert(self, value, param, ctx):
        if isinstance(value, datetime):
            return value
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            self.fail(f"{value!r} is not an ISO-8601 date/time", param, ctx)


# ========== Helpers ==========
def _setup_logging(debug: bool):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


def _store(ctx) -> ConfigStore:
    return ctx.obj["store"]


def _history(store: ConfigStore) -> HistoryLog:
    settings = store.history_settings()
    return HistoryLog(settings.path, settings.max_size_mb)


def read_stdin(timeout: float = STDIN_WAIT_SECONDS) -> str:
    """Piped input, or "" when stdin is a terminal or nothing shows up within ``timeout``."""
    stream = click.get_text_stream("stdin")
    if stream.isatty():
        return ""
    try:
        ready, _, _ = select.select([stream], [], [], timeout)
    except (OSError, ValueError):
        # not selectable (in-memory stream, Windows pipe): just read it
        ready = [stream]
    if not ready:
        return ""
    return stream.read().strip()


def _collect_content(ctx, content: Optional[str], file_path: Optional[str], edit: bool) -> str:
    if content is not None:
        text = content
    elif file_path:
        try:
            return Path(file_path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            error_panel("Error reading file", f"{file_path}: {e}")
            ctx.exit(1)
    else:
        text = compose_content() if edit else read_stdin()

    if not text:
        error_panel("No content", "No content provided. Use --content, --file, --edit, or pipe content via stdin.")
        ctx.exit(1)
    return text


def _echo_json(data):
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _print_send_result(result: SendResult):
    v = result.validation
    if result.success:
        console.print(f"[ok]✓ Sent to TRMNL[/ok] ({escape(result.plugin or '')})")
        console.print(f"  Status: {result.status_code}")
        console.print(f"  Time: {result.duration_ms}ms")
        console.print(f"  Size: {v.size_bytes} bytes ({v.percent_used}% of limit)")
        return

    error_panel("Failed to send", result.error or "Request failed !")
    console.print()
    console.print("Validation:")
    console.print(format_validation(v))


# ========== CLI with Click ==========
@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path),
              envvar="TRMNL_CONFIG", default=CONFIG_PATH, show_default=True,
              help="Config file location.")
@click.option("--debug", "-d", is_flag=True, help="Start with debug logging.")
@click.version_option(__version__, prog_name="trmnl")
@click.pass_context
def cli(ctx, config_path, debug):
    """
    trmnl: send content to TRMNL e-ink displays from the command line.
    """
    signal.signal(signal.SIGINT, signal.SIG_DFL)
    _setup_logging(debug)
    ctx.obj = {"store": ConfigStore(config_path)}


@cli.command("send")
@click.option("--content", "-c", help="HTML content to send.")
@click.option("--file", "-f", "file_path", type=click.Path(dir_okay=False), help="Read content from file.")
@click.option("--edit", "-e", is_flag=True, help="Compose content in an interactive editor.")
@click.option("--plugin", "-p", "plugin_name", help="Send to this plugin instead of the default.")
@click.option("--webhook", "-w", "webhook_url", help="Override webhook URL.")
@click.option("--tier", "-t", type=TIER_CHOICE, help="Override tier for validation.")
@click.option("--skip-validation", is_flag=True, help="Send even if validation fails.")
@click.option("--skip-log", is_flag=True, help="Don't record this send in history.")
@click.option("--json", "as_json", is_flag=True, help="Output result as JSON.")
@click.pass_context
def send_cmd(ctx, content, file_path, edit, plugin_name, webhook_url, tier,
             skip_validation, skip_log, as_json):
    """Send content to a TRMNL display.

    \b
    Examples:
      trmnl send --content '<div class="layout">Hello</div>'
      trmnl send --file ./output.html --plugin office
      echo '{"merge_variables":{"content":"..."}}' | trmnl send
    """
    store = _store(ctx)
    payload = create_payload(_collect_content(ctx, content, file_path, edit))

    dispatcher = WebhookDispatcher(store, history=_history(store), client=WebhookClient())
    result = dispatcher.send(
        payload,
        plugin_name=plugin_name,
        webhook_url=webhook_url,
        tier=tier,
        skip_validation=skip_validation,
        skip_log=skip_log,
    )

    if as_json:
        _echo_json(result.to_dict())
    else:
        _print_send_result(result)
    ctx.exit(0 if result.success else 1)


@cli.command("validate")
@click.option("--content", "-c", help="HTML content to validate.")
@click.option("--file", "-f", "file_path", type=click.Path(dir_okay=False), help="Read content from file.")
@click.option("--edit", "-e", is_flag=True, help="Compose content in an interactive editor.")
@click.option("--tier", "-t", type=TIER_CHOICE, help="Override tier.")
@click.option("--json", "as_json", is_flag=True, help="Output result as JSON.")
@click.pass_context
def validate_cmd(ctx, content, file_path, edit, tier, as_json):
    """Validate a payload without sending it."""
    store = _store(ctx)
    payload = create_payload(_collect_content(ctx, content, file_path, edit))
    result = validate_payload(payload, tier or store.get_tier())

    if as_json:
        _echo_json(asdict(result))
    else:
        console.print(format_validation(result))
    ctx.exit(0 if result.valid else 1)


# ========== Config / Tier ==========
@cli.group("config", invoke_without_command=True)
@click.pass_context
def config_cmd(ctx):
    """Show configuration."""
    if ctx.invoked_subcommand is not None:
        return

    store = _store(ctx)
    cfg = store.load()

    console.print(f"Config file: {escape(str(store.path))}")
    console.print()
    console.print("Plugins:")
    if not cfg.plugins:
        console.print("  (none configured)")
        console.print()
        console.print("  Add a plugin:")
        console.print("    trmnl plugin add <name> <url>")
    for name, plugin in cfg.plugins.items():
        mark = " (default)" if name == cfg.default_plugin else ""
        console.print(f"  {escape(name)}{mark}")
        console.print(f"    url: {escape(plugin.url)}")
        if plugin.description:
            console.print(f"    desc: {escape(plugin.description)}")

    console.print()
    console.print(f"Tier: {cfg.tier}")
    console.print(f"  Limit: {format_size_limit(cfg.tier)}")
    console.print()
    settings = store.history_settings()
    console.print("History:")
    console.print(f"  path: {escape(settings.path)}")
    console.print(f"  max size: {settings.max_size_mb} MB")
    console.print()
    console.print("Environment:")
    console.print(f"  {WEBHOOK_ENV}: {escape(os.environ.get(WEBHOOK_ENV) or '(not set)')}")


@config_cmd.command("history")
@click.option("--path", "history_path", help="History file location (~ is expanded).")
@click.option("--max-size-mb", type=click.FloatRange(min=0, min_open=True), help="Warn when history grows past this size.")
@click.pass_context
def config_history_cmd(ctx, history_path, max_size_mb):
    """Show or change history settings."""
    store = _store(ctx)
    if history_path or max_size_mb is not None:
        store.set_history(path=history_path, max_size_mb=max_size_mb)
        console.print("[ok]✓ History settings updated[/ok]")
    settings = store.history_settings()
    console.print(f"path: {escape(settings.path)}")
    console.print(f"max size: {settings.max_size_mb} MB")


@cli.command("tier")
@click.argument("value", required=False, type=TIER_CHOICE)
@click.pass_context
def tier_cmd(ctx, value):
    """Get or set tier (free or plus)."""
    store = _store(ctx)
    if not value:
        tier = store.get_tier()
        console.print(f"Tier: {tier}")
        console.print(f"Limit: {format_size_limit(tier)}")
        return

    store.set_tier(value)
    console.print(f"[ok]✓ Tier set to: {value}[/ok]")


# ========== Plugins ==========
def _show_plugin_list(store: ConfigStore):
    plugins = store.list_plugins()
    if not plugins:
        console.print("No plugins configured.")
        console.print()
        console.print("Add a plugin:")
        console.print("  trmnl plugin add <name> <url>")
        return

    console.print("Plugins:")
    for name, plugin, is_default in plugins:
        mark = " ★" if is_default else ""
        console.print(f"  {escape(name)}{mark}")
        console.print(f"    {escape(plugin.url)}")
        if plugin.description:
            console.print(f"    {escape(plugin.description)}")
    console.print()
    console.print("★ = default plugin")


@cli.group("plugin", invoke_without_command=True)
@click.pass_context
def plugin_cmd(ctx):
    """Manage webhook plugins (lists them without a subcommand)."""
    if ctx.invoked_subcommand is None:
        _show_plugin_list(_store(ctx))


@plugin_cmd.command("add")
@click.argument("name")
@click.argument("url")
@click.option("--desc", "-d", "description", help="Plugin description.")
@click.option("--default", "make_default", is_flag=True, help="Set as default plugin.")
@click.pass_context
def plugin_add_cmd(ctx, name, url, description, make_default):
    """Add a plugin."""
    store = _store(ctx)
    store.set_plugin(name, url, description)
    console.print(f"[ok]✓ Added plugin: {escape(name)}[/ok]")
    if make_default:
        store.set_default_plugin(name)
        console.print("[ok]✓ Set as default[/ok]")


@click.command("rm")
@click.argument("name")
@click.pass_context
def plugin_rm_cmd(ctx, name):
    """Remove a plugin."""
    if not _store(ctx).remove_plugin(name):
        error_panel("Plugin not found", name)
        ctx.exit(1)
    console.print(f"[ok]✓ Removed plugin: {escape(name)}[/ok]")


@plugin_cmd.command("default")
@click.argument("name")
@click.pass_context
def plugin_default_cmd(ctx, name):
    """Set the default plugin."""
    if not _store(ctx).set_default_plugin(name):
        error_panel("Plugin not found", name)
        ctx.exit(1)
    console.print(f"[ok]✓ Default plugin: {escape(name)}[/ok]")


@click.command("set")
@click.argument("name")
@click.option("--url", "-u", help="New webhook URL.")
@click.option("--desc", "-d", "description", help="New description.")
@click.pass_context
def plugin_set_cmd(ctx, name, url, description):
    """Update a plugin's url or description."""
    if not _store(ctx).update_plugin(name, url=url, description=description):
        error_panel("Plugin not found", name)
        ctx.exit(1)
    console.print(f"[ok]✓ Updated plugin: {escape(name)}[/ok]")


@plugin_cmd.command("list")
@click.pass_context
def plugin_list_cmd(ctx):
    """List all plugins."""
    _show_plugin_list(_store(ctx))


plugin_cmd.add_command(plugin_rm_cmd)
plugin_cmd.add_command(plugin_rm_cmd, "remove")
plugin_cmd.add_command(plugin_set_cmd)
plugin_cmd.add_command(plugin_set_cmd, "update")


@cli.command("plugins")
@click.pass_context
def plugins_cmd(ctx):
    """List all plugins."""
    _show_plugin_list(_store(ctx))


# ========== History ==========
@cli.group("history", invoke_without_command=True)
@click.option("--last", "-n", type=click.IntRange(min=1), default=10, show_default=True, help="Show last N entries.")
@click.option("--today", is_flag=True, help="Show only today's entries.")
@click.option("--failed", is_flag=True, help="Show only failed sends.")
@click.option("--success", is_flag=True, help="Show only successful sends.")
@click.option("--since", type=IsoDateTime(), help="Entries at or after this time.")
@click.option("--until", type=IsoDateTime(), help="Entries at or before this time.")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON.")
@click.option("--verbose", "-v", is_flag=True, help="Show content preview.")
@click.pass_context
def history_cmd(ctx, last, today, failed, success, since, until, as_json, verbose):
    """View send history."""
    if ctx.invoked_subcommand is not None:
        return

    log = _history(_store(ctx))
    entries = log.query(HistoryFilter(
        last=last, today=today, failed=failed, success=success, since=since, until=until,
    ))

    if as_json:
        _echo_json([e.to_dict() for e in entries])
        return

    if not entries:
        console.print("No history entries found.")
        console.print(f"History file: {escape(str(log.path))}")
        return

    stats = log.stats()
    if stats:
        console.print(f"History: {stats.entries} total entries ({stats.size_mb} MB)")
        console.print()

    parts = [name for name, on in (("today", today), ("failed", failed), ("success", success)) if on]
    if since:
        parts.append(f"since {since.isoformat()}")
    if until:
        parts.append(f"until {until.isoformat()}")
    if parts:
        console.print(f"Filter: {', '.join(parts)}")
        console.print()

    console.print(f"Showing {len(entries)} entries (most recent first):")
    console.print()
    for entry in entries:
        console.print(format_entry(entry, verbose))


@history_cmd.command("clear")
@click.option("--confirm", is_flag=True, help="Confirm deletion.")
@click.pass_context
def history_clear_cmd(ctx, confirm):
    """Clear send history."""
    log = _history(_store(ctx))
    if not confirm:
        console.print("This will delete all history. Use --confirm to proceed.")
        console.print(f"History file: {escape(str(log.path))}")
        return

    if log.clear():
        console.print("[ok]✓ History cleared[/ok]")
    else:
        console.print("History file does not exist.")


@history_cmd.command("stats")
@click.pass_context
def history_stats_cmd(ctx):
    """Show history statistics."""
    log = _history(_store(ctx))
    stats = log.stats()
    if stats is None:
        console.print("No history file found.")
        return

    def pct(value):
        return "n/a" if value is None else f"{value:g}%"

    console.print("[info]History Statistics[/info]")
    console.print()
    console.print(f"File:     {escape(str(log.path))}")
    console.print(f"Size:     {stats.size_mb} MB")
    console.print()
    console.print(f"Total:    {stats.entries} sends")
    console.print(f"Success:  {stats.success_count} ({pct(stats.success_percent)})")
    console.print(f"Failed:   {stats.failure_count} ({pct(stats.failure_percent)})")
    console.print()
    console.print(f"Avg size:     {stats.avg_size_bytes} bytes")
    console.print(f"Avg duration: {stats.avg_duration_ms}ms")
    console.print()
    console.print(f"Today:     {stats.today} sends")
    console.print(f"This week: {stats.this_week} sends")


def main():
    cli(prog_name="trmnl")


if __name__ == "__main__":
    main()
