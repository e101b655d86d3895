from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.text import Text
from rich.theme import Theme

from trmnl_cli.utils import HistoryEntry, ValidationResult, TIER_LIMITS

# ========== UI Theme ==========
custom_theme = Theme({
    "ok":   "bold green",
    "warn": "bold yellow",
    "err":  "bold red",
    "info": "bold cyan",
})
console = Console(theme=custom_theme)
err_console = Console(theme=custom_theme, stderr=True)

PREVIEW_CHARS = 80


def error_panel(title: str, msg: str):
    err_console.print(Panel.fit(Text(msg, no_wrap=False), title=title, border_style="red"))


# ========== Formatting ==========
def format_size_limit(tier: str) -> str:
    limit = TIER_LIMITS[tier]
    return f"{limit // 1024} KB ({limit:,} bytes)"


def format_validation(result: ValidationResult) -> str:
    """Multi-line rich markup summary of a validation result."""
    status = "[ok]✓[/ok]" if result.valid else "[err]✗[/err]"
    size_kb = result.size_bytes / 1024
    limit_kb = result.limit_bytes / 1024

    lines = [
        f"{status} Payload: {result.size_bytes} bytes ({size_kb:.2f} KB)",
        f"  Tier: {result.tier} (limit: {limit_kb:.2f} KB)",
        f"  Used: {result.percent_used}% ({result.remaining_bytes} bytes remaining)",
    ]

    if result.errors:
        lines += ["", "[err]Errors:[/err]"]
        lines += [f"  [err]✗[/err] {escape(e)}" for e in result.errors]

    if result.warnings:
        lines += ["", "[warn]Warnings:[/warn]"]
        lines += [f"  [warn]⚠[/warn] {escape(w)}" for w in result.warnings]

    return "\n".join(lines)


def format_entry(entry: HistoryEntry, verbose: bool = False) -> str:
    status = "[ok]✓[/ok]" if entry.success else "[err]✗[/err]"
    when = entry.sent_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    line = f"{status} {when} | {entry.size_bytes / 1024:.2f} KB | {entry.duration_ms}ms"
    if entry.plugin:
        line += f" | {escape(entry.plugin)}"

    if not entry.success and entry.error:
        line += f" | {escape(entry.error)}"

    merge_variables = entry.payload.get("merge_variables") if isinstance(entry.payload, dict) else None
    content = merge_variables.get("content") if isinstance(merge_variables, dict) else None
    if verbose and isinstance(content, str) and content:
        preview = content[:PREVIEW_CHARS]
        ellipsis = "..." if len(content) > PREVIEW_CHARS else ""
        line += f"\n   {escape(preview)}{ellipsis}"

    return line
