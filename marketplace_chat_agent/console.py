import os
from typing import Any

from rich.console import Console
from rich.markup import escape

console = Console()

DEBUG = os.getenv("MP_DEBUG", "").strip().lower() in ("1", "true", "yes", "on")


def set_debug(enabled: bool) -> None:
    global DEBUG
    DEBUG = bool(enabled)


def debug_log(message: str, data: Any = None) -> None:
    if not DEBUG:
        return
    suffix = f" [dim]{escape(str(data))}[/dim]" if data is not None else ""
    console.print(f"[magenta]\\[Marketplace Bot][/magenta] {escape(message)}{suffix}")
