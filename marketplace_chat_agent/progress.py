from typing import Any, Iterable, Optional, Protocol

from rich.markup import escape
from rich.panel import Panel

from .console import console
from .models import ReplyItem


class ProgressSink(Protocol):
    def report(self, step: str, detail: Optional[dict] = None, countdown: Optional[int] = None) -> None:
        ...


class NullSink:
    def report(self, step: str, detail: Optional[dict] = None, countdown: Optional[int] = None) -> None:
        return None


def format_replies_for_preview(replies: Iterable[Any]) -> list[str]:
    out = []
    for r in replies:
        if isinstance(r, ReplyItem):
            out.append(r.preview())
        else:
            out.append(str(r))
    return out


def detail_lines(detail: Optional[dict]) -> list[str]:
    if not detail:
        return []
    lines = []
    for key, value in detail.items():
        if isinstance(value, (list, tuple)):
            lines.append(f"{key}:")
            lines.extend(f"  {v}" for v in value)
        else:
            lines.append(f"{key}: {value}")
    return lines


class ConsoleSink:
    """Fortschritt in der CMD-Ausgabe; Countdown-Ticks nur einmal pro Schritt."""

    def __init__(self):
        self._last_step: Optional[str] = None

    def report(self, step: str, detail: Optional[dict] = None, countdown: Optional[int] = None) -> None:
        if countdown is not None and step == self._last_step:
            return
        self._last_step = step
        lines = detail_lines(detail)
        suffix = f" [dim]({countdown}s)[/dim]" if countdown is not None else ""
        if lines:
            console.print(Panel.fit(escape("\n".join(lines)), title=f"{escape(step)}{suffix}", border_style="cyan"))
        else:
            console.print(f"[cyan]{escape(step)}[/cyan]{suffix}")


class FanOutSink:
    def __init__(self, *sinks):
        self.sinks = [s for s in sinks if s is not None]

    def report(self, step: str, detail: Optional[dict] = None, countdown: Optional[int] = None) -> None:
        for sink in self.sinks:
            try:
                sink.report(step, detail, countdown)
            except Exception as e:
                console.print(f"[yellow]Statusanzeige fehlgeschlagen:[/yellow] {e}")
