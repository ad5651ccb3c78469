import argparse
import asyncio
import contextlib
import queue
from typing import Optional

from dotenv import load_dotenv
load_dotenv()

from rich.markup import escape
from rich.panel import Panel

from . import AGENT_VERSION
from .browser import DEBUG_PORT, connect_chrome, ensure_active_page, start_chrome_with_debug_port
from .config import (KEY_CHAT_LIMIT, KEY_MSG_LIMIT, KEY_WEBHOOK_URL, AgentSettings, JsonStore,
                     default_store)
from .console import console, set_debug
from .engine import OrchestrationEngine, RunResult, auto_responder_loop
from .progress import ConsoleSink, FanOutSink
from .surface import MessengerSurface

HELP = """Befehle (Beispiele):
  scanne [n]        -> die ersten n Chats bearbeiten (Standard: chatLimit)
  ungelesen         -> alle ungelesenen Chats bearbeiten (älteste zuerst)
  eins              -> genau einen ungelesenen Chat bearbeiten
  sammle [n]        -> Chats nur auslesen, nichts senden
  chats             -> Chatliste anzeigen
  titel             -> Titel des offenen Chats
  lese              -> Nachrichten des offenen Chats
  auto [an|aus]     -> Auto-Antworten umschalten
  webhook <url>     -> Antwort-Webhook setzen
  limit <n>         -> Nachrichten pro Chat
  anzahl <n>        -> Chats pro Durchlauf
  stopp             -> laufenden Durchlauf abbrechen
  hilfe             -> diese Hilfe anzeigen
  ende              -> beenden
"""


def _parse_int(arg: str) -> Optional[int]:
    try:
        value = int(arg)
    except (TypeError, ValueError):
        return None
    return value if value > 0 else None


def print_result(result: RunResult) -> None:
    if not result.started:
        return
    lines = [f"{cid}: {outcome}" for cid, outcome in result.outcomes.items()]
    status = "abgebrochen" if result.cancelled else "fertig"
    console.print(Panel.fit(escape("\n".join(lines) or "(keine Chats)"), title=f"Durchlauf {status}",
                            border_style="yellow" if result.cancelled else "green"))


def print_contexts(result: RunResult) -> None:
    for ctx in result.contexts:
        body = "\n".join(f"{m.sender.value}: {m.text}" for m in ctx.messages) or "[keine Nachrichten]"
        console.print(Panel.fit(escape(body), title=escape(f"{ctx.client_name} · {ctx.listing}"),
                                border_style="cyan"))


class CommandLoop:
    def __init__(self, engine: OrchestrationEngine, surface: MessengerSurface, store: JsonStore, commands):
        self.engine = engine
        self.surface = surface
        self.store = store
        self.commands = commands
        self.task: Optional[asyncio.Task] = None

    def _spawn(self, coro, on_done=print_result):
        if self.engine.state.busy:
            coro.close()
            console.print("[yellow]Es läuft bereits ein Durchlauf. 'stopp' bricht ihn ab.[/yellow]")
            return

        async def _run():
            try:
                on_done(await coro)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                console.print(f"[red]Fehler:[/red] {escape(str(e))}")

        self.task = asyncio.create_task(_run())

    async def _chats(self):
        chats = await self.surface.scan_conversations(self.engine.settings.discovery_buffer)
        if not chats:
            console.print("[yellow]Keine Chats gefunden.[/yellow]")
            return
        for i, chat in enumerate(chats):
            mark = "[bold green]●[/bold green] " if chat.unread else "  "
            console.print(f"{mark}[bold]{i:02d}[/bold]: {escape(chat.title)} [dim]({escape(chat.id)})[/dim]")

    async def _read_open_chat(self):
        title = await self.surface.read_title()
        messages = await self.surface.extract_messages(title, self.engine.settings.msg_limit)
        body = "\n".join(f"{m.sender.value}: {m.text}" for m in messages) or "[keine Nachrichten]"
        console.print(Panel.fit(escape(body), title=escape(title or "(ohne Titel)"), border_style="cyan"))

    def _set_auto(self, arg: str):
        if arg in ("an", "on"):
            self.engine.auto_mode = True
        elif arg in ("aus", "off"):
            self.engine.auto_mode = False
        else:
            self.engine.auto_mode = not self.engine.auto_mode
        console.print(f"[cyan]Auto-Antworten:[/cyan] {'AN' if self.engine.auto_mode else 'AUS'}")

    async def handle(self, raw: str) -> bool:
        """Einen Befehl ausführen; False beendet die Schleife."""
        cmd, _, arg = raw.strip().partition(" ")
        cmd, arg = cmd.lower(), arg.strip()
        settings = self.engine.settings

        if cmd in ("ende", "quit", "exit"):
            return False
        if cmd in ("hilfe", "help", "?"):
            console.print(Panel.fit(HELP, title="Hilfe", border_style="magenta"))
        elif cmd in ("stopp", "stop"):
            self.engine.cancel()
        elif cmd in ("scanne", "scan"):
            self._spawn(self.engine.run_scan(_parse_int(arg)))
        elif cmd in ("ungelesen", "unread"):
            self._spawn(self.engine.process_unread(_parse_int(arg)))
        elif cmd in ("eins", "one"):
            self._spawn(self.engine.process_single_unread())
        elif cmd in ("sammle", "collect"):
            self._spawn(self.engine.collect(_parse_int(arg)), on_done=print_contexts)
        elif cmd == "auto":
            self._set_auto(arg.lower())
        elif cmd == "webhook" and arg:
            self.store.set(KEY_WEBHOOK_URL, arg)
            settings.webhook_url = arg
            console.print(f"[green]Webhook gesetzt:[/green] {escape(arg)}")
        elif cmd in ("limit", "anzahl") and _parse_int(arg):
            value = _parse_int(arg)
            if cmd == "limit":
                self.store.set(KEY_MSG_LIMIT, value)
                settings.msg_limit = value
            else:
                self.store.set(KEY_CHAT_LIMIT, value)
                settings.chat_limit = value
            console.print(f"[green]{cmd} = {value}[/green]")
        elif cmd in ("chats", "titel", "lese"):
            if self.engine.state.busy:
                console.print("[yellow]Während eines Durchlaufs nicht möglich.[/yellow]")
            elif cmd == "chats":
                await self._chats()
            elif cmd == "titel":
                console.print(f"[bold]{escape(await self.surface.read_title() or '(ohne Titel)')}[/bold]")
            else:
                await self._read_open_chat()
        else:
            console.print("[red]Unbekannter Befehl. Tippe 'hilfe'.[/red]")
        return True

    async def run(self):
        auto_task = asyncio.create_task(auto_responder_loop(self.engine))
        try:
            while True:
                try:
                    msg = self.commands.get_nowait()
                except queue.Empty:
                    await asyncio.sleep(0.05)
                    continue
                if not msg.strip():
                    continue
                try:
                    if not await self.handle(msg):
                        break
                except Exception as e:
                    console.print(f"[red]Fehler:[/red] {escape(str(e))}")
        finally:
            self.engine.cancel()
            for task in (auto_task, self.task):
                if task is None:
                    continue
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task


# --------------------- main ---------------------------------------------------
async def main(argv: Optional[list[str]] = None):
    parser = argparse.ArgumentParser(prog="marketplace-chat-agent")
    parser.add_argument("--port", type=int, default=DEBUG_PORT)
    parser.add_argument("--no-restart", action="store_true", help="laufendes Chrome verwenden")
    parser.add_argument("--auto", action="store_true", help="Auto-Antworten beim Start aktivieren")
    parser.add_argument("--debug", action="store_true", help="Debug-Ausgaben")
    args = parser.parse_args(argv)
    if args.debug:
        set_debug(True)

    console.print(f"[bold green]Marketplace Bot Version {AGENT_VERSION}[/bold green]")

    store = default_store()
    settings = AgentSettings.from_store(store)
    console.print(f"[cyan]Webhook:[/cyan] {escape(settings.webhook_url)}")

    if not args.no_restart:
        start_chrome_with_debug_port(args.port)
    pw, browser, _ctx, page = await connect_chrome(args.port)

    # GUI erst nach der Verbindung (Tk-Thread)
    from .overlay import Overlay
    overlay = Overlay(auto_mode=args.auto)

    page = await ensure_active_page(page)
    surface = MessengerSurface(page, settings)
    engine = OrchestrationEngine(surface, settings, sink=FanOutSink(ConsoleSink(), overlay))
    engine.auto_mode = args.auto

    console.print(Panel.fit("Befehle im Overlay-Fenster eingeben (Enter = ausführen).",
                            title="GUI aktiv", border_style="magenta"))
    try:
        await CommandLoop(engine, surface, store, overlay.msg_queue).run()
    finally:
        await browser.close()
        await pw.stop()


def run():
    asyncio.run(main())
