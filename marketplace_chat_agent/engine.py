import asyncio
from dataclasses import dataclass, field
from typing import Optional

from rich.markup import escape

from .config import AgentSettings
from .console import console, debug_log
from .delivery import ReplyDeliveryAgent
from .images import Relay
from .models import ConversationContext, ConversationSummary
from .progress import NullSink, ProgressSink, format_replies_for_preview
from .reply_service import request_reply
from .state import RunState
from .waiting import cancellable_pause, countdown_seconds

# Ergebnis eines einzelnen Chats
DELIVERED = "delivered"
SKIPPED   = "skipped"
FAILED    = "failed"
CANCELLED = "cancelled"
COLLECTED = "collected"

PREVIEW_MESSAGES = 5


@dataclass
class RunResult:
    started: bool
    opened: list[str] = field(default_factory=list)
    outcomes: dict[str, str] = field(default_factory=dict)
    contexts: list[ConversationContext] = field(default_factory=list)
    cancelled: bool = False
    reason: str = ""

    @property
    def delivered(self) -> list[str]:
        return [cid for cid, outcome in self.outcomes.items() if outcome == DELIVERED]


class OrchestrationEngine:
    """Sequenzieller Ablauf: Chats finden → öffnen → extrahieren → Antwort
    anfordern → Vorschau (abbrechbar) → zustellen → Pause.

    Höchstens ein Durchlauf gleichzeitig; ein zweiter Start wird sofort abgelehnt.
    """

    def __init__(self, surface, settings: Optional[AgentSettings] = None,
                 sink: Optional[ProgressSink] = None, run_state: Optional[RunState] = None,
                 reply_client=request_reply, relay: Optional[Relay] = None):
        self.surface = surface
        self.settings = settings or AgentSettings()
        self.sink = sink or NullSink()
        self.state = run_state or RunState()
        self.reply_client = reply_client
        self.relay = relay
        self.replies_sent = 0
        self.auto_mode = False

    # --- Hilfen ------------------------------------------------------------
    def _report(self, step: str, detail: Optional[dict] = None, countdown: Optional[int] = None) -> None:
        try:
            self.sink.report(step, detail, countdown)
        except Exception as e:
            debug_log("Statusanzeige fehlgeschlagen", e)

    def _stopped(self) -> bool:
        return self.state.should_stop()

    async def _pause(self, seconds: float, step: str, detail: Optional[dict] = None) -> bool:
        return await cancellable_pause(
            seconds,
            self._stopped,
            lambda remaining: self._report(step, detail, countdown_seconds(remaining)),
            self.settings.tick_interval,
        )

    def _delivery_agent(self) -> ReplyDeliveryAgent:
        s = self.settings
        return ReplyDeliveryAgent(
            self.surface.simulator,
            self._stopped,
            relay=self.relay,
            composer_settle=s.composer_settle,
            attachment_timeout=s.attachment_timeout,
            poll_interval=s.poll_interval,
        )

    def cancel(self) -> None:
        if not self.state.busy:
            return
        console.print("[yellow]Abbruch angefordert – stoppe nach dem aktuellen Schritt.[/yellow]")
        self.state.request_stop()
        self._report("Abbruch angefordert")

    def _reject(self, mode: str) -> RunResult:
        console.print(f"[yellow]Es läuft bereits ein Durchlauf – '{mode}' abgelehnt.[/yellow]")
        self._report("Bereits aktiv", {"Modus": mode})
        return RunResult(started=False, reason="busy")

    async def _finish(self, result: RunResult) -> None:
        if self._stopped():
            result.cancelled = True
            await self._delivery_agent().clear_composer()
            self._report("Abgebrochen", {"Bearbeitet": len(result.opened)})
        elif result.reason != "no-unread":
            self._report("Fertig", {"Bearbeitet": len(result.opened), "Antworten gesendet": self.replies_sent})
        self.state.reset()

    # --- Einzelner Chat ----------------------------------------------------
    async def _open_and_extract(self, chat: ConversationSummary, position: str):
        self._report("Öffne Chat", {"Chat": chat.title, "Position": position})
        opened = await self.surface.open_conversation(chat.id)
        if not opened:
            console.print(f"[yellow]Chat {escape(chat.id)} nicht vollständig geladen.[/yellow]")

        current = self.surface.current_chat_id()
        if current and current != chat.id:
            console.print(
                f"[yellow]Falscher Chat offen ({escape(current)} statt {escape(chat.id)}) – überspringe.[/yellow]"
            )
            return None, []

        title = (await self.surface.read_title()) or chat.title
        if self._stopped():
            return None, []
        self._report("Extrahiere Nachrichten", {"Chat": title})
        messages = await self.surface.extract_messages(title, self.settings.msg_limit)
        return title, messages

    async def _request(self, context: ConversationContext):
        token = self.state.new_abort_token()
        try:
            return await self.reply_client(
                context,
                self.settings.webhook_url,
                abort=token,
                timeout=self.settings.request_timeout,
            )
        finally:
            self.state.release_abort_token()

    async def _deliver_all(self, items, title: str) -> str:
        agent = self._delivery_agent()
        sent_any = False
        for i, item in enumerate(items):
            if i and not await self._pause(self.settings.item_gap, "Nächste Antwort", {"Chat": title}):
                return CANCELLED
            self._report("Sende Antwort", {"Chat": title, "Antwort": item.preview()})
            ok = await agent.deliver(item)
            if self._stopped():
                return CANCELLED
            if ok:
                sent_any = True
                self.replies_sent += 1
                continue
            what = "Bildantwort" if item.is_image else "Textantwort"
            console.print(f"[yellow]{what} konnte nicht gesendet werden ({escape(title)}).[/yellow]")
            self._report(f"{what} konnte nicht gesendet werden", {"Chat": title})
        return DELIVERED if sent_any else FAILED

    async def _process_chat(self, chat: ConversationSummary, position: str, result: RunResult) -> str:
        result.opened.append(chat.id)
        title, messages = await self._open_and_extract(chat, position)
        if self._stopped():
            return CANCELLED
        if title is None:
            return SKIPPED
        if not messages:
            console.print(f"[yellow]Keine Nachrichten in '{escape(title)}' – überspringe.[/yellow]")
            self._report("Keine Nachrichten", {"Chat": title})
            return SKIPPED

        context = ConversationContext.build(chat, messages, title)
        self._report("Warte auf Antwort", {"Chat": title, "Nachrichten": len(messages)})
        replies = await self._request(context)
        if self._stopped():
            return CANCELLED
        if not replies:
            return SKIPPED

        preview = {
            "Chat": title,
            "Nachrichten": [f"{m.sender.value}: {m.text}" for m in messages[-PREVIEW_MESSAGES:]],
            "Antwort": format_replies_for_preview(replies),
        }
        if not await self._pause(self.settings.preview_seconds, "Vorschau", preview):
            return CANCELLED
        return await self._deliver_all(replies, title)

    async def _traverse(self, candidates: list[ConversationSummary], result: RunResult) -> None:
        total = len(candidates)
        for idx, chat in enumerate(candidates):
            if self._stopped():
                break
            position = f"{idx + 1}/{total}"
            console.print(f"[cyan]({position}) Öffne Chat:[/cyan] {escape(chat.title or chat.id)}")
            try:
                outcome = await self._process_chat(chat, position, result)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                # Fehler eines Chats beenden nie den ganzen Durchlauf
                console.print(f"[red]Fehler bei Chat {escape(chat.id)}:[/red] {escape(str(e))}")
                outcome = FAILED
            result.outcomes[chat.id] = outcome
            if outcome == CANCELLED or self._stopped():
                break
            if idx + 1 < total:
                if not await self._pause(self.settings.chat_delay, "Pause bis zum nächsten Chat"):
                    break

    def _begin_cycle(self) -> None:
        self.state.stop_requested = False
        self.state.is_cycling = True

    # --- Betriebsarten -------------------------------------------------------
    async def run_scan(self, chat_limit: Optional[int] = None) -> RunResult:
        """Massen-Modus: die ersten `chat_limit` Chats der Liste bearbeiten."""
        if self.state.busy:
            return self._reject("scan")
        self._begin_cycle()
        result = RunResult(started=True)
        try:
            limit = int(chat_limit or self.settings.chat_limit)
            buffer = max(self.settings.discovery_buffer, limit)
            self._report("Suche Chats", {"Angefordert": limit})
            candidates = (await self.surface.scan_conversations(buffer))[:limit]
            console.print(f"[cyan]Bearbeite {len(candidates)} Chats.[/cyan]")
            await self._traverse(candidates, result)
        finally:
            await self._finish(result)
        return result

    async def process_unread(self, chat_limit: Optional[int] = None) -> RunResult:
        """Ungelesen-Modus: nur markierte Chats, älteste Markierung zuerst."""
        if self.state.busy:
            return self._reject("unread")
        self._begin_cycle()
        result = RunResult(started=True)
        try:
            limit = int(chat_limit or self.settings.chat_limit)
            buffer = max(self.settings.discovery_buffer, limit)
            self._report("Suche ungelesene Chats")
            chats = await self.surface.scan_conversations(buffer)
            # Liste ist neueste zuerst → umdrehen, damit die älteste Markierung vorne steht
            candidates = list(reversed([c for c in chats if c.unread]))[:limit]
            if not candidates:
                self._report("Keine ungelesenen Chats")
            await self._traverse(candidates, result)
        finally:
            await self._finish(result)
        return result

    async def process_single_unread(self) -> RunResult:
        """Genau einen (den ältesten) ungelesenen Chat bearbeiten."""
        if self.state.busy:
            return self._reject("single-unread")
        self.state.stop_requested = False
        self.state.is_processing_single_unread = True
        result = RunResult(started=True)
        try:
            chats = await self.surface.scan_conversations(self.settings.discovery_buffer)
            unread = [c for c in chats if c.unread]
            if not unread:
                debug_log("Keine ungelesenen Chats")
                result.reason = "no-unread"
                return result
            chat = unread[-1]
            try:
                outcome = await self._process_chat(chat, "1/1", result)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                console.print(f"[red]Fehler bei Chat {escape(chat.id)}:[/red] {escape(str(e))}")
                outcome = FAILED
            result.outcomes[chat.id] = outcome
        finally:
            await self._finish(result)
        return result

    async def collect(self, chat_limit: Optional[int] = None) -> RunResult:
        """Nur lesen: Kontexte der ersten Chats sammeln, nichts senden."""
        if self.state.busy:
            return self._reject("collect")
        self._begin_cycle()
        result = RunResult(started=True)
        try:
            limit = int(chat_limit or self.settings.chat_limit)
            candidates = (await self.surface.scan_conversations(max(self.settings.discovery_buffer, limit)))[:limit]
            for idx, chat in enumerate(candidates):
                if self._stopped():
                    break
                result.opened.append(chat.id)
                try:
                    title, messages = await self._open_and_extract(chat, f"{idx + 1}/{len(candidates)}")
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    console.print(f"[red]Fehler bei Chat {escape(chat.id)}:[/red] {escape(str(e))}")
                    result.outcomes[chat.id] = FAILED
                    continue
                if title is not None:
                    result.contexts.append(ConversationContext.build(chat, messages, title))
                    result.outcomes[chat.id] = COLLECTED
                if idx + 1 < len(candidates):
                    if not await self._pause(self.settings.chat_delay, "Pause bis zum nächsten Chat"):
                        break
        finally:
            await self._finish(result)
        return result


# --------------------- Auto-Responder ----------------------------------------
async def auto_responder_loop(engine: OrchestrationEngine):
    """Hintergrund-Task: bearbeitet bei aktivem Auto-Modus regelmäßig den ältesten ungelesenen Chat."""
    while True:
        try:
            if engine.auto_mode and not engine.state.busy:
                result = await engine.process_single_unread()
                if result.delivered:
                    console.print(f"[green]Auto-Antwort gesendet:[/green] {', '.join(result.delivered)}")
            await asyncio.sleep(engine.settings.auto_poll_seconds)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            console.print(f"[yellow]Auto-Responder Warnung:[/yellow] {e}")
            await asyncio.sleep(engine.settings.auto_poll_seconds)
