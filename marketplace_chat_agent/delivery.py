import asyncio
from enum import Enum
from typing import Callable, Optional

from .console import console, debug_log
from .images import ImageFetchError, ImagePayload, Relay, resolve_image
from .models import ReplyItem
from .waiting import wait_until

COMPOSER_SELECTORS = [
    "div[role='textbox'][contenteditable='true']",
    "[contenteditable='true'][aria-label*='mensaje' i]",
    "[contenteditable='true'][aria-label*='message' i]",
    "[contenteditable='true'][data-lexical-editor='true']",
]
FILE_INPUT_SELECTOR = "input[type='file']"
ATTACH_BUTTON_SELECTOR = (
    "[aria-label*='Attach a file' i], [aria-label*='Attach files' i], "
    "[aria-label*='Adjuntar' i], [aria-label*='Anhängen' i]"
)
ATTACHMENT_PREVIEW_SELECTOR = (
    "[aria-label*='Remove attachment' i], [aria-label*='Quitar archivo adjunto' i], "
    "img[src^='blob:']"
)

_NOTIFY_INPUT_JS = r"""
(el) => {
  el.dispatchEvent(new InputEvent('input', {bubbles: true}));
  el.dispatchEvent(new Event('change', {bubbles: true}));
}
"""


# --------------------- Eingabe-Simulation (Playwright) -----------------------
async def _focus_locator_with_retries(loc, attempts: int = 3, delay: float = 0.25) -> bool:
    for attempt in range(attempts):
        try:
            await loc.scroll_into_view_if_needed()
        except Exception:
            pass
        try:
            await loc.click()
            return True
        except Exception:
            if attempt + 1 < attempts:
                await asyncio.sleep(delay)
    return False


class PageInputSimulator:
    """Minimal nötige Eingabe-Events, damit der Messenger Inhalte als 'gesendet' behandelt."""

    def __init__(self, page):
        self.page = page
        self._composer = None

    async def _find_composer(self):
        for sel in COMPOSER_SELECTORS:
            loc = self.page.locator(sel).last
            try:
                if await loc.count():
                    return loc
            except Exception:
                continue
        return None

    async def focus(self) -> bool:
        self._composer = await self._find_composer()
        if self._composer is None:
            return False
        return await _focus_locator_with_retries(self._composer)

    async def clear(self) -> None:
        mod = "Meta" if await self._is_mac() else "Control"
        await self.page.keyboard.press(f"{mod}+A")
        await self.page.keyboard.press("Backspace")

    async def insert_text(self, text: str) -> None:
        # Ein "\n" wird vom Composer ignoriert → jede Zeile als eigener Block (Shift+Enter)
        lines = text.replace("\r\n", "\n").split("\n")
        for i, line in enumerate(lines):
            if i:
                await self.page.keyboard.press("Shift+Enter")
            if line:
                await self.page.keyboard.insert_text(line)
        if self._composer is not None:
            try:
                await self._composer.evaluate(_NOTIFY_INPUT_JS)
            except Exception as e:
                debug_log("input/change-Events nicht auslösbar", e)

    async def submit(self) -> None:
        await self.page.keyboard.press("Enter")

    async def attach_file(self, payload: ImagePayload) -> bool:
        inputs = self.page.locator(FILE_INPUT_SELECTOR)
        if not await inputs.count():
            button = self.page.locator(ATTACH_BUTTON_SELECTOR).first
            if await button.count():
                try:
                    await button.click()
                except Exception as e:
                    debug_log("Anhängen-Button nicht klickbar", e)
            if not await wait_until(lambda: self._has(FILE_INPUT_SELECTOR), 0.1, 2.0):
                return False
        try:
            # set_input_files löst input/change selbst aus
            await inputs.first.set_input_files(payload.as_file_payload())
        except Exception as e:
            console.print(f"[yellow]Datei konnte nicht angehängt werden:[/yellow] {e}")
            return False
        return True

    async def attachment_preview_present(self) -> bool:
        return await self._has(ATTACHMENT_PREVIEW_SELECTOR)

    async def _has(self, selector: str) -> bool:
        return await self.page.locator(selector).count() > 0

    async def _is_mac(self) -> bool:
        try:
            return bool(await self.page.evaluate("() => /Mac/i.test(navigator.platform)"))
        except Exception:
            return False


# --------------------- Zustandsautomat ----------------------------------------
class DeliveryState(str, Enum):
    IDLE = "idle"
    FOCUSED = "focused"
    CLEARED = "cleared"
    INSERTED = "inserted"
    SUBMITTED = "submitted"


class ReplyDeliveryAgent:
    """Idle → Focused → Cleared → Inserted → Submitted; bei Stopp zurück nach Idle.

    Keine eingebaute Idempotenz: jeder Aufruf sendet erneut.
    """

    def __init__(self, simulator, should_stop: Callable[[], bool], relay: Optional[Relay] = None,
                 composer_settle: float = 0.5, attachment_timeout: float = 4.0,
                 poll_interval: float = 0.1):
        self.sim = simulator
        self.should_stop = should_stop
        self.relay = relay
        self.composer_settle = composer_settle
        self.attachment_timeout = attachment_timeout
        self.poll_interval = poll_interval
        self.state = DeliveryState.IDLE

    def _advance(self, state: DeliveryState) -> bool:
        if self.should_stop():
            debug_log(f"Zustellung abgebrochen vor {state.value}")
            self.state = DeliveryState.IDLE
            return False
        self.state = state
        return True

    async def deliver_text(self, text: str) -> bool:
        self.state = DeliveryState.IDLE
        try:
            if self.should_stop() or not await self.sim.focus():
                self.state = DeliveryState.IDLE
                return False
            if not self._advance(DeliveryState.FOCUSED):
                return False
            await self.sim.clear()
            if not self._advance(DeliveryState.CLEARED):
                return False
            await self.sim.insert_text(text)
            if not self._advance(DeliveryState.INSERTED):
                return False
            await asyncio.sleep(self.composer_settle)
            if self.should_stop():
                self.state = DeliveryState.IDLE
                return False
            await self.sim.submit()
            self.state = DeliveryState.SUBMITTED
            return True
        except Exception as e:
            console.print(f"[yellow]Text konnte nicht gesendet werden:[/yellow] {e}")
            self.state = DeliveryState.IDLE
            return False

    async def deliver_image(self, url: str) -> bool:
        self.state = DeliveryState.IDLE
        if self.should_stop():
            return False
        try:
            payload = await resolve_image(url, self.relay)
        except ImageFetchError as e:
            console.print(f"[yellow]Bild nicht ladbar:[/yellow] {e}")
            return False
        if self.should_stop():
            return False
        try:
            if not await self.sim.attach_file(payload):
                console.print("[yellow]Kein Datei-Eingabefeld gefunden.[/yellow]")
                return False
            self.state = DeliveryState.INSERTED
            preview = await wait_until(self.sim.attachment_preview_present,
                                       self.poll_interval, self.attachment_timeout)
            if not preview:
                console.print("[yellow]Anhang-Vorschau nicht erschienen.[/yellow]")
                self.state = DeliveryState.IDLE
                return False
            if self.should_stop():
                self.state = DeliveryState.IDLE
                return False
            # Fokus liegt evtl. noch auf dem Anhängen-Button → Enter ginge dorthin
            if not await self.sim.focus():
                console.print("[yellow]Eingabefeld für Bildversand nicht fokussierbar.[/yellow]")
                self.state = DeliveryState.IDLE
                return False
            await self.sim.submit()
            self.state = DeliveryState.SUBMITTED
            return True
        except Exception as e:
            console.print(f"[yellow]Bild konnte nicht gesendet werden:[/yellow] {e}")
            self.state = DeliveryState.IDLE
            return False

    async def deliver(self, item: ReplyItem) -> bool:
        if item.is_image:
            return await self.deliver_image(item.url)
        return await self.deliver_text(item.content)

    async def clear_composer(self) -> None:
        try:
            if await self.sim.focus():
                await self.sim.clear()
        except Exception as e:
            debug_log("Composer nicht leerbar", e)
        self.state = DeliveryState.IDLE
