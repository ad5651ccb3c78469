import asyncio
from typing import Optional

from .console import console, debug_log
from .discovery import chat_id_from_href
from .waiting import wait_until

DEEP_LINK = "https://www.messenger.com/t/{id}"
HEADER_SELECTOR = 'header[role="banner"]'
BUBBLE_SELECTOR = 'div[data-testid="message-group"], div[role="row"]'

_CLICK_LINK_JS = r"""
(chatId) => {
  const link = document.querySelector(`a[role="link"][href*="/t/${chatId}"]`);
  if (!link) return false;
  link.dispatchEvent(new MouseEvent('click', { bubbles: true, cancelable: true, view: window }));
  return true;
}
"""

_TITLE_JS = r"""
() => {
  const header = document.querySelector('header[role="banner"]');
  if (header) {
    const link = header.querySelector('a[role="link"][href*="/t/"][aria-label]');
    if (link) return link.getAttribute('aria-label').trim();
  }
  const span = document.querySelector('h2 span[dir="auto"]');
  if (span) return (span.textContent || '').trim();
  return document.title || '';
}
"""


async def _exists(page, selector: str) -> bool:
    return await page.locator(selector).count() > 0


async def open_conversation(page, chat_id: str, poll_interval: float = 0.1,
                            timeout: float = 5.0, settle: float = 0.4) -> bool:
    """Öffnet einen Chat per SPA-Klick, sonst per Deep-Link. True, wenn Header und
    mindestens eine Bubble erschienen sind."""
    try:
        clicked = await page.evaluate(_CLICK_LINK_JS, chat_id)
    except Exception as e:
        debug_log("Klick auf Chat-Link fehlgeschlagen", e)
        clicked = False
    if not clicked:
        url = DEEP_LINK.format(id=chat_id)
        debug_log("Kein Link in der Liste → Deep-Link", url)
        try:
            await page.goto(url, wait_until="domcontentloaded")
        except Exception as e:
            console.print(f"[red]Navigation fehlgeschlagen:[/red] {e}")
            return False

    header_ok = await wait_until(lambda: _exists(page, HEADER_SELECTOR), poll_interval, timeout)
    bubbles_ok = await wait_until(lambda: _exists(page, BUBBLE_SELECTOR), poll_interval, timeout)
    # Nachlaufende Re-Renders abwarten
    await asyncio.sleep(settle)
    if not header_ok:
        debug_log("Chat-Header nicht erschienen", chat_id)
    return header_ok and bubbles_ok


def current_chat_id(page) -> Optional[str]:
    try:
        return chat_id_from_href(page.url)
    except Exception:
        return None


async def read_chat_title(page) -> str:
    try:
        title = await page.evaluate(_TITLE_JS)
    except Exception:
        return ""
    return title.strip() if isinstance(title, str) else ""
