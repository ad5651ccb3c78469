import asyncio
import re
from typing import Optional

from .console import console, debug_log
from .models import Message, Sender, split_title

# --------------------- Muster -------------------------------------------------
SELF_MARKER_RE   = re.compile(r"\b(?:enviaste|you sent)\b", re.I)
SELF_PREFIX_RE   = re.compile(r"^\s*(?:enviaste|you sent)\b[\s:,.-]*", re.I)
CHAT_STARTED_RE  = re.compile(r"(?:inició este chat|iniciaste este chat|started this chat|started this conversation)", re.I)

_MONTHS = r"(?:ene|feb|mar|abr|may|jun|jul|ago|sep|sept|oct|nov|dic|jan|apr|aug|dec)[a-z]*\.?"
_DAYS   = r"(?:lun|mar|mi[eé]|jue|vie|s[aá]b|dom|mon|tue|wed|thu|fri|sat|sun)[a-z]*\.?"
_TIME   = r"\d{1,2}:\d{2}(?:\s?[ap]\.?\s?m\.?)?"

NOISE_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(rf"^{_TIME}$", re.I),
    re.compile(rf"\d{{1,2}}\s(?:de\s)?{_MONTHS}\s(?:de\s)?\d{{4}},?\s(?:a las\s)?{_TIME}", re.I),
    re.compile(rf"^{_MONTHS}\s\d{{1,2}},?\s\d{{4}},?\s(?:at\s)?{_TIME}$", re.I),
    re.compile(rf"^\d{{1,2}}/\d{{1,2}}/\d{{2,4}},?\s?{_TIME}$", re.I),
    re.compile(rf"^{_DAYS},?\s+{_TIME}$", re.I),
    re.compile(r"^(?:enviado|sent)\s+hace\s?\d+", re.I),
    re.compile(r"^(?:sent\s+)?\d+\s?(?:s|sec|min|m|h|hr|d|w|sem)\w*\s+ago$", re.I),
    re.compile(r"^hace\s+\d+\s?\w+$", re.I),
    re.compile(r"(?:está esperando tu respuesta|is waiting for your response|awaiting your response)", re.I),
    re.compile(r"(?:ver publicación|view listing|ver artículo)", re.I),
    re.compile(r"(?:message sent|mensaje enviado)", re.I),
    re.compile(r"^(?:enviado|sent|enviaste|you sent)$", re.I),
    re.compile(r"^(?:respuestas? rápidas?|quick repl(?:y|ies)|send a quick reply|envía una respuesta rápida|"
               r"toca para responder|tap to reply|sugerencias de respuesta|suggested repl(?:y|ies))", re.I),
    re.compile(r"^Enter$"),
)


def is_noise(text: str) -> bool:
    t = (text or "").strip()
    if not t:
        return True
    return any(p.search(t) for p in NOISE_PATTERNS)


def _name_variants(display_name: str) -> list[str]:
    client, _ = split_title(display_name)
    names = []
    for candidate in (client, client.split()[0] if client.split() else ""):
        c = candidate.strip().lower()
        if c and c not in names:
            names.append(c)
    return names


def _starts_with_name(text: str, names: list[str]) -> Optional[str]:
    low = text.lower()
    for name in names:
        if low.startswith(name) and (len(low) == len(name) or not low[len(name)].isalnum()):
            return name
    return None


def classify_sender(bubble: dict, names: list[str]) -> Optional[Sender]:
    """Absender einer Bubble bestimmen; None = verwerfen."""
    text = (bubble.get("text") or "").strip()
    if SELF_MARKER_RE.search(text):
        return Sender.SELLER
    if names and _starts_with_name(text, names):
        return Sender.BUYER
    if bubble.get("outgoing"):
        return Sender.SELLER
    return None


def _strip_prefix(span: str, names: list[str]) -> str:
    stripped = SELF_PREFIX_RE.sub("", span, count=1)
    if stripped != span:
        return stripped.strip()
    name = _starts_with_name(span, names)
    if name:
        return span[len(name):].lstrip(" :,-·").strip()
    return span.strip()


def classify_bubbles(bubbles: list[dict], display_name: str = "", limit: int = 10) -> list[Message]:
    """Rohdaten der Bubbles (älteste zuerst) → gefilterte Message-Liste.

    Jede Bubble: {"text": str, "spans": [str, ...], "outgoing": bool}
    """
    names = _name_variants(display_name)

    # (sender oder None, text) in Dokumentreihenfolge
    entries: list[tuple[Optional[Sender], str]] = []
    for bubble in bubbles or []:
        if not isinstance(bubble, dict):
            continue
        sender = classify_sender(bubble, names)
        spans = [s for s in (bubble.get("spans") or []) if isinstance(s, str)]
        for i, span in enumerate(spans):
            text = _strip_prefix(span, names) if i == 0 else span.strip()
            if text:
                entries.append((sender, text))

    # Alles vor und einschließlich "inició este chat" verwerfen: die Markerzeile
    # selbst ist keine Nachricht und geht nicht an den Webhook
    for idx, (_, text) in enumerate(entries):
        if CHAT_STARTED_RE.search(text):
            debug_log("Chat-Start-Marker gefunden bei Index", idx)
            entries = entries[idx + 1:]
            break

    messages: list[Message] = []
    for sender, text in entries:
        if sender is None or is_noise(text):
            continue
        if names and text.lower() in names:
            continue
        msg = Message(text=text, sender=sender)
        if messages and messages[-1] == msg:
            continue
        messages.append(msg)

    if limit and limit > 0:
        return messages[-limit:]
    return messages


# --------------------- DOM-Extraktion ----------------------------------------
MESSAGE_CONTAINER_SELECTORS = [
    'div[data-pagelet][role="main"]',
    '[data-testid="messenger_list_view"]',
    'div[role="main"]',
]

_COLLECT_JS = r"""
(selectors) => {
  let container = null;
  for (const sel of selectors) {
    const c = document.querySelector(sel);
    if (c) { container = c; break; }
  }
  if (!container) return null;

  let groups = container.querySelectorAll('div[data-testid="message-group"]');
  if (!groups.length) groups = container.querySelectorAll('div[role="row"]');

  const leafSpans = (g) => Array.from(g.querySelectorAll('span[dir="auto"], div[dir="auto"]'))
    .filter(s => !s.querySelector('span[dir="auto"], div[dir="auto"]'))
    .map(s => (s.innerText || s.textContent || '').trim())
    .filter(Boolean);

  return Array.from(groups).map(g => ({
    text: (g.innerText || g.textContent || '').trim(),
    spans: leafSpans(g),
    outgoing: !!g.querySelector('[data-testid="outgoing_message"]'),
  }));
}
"""

_SCROLL_TOP_JS = r"""
(selectors) => {
  let container = null;
  for (const sel of selectors) {
    const c = document.querySelector(sel);
    if (c) { container = c; break; }
  }
  if (!container) return -1;
  let scroller = container;
  const bubble = container.querySelector('div[data-testid="message-group"], div[role="row"]');
  let el = bubble ? bubble.parentElement : null;
  while (el && el !== container.parentElement) {
    const st = getComputedStyle(el);
    if (el.scrollHeight > el.clientHeight && /(auto|scroll)/.test(st.overflowY)) { scroller = el; break; }
    el = el.parentElement;
  }
  scroller.scrollTop = 0;
  return scroller.scrollHeight;
}
"""


async def load_older_messages(page, attempts: int = 5, pause: float = 0.6) -> int:
    """Scrollt den Verlauf wiederholt nach oben (Lazy-Loading). Rückgabe: Anzahl Versuche."""
    try:
        height = await page.evaluate(_SCROLL_TOP_JS, MESSAGE_CONTAINER_SELECTORS)
    except Exception as e:
        debug_log("Scrollen fehlgeschlagen", e)
        return 0
    if height is None or height < 0:
        return 0
    done = 0
    for _ in range(max(0, attempts)):
        await asyncio.sleep(pause)
        done += 1
        try:
            new_height = await page.evaluate(_SCROLL_TOP_JS, MESSAGE_CONTAINER_SELECTORS)
        except Exception:
            break
        if new_height is None or new_height <= height:
            break
        height = new_height
    return done


async def collect_bubbles(page) -> list[dict]:
    try:
        res = await page.evaluate(_COLLECT_JS, MESSAGE_CONTAINER_SELECTORS)
    except Exception as e:
        debug_log("Bubble-Extraktion fehlgeschlagen", e)
        return []
    return res if isinstance(res, list) else []


async def extract_messages(page, display_name: str, limit: int = 10,
                           scroll_attempts: int = 5, scroll_pause: float = 0.6) -> list[Message]:
    """Letzte `limit` Nachrichten des offenen Chats (älteste zuerst). Wirft nie."""
    await load_older_messages(page, scroll_attempts, scroll_pause)
    bubbles = await collect_bubbles(page)
    if not bubbles:
        console.print("[yellow]Keine Nachrichten-Bubbles gefunden.[/yellow]")
        return []
    messages = classify_bubbles(bubbles, display_name, limit)
    debug_log(f"{len(messages)} Nachrichten extrahiert", [m.text for m in messages])
    return messages
