import re
from typing import Optional

from .console import debug_log
from .models import ConversationSummary

CHAT_ID_RE = re.compile(r"/t/([^/?#]+)")
UNREAD_LABEL_RE = re.compile(
    r"(?:unread|no le[ií]d[oa]s?|sin leer|mensajes? nuevos?|new messages?)\s*[.)]?\s*$", re.I
)

CHAT_LINK_SELECTOR = 'a[role="link"][href*="/t/"]'

_SCAN_JS = r"""
(args) => {
  const [linkSelector, maxCandidates] = args;
  // Chatliste auf den Marketplace-Bereich einschränken, sonst ganze Seite
  let container = document;
  const spans = Array.from(document.querySelectorAll('span[dir="auto"]'));
  const marketSpan = spans.find(s => (s.textContent || '').trim() === 'Marketplace');
  if (marketSpan) {
    const panel = marketSpan.closest('div[role="navigation"]');
    if (panel) container = panel;
  }
  const links = Array.from(container.querySelectorAll(linkSelector)).slice(0, maxCandidates);
  return links.map(link => {
    const row = link.closest('[role="row"], li') || link;
    const labels = [link.getAttribute('aria-label') || ''];
    row.querySelectorAll('[aria-label]').forEach(el => labels.push(el.getAttribute('aria-label') || ''));
    const dot = !!row.querySelector(
      '[data-visualcompletion="ignore"][role="button"] span[aria-hidden="true"], ' +
      'span[data-testid="unread-dot"], div[aria-label*="unread" i] > span'
    );
    return {
      href: link.getAttribute('href') || link.href || '',
      label: (link.getAttribute('aria-label') || '').trim(),
      text: (link.innerText || link.textContent || '').trim(),
      labels: labels.map(l => l.trim()).filter(Boolean),
      dot,
    };
  });
}
"""


def chat_id_from_href(href: str) -> Optional[str]:
    m = CHAT_ID_RE.search(href or "")
    return m.group(1) if m else None


def _title_from_row(row: dict) -> str:
    label = (row.get("label") or "").strip()
    if label:
        return label
    text = (row.get("text") or "").strip()
    # Sichtbarer Text: erste Zeile ist der Chatname
    return text.splitlines()[0].strip() if text else ""


def is_unread_row(row: dict) -> bool:
    if row.get("dot"):
        return True
    return any(UNREAD_LABEL_RE.search(label or "") for label in row.get("labels") or [])


def parse_chat_rows(rows: list[dict], max_candidates: Optional[int] = None) -> list[ConversationSummary]:
    """Rohzeilen der Chatliste → ConversationSummary (Anzeigereihenfolge, ohne ID verworfen)."""
    chats: list[ConversationSummary] = []
    seen: set[str] = set()
    for row in (rows or [])[:max_candidates]:
        if not isinstance(row, dict):
            continue
        chat_id = chat_id_from_href(row.get("href", ""))
        if not chat_id or chat_id in seen:
            continue
        seen.add(chat_id)
        chats.append(ConversationSummary(
            id=chat_id,
            title=_title_from_row(row),
            unread=is_unread_row(row),
        ))
    return chats


async def scan_conversations(page, max_candidates: int = 30) -> list[ConversationSummary]:
    try:
        rows = await page.evaluate(_SCAN_JS, [CHAT_LINK_SELECTOR, max_candidates])
    except Exception as e:
        debug_log("Chatliste nicht lesbar", e)
        return []
    chats = parse_chat_rows(rows if isinstance(rows, list) else [], max_candidates)
    for chat in chats:
        debug_log(f"Chat gefunden: {chat.title}", chat.id)
    return chats
