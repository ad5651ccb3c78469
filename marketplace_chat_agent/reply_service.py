import asyncio
import contextlib
import json
from typing import Any, Callable, Optional

import httpx

from .console import console, debug_log
from .models import PLACEHOLDER_REPLY, ConversationContext, ReplyItem


# --------------------- Normalisierung ----------------------------------------
# Reihenfolge ist Priorität: erster Treffer gewinnt
def _top_level_list(body: Any) -> Optional[list]:
    return body if isinstance(body, list) else None


def _response_list(body: Any) -> Optional[list]:
    if isinstance(body, dict) and isinstance(body.get("response"), list):
        return body["response"]
    return None


def _response_string(body: Any) -> Optional[list]:
    if isinstance(body, dict) and isinstance(body.get("response"), str):
        return [body["response"]]
    return None


def _output_response_list(body: Any) -> Optional[list]:
    if isinstance(body, dict):
        output = body.get("output")
        if isinstance(output, dict) and isinstance(output.get("response"), list):
            return output["response"]
    return None


def _bare_string(body: Any) -> Optional[list]:
    return [body] if isinstance(body, str) else None


SHAPE_MATCHERS: tuple[Callable[[Any], Optional[list]], ...] = (
    _top_level_list,
    _response_list,
    _response_string,
    _output_response_list,
    _bare_string,
)


def to_reply_item(raw: Any) -> Optional[ReplyItem]:
    if raw is None:
        return None
    if isinstance(raw, str):
        return ReplyItem.text(raw) if raw.strip() else None
    if isinstance(raw, dict):
        kind = str(raw.get("type") or raw.get("kind") or "").lower()
        if kind == "image" and raw.get("url"):
            return ReplyItem.image(str(raw["url"]))
        if kind == "text" and (raw.get("content") or raw.get("text")):
            return ReplyItem.text(str(raw.get("content") or raw.get("text")))
    # Unbekannte Form: als Text erhalten statt verwerfen
    try:
        return ReplyItem.text(json.dumps(raw, ensure_ascii=False, indent=2))
    except (TypeError, ValueError):
        return ReplyItem.text(str(raw))


def normalize_response(body: Any) -> list[ReplyItem]:
    """Beliebige Server-Antwort → geordnete ReplyItem-Liste (nie leer)."""
    raw_items: list = []
    for matcher in SHAPE_MATCHERS:
        found = matcher(body)
        if found is not None:
            raw_items = found
            break
    items = [item for item in (to_reply_item(r) for r in raw_items) if item is not None]
    if not items:
        debug_log("Antwort ohne erkennbare Struktur → Platzhalter", body)
        return [ReplyItem.text(PLACEHOLDER_REPLY)]
    return items


def error_reply(reason: str) -> list[ReplyItem]:
    return [ReplyItem.text(f"Error al generar la respuesta ({reason}).")]


def _decode_body(resp: httpx.Response) -> Any:
    try:
        return resp.json()
    except ValueError:
        # Kein JSON: Klartext wie einen nackten String behandeln
        return resp.text


# --------------------- Webhook-Aufruf -----------------------------------------
async def _post(client: httpx.AsyncClient, url: str, context: ConversationContext) -> httpx.Response:
    return await client.post(
        url,
        content=context.to_json().encode("utf-8"),
        headers={"Content-Type": "application/json"},
    )


async def request_reply(context: ConversationContext, url: str, abort: Optional[asyncio.Event] = None,
                        client: Optional[httpx.AsyncClient] = None, timeout: float = 60.0) -> list[ReplyItem]:
    """POST des Kontexts an den Webhook.

    Abbruch über `abort` → [] (nichts senden). Fehler → genau ein synthetisches
    Text-Item. Wirft nicht (außer CancelledError des Aufrufers).
    """
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=timeout)
    request = asyncio.ensure_future(_post(client, url, context))
    waiter = asyncio.ensure_future(abort.wait()) if abort is not None else None
    try:
        pending = {request} if waiter is None else {request, waiter}
        await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
        if waiter is not None and waiter.done() and not request.done():
            request.cancel()
            debug_log("Antwort-Anfrage abgebrochen", context.chat_id)
            return []
        if abort is not None and abort.is_set():
            return []
        try:
            resp = request.result()
        except Exception as e:
            console.print(f"[yellow]Webhook nicht erreichbar:[/yellow] {e}")
            return error_reply(type(e).__name__)
        if not resp.is_success:
            console.print(f"[yellow]Webhook antwortete mit HTTP {resp.status_code}.[/yellow]")
            return error_reply(f"HTTP {resp.status_code}")
        return normalize_response(_decode_body(resp))
    finally:
        for task in (request, waiter):
            if task is not None and not task.done():
                task.cancel()
        for task in (request, waiter):
            if task is not None:
                with contextlib.suppress(asyncio.CancelledError, Exception):
                    await task
        if own_client:
            await client.aclose()
