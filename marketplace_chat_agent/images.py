import base64
import mimetypes
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
from urllib.parse import unquote, urlparse

import httpx

from .console import debug_log

DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]*)(?P<b64>;base64)?,(?P<data>.*)$", re.S)


class ImageFetchError(Exception):
    pass


@dataclass
class ImagePayload:
    name: str
    mime_type: str
    data: bytes

    def as_file_payload(self) -> dict:
        # Format für Playwright set_input_files
        return {"name": self.name, "mimeType": self.mime_type, "buffer": self.data}


def data_url_to_bytes(data_url: str) -> tuple[bytes, str]:
    m = DATA_URL_RE.match(data_url or "")
    if not m:
        raise ImageFetchError("Kein gültiger data:-URL")
    mime = m.group("mime") or "application/octet-stream"
    raw = m.group("data")
    try:
        if m.group("b64"):
            return base64.b64decode(raw), mime
        return unquote(raw).encode("utf-8"), mime
    except ValueError as e:
        raise ImageFetchError(f"data:-URL nicht dekodierbar: {e}") from e


async def fetch_image_data_url(url: str, client: Optional[httpx.AsyncClient] = None,
                               timeout: float = 30.0) -> str:
    """Relay: lädt ein Bild außerhalb der Seite (keine CORS-Grenzen) und liefert einen base64-data:-URL."""
    debug_log("[fetchImage] Start", url)
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    try:
        resp = await client.get(url)
    except httpx.HTTPError as e:
        raise ImageFetchError(str(e)) from e
    finally:
        if own_client:
            await client.aclose()
    if resp.status_code < 200 or resp.status_code >= 300:
        raise ImageFetchError(f"HTTP error: {resp.status_code}")
    mime = resp.headers.get("content-type", "").split(";")[0].strip() or "application/octet-stream"
    encoded = base64.b64encode(resp.content).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def _filename_for(url: str, mime: str) -> str:
    ext = mimetypes.guess_extension(mime) or ".png"
    if url.startswith("data:"):
        return f"image{ext}"
    path = urlparse(url).path
    base = path.rsplit("/", 1)[-1] if path else ""
    if base and "." in base:
        return base
    return f"{base or 'image'}{ext}"


Relay = Callable[[str], Awaitable[str]]


async def resolve_image(url: str, relay: Optional[Relay] = None) -> ImagePayload:
    """data:-URL direkt dekodieren, sonst über das Relay laden."""
    if url.startswith("data:"):
        data_url = url
    else:
        data_url = await (relay or fetch_image_data_url)(url)
    data, mime = data_url_to_bytes(data_url)
    return ImagePayload(name=_filename_for(url, mime), mime_type=mime, data=data)
