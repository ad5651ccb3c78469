# -------------------- Konfiguration ------------------------------------------
import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .console import console, debug_log

DEFAULT_WEBHOOK_URL = "http://localhost:5678/webhook/marketplace-reply"
DEFAULT_MSG_LIMIT   = 10
DEFAULT_CHAT_LIMIT  = 10
DEFAULT_CHAT_DELAY  = 1.8   # Sekunden zwischen zwei Chats
DEFAULT_AUTO_POLL   = 30.0  # Auto-Responder: ältesten ungelesenen Chat alle 30s

DISCOVERY_BUFFER = 30  # mehr Kandidaten scannen als angefordert

# Schlüssel wie im Extension-Storage
KEY_WEBHOOK_URL = "webhookUrl"
KEY_MSG_LIMIT   = "scanLimit"
KEY_CHAT_LIMIT  = "chatLimit"
KEY_CHAT_DELAY  = "chatDelay"
KEY_AUTO_POLL   = "autoPollSeconds"

DEFAULT_STORE_PATH = Path.home() / ".marketplace_chat_agent.json"


class JsonStore:
    """Einfacher Key/Value-Speicher in einer JSON-Datei.

    Fehlende Datei, fehlende Schlüssel oder kaputte Werte liefern immer den
    übergebenen Fallback.
    """

    def __init__(self, path: Optional[os.PathLike] = None):
        self.path = Path(path) if path else DEFAULT_STORE_PATH
        self._data: dict[str, Any] = self._load()

    def _load(self) -> dict[str, Any]:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            console.print(f"[yellow]Konfiguration nicht lesbar ({self.path}):[/yellow] {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def get_string(self, key: str, fallback: str) -> str:
        value = self._data.get(key)
        if value is None:
            return fallback
        value = str(value).strip()
        return value or fallback

    def get_number(self, key: str, fallback: float) -> float:
        value = self._data.get(key)
        if value is None or isinstance(value, bool):
            return fallback
        try:
            number = float(value)
        except (TypeError, ValueError):
            debug_log(f"Ungültige Zahl für {key}", value)
            return fallback
        # 0 gilt als "nicht gesetzt"
        return number or fallback

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2, ensure_ascii=False)
        os.replace(tmp, self.path)


def default_store() -> JsonStore:
    path = os.getenv("MP_STORE_PATH")
    return JsonStore(path or None)


@dataclass
class AgentSettings:
    webhook_url: str = DEFAULT_WEBHOOK_URL
    msg_limit: int = DEFAULT_MSG_LIMIT
    chat_limit: int = DEFAULT_CHAT_LIMIT
    chat_delay: float = DEFAULT_CHAT_DELAY
    auto_poll_seconds: float = DEFAULT_AUTO_POLL
    discovery_buffer: int = DISCOVERY_BUFFER

    # Timings (Sekunden)
    poll_interval: float = 0.1
    wait_timeout: float = 5.0
    settle_delay: float = 0.4
    preview_seconds: float = 5.0
    item_gap: float = 3.0
    composer_settle: float = 0.5
    attachment_timeout: float = 4.0
    tick_interval: float = 0.5
    scroll_attempts: int = 5
    scroll_pause: float = 0.6
    request_timeout: float = 60.0

    @classmethod
    def from_store(cls, store: JsonStore, **overrides) -> "AgentSettings":
        webhook = os.getenv("MP_WEBHOOK_URL") or store.get_string(KEY_WEBHOOK_URL, DEFAULT_WEBHOOK_URL)
        settings = cls(
            webhook_url=webhook,
            msg_limit=int(store.get_number(KEY_MSG_LIMIT, DEFAULT_MSG_LIMIT)),
            chat_limit=int(store.get_number(KEY_CHAT_LIMIT, DEFAULT_CHAT_LIMIT)),
            chat_delay=store.get_number(KEY_CHAT_DELAY, DEFAULT_CHAT_DELAY),
            auto_poll_seconds=store.get_number(KEY_AUTO_POLL, DEFAULT_AUTO_POLL),
        )
        for name, value in overrides.items():
            setattr(settings, name, value)
        return settings
