"""Shared fakes for browser-free tests."""

from __future__ import annotations

from typing import Any, Optional

import pytest

from marketplace_chat_agent.config import AgentSettings
from marketplace_chat_agent.models import ConversationSummary, Message, ReplyItem, Sender


class FakeSimulator:
    """Records every input step instead of touching a page."""

    def __init__(self, has_composer: bool = True, preview_appears: bool = True, attach_ok: bool = True) -> None:
        self.has_composer = has_composer
        self.preview_appears = preview_appears
        self.attach_ok = attach_ok
        self.calls: list[tuple[str, Any]] = []
        self.on_insert = None

    @property
    def submits(self) -> int:
        return sum(1 for name, _ in self.calls if name == "submit")

    @property
    def inserted(self) -> list[str]:
        return [arg for name, arg in self.calls if name == "insert_text"]

    async def focus(self) -> bool:
        self.calls.append(("focus", None))
        return self.has_composer

    async def clear(self) -> None:
        self.calls.append(("clear", None))

    async def insert_text(self, text: str) -> None:
        self.calls.append(("insert_text", text))
        if self.on_insert:
            self.on_insert()

    async def submit(self) -> None:
        self.calls.append(("submit", None))

    async def attach_file(self, payload) -> bool:
        self.calls.append(("attach_file", payload))
        return self.attach_ok

    async def attachment_preview_present(self) -> bool:
        return self.preview_appears


class FakeSurface:
    """In-memory stand-in for MessengerSurface."""

    def __init__(self, chats: list[ConversationSummary], messages: Optional[dict[str, list[Message]]] = None,
                 redirect: Optional[dict[str, str]] = None) -> None:
        self.chats = chats
        self.messages = messages or {}
        self.redirect = redirect or {}
        self.simulator = FakeSimulator()
        self.opened: list[str] = []
        self.scan_requests: list[int] = []
        self.current: Optional[str] = None

    async def scan_conversations(self, max_candidates: int) -> list[ConversationSummary]:
        self.scan_requests.append(max_candidates)
        return list(self.chats[:max_candidates])

    async def open_conversation(self, chat_id: str) -> bool:
        self.opened.append(chat_id)
        self.current = self.redirect.get(chat_id, chat_id)
        return True

    def current_chat_id(self) -> Optional[str]:
        return self.current

    async def read_title(self) -> str:
        for chat in self.chats:
            if chat.id == self.current:
                return chat.title
        return ""

    async def extract_messages(self, display_name: str, limit: int) -> list[Message]:
        default = [Message("¿Sigue disponible?", Sender.BUYER)]
        return list(self.messages.get(self.current, default))[-limit:]


class FakeReplyClient:
    """Stands in for reply_service.request_reply."""

    def __init__(self, replies: Optional[list[ReplyItem]] = None, raise_for: Optional[set[str]] = None) -> None:
        self.replies = replies if replies is not None else [ReplyItem.text("Sí, sigue disponible")]
        self.raise_for = raise_for or set()
        self.contexts = []

    async def __call__(self, context, url, abort=None, timeout=60.0):
        self.contexts.append(context)
        if context.chat_id in self.raise_for:
            raise RuntimeError("boom")
        return list(self.replies)


@pytest.fixture
def fast_settings() -> AgentSettings:
    return AgentSettings(
        webhook_url="http://hook.test/reply",
        chat_limit=10,
        chat_delay=0.01,
        poll_interval=0.01,
        wait_timeout=0.05,
        settle_delay=0.0,
        preview_seconds=0.05,
        item_gap=0.01,
        composer_settle=0.0,
        attachment_timeout=0.05,
        tick_interval=0.01,
        scroll_attempts=0,
        scroll_pause=0.0,
    )


@pytest.fixture
def three_chats() -> list[ConversationSummary]:
    return [
        ConversationSummary("c1", "Juan · Bicicleta", unread=True),
        ConversationSummary("c2", "Ana · Mesa de roble", unread=False),
        ConversationSummary("c3", "Luis · iPhone 12", unread=True),
    ]
