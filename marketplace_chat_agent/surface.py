from typing import Optional

from .classifier import extract_messages
from .config import AgentSettings
from .delivery import PageInputSimulator
from .discovery import scan_conversations
from .models import ConversationSummary, Message
from .navigator import current_chat_id, open_conversation, read_chat_title


class MessengerSurface:
    """Alle Lese-/Schreibzugriffe auf den Messenger-Tab an einer Stelle."""

    def __init__(self, page, settings: Optional[AgentSettings] = None):
        self.page = page
        self.settings = settings or AgentSettings()
        self.simulator = PageInputSimulator(page)

    async def scan_conversations(self, max_candidates: int) -> list[ConversationSummary]:
        return await scan_conversations(self.page, max_candidates)

    async def open_conversation(self, chat_id: str) -> bool:
        s = self.settings
        return await open_conversation(self.page, chat_id, s.poll_interval, s.wait_timeout, s.settle_delay)

    def current_chat_id(self) -> Optional[str]:
        return current_chat_id(self.page)

    async def read_title(self) -> str:
        return await read_chat_title(self.page)

    async def extract_messages(self, display_name: str, limit: int) -> list[Message]:
        s = self.settings
        return await extract_messages(self.page, display_name, limit, s.scroll_attempts, s.scroll_pause)
