import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

PLACEHOLDER_REPLY = "Gracias por tu mensaje, te respondo en un momento."
TITLE_SEPARATOR = "·"


class Sender(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ConversationSummary:
    id: str
    title: str
    unread: bool = False


@dataclass(frozen=True)
class Message:
    text: str
    sender: Sender

    def to_dict(self) -> dict:
        return {"text": self.text, "sender": self.sender.value}


@dataclass(frozen=True)
class ReplyItem:
    kind: str  # "text" | "image"
    content: str = ""
    url: str = ""

    @classmethod
    def text(cls, content: str) -> "ReplyItem":
        return cls(kind="text", content=content)

    @classmethod
    def image(cls, url: str) -> "ReplyItem":
        return cls(kind="image", url=url)

    @property
    def is_image(self) -> bool:
        return self.kind == "image"

    def preview(self) -> str:
        if self.is_image:
            return f"[Image] {self.url}"
        return self.content


def split_title(title: str) -> tuple[str, str]:
    """"Juan · iPhone 12" → ("Juan", "iPhone 12"); ohne Trenner ist listing der ganze Titel."""
    title = (title or "").strip()
    if TITLE_SEPARATOR in title:
        client, _, listing = title.partition(TITLE_SEPARATOR)
        client, listing = client.strip(), listing.strip()
        return client or title, listing or title
    return title, title


@dataclass
class ConversationContext:
    chat_id: str
    client_name: str
    listing: str
    chat_name: str
    messages: list[Message] = field(default_factory=list)

    @classmethod
    def build(cls, summary: ConversationSummary, messages: list[Message], title: Optional[str] = None) -> "ConversationContext":
        chat_name = (title or summary.title or "").strip()
        client, listing = split_title(chat_name)
        return cls(
            chat_id=summary.id,
            client_name=client,
            listing=listing,
            chat_name=chat_name,
            messages=list(messages),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "chatId": self.chat_id,
            "clientName": self.client_name,
            "listing": self.listing,
            "chatName": self.chat_name,
            "messages": [m.to_dict() for m in self.messages],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_payload(), ensure_ascii=False)
