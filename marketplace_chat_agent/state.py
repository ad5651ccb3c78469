import asyncio
from typing import Optional


class RunState:
    """Prozessweiter Laufzustand (genau eine Instanz pro Engine).

    is_cycling                 – Massen-Scan oder Ungelesen-Schleife aktiv
    is_processing_single_unread – Einzel-Variante "einen ungelesenen Chat" aktiv
    abort_token                – nur gesetzt, solange eine Antwort-Anfrage läuft
    """

    def __init__(self):
        self.is_cycling = False
        self.is_processing_single_unread = False
        self.stop_requested = False
        self.abort_token: Optional[asyncio.Event] = None

    @property
    def busy(self) -> bool:
        return self.is_cycling or self.is_processing_single_unread

    def should_stop(self) -> bool:
        return self.stop_requested

    def new_abort_token(self) -> asyncio.Event:
        self.abort_token = asyncio.Event()
        return self.abort_token

    def release_abort_token(self) -> None:
        self.abort_token = None

    def request_stop(self) -> None:
        # Lauf bleibt belegt (busy), bis der Durchlauf selbst reset() aufruft
        self.stop_requested = True
        if self.abort_token is not None:
            self.abort_token.set()
        self.abort_token = None

    def reset(self) -> None:
        self.is_cycling = False
        self.is_processing_single_unread = False
        self.stop_requested = False
        self.abort_token = None
