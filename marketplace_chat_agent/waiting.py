import asyncio
import inspect
import math
import time
from typing import Awaitable, Callable, Optional, Union

from .console import debug_log

Predicate = Callable[[], Union[bool, Awaitable[bool]]]


async def _probe(predicate: Predicate) -> bool:
    try:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        return bool(result)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        # wirft das Prädikat, zählt der Tick als "noch nicht"
        debug_log("waitUntil: Prädikat warf", e)
        return False


async def wait_until(predicate: Predicate, poll_interval: float = 0.1, timeout: float = 5.0) -> bool:
    """Pollt `predicate` bis es True liefert (→ True) oder `timeout` abläuft (→ False).

    Das Prädikat darf synchron oder async sein. Wirft nie.
    """
    deadline = time.monotonic() + max(0.0, timeout)
    while True:
        if await _probe(predicate):
            return True
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return False
        await asyncio.sleep(min(poll_interval, remaining))


async def cancellable_pause(
    duration: float,
    is_cancelled: Callable[[], bool],
    on_tick: Optional[Callable[[float], None]] = None,
    tick_interval: float = 0.5,
) -> bool:
    """Wartet bis zu `duration` Sekunden, bricht beim nächsten Tick ab, sobald
    `is_cancelled()` True liefert. `on_tick(remaining)` ca. alle `tick_interval`.

    Rückgabe: True, wenn die volle Dauer abgewartet wurde; False bei Abbruch.
    """
    end = time.monotonic() + max(0.0, duration)
    while True:
        if is_cancelled():
            return False
        remaining = end - time.monotonic()
        if on_tick:
            try:
                on_tick(max(0.0, remaining))
            except Exception as e:
                debug_log("Pause: on_tick fehlgeschlagen", e)
        if remaining <= 0:
            return True
        await asyncio.sleep(min(tick_interval, remaining))


def countdown_seconds(remaining: float) -> int:
    return int(math.ceil(max(0.0, remaining)))
