from __future__ import annotations

from typing import Callable, Dict, Optional

from .logger import get_logger

logger = get_logger(__name__)

Release = Callable[[], None]


class ProcessingGate:
    """Non-blocking advisory lock keyed by tweet id.

    ``acquire`` never waits: a held key answers ``None`` and the caller decides
    whether that means "reject" or "ignore duplicate notification".
    """

    def __init__(self) -> None:
        self._held: Dict[str, object] = {}

    def acquire(self, key: str) -> Optional[Release]:
        if key in self._held:
            logger.warning("item already being processed", key=key)
            return None
        token = object()
        self._held[key] = token

        def release() -> None:
            # A stale release never frees a newer holder of the same key.
            if self._held.get(key) is token:
                del self._held[key]

        return release

    def is_held(self, key: str) -> bool:
        return key in self._held

    def __len__(self) -> int:
        return len(self._held)
