from __future__ import annotations

import logging

logger = logging.getLogger(__name__)


class SingleFlightGuard:
    """Process-wide slot allowing one generation run at a time.

    The relay runs on a single event loop, so acquiring is a plain
    check-and-set with no suspension point in between.
    """

    def __init__(self) -> None:
        self._holder: str | None = None

    @property
    def busy(self) -> bool:
        return self._holder is not None

    @property
    def holder(self) -> str | None:
        return self._holder

    def try_acquire(self, owner: str) -> bool:
        if self._holder is not None:
            logger.info("Run rejected, slot taken", extra={"requested": owner, "holder": self._holder})
            return False
        self._holder = owner
        return True

    def release(self) -> None:
        self._holder = None
