"""
In-memory log tail served by ``GET /log``.
"""

import logging
from collections import deque

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class RingBufferHandler(logging.Handler):
    """Keeps the last *capacity* formatted records."""

    def __init__(self, capacity: int = 50, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._lines: deque[str] = deque(maxlen=capacity)
        self.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._lines.append(self.format(record))
        except Exception:
            self.handleError(record)

    def lines(self) -> list[str]:
        return list(self._lines)

    def render(self) -> str:
        return "\n".join(self._lines)

    def clear(self) -> None:
        self._lines.clear()
