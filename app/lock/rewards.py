"""
Reward code generator.

A reward is a 32-symbol code over ``U D L R`` plus a short checksum that a
person can read back over the phone, e.g. ``Kilo-07``.

Checksum
--------
- Alpha tag: ``Σ value(symbol_i) · (i + 1)  mod 26`` → letter → NATO word.
- Numeric tag: rolling ``h = (h · 3 + value) mod 100``, zero-padded.

Symbol values are U=1, D=2, L=3, R=4.  The checksum is a pure function of the
code.  New codes are resampled until their checksum is not shared by any
entry in the live history; history is most-recent-first and bounded.
"""

import logging
import random
from dataclasses import dataclass

from app.errors import RewardExhaustedError

logger = logging.getLogger(__name__)

ALPHABET: tuple[str, ...] = ("U", "D", "L", "R")
SYMBOL_VALUES: dict[str, int] = {"U": 1, "D": 2, "L": 3, "R": 4}
NATO_WORDS: tuple[str, ...] = (
    "Alpha", "Bravo", "Charlie", "Delta", "Echo", "Foxtrot", "Golf",
    "Hotel", "India", "Juliett", "Kilo", "Lima", "Mike", "November",
    "Oscar", "Papa", "Quebec", "Romeo", "Sierra", "Tango", "Uniform",
    "Victor", "Whiskey", "X-ray", "Yankee", "Zulu",
)

CODE_LENGTH: int = 32
HISTORY_LIMIT: int = 10
MAX_ATTEMPTS: int = 1000
# 26 words × 100 numeric tags
CHECKSUM_SPACE: int = len(NATO_WORDS) * 100


@dataclass(frozen=True)
class Reward:
    code: str
    checksum: str


def calculate_checksum(code: str) -> str:
    weighted_sum = 0
    rolling = 0
    for i, symbol in enumerate(code):
        try:
            value = SYMBOL_VALUES[symbol]
        except KeyError:
            raise ValueError(f"Invalid reward symbol {symbol!r}") from None
        weighted_sum += value * (i + 1)
        rolling = (rolling * 3 + value) % 100
    return f"{NATO_WORDS[weighted_sum % 26]}-{rolling:02d}"


class RewardGenerator:
    def __init__(
        self,
        history_limit: int = HISTORY_LIMIT,
        code_length: int = CODE_LENGTH,
        rng: random.Random | None = None,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        if history_limit >= CHECKSUM_SPACE:
            raise ValueError(
                f"history_limit must be below the checksum space ({CHECKSUM_SPACE})"
            )
        self._history_limit = history_limit
        self._code_length = code_length
        self._rng = rng or random.SystemRandom()
        self._max_attempts = max_attempts
        self._history: list[Reward] = []

    @property
    def history(self) -> list[Reward]:
        """Live history, most recent first (a copy)."""
        return list(self._history)

    @property
    def current(self) -> Reward | None:
        return self._history[0] if self._history else None

    def generate(self) -> Reward:
        """Draw a reward whose checksum is not in the live history."""
        taken = {r.checksum for r in self._history}
        for _ in range(self._max_attempts):
            code = "".join(self._rng.choice(ALPHABET) for _ in range(self._code_length))
            checksum = calculate_checksum(code)
            if checksum not in taken:
                return Reward(code=code, checksum=checksum)
        raise RewardExhaustedError(
            f"No unique reward checksum after {self._max_attempts} attempts"
        )

    def issue(self) -> Reward:
        """Generate a reward, push it to the front and evict past the bound."""
        reward = self.generate()
        self._history.insert(0, reward)
        del self._history[self._history_limit:]
        logger.info(
            "Generated new reward code: %s... (%s)", reward.code[:8], reward.checksum
        )
        return reward

    def seed(self, count: int) -> None:
        """Reset history to *count* fresh entries (device boot)."""
        self._history = []
        for _ in range(min(count, self._history_limit)):
            self.issue()
