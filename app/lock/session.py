"""
Session state machine of the lock device.

Phases
------
``ready`` → ``armed`` → ``locked`` → ``completed``, with ``aborted`` as the
penalty detour and ``testing`` as an independent hardware test entered from
``ready``.  ``completed`` is terminal until ``reset()`` (reboot).

Timing
------
Every phase that counts down owns one named timer on the ``TimerScheduler``.
Entering a phase always goes through ``switch()`` (cancel all, arm one), and
leaving to a timer-less phase goes through ``cancel_all()``.  Each tick handles
one second of the current phase, and the tick that brings a counter to zero
is the one that leaves the phase:

- armed/auto:    decrement every non-zero channel delay; all zero → locked
- armed/button:  decrement the trigger timeout; zero → ready
- locked:        watchdog check, then decrement; zero → completed
- aborted:       decrement the penalty; zero → completed
- testing:       decrement; zero → ready

A 10 second lock therefore completes on the 10th tick.

The keepalive watchdog is only armed while locked and is evaluated inside the
lock tick, so there is never a second timer.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from app.errors import DeviceBusyError, InvalidRequestError
from app.lock.rewards import Reward, RewardGenerator

logger = logging.getLogger(__name__)

CHANNELS: tuple[str, ...] = ("ch1", "ch2", "ch3", "ch4")


class Phase(str, Enum):
    VALIDATING = "validating"
    READY = "ready"
    ARMED = "armed"
    LOCKED = "locked"
    ABORTED = "aborted"
    COMPLETED = "completed"
    TESTING = "testing"


class TriggerStrategy(str, Enum):
    AUTO_COUNTDOWN = "autoCountdown"
    BUTTON_TRIGGER = "buttonTrigger"


class AbortSource(str, Enum):
    API = "api"
    BUTTON = "button"
    WATCHDOG = "watchdog"
    TIMEOUT = "timeout"


class Timers(Protocol):
    @property
    def active(self) -> str | None: ...

    def switch(self, name: str, callback: Callable[[], None]) -> None: ...

    def cancel_all(self) -> None: ...


@dataclass
class DeviceConfig:
    """Settings the lock received at provisioning time, plus firmware limits."""

    enable_streaks: bool = True
    enable_payback: bool = True
    payback_duration_seconds: int = 600
    enable_reward_code: bool = True
    channels: dict[str, bool] = field(default_factory=lambda: {ch: True for ch in CHANNELS})
    test_duration_seconds: int = 60
    armed_timeout_seconds: int = 600
    keepalive_timeout_seconds: float = 120.0
    min_lock_seconds: int = 1
    max_lock_seconds: int = 7 * 24 * 3600
    min_penalty_seconds: int = 1
    max_penalty_seconds: int = 24 * 3600
    max_channel_delay_seconds: int = 3600
    reward_seed_count: int = 5


@dataclass
class SessionConfig:
    trigger_strategy: TriggerStrategy
    lock_duration_seconds: int
    penalty_duration_seconds: int
    hide_timer: bool = False
    channel_delays: dict[str, int] = field(default_factory=dict)


@dataclass
class SessionStats:
    streaks: int = 0
    aborted: int = 0
    completed: int = 0
    total_locked_seconds: int = 0
    pending_payback_seconds: int = 0


class SessionStateMachine:
    def __init__(
        self,
        config: DeviceConfig,
        timers: Timers,
        rewards: RewardGenerator | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.rewards = rewards or RewardGenerator()
        self.timers = timers
        self._clock = clock
        self.stats = SessionStats()
        self.wifi_ssid: str | None = None
        self.reset()

    # ── Boot ──────────────────────────────────────────────────────────────────

    def reset(self) -> None:
        """Return to the power-on state.  Lifetime stats are kept."""
        self.timers.cancel_all()
        self.phase = Phase.READY
        self.session: SessionConfig | None = None
        self.lock_total_seconds = 0
        self.penalty_total_seconds = 0
        self.lock_remaining = 0
        self.penalty_remaining = 0
        self.test_remaining = 0
        self.trigger_timeout_remaining = 0
        self.channel_delays_remaining = {ch: 0 for ch in CHANNELS}
        self.last_abort_source: AbortSource | None = None
        self._last_keepalive: float | None = None
        self.rewards.seed(self.config.reward_seed_count)
        logger.info(
            "Initialized (streaks=%s, payback=%s/%ds, reward code=%s)",
            self.config.enable_streaks,
            self.config.enable_payback,
            self.config.payback_duration_seconds,
            self.config.enable_reward_code,
        )

    # ── Commands ──────────────────────────────────────────────────────────────

    def arm(self, session: SessionConfig) -> None:
        if self.phase is not Phase.READY:
            raise DeviceBusyError("Device is not ready. Cannot arm.")
        self._validate(session)

        self.timers.cancel_all()
        self.session = session
        # the debt stays banked; every later arm pays it again
        payback = self.stats.pending_payback_seconds
        self.lock_total_seconds = session.lock_duration_seconds + payback
        self.penalty_total_seconds = session.penalty_duration_seconds
        self.last_abort_source = None
        self.channel_delays_remaining = {
            ch: int(session.channel_delays.get(ch, 0)) if self.config.channels.get(ch) else 0
            for ch in CHANNELS
        }
        self.phase = Phase.ARMED
        logger.info(
            "Armed. Strategy: %s. Duration: %ds (+%ds payback).",
            session.trigger_strategy.value,
            session.lock_duration_seconds,
            payback,
        )

        if session.trigger_strategy is TriggerStrategy.BUTTON_TRIGGER:
            self.trigger_timeout_remaining = self.config.armed_timeout_seconds
            logger.info("   -> Waiting for button trigger...")
            self.timers.switch("armed", self.tick)
        elif all(v == 0 for v in self.channel_delays_remaining.values()):
            self._enter_locked()
        else:
            logger.info("   -> Auto sequence started...")
            self.timers.switch("armed", self.tick)

    def trigger(self) -> None:
        """Physical long-press of the device button."""
        if self.phase is Phase.ARMED:
            if self.trigger_strategy is TriggerStrategy.BUTTON_TRIGGER:
                logger.info("Button trigger received! Locking session.")
                self._enter_locked()
            else:
                logger.info("Button press ignored (auto mode active).")
        elif self.phase is Phase.LOCKED:
            logger.info("Button abort triggered (emergency stop).")
            self.abort(AbortSource.BUTTON)
        else:
            logger.info("Button press ignored in state: %s", self.phase.value)

    def abort(self, source: AbortSource = AbortSource.API) -> Phase:
        """Abort whatever is abortable; returns the resulting phase."""
        if self.phase is Phase.ARMED:
            logger.info("Arming canceled by %s. Returning to READY (no penalty).", source.value)
            self._return_to_ready()
            return self.phase

        if self.phase is Phase.TESTING:
            logger.info("Hardware test canceled by %s. Returning to READY.", source.value)
            self._return_to_ready()
            return self.phase

        if self.phase is not Phase.LOCKED:
            raise DeviceBusyError("Device is not in a state that can be aborted.")

        logger.warning("Session aborted by %s!", source.value)
        self.timers.cancel_all()
        self._last_keepalive = None
        self.last_abort_source = source
        self.stats.aborted += 1

        if self.config.enable_payback:
            self.stats.pending_payback_seconds += self.config.payback_duration_seconds
            logger.info(
                "   -> Added %ds to payback bank. Total: %ds",
                self.config.payback_duration_seconds,
                self.stats.pending_payback_seconds,
            )
        if self.config.enable_streaks:
            self.stats.streaks = 0
            logger.info("   -> Streak reset to 0.")

        self.lock_remaining = 0
        if not self.config.enable_reward_code:
            logger.info("   -> Reward code disabled, skipping penalty.")
            self._complete()
            return self.phase

        self.penalty_remaining = self.penalty_total_seconds
        self.phase = Phase.ABORTED
        self.timers.switch("penalty", self.tick)
        return self.phase

    def start_test(self) -> None:
        if self.phase is not Phase.READY:
            raise DeviceBusyError("Device must be in READY state to run test.")
        logger.info("Starting test mode for %d seconds.", self.config.test_duration_seconds)
        self.phase = Phase.TESTING
        self.test_remaining = self.config.test_duration_seconds
        self.timers.switch("test", self.tick)

    def keepalive(self) -> bool:
        """Pet the watchdog.  Returns False (ignored) unless locked."""
        if self.phase is not Phase.LOCKED:
            logger.debug("Keepalive ignored, not locked.")
            return False
        self._last_keepalive = self._clock()
        logger.debug("Keepalive received (watchdog petted).")
        return True

    def update_wifi(self, ssid: str) -> None:
        if self.phase is not Phase.READY:
            raise DeviceBusyError("Device must be in READY state to update Wi-Fi.")
        self.wifi_ssid = ssid
        logger.info("Wi-Fi credentials saved (SSID=%s). Reboot to apply.", ssid)

    def check_factory_reset(self) -> None:
        """Raise unless the device may forget its credentials and reboot now."""
        if self.phase not in (Phase.READY, Phase.COMPLETED):
            raise DeviceBusyError(
                "Device is in an active session. Cannot reset while locked, "
                "in countdown, or in penalty."
            )
        logger.info("Factory reset accepted. Rebooting.")

    def reward_history(self) -> list[Reward]:
        if self.phase in (Phase.ARMED, Phase.LOCKED, Phase.ABORTED):
            raise DeviceBusyError("Reward is not yet available.", status_code=403)
        return self.rewards.history

    # ── Timer ─────────────────────────────────────────────────────────────────

    def tick(self) -> None:
        """Advance the current phase by one second."""
        if self.phase is Phase.ARMED:
            self._tick_armed()
        elif self.phase is Phase.LOCKED:
            self._tick_locked()
        elif self.phase is Phase.ABORTED:
            self.penalty_remaining = max(0, self.penalty_remaining - 1)
            if self.penalty_remaining == 0:
                self._complete()
        elif self.phase is Phase.TESTING:
            self.test_remaining = max(0, self.test_remaining - 1)
            if self.test_remaining == 0:
                logger.info("Test mode auto-stopped.")
                self._return_to_ready()

    @property
    def trigger_strategy(self) -> TriggerStrategy | None:
        return self.session.trigger_strategy if self.session is not None else None

    def _tick_armed(self) -> None:
        if self.trigger_strategy is TriggerStrategy.BUTTON_TRIGGER:
            self.trigger_timeout_remaining = max(0, self.trigger_timeout_remaining - 1)
            if self.trigger_timeout_remaining == 0:
                logger.info("Button trigger timeout! Cancelling arming.")
                self.abort(AbortSource.TIMEOUT)
            return

        for ch, remaining in self.channel_delays_remaining.items():
            if remaining > 0:
                self.channel_delays_remaining[ch] = remaining - 1
                if remaining == 1:
                    logger.info("Channel %s closed (delay finished).", ch)
        if all(v == 0 for v in self.channel_delays_remaining.values()):
            logger.info("Auto-countdown complete. Locking session.")
            self._enter_locked()

    def _tick_locked(self) -> None:
        if (
            self._last_keepalive is not None
            and self._clock() - self._last_keepalive > self.config.keepalive_timeout_seconds
        ):
            logger.warning("Keep-alive watchdog timeout. Aborting session.")
            self.abort(AbortSource.WATCHDOG)
            return

        if self.lock_remaining > 0:
            self.lock_remaining -= 1
            self.stats.total_locked_seconds += 1
        if self.lock_remaining == 0:
            self._complete()

    # ── Transitions ───────────────────────────────────────────────────────────

    def _enter_locked(self) -> None:
        self.phase = Phase.LOCKED
        self.trigger_timeout_remaining = 0
        self.lock_remaining = self.lock_total_seconds
        self._last_keepalive = self._clock()
        logger.info("Starting main lock timer for %d seconds.", self.lock_remaining)
        self.timers.switch("lock", self.tick)

    def _return_to_ready(self) -> None:
        self.timers.cancel_all()
        self.phase = Phase.READY
        self.session = None
        self.test_remaining = 0
        self.trigger_timeout_remaining = 0
        self.channel_delays_remaining = {ch: 0 for ch in CHANNELS}
        self._last_keepalive = None

    def _complete(self) -> None:
        self.timers.cancel_all()
        self.phase = Phase.COMPLETED
        self._last_keepalive = None
        self.lock_remaining = 0
        self.penalty_remaining = 0
        self.test_remaining = 0
        self.trigger_timeout_remaining = 0
        self.channel_delays_remaining = {ch: 0 for ch in CHANNELS}

        self.stats.completed += 1
        if self.config.enable_streaks:
            self.stats.streaks += 1
            logger.info("Streak count incremented to: %d", self.stats.streaks)

        self.rewards.issue()
        logger.info("Session COMPLETED. Awaiting reboot to reset.")

    def _validate(self, session: SessionConfig) -> None:
        cfg = self.config
        if not cfg.min_lock_seconds <= session.lock_duration_seconds <= cfg.max_lock_seconds:
            raise InvalidRequestError("Invalid duration.")
        if not cfg.min_penalty_seconds <= session.penalty_duration_seconds <= cfg.max_penalty_seconds:
            raise InvalidRequestError("Invalid penalty duration.")
        for ch, delay in session.channel_delays.items():
            if ch not in CHANNELS:
                raise InvalidRequestError(f"Unknown channel '{ch}'.")
            if not 0 <= delay <= cfg.max_channel_delay_seconds:
                raise InvalidRequestError(f"Invalid delay for channel '{ch}'.")
