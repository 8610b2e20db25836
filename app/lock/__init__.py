# Reference lock: session state machine and reward codes
from app.lock.rewards import Reward, RewardGenerator, calculate_checksum
from app.lock.session import (
    AbortSource,
    DeviceConfig,
    Phase,
    SessionConfig,
    SessionStateMachine,
    SessionStats,
    TriggerStrategy,
)
from app.lock.timers import TimerScheduler

__all__ = [
    "Reward",
    "RewardGenerator",
    "calculate_checksum",
    "AbortSource",
    "DeviceConfig",
    "Phase",
    "SessionConfig",
    "SessionStateMachine",
    "SessionStats",
    "TriggerStrategy",
    "TimerScheduler",
]
