"""
Wire models shared by the control proxy and the reference lock.

All JSON on the wire is camelCase; Python code uses snake_case attribute
names (``populate_by_name`` accepts both).
"""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.lock.session import SessionConfig, TriggerStrategy

MAX_LOCK_SECONDS = 7 * 24 * 3600
MAX_PENALTY_SECONDS = 24 * 3600
MAX_CHANNEL_DELAY_SECONDS = 3600


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Requests ─────────────────────────────────────────────────────────────────


class ChannelDelays(CamelModel):
    ch1: int = Field(default=0, ge=0, le=MAX_CHANNEL_DELAY_SECONDS)
    ch2: int = Field(default=0, ge=0, le=MAX_CHANNEL_DELAY_SECONDS)
    ch3: int = Field(default=0, ge=0, le=MAX_CHANNEL_DELAY_SECONDS)
    ch4: int = Field(default=0, ge=0, le=MAX_CHANNEL_DELAY_SECONDS)


class _ArmBase(CamelModel):
    lock_duration_seconds: int = Field(ge=1, le=MAX_LOCK_SECONDS)
    penalty_duration_seconds: int = Field(ge=1, le=MAX_PENALTY_SECONDS)
    hide_timer: bool = False
    channel_delays_seconds: ChannelDelays = Field(default_factory=ChannelDelays)

    def to_session_config(self) -> SessionConfig:
        return SessionConfig(
            trigger_strategy=TriggerStrategy(self.trigger_strategy),
            lock_duration_seconds=self.lock_duration_seconds,
            penalty_duration_seconds=self.penalty_duration_seconds,
            hide_timer=self.hide_timer,
            channel_delays=self.channel_delays_seconds.model_dump(),
        )


class AutoCountdownArm(_ArmBase):
    """Relays close one by one as each channel's delay runs out."""

    trigger_strategy: Literal["autoCountdown"]


class ButtonTriggerArm(_ArmBase):
    """Lock waits for a long-press of the device button."""

    trigger_strategy: Literal["buttonTrigger"]


ArmRequest = Annotated[
    Union[AutoCountdownArm, ButtonTriggerArm],
    Field(discriminator="trigger_strategy"),
]


class WifiCredentials(CamelModel):
    ssid: str = Field(min_length=1)
    passphrase: str = Field(alias="pass")


# ── Responses ────────────────────────────────────────────────────────────────


class SessionStatsModel(CamelModel):
    streaks: int = 0
    aborted: int = 0
    completed: int = 0
    total_time_locked_seconds: int = 0
    pending_payback_seconds: int = 0


class SessionStatusResponse(CamelModel):
    status: str
    trigger_strategy: str | None = None
    trigger_timeout_remaining_seconds: int | None = None
    lock_seconds_remaining: int = 0
    penalty_seconds_remaining: int = 0
    test_seconds_remaining: int = 0
    hide_timer: bool = False
    channel_delays_remaining_seconds: dict[str, int] = Field(default_factory=dict)
    stats: SessionStatsModel = Field(default_factory=SessionStatsModel)


class ArmResponse(CamelModel):
    status: str
    trigger_strategy: str


class HardwareTestResponse(CamelModel):
    status: str
    test_seconds_remaining: int


class StateResponse(CamelModel):
    status: str


class MessageResponse(CamelModel):
    status: str
    message: str


class RewardModel(CamelModel):
    code: str
    checksum: str


class Deterrents(CamelModel):
    enable_streaks: bool
    enable_payback_time: bool
    payback_duration_seconds: int
    enable_reward_code: bool = True


class DeviceDetails(CamelModel):
    id: str
    name: str
    address: str = ""
    version: str = ""
    features: list[str] = Field(default_factory=list)
    number_of_channels: int = 4
    build_type: str = ""
    channels: dict[str, bool] = Field(default_factory=dict)
    deterrents: Deterrents | None = None
