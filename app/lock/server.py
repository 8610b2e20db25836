"""
Reference Lobster Lock device, FastAPI application entry point.

Behaves like the firmware's HTTP surface so the control proxy can be developed
and tested without hardware.  Reboot (``POST /factory-reset``) resets the
session state.

Run with:
    uvicorn app.lock.server:app --host 0.0.0.0 --port 3003
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import APIRouter, BackgroundTasks, Body, FastAPI, Request
from fastapi.responses import PlainTextResponse
from zeroconf import Error as ZeroconfError

from app.config import settings
from app.errors import install_error_handlers
from app.lock.announce import LockAnnouncer
from app.lock.logbuffer import RingBufferHandler
from app.lock.rewards import RewardGenerator
from app.lock.schemas import (
    ArmRequest,
    ArmResponse,
    Deterrents,
    DeviceDetails,
    HardwareTestResponse,
    MessageResponse,
    RewardModel,
    SessionStatsModel,
    SessionStatusResponse,
    StateResponse,
    WifiCredentials,
)
from app.lock.session import (
    CHANNELS,
    AbortSource,
    DeviceConfig,
    Phase,
    SessionStateMachine,
    TriggerStrategy,
)
from app.lock.timers import TimerScheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logger = logging.getLogger(__name__)

log_buffer = RingBufferHandler(capacity=settings.lock_log_buffer_size)
_lock_logger = logging.getLogger("app.lock")
_lock_logger.setLevel(logging.INFO)
_lock_logger.addHandler(log_buffer)


def build_machine() -> SessionStateMachine:
    config = DeviceConfig(
        enable_streaks=settings.lock_enable_streaks,
        enable_payback=settings.lock_enable_payback,
        payback_duration_seconds=settings.lock_payback_duration_seconds,
        enable_reward_code=settings.lock_enable_reward_code,
        test_duration_seconds=settings.lock_test_duration_seconds,
        armed_timeout_seconds=settings.lock_armed_timeout_seconds,
        keepalive_timeout_seconds=settings.lock_keepalive_timeout_seconds,
    )
    return SessionStateMachine(config, TimerScheduler(), RewardGenerator())


def status_response(machine: SessionStateMachine) -> SessionStatusResponse:
    strategy = machine.trigger_strategy if machine.phase is Phase.ARMED else None
    stats = machine.stats
    return SessionStatusResponse(
        status=machine.phase.value,
        trigger_strategy=strategy.value if strategy else None,
        trigger_timeout_remaining_seconds=(
            machine.trigger_timeout_remaining
            if strategy is TriggerStrategy.BUTTON_TRIGGER
            else None
        ),
        lock_seconds_remaining=machine.lock_remaining,
        penalty_seconds_remaining=machine.penalty_remaining,
        test_seconds_remaining=machine.test_remaining,
        hide_timer=machine.session.hide_timer if machine.session else False,
        channel_delays_remaining_seconds=dict(machine.channel_delays_remaining),
        stats=SessionStatsModel(
            streaks=stats.streaks,
            aborted=stats.aborted,
            completed=stats.completed,
            total_time_locked_seconds=stats.total_locked_seconds,
            pending_payback_seconds=stats.pending_payback_seconds,
        ),
    )


def _machine(request: Request) -> SessionStateMachine:
    return request.app.state.machine


router = APIRouter()


@router.get("/", response_class=PlainTextResponse)
async def root() -> str:
    endpoints = "\n".join(
        f"- {route}"
        for route in (
            "GET /status", "GET /details", "POST /arm", "POST /abort",
            "POST /start-test", "POST /keepalive", "GET /reward", "GET /log",
            "POST /update-wifi", "POST /factory-reset",
        )
    )
    return f"Lobster Lock API {settings.lock_version} (Reboot to Reset)\nEndpoints:\n{endpoints}"


@router.get(
    "/status", response_model=SessionStatusResponse, response_model_exclude_none=True
)
async def get_status(request: Request) -> SessionStatusResponse:
    return status_response(_machine(request))


@router.get("/details", response_model=DeviceDetails, response_model_exclude_none=True)
async def get_details(request: Request) -> DeviceDetails:
    config = _machine(request).config
    return DeviceDetails(
        id=settings.lock_device_id,
        name=settings.lock_device_id,
        address=request.url.hostname or "",
        version=settings.lock_version,
        features=settings.lock_features,
        number_of_channels=len(CHANNELS),
        build_type=settings.lock_build_type,
        channels=dict(config.channels),
        deterrents=Deterrents(
            enable_streaks=config.enable_streaks,
            enable_payback_time=config.enable_payback,
            payback_duration_seconds=config.payback_duration_seconds,
            enable_reward_code=config.enable_reward_code,
        ),
    )


@router.post("/arm", response_model=ArmResponse)
async def arm(request: Request, body: ArmRequest = Body(...)) -> ArmResponse:
    machine = _machine(request)
    session = body.to_session_config()
    machine.arm(session)
    return ArmResponse(status=machine.phase.value, trigger_strategy=session.trigger_strategy.value)


@router.post("/abort", response_model=StateResponse)
async def abort(request: Request) -> StateResponse:
    phase = _machine(request).abort(AbortSource.API)
    return StateResponse(status=phase.value)


@router.post("/start-test", response_model=HardwareTestResponse)
async def start_test(request: Request) -> HardwareTestResponse:
    machine = _machine(request)
    machine.start_test()
    return HardwareTestResponse(
        status=machine.phase.value, test_seconds_remaining=machine.test_remaining
    )


@router.post("/keepalive", response_model=MessageResponse)
async def keepalive(request: Request) -> MessageResponse:
    if _machine(request).keepalive():
        return MessageResponse(status="ok", message="Watchdog petted.")
    return MessageResponse(status="ok", message="Keepalive ignored, not locked.")


@router.get("/reward", response_model=list[RewardModel])
async def reward(request: Request) -> list[RewardModel]:
    history = _machine(request).reward_history()
    return [RewardModel(code=r.code, checksum=r.checksum) for r in history]


@router.get("/log", response_class=PlainTextResponse)
async def get_log() -> str:
    return log_buffer.render()


@router.post("/update-wifi", response_model=MessageResponse)
async def update_wifi(request: Request, body: WifiCredentials) -> MessageResponse:
    _machine(request).update_wifi(body.ssid)
    return MessageResponse(
        status="success",
        message="Wi-Fi credentials updated. Please reboot the device to apply.",
    )


@router.post("/factory-reset", response_model=MessageResponse)
async def factory_reset(request: Request, background: BackgroundTasks) -> MessageResponse:
    machine = _machine(request)
    machine.check_factory_reset()

    async def reboot() -> None:
        machine.reset()

    # the reboot happens once the response is on the wire
    background.add_task(reboot)
    return MessageResponse(status="resetting", message="Simulating reboot.")


@router.post("/debug/button-press", response_model=MessageResponse)
async def button_press(request: Request) -> MessageResponse:
    """Simulate a long-press of the physical button."""
    _machine(request).trigger()
    return MessageResponse(status="ok", message="Button press simulated")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Announce over mDNS on startup; stop timers and withdraw on shutdown."""
    announcer = LockAnnouncer(
        settings.lock_device_id,
        settings.lock_port,
        settings.mdns_service_type,
        version=settings.lock_version,
    )
    if settings.lock_announce:
        try:
            await announcer.start()
        except (OSError, ZeroconfError) as exc:
            logger.warning("mDNS announcement unavailable: %s", exc)
    logger.info("Lock server running (%s %s)", settings.lock_device_id, settings.lock_version)
    try:
        yield
    finally:
        app.state.machine.timers.cancel_all()
        await announcer.stop()


app = FastAPI(
    title="Lobster Lock (reference device)",
    description="HTTP surface of a Lobster Lock, backed by the session state machine.",
    version="0.1.0",
    lifespan=lifespan,
)
app.state.machine = build_machine()
install_error_handlers(app)
app.include_router(router, tags=["device"])
