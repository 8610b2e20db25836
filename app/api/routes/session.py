"""
Session endpoints, proxied to the lock's own state machine.

The proxy holds no session state.  Request bodies are validated here first
(``ArmRequest`` is discriminated on ``triggerStrategy``) so a malformed arm
never reaches the device; the device validates again.
"""

import logging

from fastapi import APIRouter, Body, Depends

from app.api.deps import get_forwarder
from app.device import forwarder as commands
from app.device.forwarder import CommandForwarder
from app.lock.schemas import (
    ArmRequest,
    ArmResponse,
    HardwareTestResponse,
    RewardModel,
    SessionStatusResponse,
    StateResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/devices/{device_id}/session/status",
    response_model=SessionStatusResponse,
    response_model_exclude_none=True,
)
async def get_session_status(
    device_id: str, forwarder: CommandForwarder = Depends(get_forwarder)
) -> SessionStatusResponse:
    result = await forwarder.send(device_id, commands.STATUS)
    return SessionStatusResponse.model_validate(result.body or {})


@router.post("/devices/{device_id}/session/arm", response_model=ArmResponse)
async def arm_session(
    device_id: str,
    body: ArmRequest = Body(...),
    forwarder: CommandForwarder = Depends(get_forwarder),
) -> ArmResponse:
    """
    Arm the lock for a session.

    ``autoCountdown`` closes each channel when its delay runs out;
    ``buttonTrigger`` waits for a long-press on the device.
    """
    payload = body.model_dump(by_alias=True)
    logger.info(
        "Arming %s (%s, %ds)", device_id, body.trigger_strategy, body.lock_duration_seconds
    )
    result = await forwarder.send(device_id, commands.ARM, payload)
    return ArmResponse.model_validate(result.body or {})


@router.post("/devices/{device_id}/session/test", response_model=HardwareTestResponse)
async def start_test(
    device_id: str, forwarder: CommandForwarder = Depends(get_forwarder)
) -> HardwareTestResponse:
    result = await forwarder.send(device_id, commands.START_TEST)
    return HardwareTestResponse.model_validate(result.body or {})


@router.post("/devices/{device_id}/session/abort", response_model=StateResponse)
async def abort_session(
    device_id: str, forwarder: CommandForwarder = Depends(get_forwarder)
) -> StateResponse:
    result = await forwarder.send(device_id, commands.ABORT)
    data = result.body or {}
    logger.info("Abort forwarded to %s, lock is now %s", device_id, data.get("status"))
    return StateResponse.model_validate(data)


@router.get("/devices/{device_id}/session/reward", response_model=list[RewardModel])
async def get_reward_history(
    device_id: str, forwarder: CommandForwarder = Depends(get_forwarder)
) -> list[RewardModel]:
    """
    Reward code history, most recent first.  The lock refuses (**403**) while
    a session is armed, locked or serving its penalty.
    """
    result = await forwarder.send(device_id, commands.REWARD)
    return [RewardModel.model_validate(item) for item in result.body or []]
