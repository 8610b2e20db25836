"""
Error taxonomy shared by the control proxy and the reference lock.

Every error carries the HTTP status it is rendered with.  Routes raise these
directly; ``app.main`` and ``app.lock.server`` install a single exception
handler that turns them into the usual ``{"detail": {"status", "message"}}``
envelope.
"""

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class LockError(Exception):
    """Base error for the lock proxy and device."""

    status_code: int = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class DeviceNotFoundError(LockError):
    """Unknown device id, or the entry is not in a forwarding-eligible state."""

    status_code = 404


class DeviceUnreachableError(LockError):
    """Network failure or timeout while talking to the device."""

    status_code = 502


class DeviceBusyError(LockError):
    """Command is not valid for the device's current phase."""

    status_code = 409


class InvalidRequestError(LockError):
    """Missing or malformed request fields, or a value outside its bounds."""

    status_code = 400


class ProvisioningError(LockError):
    """Missing provisioning characteristic or a failed BLE write."""

    status_code = 500


class DeviceResponseError(LockError):
    """Any other error status returned by the device, passed through as-is."""


class RewardExhaustedError(LockError):
    """No collision-free reward checksum could be drawn."""


# ── FastAPI wiring ───────────────────────────────────────────────────────────


def error_detail(message: str) -> dict[str, str]:
    return {"status": "error", "message": message}


async def lock_error_handler(request: Request, exc: LockError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code, content={"detail": error_detail(exc.message)}
    )


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Render body validation failures as 400 with the offending fields listed."""
    missing = []
    invalid = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part != "body"]
        field = ".".join(loc) or "body"
        if err.get("type") == "missing":
            missing.append(field)
        else:
            invalid.append(f"{field} ({err.get('msg', 'invalid')})")

    parts = []
    if missing:
        parts.append("Missing required fields: " + ", ".join(missing) + ".")
    if invalid:
        parts.append("Invalid fields: " + ", ".join(invalid) + ".")
    return JSONResponse(
        status_code=400, content={"detail": error_detail(" ".join(parts) or "Invalid request.")}
    )


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LockError, lock_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
