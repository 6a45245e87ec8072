"""OTP HTTP endpoints — translate requests into service calls.

Endpoints
---------
POST /otp/request   → issue a code for an identifier
POST /otp/verify    → check a code

Every verification failure is answered with the same status and body
shape so a client cannot tell a wrong code from a missing one.
"""

from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from otp_guard.dependencies import get_otp_service
from otp_guard.errors import RateLimited, StorageError, VerificationFailed
from otp_guard.services.otp_service import OTPService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/otp", tags=["otp"])

GENERIC_FAILURE = "invalid or expired code"
STORAGE_FAILURE = "service temporarily unavailable, please retry"


# ── Request / response models ────────────────────────────

class OTPRequestBody(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=320)


class OTPRequestResponse(BaseModel):
    message: str


class OTPVerifyBody(BaseModel):
    identifier: str = Field(..., min_length=1, max_length=320)
    code: str = Field(..., min_length=1, max_length=16)


class OTPVerifyResponse(BaseModel):
    verified: bool


# ── Helpers ──────────────────────────────────────────────

def _source_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _retry_after_seconds(retry_after: float | None) -> int | None:
    return math.ceil(retry_after) if retry_after is not None else None


def _storage_unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"detail": STORAGE_FAILURE},
        headers={"Retry-After": "1"},
    )


# ── Endpoints ────────────────────────────────────────────

@router.post("/request", response_model=OTPRequestResponse, status_code=202)
async def request_otp(
    body: OTPRequestBody,
    request: Request,
    service: OTPService = Depends(get_otp_service),
):
    """Issue a code. The response never reveals whether the account exists."""
    try:
        await service.request_otp(body.identifier, _source_address(request))
    except RateLimited as exc:
        retry_after = _retry_after_seconds(exc.retry_after)
        return JSONResponse(
            status_code=429,
            content={"detail": "too many requests", "retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )
    except StorageError:
        return _storage_unavailable()
    except ValueError:
        return JSONResponse(status_code=422, content={"detail": "identifier is required"})

    return OTPRequestResponse(message="If the account exists, a code has been sent")


@router.post("/verify", response_model=OTPVerifyResponse)
async def verify_otp(
    body: OTPVerifyBody,
    request: Request,
    service: OTPService = Depends(get_otp_service),
):
    """Check a code. All failures share one status and body shape."""
    try:
        await service.verify_otp(body.identifier, _source_address(request), body.code)
    except VerificationFailed as exc:
        logger.debug("Verification failed: %s", type(exc).__name__)
        retry_after = _retry_after_seconds(exc.retry_after)
        headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
        return JSONResponse(
            status_code=400,
            content={"detail": GENERIC_FAILURE, "retry_after": retry_after},
            headers=headers,
        )
    except StorageError:
        return _storage_unavailable()
    except ValueError:
        return JSONResponse(
            status_code=400, content={"detail": GENERIC_FAILURE, "retry_after": None}
        )

    return OTPVerifyResponse(verified=True)
