"""
Requester identity.

Requests name their requester in the X-Requester-Id header. Anonymous
visitors get a guest id minted by `new_guest_session_id`.
"""

import secrets
import string
from typing import Optional

from fastapi import Header, HTTPException, status

from waitroom.core.clock import now_ms
from waitroom.core.config import get_settings

REQUESTER_HEADER = "X-Requester-Id"
MAX_REQUESTER_ID_LENGTH = 128

_BASE36 = string.digits + string.ascii_lowercase


def new_guest_session_id(now: Optional[int] = None) -> str:
    """guest_<epoch ms>_<9 random base36 chars>"""
    now = now if now is not None else now_ms()
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"guest_{now}_{suffix}"


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if len(value) > MAX_REQUESTER_ID_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{REQUESTER_HEADER} must be at most {MAX_REQUESTER_ID_LENGTH} characters",
        )
    return value


async def get_requester_id(
    x_requester_id: Optional[str] = Header(None, alias=REQUESTER_HEADER),
) -> str:
    """FastAPI dependency: the calling requester, required."""
    requester_id = _clean(x_requester_id)
    if requester_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {REQUESTER_HEADER} header",
        )
    return requester_id


async def get_optional_requester_id(
    x_requester_id: Optional[str] = Header(None, alias=REQUESTER_HEADER),
) -> Optional[str]:
    return _clean(x_requester_id)


CALLBACK_SECRET_HEADER = "X-Callback-Secret"


async def require_payment_callback(
    x_callback_secret: Optional[str] = Header(None, alias=CALLBACK_SECRET_HEADER),
) -> None:
    """FastAPI dependency for payment callbacks. Open when no secret is configured."""
    expected = get_settings().PAYMENT_CALLBACK_SECRET
    if not expected:
        return
    if x_callback_secret is None or not secrets.compare_digest(x_callback_secret, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or missing {CALLBACK_SECRET_HEADER} header",
        )
