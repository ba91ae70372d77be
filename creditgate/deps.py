# creditgate/deps.py
from __future__ import annotations

import hmac
from functools import lru_cache
from typing import Optional

from fastapi import Header, HTTPException, status

from .balance import BalanceProjector
from .config import settings
from .credits import CreditService
from .db import SessionLocal
from .referrals import ReferralService


# ---------------------------
# Service singletons
# ---------------------------
@lru_cache(maxsize=1)
def get_credit_service() -> CreditService:
    # one lock registry per process: every request shares it
    return CreditService(SessionLocal)


def get_projector() -> BalanceProjector:
    return BalanceProjector(SessionLocal)


def get_referral_service() -> ReferralService:
    return ReferralService(get_credit_service())


# ---------------------------
# Caller identity
# Token -> user id resolution happens upstream; we only read the result.
# ---------------------------
def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    if len(user_id) > 64:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-User-Id too long",
        )
    return user_id


def require_admin(x_admin_secret: Optional[str] = Header(default=None)) -> None:
    expected = settings.admin_secret
    if not expected or not x_admin_secret or not hmac.compare_digest(x_admin_secret, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")
