# creditgate/schemas.py
from __future__ import annotations

import datetime as dt
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


EntryStatusLiteral = Literal["reserved", "committed", "refunded", "granted"]


# -------------------------
# Service results
# -------------------------
class ReservationResult(BaseModel):
    ok: bool = True
    reservation_id: str
    request_id: str
    status: EntryStatusLiteral
    available: int
    # True when this call replayed an earlier reservation
    replayed: bool = False


class FinalizeResult(BaseModel):
    ok: bool = True
    request_id: str
    status: EntryStatusLiteral
    replayed: bool = False


class GrantResult(BaseModel):
    ok: bool = True
    request_id: str
    new_balance: int
    replayed: bool = False


class ReferralResult(BaseModel):
    ok: bool = True
    awarded: bool
    referrer_bonus: int = 0
    referred_bonus: int = 0


class BalanceSummary(BaseModel):
    user_id: str
    balance: int
    available: int
    reserved: int


class ReferralStats(BaseModel):
    referred_count: int
    credits_from_referrals: int


class LedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    request_id: str
    action: str
    amount: int
    status: EntryStatusLiteral
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("meta", "metadata"))
    created_at: dt.datetime


class LedgerHistory(BaseModel):
    user_id: str
    entries: list[LedgerEntryOut]
    total_count: int
    page: int
    page_size: int


# -------------------------
# HTTP requests
# -------------------------
class ReserveRequest(BaseModel):
    request_id: Optional[str] = Field(default=None, max_length=128)
    action: str = Field(default="image.gen", max_length=64)
    cost: int = Field(default=1)
    metadata: dict[str, Any] = Field(default_factory=dict)


class FinalizeRequest(BaseModel):
    request_id: str = Field(min_length=1, max_length=128)
    disposition: str = Field(max_length=32)


class GrantRequest(BaseModel):
    user_id: str = Field(min_length=1, max_length=64)
    amount: int
    reason: str = Field(min_length=1, max_length=200)
    request_id: Optional[str] = Field(default=None, max_length=128)
    metadata: dict[str, Any] = Field(default_factory=dict)


class ReferralRequest(BaseModel):
    referrer_user_id: str = Field(min_length=1, max_length=64)


class SweepResponse(BaseModel):
    ok: bool = True
    refunded: int
