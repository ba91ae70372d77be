# creditgate/main.py
from __future__ import annotations

import datetime as dt
import logging
import time
import uuid

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .balance import BalanceProjector
from .config import assert_runtime_config, settings
from .credits import CreditService
from .db import engine, init_db
from .deps import (
    get_credit_service,
    get_current_user_id,
    get_projector,
    get_referral_service,
    require_admin,
)
from .errors import CreditError
from .logging_config import configure_logging
from .referrals import ReferralService
from .schemas import (
    BalanceSummary,
    FinalizeRequest,
    FinalizeResult,
    GrantRequest,
    GrantResult,
    LedgerHistory,
    ReferralRequest,
    ReferralResult,
    ReferralStats,
    ReservationResult,
    ReserveRequest,
    SweepResponse,
)
from .sweeper import expire_stale_reservations

logger = logging.getLogger(__name__)

app = FastAPI(title=settings.app_name)


# -------------------------
# Middleware: request id + timing
# -------------------------
@app.middleware("http")
async def timing_middleware(request: Request, call_next):
    t0 = time.perf_counter()
    req_id = request.headers.get("x-request-id") or str(uuid.uuid4())

    response: Response = await call_next(request)

    dt_ms = (time.perf_counter() - t0) * 1000.0
    response.headers["X-Request-Id"] = req_id
    response.headers["X-Response-Time-Ms"] = f"{dt_ms:.2f}"
    return response


# -------------------------
# CORS
# -------------------------
raw = (settings.cors_origins or "*").strip()
origins = ["*"] if raw in {"*", ""} else [o.strip() for o in raw.split(",") if o.strip()]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False if origins == ["*"] else True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    configure_logging(settings.log_level)
    assert_runtime_config()
    init_db(engine)


@app.exception_handler(CreditError)
async def credit_error_handler(request: Request, exc: CreditError):
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.get("/healthz")
def healthz():
    return {"ok": True, "ts": dt.datetime.now(dt.timezone.utc).isoformat()}


@app.get("/")
def root():
    return {"name": settings.app_name}


# -------------------------
# CREDITS
# -------------------------
@app.post("/credits/reserve", response_model=ReservationResult)
def reserve(
    req: ReserveRequest,
    user_id: str = Depends(get_current_user_id),
    credits: CreditService = Depends(get_credit_service),
):
    request_id = req.request_id or str(uuid.uuid4())
    return credits.reserve(user_id, request_id, req.action, req.cost, metadata=req.metadata)


@app.post("/credits/finalize", response_model=FinalizeResult)
def finalize(
    req: FinalizeRequest,
    user_id: str = Depends(get_current_user_id),
    credits: CreditService = Depends(get_credit_service),
):
    return credits.finalize(req.request_id, req.disposition, user_id=user_id)


@app.get("/credits/balance", response_model=BalanceSummary)
def balance(
    user_id: str = Depends(get_current_user_id),
    projector: BalanceProjector = Depends(get_projector),
):
    return projector.get_summary(user_id)


@app.get("/credits/history", response_model=LedgerHistory)
def history(
    page: int = 1,
    page_size: int = 20,
    user_id: str = Depends(get_current_user_id),
    projector: BalanceProjector = Depends(get_projector),
):
    return projector.get_history(user_id, page, page_size)


# -------------------------
# REFERRALS
# -------------------------
@app.post("/referrals", response_model=ReferralResult)
def process_referral(
    req: ReferralRequest,
    user_id: str = Depends(get_current_user_id),
    referrals: ReferralService = Depends(get_referral_service),
):
    # the caller is the newly referred user
    return referrals.process_referral(req.referrer_user_id, user_id)


@app.get("/referrals/stats", response_model=ReferralStats)
def referral_stats(
    user_id: str = Depends(get_current_user_id),
    projector: BalanceProjector = Depends(get_projector),
):
    return projector.get_referral_stats(user_id)


# -------------------------
# ADMIN
# -------------------------
@app.post("/admin/credits/grant", response_model=GrantResult, dependencies=[Depends(require_admin)])
def admin_grant(
    req: GrantRequest,
    credits: CreditService = Depends(get_credit_service),
):
    logger.info("admin grant user=%s amount=%s reason=%s", req.user_id, req.amount, req.reason)
    return credits.grant(
        req.user_id,
        req.amount,
        req.reason,
        metadata=req.metadata,
        request_id=req.request_id,
    )


@app.post("/admin/credits/sweep", response_model=SweepResponse, dependencies=[Depends(require_admin)])
def admin_sweep(credits: CreditService = Depends(get_credit_service)):
    return SweepResponse(refunded=expire_stale_reservations(credits))
