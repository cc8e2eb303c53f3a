"""Token balance, ledger history and metered consumption."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from models.user import User
from routers.auth_scope import get_current_user
from routers.rate_limit import rate_limit
from services.ledger import (
    FEATURE_PURCHASE,
    FEATURE_SIGNUP_GRANT,
    InsufficientBalanceError,
    debit_tokens,
    get_token_summary,
    list_ledger_entries,
)
from services.usage import track_usage

router = APIRouter()

FEATURE_TYPE_PATTERN = r"^[a-z][a-z0-9_-]{1,47}$"
RESERVED_FEATURE_TYPES = {FEATURE_PURCHASE, FEATURE_SIGNUP_GRANT}


class ConsumeTokensRequest(BaseModel):
    tokens: int = Field(ge=1, le=1_000_000)
    description: str = Field(min_length=1, max_length=200)
    feature_type: str = Field(pattern=FEATURE_TYPE_PATTERN)


class UsageRequest(BaseModel):
    input_text: str = Field(default="", max_length=200_000)
    output_text: str = Field(default="", max_length=200_000)
    description: str = Field(min_length=1, max_length=200)
    feature_type: str = Field(pattern=FEATURE_TYPE_PATTERN)


def _reject_reserved_feature(feature_type: str) -> None:
    if feature_type in RESERVED_FEATURE_TYPES:
        raise HTTPException(status_code=422, detail=f"feature_type '{feature_type}' is reserved")


def _insufficient(exc: InsufficientBalanceError) -> HTTPException:
    return HTTPException(
        status_code=402,
        detail={"message": str(exc), "required": exc.required, "available": exc.available},
    )


@router.get("")
async def token_info(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await get_token_summary(user.id, db)


@router.get("/transactions")
async def token_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return {"items": await list_ledger_entries(user.id, db, limit=limit)}


@router.post("/consume")
async def consume_tokens(
    request: ConsumeTokensRequest,
    _rate_limit: None = Depends(rate_limit("tokens_consume", limit=300, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    _reject_reserved_feature(request.feature_type)
    try:
        result = await debit_tokens(
            user.id,
            db,
            amount=request.tokens,
            description=request.description,
            feature_type=request.feature_type,
        )
    except InsufficientBalanceError as exc:
        raise _insufficient(exc) from exc
    return {"success": True, "remaining_tokens": result["balance_after"], "charged": result["charged"]}


@router.post("/usage")
async def record_usage(
    request: UsageRequest,
    _rate_limit: None = Depends(rate_limit("tokens_usage", limit=300, window_seconds=3600)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    _reject_reserved_feature(request.feature_type)
    try:
        result = await track_usage(
            user.id,
            db,
            input_text=request.input_text,
            output_text=request.output_text,
            feature_type=request.feature_type,
            description=request.description,
        )
    except InsufficientBalanceError as exc:
        raise _insufficient(exc) from exc
    return {"success": True, **result}
