from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from gensy.database import get_db
from gensy.api.deps import get_current_user_id, require_internal_key
from gensy.api.schemas import (
    BalanceResponse,
    CreditGrantRequest,
    CreditResultResponse,
    DebitRequest,
    HistoryResponse,
    Pagination,
    SummaryResponse,
    TransactionResponse,
)
from gensy.services.credits import CreditResult, credit_service

router = APIRouter()


def insufficient_credits_response(required: int, available: int) -> JSONResponse:
    return JSONResponse(
        status_code=402,
        content={"error": "Insufficient credits", "required": required, "available": available},
    )


def _failure(result: CreditResult):
    if result.retryable:
        raise HTTPException(status_code=503, detail=result.error)
    if result.required is not None:
        return insufficient_credits_response(result.required, result.available or 0)
    raise HTTPException(status_code=409, detail=result.error)


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    balance = await credit_service.get_balance(db, user_id)
    return BalanceResponse(credits=balance)


@router.get("/summary", response_model=SummaryResponse)
async def get_summary(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    summary = await credit_service.summary(db, user_id)
    return SummaryResponse(
        current=summary.current,
        total_earned=summary.total_earned,
        total_spent=summary.total_spent,
        last_updated=summary.last_updated,
    )


@router.get("/history", response_model=HistoryResponse)
async def get_history(
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    transactions = await credit_service.history(db, user_id, limit=limit, offset=offset)
    return HistoryResponse(
        transactions=[TransactionResponse.from_transaction(tx) for tx in transactions],
        pagination=Pagination(limit=limit, offset=offset, has_more=len(transactions) == limit),
    )


@router.post("/debit", response_model=CreditResultResponse, dependencies=[Depends(require_internal_key)])
async def debit_credits(
    data: DebitRequest,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    result = await credit_service.debit(
        db,
        user_id=user_id,
        amount=data.amount,
        description=data.description,
        generation_id=data.generation_id,
    )
    if not result.success:
        return _failure(result)
    return CreditResultResponse(success=True, new_balance=result.new_balance)


@router.post("/credit", response_model=CreditResultResponse, dependencies=[Depends(require_internal_key)])
async def grant_credits(
    data: CreditGrantRequest,
    db: AsyncSession = Depends(get_db),
):
    result = await credit_service.credit(
        db,
        user_id=data.user_id,
        amount=data.amount,
        description=data.description,
        kind=data.kind,
        payment_id=data.payment_id,
        generation_id=data.generation_id,
    )
    if not result.success:
        return _failure(result)
    return CreditResultResponse(success=True, new_balance=result.new_balance)
