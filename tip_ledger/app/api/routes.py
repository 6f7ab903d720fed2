import asyncio
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from ..core.config import Settings
from ..core.dependencies import (
    get_app_settings,
    get_event_bus,
    get_ledger_service,
    get_payment_service,
)
from ..core.events import TransactionEventBus
from ..models import (
    CreatorCreate,
    CreatorResponse,
    InitiateTipRequest,
    InitiateTipResponse,
    PaymentStatusResponse,
    TransactionCreate,
    TransactionResponse,
    TransactionStatus,
)
from ..services import LedgerService, PaymentService


router = APIRouter(prefix="/creators", tags=["creators"])

@router.post("", response_model=CreatorResponse, status_code=status.HTTP_201_CREATED)
def create_creator(
    payload: CreatorCreate,
    service: LedgerService = Depends(get_ledger_service),
) -> CreatorResponse:
    return service.create_creator(payload)

@router.get("/{creator_id}", response_model=CreatorResponse)
def get_creator(
    creator_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> CreatorResponse:
    return service.get_creator(creator_id)

@router.get("/{creator_id}/transactions", response_model=list[TransactionResponse])
def list_creator_transactions(
    creator_id: UUID,
    limit: int = Query(50, ge=1, le=500),
    include_pending: bool = False,
    service: LedgerService = Depends(get_ledger_service),
) -> list[TransactionResponse]:
    return service.list_transactions(creator_id, limit=limit, include_pending=include_pending)

transaction_router = APIRouter(prefix="/transactions", tags=["transactions"])

@transaction_router.post("", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED)
def create_transaction(
    payload: TransactionCreate,
    service: LedgerService = Depends(get_ledger_service),
) -> TransactionResponse:
    return service.record_transaction(payload)

payment_router = APIRouter(prefix="/payments/paystack", tags=["payments"])
webhook_alias_router = APIRouter(tags=["payments"])

@payment_router.post("/initiate", response_model=InitiateTipResponse)
def initiate_tip(
    payload: InitiateTipRequest,
    service: PaymentService = Depends(get_payment_service),
) -> InitiateTipResponse:
    return service.initiate_tip(payload)

@payment_router.get("/status/{reference}", response_model=PaymentStatusResponse)
def payment_status(
    reference: str,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentStatusResponse:
    return service.get_status(reference.strip())

@payment_router.get("/verify/{reference}", response_model=PaymentStatusResponse)
def verify_payment(
    reference: str,
    service: PaymentService = Depends(get_payment_service),
) -> PaymentStatusResponse:
    return service.verify_payment(reference.strip())

@payment_router.post("/webhook")
@webhook_alias_router.post("/paystack/webhook")
async def paystack_webhook(
    request: Request,
    service: PaymentService = Depends(get_payment_service),
    settings: Settings = Depends(get_app_settings),
    signature: Optional[str] = Header(default=None, alias="x-paystack-signature"),
) -> dict:
    if not settings.enable_webhook:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook disabled")
    raw_body = await request.body()
    await run_in_threadpool(service.handle_webhook, raw_body, signature)
    return {"received": True}

admin_router = APIRouter(prefix="/admin/withdrawals", tags=["admin"])

@admin_router.get("", response_model=list[TransactionResponse])
def list_withdrawals(
    withdrawal_status: Optional[TransactionStatus] = Query(TransactionStatus.PENDING, alias="status"),
    service: LedgerService = Depends(get_ledger_service),
) -> list[TransactionResponse]:
    return service.list_withdrawals(withdrawal_status)

@admin_router.post("/{withdrawal_id}/approve", response_model=TransactionResponse)
def approve_withdrawal(
    withdrawal_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> TransactionResponse:
    return service.approve_withdrawal(withdrawal_id)

@admin_router.post("/{withdrawal_id}/decline", response_model=TransactionResponse)
def decline_withdrawal(
    withdrawal_id: UUID,
    service: LedgerService = Depends(get_ledger_service),
) -> TransactionResponse:
    return service.decline_withdrawal(withdrawal_id)

stream_router = APIRouter(prefix="/stream", tags=["stream"])

@stream_router.get("/transactions")
async def stream_transactions(
    request: Request,
    bus: TransactionEventBus = Depends(get_event_bus),
) -> StreamingResponse:
    subscription = bus.subscribe()

    async def event_source():
        try:
            yield ": connected\n\n"
            while not await request.is_disconnected():
                try:
                    event = await asyncio.wait_for(subscription.get(), timeout=15)
                except asyncio.TimeoutError:
                    yield ": ping\n\n"
                    continue
                yield f"event: {event.type}\ndata: {event.model_dump_json()}\n\n"
        finally:
            subscription.close()

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )

__all__ = [
    "router",
    "transaction_router",
    "payment_router",
    "webhook_alias_router",
    "admin_router",
    "stream_router",
]
