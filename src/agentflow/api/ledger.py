"""Operator-facing ledger routes."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel, Field

from agentflow.api.auth import require_bearer
from agentflow.ledger.gateway import DEFAULT_LOG_MEMO, LedgerGateway
from agentflow.market.models import AccountId, Budget, LedgerEventType

router = APIRouter(prefix="/ledger", tags=["Ledger"])


class LedgerStatusResponse(BaseModel):
    operator_id: str
    marketplace_log_id: str | None = None


class CreateLogRequest(BaseModel):
    memo: str = Field(default=DEFAULT_LOG_MEMO, max_length=100)
    set_as_marketplace: bool = False


class CreateLogResponse(BaseModel):
    log_id: str


class PublishMessageRequest(BaseModel):
    log_id: AccountId
    message: str = Field(min_length=1)


class PostEventRequest(BaseModel):
    event_type: LedgerEventType
    payload: dict[str, Any] = Field(default_factory=dict)


class SequenceNumberResponse(BaseModel):
    sequence_number: int


class TransferRequest(BaseModel):
    recipient_id: AccountId
    amount: Budget


class TransferResponse(BaseModel):
    transaction_id: str


def _gateway(request: Request) -> LedgerGateway:
    return request.app.state.ledger


@router.get("/status", response_model=LedgerStatusResponse)
def ledger_status(request: Request) -> LedgerStatusResponse:
    return LedgerStatusResponse(**_gateway(request).status())


@router.post(
    "/logs",
    response_model=CreateLogResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_bearer)],
)
def create_log(payload: CreateLogRequest, request: Request) -> CreateLogResponse:
    gateway = _gateway(request)
    log_id = gateway.create_log(payload.memo)
    if payload.set_as_marketplace:
        gateway.set_marketplace_log_id(log_id)
    return CreateLogResponse(log_id=log_id)


@router.post(
    "/messages",
    response_model=SequenceNumberResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_bearer)],
)
def publish_message(payload: PublishMessageRequest, request: Request) -> SequenceNumberResponse:
    sequence_number = _gateway(request).publish(payload.log_id, payload.message)
    return SequenceNumberResponse(sequence_number=sequence_number)


@router.post(
    "/events",
    response_model=SequenceNumberResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_bearer)],
)
def post_event(payload: PostEventRequest, request: Request) -> SequenceNumberResponse:
    sequence_number = _gateway(request).post_event(payload.event_type, payload.payload)
    return SequenceNumberResponse(sequence_number=sequence_number)


@router.post(
    "/transfers",
    response_model=TransferResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_bearer)],
)
def transfer(payload: TransferRequest, request: Request) -> TransferResponse:
    transaction_id = _gateway(request).transfer(payload.recipient_id, payload.amount)
    return TransferResponse(transaction_id=transaction_id)
