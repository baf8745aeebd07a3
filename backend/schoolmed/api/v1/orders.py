"""Medication order endpoints."""
from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.api import deps
from schoolmed.models import CLINICAL_ROLES, OrderStatus
from schoolmed.schemas.dose import BatchResultRead
from schoolmed.schemas.order import (
    ApproveOrderRequest,
    GenerateRequest,
    OrderRead,
    OrderStatusUpdate,
    RestockRequest,
)
from schoolmed.security.permissions import CallerIdentity, require_roles
from schoolmed.services import order_service, schedule_generator

router = APIRouter(prefix="/orders", tags=["orders"])

SessionDep = Annotated[AsyncSession, Depends(deps.get_db_session)]
CallerDep = Annotated[CallerIdentity, Depends(deps.get_caller)]
_WRITE_DEPS = [Depends(deps.limit_writes)]


@router.post(
    "/{order_id}/generate",
    response_model=BatchResultRead,
    summary="Generate dose instances for an order",
    dependencies=_WRITE_DEPS,
)
async def generate(
    order_id: uuid.UUID, payload: GenerateRequest, session: SessionDep, caller: CallerDep
) -> BatchResultRead:
    require_roles(caller, set(CLINICAL_ROLES))
    result = await schedule_generator.generate_doses(
        session,
        order_id=order_id,
        start=payload.start_date,
        end=payload.end_date,
        actor=str(caller.user_id),
    )
    return BatchResultRead.model_validate(deps.unwrap(result))


@router.post(
    "/{order_id}/approve",
    response_model=OrderRead,
    summary="Approve or reject an order",
    dependencies=_WRITE_DEPS,
)
async def approve(
    order_id: uuid.UUID, payload: ApproveOrderRequest, session: SessionDep, caller: CallerDep
) -> OrderRead:
    result = await order_service.approve_order(
        session, order_id=order_id, caller=caller, approve=payload.approve, reason=payload.reason
    )
    return OrderRead.model_validate(deps.unwrap(result))


@router.post(
    "/{order_id}/status",
    response_model=OrderRead,
    summary="Change an order's status",
    dependencies=_WRITE_DEPS,
)
async def update_status(
    order_id: uuid.UUID, payload: OrderStatusUpdate, session: SessionDep, caller: CallerDep
) -> OrderRead:
    if payload.status in (OrderStatus.APPROVED, OrderStatus.REJECTED):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Use the approve endpoint to decide on an order",
        )
    result = await order_service.update_order_status(
        session, order_id=order_id, caller=caller, status=payload.status, reason=payload.reason
    )
    return OrderRead.model_validate(deps.unwrap(result))


@router.post(
    "/{order_id}/restock",
    response_model=OrderRead,
    summary="Add supply to an order",
    dependencies=_WRITE_DEPS,
)
async def restock(
    order_id: uuid.UUID, payload: RestockRequest, session: SessionDep, caller: CallerDep
) -> OrderRead:
    result = await order_service.restock_order(
        session, order_id=order_id, caller=caller, added_doses=payload.added_doses
    )
    return OrderRead.model_validate(deps.unwrap(result))
