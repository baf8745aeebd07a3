"""Dose instance endpoints."""
from __future__ import annotations

import uuid
from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from schoolmed.api import deps
from schoolmed.schemas.dose import (
    AdministerRequest,
    BatchResultRead,
    BulkAdministerRequest,
    DoseRead,
    MarkAbsentRequest,
    MarkMissedRequest,
    QuickCompleteRequest,
)
from schoolmed.security.permissions import CallerIdentity
from schoolmed.services import dose_service

router = APIRouter(prefix="/doses", tags=["doses"])

SessionDep = Annotated[AsyncSession, Depends(deps.get_db_session)]
CallerDep = Annotated[CallerIdentity, Depends(deps.get_caller)]
_WRITE_DEPS = [Depends(deps.limit_writes)]


@router.post(
    "/bulk-administer",
    response_model=BatchResultRead,
    summary="Administer several doses",
    dependencies=_WRITE_DEPS,
)
async def bulk_administer(
    payload: BulkAdministerRequest, session: SessionDep, caller: CallerDep
) -> BatchResultRead:
    result = await dose_service.bulk_administer(session, items=payload.items, caller=caller)
    return BatchResultRead.model_validate(deps.unwrap(result))


@router.get("/{dose_id}", response_model=DoseRead, summary="Get dose instance")
async def get_dose(dose_id: uuid.UUID, session: SessionDep, caller: CallerDep) -> DoseRead:
    return deps.unwrap(await dose_service.get_dose(session, dose_id=dose_id, caller=caller))


@router.post(
    "/{dose_id}/administer",
    response_model=DoseRead,
    summary="Record an administration",
    dependencies=_WRITE_DEPS,
)
async def administer(
    dose_id: uuid.UUID, payload: AdministerRequest, session: SessionDep, caller: CallerDep
) -> DoseRead:
    result = await dose_service.administer(
        session, dose_id=dose_id, caller=caller, payload=payload
    )
    return deps.unwrap(result)


@router.post(
    "/{dose_id}/quick-complete",
    response_model=DoseRead,
    summary="Mark a dose completed",
    dependencies=_WRITE_DEPS,
)
async def quick_complete(
    dose_id: uuid.UUID, payload: QuickCompleteRequest, session: SessionDep, caller: CallerDep
) -> DoseRead:
    result = await dose_service.quick_complete(
        session, dose_id=dose_id, caller=caller, notes=payload.notes
    )
    return deps.unwrap(result)


@router.post(
    "/{dose_id}/absent",
    response_model=DoseRead,
    summary="Mark the student absent",
    dependencies=_WRITE_DEPS,
)
async def mark_absent(
    dose_id: uuid.UUID, payload: MarkAbsentRequest, session: SessionDep, caller: CallerDep
) -> DoseRead:
    result = await dose_service.mark_student_absent(
        session, dose_id=dose_id, caller=caller, notes=payload.notes
    )
    return deps.unwrap(result)


@router.post(
    "/{dose_id}/missed",
    response_model=DoseRead,
    summary="Mark a dose missed",
    dependencies=_WRITE_DEPS,
)
async def mark_missed(
    dose_id: uuid.UUID, payload: MarkMissedRequest, session: SessionDep, caller: CallerDep
) -> DoseRead:
    result = await dose_service.mark_missed(
        session, dose_id=dose_id, caller=caller, reason=payload.reason, notes=payload.notes
    )
    return deps.unwrap(result)
