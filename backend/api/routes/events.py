"""Record event intake: the CRM write path reports creates and updates here."""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from api.schemas.execution import RecordEventRequest, RecordEventResponse, TriggerOutcomeResponse
from app.dependencies import get_current_tenant, get_db
from core.security import TokenPayload
from services.trigger_service import TriggerService
from triggers.base import RecordEvent

router = APIRouter(tags=["events"])


@router.post("/", response_model=RecordEventResponse, status_code=status.HTTP_202_ACCEPTED)
async def receive_record_event(
    request: RecordEventRequest,
    current_user: TokenPayload = Depends(get_current_tenant),
    db: AsyncSession = Depends(get_db),
) -> RecordEventResponse:
    """Start every matching workflow for the record. Never fails because a workflow is misconfigured."""
    event = RecordEvent(
        organization_id=current_user.org_id,
        object_type=request.object_type.value,
        record_id=request.record_id,
        event_kind=request.event_kind.value,
        record=request.record,
        previous=request.previous,
        changed_fields=request.changed_fields,
    )
    outcomes = await TriggerService(db).handle_record_event(event)
    return RecordEventResponse(
        outcomes=[TriggerOutcomeResponse(**o.to_dict()) for o in outcomes],
        started=sum(1 for o in outcomes if o.triggered),
    )
