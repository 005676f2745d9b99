"""
Booking Flow Hand-off Routes

Per browsing session scratch space for the multi-step booking flow, keyed by
the X-Flow-Session header.
"""

from fastapi import APIRouter, Body, Depends, Query, status
from typing import Any, Dict
from pydantic import ValidationError as PydanticValidationError

from app.api.deps import get_flow_session, get_flow_store
from app.core.exceptions import NotFoundError, ValidationError
from app.infrastructure.redis import FlowStateStore
from app.api.v1.flow.schemas import FLOW_STEPS

router = APIRouter()


def _check_step(step: str) -> str:
    if step not in FLOW_STEPS:
        raise NotFoundError("Unknown flow step", details={"step": step, "steps": list(FLOW_STEPS)})
    return step


@router.put("/{step}")
async def put_flow_state(
    step: str,
    record: Dict[str, Any] = Body(...),
    session_id: str = Depends(get_flow_session),
    store: FlowStateStore = Depends(get_flow_store)
):
    """Store the record for a step, replacing any previous one"""
    model = FLOW_STEPS[_check_step(step)]
    try:
        value = model.model_validate(record)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {step} record", details={"errors": e.errors(include_url=False)})
    await store.put(session_id, step, value)
    return value.model_dump(mode="json")


@router.get("/{step}")
async def get_flow_state(
    step: str,
    consume: bool = Query(False, description="Delete the record after reading it"),
    session_id: str = Depends(get_flow_session),
    store: FlowStateStore = Depends(get_flow_store)
):
    _check_step(step)
    record = await (store.take(session_id, step) if consume else store.get(session_id, step))
    if record is None:
        raise NotFoundError("No state stored for this step", details={"step": step})
    return record.model_dump(mode="json")


@router.delete("/{step}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_flow_state(
    step: str,
    session_id: str = Depends(get_flow_session),
    store: FlowStateStore = Depends(get_flow_store)
):
    await store.discard(session_id, _check_step(step))


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def reset_flow_state(
    session_id: str = Depends(get_flow_session),
    store: FlowStateStore = Depends(get_flow_store)
):
    """Forget the whole flow, e.g. when the user starts over"""
    await store.reset(session_id)
