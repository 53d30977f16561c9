from typing import List, Optional

from fastapi import APIRouter, HTTPException
from sqlmodel import select

from db import SessionDep
from models import Need
from schemas import NeedCreate
from .auth import CurrentUserRoleDep

router = APIRouter(tags=["needs"])


@router.get("/{need_id}", response_model=Need)
def get_need(need_id: int, session: SessionDep):
    need = session.get(Need, need_id)
    if need is None:
        raise HTTPException(status_code=404, detail="Need not found")
    return need


@router.post("/", response_model=Need, status_code=201)
def create_need(need_in: NeedCreate, session: SessionDep, current: CurrentUserRoleDep):
    user = current["user"]
    if current["role"] != "school":
        raise HTTPException(status_code=403, detail="Only schools can post needs.")

    need = Need(
        school_id=user.id,
        device_type=need_in.device_type,
        quantity=need_in.quantity,
        description=need_in.description,
        # Keys outside RAM/Storage/... are stored as given and ignored by scoring.
        specifications=dict(need_in.specifications),
        min_condition=need_in.min_condition,
        priority=need_in.priority,
        status="pending",
    )
    session.add(need)
    session.commit()
    session.refresh(need)
    return need


@router.get("/", response_model=List[Need])
def list_needs(
    session: SessionDep,
    school_id: Optional[int] = None,
    device_type: Optional[str] = None,
    priority: Optional[str] = None,
    status: Optional[str] = None,
):
    query = select(Need)
    if school_id is not None:
        query = query.where(Need.school_id == school_id)
    if device_type is not None:
        query = query.where(Need.device_type == device_type)
    if priority is not None:
        query = query.where(Need.priority == priority)
    if status is not None:
        query = query.where(Need.status == status)
    return session.exec(query.order_by(Need.created_at.desc())).all()
