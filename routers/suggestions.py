from typing import List

from fastapi import APIRouter, HTTPException, Query
from sqlmodel import select

from db import SessionDep
from models import Device, Need, User
from schemas import (
    AttributeSuggestion,
    DescriptionIn,
    MatchCandidateRead,
    SchoolNeedMatches,
)
from services.extractor import extract_attributes
from services.matching import MatchCandidate, coords_of, score_device, score_need
from .auth import CurrentUserRoleDep

router = APIRouter(tags=["suggestions"])

OPEN_NEED_STATUSES = ("pending", "approved")


def _as_read(candidates: List[MatchCandidate]) -> List[MatchCandidateRead]:
    return [
        MatchCandidateRead(
            device=c.device,
            need=c.need,
            score=c.score,
            distance_km=round(c.distance_km, 2) if c.distance_km is not None else None,
        )
        for c in candidates
    ]


def _device_locator(session: SessionDep, devices: List[Device]):
    """Device coordinates, falling back to its donor's."""
    donor_ids = {d.donor_id for d in devices}
    donors = {}
    if donor_ids:
        donors = {u.id: u for u in session.exec(select(User).where(User.id.in_(donor_ids))).all()}

    def locate(device: Device):
        return coords_of(device) or coords_of(donors.get(device.donor_id))

    return locate


def _approved_devices(session: SessionDep) -> List[Device]:
    return list(session.exec(select(Device).where(Device.status == "approved")).all())


@router.post("/analyze", response_model=AttributeSuggestion)
def analyze_description(payload: DescriptionIn, current: CurrentUserRoleDep):
    """
    Suggest device type, condition and specifications for a free-text description.
    """
    return extract_attributes(payload.description)


@router.get("/need/{need_id}", response_model=List[MatchCandidateRead])
def suggest_devices_for_need(
    need_id: int,
    session: SessionDep,
    current: CurrentUserRoleDep,
    limit: int = Query(default=10, gt=0, le=100),
):
    need = session.get(Need, need_id)
    if need is None:
        raise HTTPException(status_code=404, detail="Need not found")

    if current["role"] == "school" and need.school_id != current["user"].id:
        raise HTTPException(status_code=403, detail="You can only match your own needs.")

    devices = _approved_devices(session)
    school = session.get(User, need.school_id)
    ranked = score_need(
        need,
        devices,
        school_location=coords_of(school),
        locate=_device_locator(session, devices),
        limit=limit,
    )
    return _as_read(ranked)


@router.get("/device/{device_id}", response_model=List[MatchCandidateRead])
def suggest_schools_for_device(
    device_id: int,
    session: SessionDep,
    current: CurrentUserRoleDep,
    limit: int = Query(default=5, gt=0, le=100),
):
    """
    Rank verified schools for a device by their best-matching open need.
    """
    user = current["user"]
    role = current["role"]
    if role not in ("donor", "admin"):
        raise HTTPException(status_code=403, detail="Only donors and admins can match devices.")

    device = session.get(Device, device_id)
    if device is None or (role == "donor" and device.donor_id != user.id):
        raise HTTPException(status_code=404, detail="Device not found or access denied")

    schools = session.exec(
        select(User).where(User.is_school == True, User.is_verified == True)  # noqa: E712
    ).all()
    needs = session.exec(select(Need).where(Need.status.in_(OPEN_NEED_STATUSES))).all()

    needs_by_school = {}
    for need in needs:
        needs_by_school.setdefault(need.school_id, []).append(need)

    ranked = score_device(
        device,
        [(school, needs_by_school.get(school.id, [])) for school in schools],
        device_location=_device_locator(session, [device])(device),
        limit=limit,
    )
    return _as_read(ranked)


@router.get("/school", response_model=List[SchoolNeedMatches])
def suggest_devices_for_my_needs(
    session: SessionDep,
    current: CurrentUserRoleDep,
    limit: int = Query(default=5, gt=0, le=50),
):
    """
    Every open need of the logged-in school with its best matching devices.
    """
    user = current["user"]
    if current["role"] != "school":
        raise HTTPException(status_code=403, detail="Only schools can view this page.")

    needs = session.exec(
        select(Need)
        .where(Need.school_id == user.id, Need.status.in_(OPEN_NEED_STATUSES))
        .order_by(Need.created_at.desc())
    ).all()

    devices = _approved_devices(session)
    locate = _device_locator(session, devices)
    return [
        SchoolNeedMatches(
            need=need,
            candidates=_as_read(
                score_need(need, devices, school_location=coords_of(user), locate=locate, limit=limit)
            ),
        )
        for need in needs
    ]
