from typing import List, Optional

from fastapi import APIRouter, HTTPException, Response
from sqlmodel import select

from db import SessionDep
from models import ACTIVE_TRANSFER_STATUSES, Device, DeviceHistory, Transfer, utcnow
from schemas import DeviceCreate, DeviceReview
from services.extractor import extract_attributes
from services.history import device_history, record
from .auth import CurrentUserRoleDep

router = APIRouter(tags=["devices"])


@router.get("/{device_id}", response_model=Device)
def get_device(device_id: int, session: SessionDep):
    """
    Get a single device by ID.
    """
    device = session.get(Device, device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")
    return device


@router.get("/{device_id}/history", response_model=List[DeviceHistory])
def get_device_history(device_id: int, session: SessionDep, current: CurrentUserRoleDep):
    """
    Chain of custody for a device, newest first. Visible to its donor,
    schools it was offered to, and admins.
    """
    return device_history(session, current["role"], current["user"].id, device_id)


@router.post("/", response_model=Device, status_code=201)
def create_device(device_in: DeviceCreate, session: SessionDep, current: CurrentUserRoleDep):
    """
    Offer a device for donation. It starts as "pending" until an admin reviews it.
    Missing type/condition are suggested from the name and description.
    """
    user = current["user"]
    if current["role"] != "donor":
        raise HTTPException(status_code=403, detail="Only donors can donate devices.")

    suggestion = extract_attributes(f"{device_in.name} {device_in.description}")

    device_type = device_in.device_type or suggestion.device_type
    if not device_type:
        raise HTTPException(
            status_code=400,
            detail="device_type is required when it cannot be inferred from the description",
        )

    device = Device(
        donor_id=user.id,
        name=device_in.name,
        description=device_in.description,
        device_type=device_type,
        condition=device_in.condition or suggestion.condition or "used-fair",
        quantity=device_in.quantity,
        images=list(device_in.images),
        specifications=suggestion.specifications,
        latitude=device_in.latitude,
        longitude=device_in.longitude,
        status="pending",
    )

    session.add(device)
    session.flush()
    record(session, device.id, "pending", user.id, description="Device offered for donation")
    session.commit()
    session.refresh(device)
    return device


@router.get("/", response_model=List[Device])
def list_devices(
    session: SessionDep,
    donor_id: Optional[int] = None,
    device_type: Optional[str] = None,
    status: Optional[str] = None,
):
    """
    List devices, optionally filtered by donor, device type and status.
    """
    query = select(Device)

    if donor_id is not None:
        query = query.where(Device.donor_id == donor_id)

    if device_type is not None:
        query = query.where(Device.device_type == device_type)

    if status is not None:
        query = query.where(Device.status == status)

    return session.exec(query.order_by(Device.created_at.desc())).all()


@router.patch("/{device_id}/review", response_model=Device)
def review_device(
    device_id: int,
    review: DeviceReview,
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    if current["role"] != "admin":
        raise HTTPException(status_code=403, detail="Only admins can review devices.")

    device = session.get(Device, device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")

    # Matched and completed devices belong to the transfer lifecycle.
    if device.status not in ("pending", "approved", "rejected"):
        raise HTTPException(
            status_code=409,
            detail=f"Cannot review a {device.status} device",
        )

    device.status = review.status
    device.updated_at = utcnow()
    session.add(device)
    record(
        session, device.id, review.status, current["user"].id,
        description=f"Device {review.status} on review",
    )
    session.commit()
    session.refresh(device)
    return device


@router.delete("/{device_id}", status_code=204)
def delete_device(
    device_id: int,
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    user = current["user"]
    role = current["role"]

    device = session.get(Device, device_id)
    if device is None:
        raise HTTPException(status_code=404, detail="Device not found")

    if role == "donor":
        # Donor can only delete their *own* devices
        if device.donor_id != user.id:
            raise HTTPException(
                status_code=403,
                detail="You can only delete devices you donated.",
            )
    elif role != "admin":
        raise HTTPException(status_code=403, detail="Only donors and admins can delete devices.")

    active = session.exec(
        select(Transfer.id).where(
            Transfer.device_id == device_id,
            Transfer.status.in_(ACTIVE_TRANSFER_STATUSES),
        )
    ).first()
    if active is not None or device.status in ("matched", "completed"):
        raise HTTPException(
            status_code=409,
            detail="Cannot delete a device that is being or has been transferred.",
        )

    # Rejected transfers still reference the device; keep their history.
    past = session.exec(
        select(Transfer.id).where(Transfer.device_id == device_id)
    ).first()
    if past is not None:
        raise HTTPException(
            status_code=409,
            detail="Cannot delete a device with transfer history.",
        )

    # Only offer and review entries remain at this point.
    for entry in session.exec(
        select(DeviceHistory).where(DeviceHistory.device_id == device_id)
    ).all():
        session.delete(entry)
    session.delete(device)
    session.commit()
    return Response(status_code=204)
