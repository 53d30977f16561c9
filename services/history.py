"""
Per-device chain of custody.

Entries are only ever appended, inside the transaction that makes the change
they describe, so the timeline cannot disagree with the transfer it records.
"""
from datetime import datetime
from typing import Optional

from sqlmodel import Session, select

from errors import Forbidden, NotFound
from models import Device, DeviceHistory, Transfer, utcnow


def record(
    session: Session,
    device_id: int,
    status: str,
    performed_by: int,
    description: str = "",
    transfer_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> DeviceHistory:
    """Stage a history entry. Does not commit."""
    entry = DeviceHistory(
        device_id=device_id,
        transfer_id=transfer_id,
        performed_by=performed_by,
        status=status,
        description=description,
        created_at=now or utcnow(),
    )
    session.add(entry)
    return entry


def can_view_history(session: Session, actor_role: str, actor_id: int, device: Device) -> bool:
    if actor_role == "admin":
        return True
    if actor_role == "donor":
        return device.donor_id == actor_id
    if actor_role == "school":
        party = session.exec(
            select(Transfer.id).where(
                Transfer.device_id == device.id,
                Transfer.school_id == actor_id,
            )
        ).first()
        return party is not None
    return False


def device_history(
    session: Session, actor_role: str, actor_id: int, device_id: int
) -> list[DeviceHistory]:
    """Newest entry first."""
    device = session.get(Device, device_id)
    if device is None:
        raise NotFound("Device not found")
    if not can_view_history(session, actor_role, actor_id, device):
        raise Forbidden("Not authorized to view this device's history")

    query = (
        select(DeviceHistory)
        .where(DeviceHistory.device_id == device_id)
        .order_by(DeviceHistory.created_at.desc(), DeviceHistory.id.desc())
    )
    return list(session.exec(query).all())
