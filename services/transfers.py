"""
Transfer lifecycle.

pending -> approved | rejected, approved -> in_transit, in_transit -> delivered,
delivered -> received.  ``rejected`` and ``received`` are terminal.

Every status change is a compare-and-set on the transfer row plus a resync of
the device status in the same transaction.  This module is the only writer
of ``Device.status`` once a device has been approved.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from errors import (
    DeviceNotEligible,
    DuplicateTransfer,
    Forbidden,
    Invalid,
    InvalidStatus,
    NotFound,
    SchoolNotEligible,
    StaleTransfer,
    TransitionNotAllowed,
    VoucherMismatch,
)
from models import (
    ACTIVE_TRANSFER_STATUSES,
    TRANSFER_STATUSES,
    Device,
    DeviceReceipt,
    Transfer,
    User,
    Voucher,
    as_utc,
    utcnow,
)
from services import history, vouchers
from settings import Config

logger = logging.getLogger(__name__)

TRANSITIONS = {
    "pending": ("approved", "rejected"),
    "approved": ("in_transit",),
    "in_transit": ("delivered",),
    "delivered": ("received",),
    "rejected": (),
    "received": (),
}

DONOR_TARGETS = ("in_transit", "delivered")
SCHOOL_TARGETS = ("received",)

# Anything not listed (in_transit, delivered) keeps the device matched.
DEVICE_STATUS_FOR = {
    "approved": "matched",
    "rejected": "approved",
    "received": "completed",
}

HISTORY_DESCRIPTIONS = {
    "pending": "Transfer proposed",
    "approved": "Transfer approved",
    "rejected": "Transfer rejected; device returned to the pool",
    "in_transit": "Device shipped",
    "delivered": "Device delivered",
    "received": "Receipt confirmed by the school",
}


def device_status_for(transfer_status: str) -> str:
    return DEVICE_STATUS_FOR.get(transfer_status, "matched")


def can_set_status(actor_role: str, actor_id: int, transfer: Transfer, target: str) -> bool:
    if actor_role == "admin":
        return True
    if actor_role == "donor" and transfer.donor_id == actor_id:
        return target in DONOR_TARGETS
    if actor_role == "school" and transfer.school_id == actor_id:
        return target in SCHOOL_TARGETS
    return False


def can_view(actor_role: str, actor_id: int, transfer: Transfer) -> bool:
    return (
        actor_role == "admin"
        or (actor_role == "donor" and transfer.donor_id == actor_id)
        or (actor_role == "school" and transfer.school_id == actor_id)
    )


def _set_device_status(session: Session, device_id: int, status: str, now: datetime) -> None:
    session.exec(
        update(Device)
        .where(Device.id == device_id)
        .values(status=status, updated_at=now)
        .execution_options(synchronize_session=False)
    )


def _cas_transfer(session: Session, transfer_id: int, expected: str, values: dict) -> bool:
    result = session.exec(
        update(Transfer)
        .where(Transfer.id == transfer_id, Transfer.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def create_transfer(
    session: Session,
    donor_id: int,
    device_id: int,
    school_id: int,
    message: Optional[str] = None,
    performed_by: Optional[int] = None,
) -> Transfer:
    """
    Propose a transfer and claim the device. ``performed_by`` is recorded in
    the device history and defaults to the donor.
    """
    device = session.get(Device, device_id)
    if device is None or device.donor_id != donor_id:
        raise DeviceNotEligible()

    active = session.exec(
        select(Transfer.id).where(
            Transfer.device_id == device_id,
            Transfer.status.in_(ACTIVE_TRANSFER_STATUSES),
        )
    ).first()
    if active is not None:
        raise DuplicateTransfer()

    if device.status != "approved":
        raise DeviceNotEligible()

    school = session.get(User, school_id)
    if school is None or not school.is_school or not school.is_verified:
        raise SchoolNotEligible()

    now = utcnow()
    transfer = Transfer(
        device_id=device_id,
        donor_id=donor_id,
        school_id=school_id,
        message=message or "",
        status="pending",
        created_at=now,
        updated_at=now,
    )
    # Claim the device; a concurrent creator that got here first wins.
    claimed = session.exec(
        update(Device)
        .where(Device.id == device_id, Device.status == "approved")
        .values(status="matched", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        session.rollback()
        raise DuplicateTransfer()
    session.add(transfer)

    try:
        session.flush()
        history.record(
            session, device_id, "pending", performed_by or donor_id,
            description=HISTORY_DESCRIPTIONS["pending"],
            transfer_id=transfer.id, now=now,
        )
        session.commit()
    except IntegrityError:
        session.rollback()
        raise DuplicateTransfer()
    session.refresh(transfer)

    logger.info(
        "Transfer %s created: device %s from donor %s to school %s",
        transfer.id, device_id, donor_id, school_id,
    )
    return transfer


def get_transfer(session: Session, actor_role: str, actor_id: int, transfer_id: int) -> Transfer:
    transfer = session.get(Transfer, transfer_id)
    if transfer is None:
        raise NotFound("Transfer not found")
    if not can_view(actor_role, actor_id, transfer):
        raise Forbidden("Access denied")
    return transfer


def list_transfers(
    session: Session,
    actor_role: str,
    actor_id: int,
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
) -> list[Transfer]:
    query = select(Transfer)

    if actor_role == "donor":
        query = query.where(Transfer.donor_id == actor_id)
    elif actor_role == "school":
        query = query.where(Transfer.school_id == actor_id)
    elif actor_role != "admin":
        raise Forbidden("Access denied")

    if status is not None:
        if status not in TRANSFER_STATUSES:
            raise InvalidStatus()
        query = query.where(Transfer.status == status)

    page = max(page, 1)
    query = (
        query.order_by(Transfer.created_at.desc(), Transfer.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(session.exec(query).all())


def update_status(
    session: Session,
    actor_role: str,
    actor_id: int,
    transfer_id: int,
    new_status: str,
    notes: Optional[str] = None,
    receipt_images: Optional[list[str]] = None,
    expected_status: Optional[str] = None,
    strict: Optional[bool] = None,
) -> Transfer:
    """
    Move a transfer to ``new_status`` and resync its device.

    ``expected_status`` pins the status the caller last saw; otherwise the
    status read here is used.  Either way the write only lands if the row
    still holds that status, else ``StaleTransfer``.  With ``strict`` (the
    default comes from ``STRICT_TRANSFER_TRANSITIONS``) the target must be a
    direct successor of the current status.
    """
    if new_status not in TRANSFER_STATUSES:
        raise InvalidStatus()
    if expected_status is not None and expected_status not in TRANSFER_STATUSES:
        raise InvalidStatus("Invalid expected status")

    transfer = session.get(Transfer, transfer_id)
    if transfer is None:
        raise NotFound("Transfer not found")

    if not can_set_status(actor_role, actor_id, transfer, new_status):
        raise Forbidden("Not authorized to update this transfer status")

    current = expected_status or transfer.status
    if current != transfer.status:
        raise StaleTransfer()

    if strict is None:
        strict = Config.STRICT_TRANSFER_TRANSITIONS
    if strict and new_status not in TRANSITIONS[current]:
        raise TransitionNotAllowed(
            f"Transfer cannot move from {current} to {new_status}"
        )

    now = utcnow()
    values = {"status": new_status, "updated_at": now}
    if notes:
        values["notes"] = notes
    if receipt_images:
        values["receipt_images"] = list(receipt_images)

    try:
        if not _cas_transfer(session, transfer_id, current, values):
            session.rollback()
            raise StaleTransfer()
        _set_device_status(session, transfer.device_id, device_status_for(new_status), now)
        history.record(
            session, transfer.device_id, new_status, actor_id,
            description=notes or HISTORY_DESCRIPTIONS[new_status],
            transfer_id=transfer_id, now=now,
        )
        session.commit()
    except IntegrityError:
        # Reopening a closed transfer while the device has a newer active one.
        session.rollback()
        raise DuplicateTransfer()
    session.refresh(transfer)

    logger.info(
        "Transfer %s: %s -> %s by %s %s",
        transfer_id, current, new_status, actor_role, actor_id,
    )
    return transfer


def confirm_receipt(
    session: Session,
    actor_role: str,
    actor_id: int,
    transfer_id: int,
    token: str,
    receipt_images: list[str],
    notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> tuple[Transfer, DeviceReceipt]:
    """
    Redeem the transfer's voucher and mark it received in one transaction.

    The transfer must be ``delivered``; nothing is written unless the voucher
    claim, the transfer update and the receipt all succeed.
    """
    transfer = session.get(Transfer, transfer_id)
    if transfer is None:
        raise NotFound("Transfer not found")
    if not (actor_role == "admin" or (actor_role == "school" and transfer.school_id == actor_id)):
        raise Forbidden("Not authorized to confirm receipt of this transfer")
    if not receipt_images:
        raise Invalid("At least one confirmation image is required")

    voucher = session.exec(
        select(Voucher).where(Voucher.transfer_id == transfer_id)
    ).first()
    if voucher is None:
        raise NotFound("No voucher issued for this transfer")
    if voucher.token != token:
        raise VoucherMismatch()

    if transfer.status != "delivered":
        raise TransitionNotAllowed(
            f"Receipt can only be confirmed for a delivered transfer (currently {transfer.status})"
        )

    now = as_utc(now) if now else utcnow()
    if not vouchers.claim(session, voucher.id, now):
        session.rollback()
        session.refresh(voucher)
        raise vouchers.redemption_failure(voucher, now)

    values = {
        "status": "received",
        "receipt_images": list(receipt_images),
        "updated_at": now,
    }
    if notes:
        values["notes"] = notes
    if not _cas_transfer(session, transfer_id, "delivered", values):
        session.rollback()
        raise StaleTransfer()

    _set_device_status(session, transfer.device_id, device_status_for("received"), now)
    receipt = DeviceReceipt(
        transfer_id=transfer_id,
        device_id=transfer.device_id,
        school_id=transfer.school_id,
        confirmation_images=list(receipt_images),
        notes=notes or "",
        created_at=now,
    )
    session.add(receipt)
    history.record(
        session, transfer.device_id, "received", actor_id,
        description=notes or HISTORY_DESCRIPTIONS["received"],
        transfer_id=transfer_id, now=now,
    )
    session.commit()
    session.refresh(transfer)
    session.refresh(receipt)

    logger.info("Transfer %s received; voucher %s redeemed", transfer_id, voucher.id)
    return transfer, receipt


def get_receipt(session: Session, actor_role: str, actor_id: int, transfer_id: int) -> DeviceReceipt:
    transfer = get_transfer(session, actor_role, actor_id, transfer_id)
    receipt = session.exec(
        select(DeviceReceipt).where(DeviceReceipt.transfer_id == transfer.id)
    ).first()
    if receipt is None:
        raise NotFound("Receipt not found")
    return receipt
