from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from db import SessionDep
from models import Device, DeviceReceipt, Transfer
from schemas import ReceiptConfirmation, TransferCreate, TransferPage, TransferStatusUpdate
from services import transfers as lifecycle
from .auth import CurrentUserRoleDep

router = APIRouter(tags=["transfers"])


@router.post("/", response_model=Transfer, status_code=201)
def create_transfer(transfer_in: TransferCreate, session: SessionDep, current: CurrentUserRoleDep):
    """
    Propose handing a donor's approved device to a verified school.
    Admins create transfers on behalf of the device's donor.
    """
    user = current["user"]
    role = current["role"]

    if role == "donor":
        donor_id = user.id
    elif role == "admin":
        device = session.get(Device, transfer_in.device_id)
        donor_id = device.donor_id if device is not None else None
    else:
        raise HTTPException(status_code=403, detail="Only donors and admins can create transfers.")

    return lifecycle.create_transfer(
        session,
        donor_id=donor_id,
        device_id=transfer_in.device_id,
        school_id=transfer_in.school_id,
        message=transfer_in.message,
        performed_by=user.id,
    )


@router.get("/", response_model=TransferPage)
def list_transfers(
    session: SessionDep,
    current: CurrentUserRoleDep,
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, gt=0, le=100),
):
    transfers = lifecycle.list_transfers(
        session,
        current["role"],
        current["user"].id,
        status=status,
        page=page,
        limit=limit,
    )
    return TransferPage(transfers=transfers, page=page, limit=limit)


@router.get("/{transfer_id}", response_model=Transfer)
def get_transfer(transfer_id: int, session: SessionDep, current: CurrentUserRoleDep):
    return lifecycle.get_transfer(session, current["role"], current["user"].id, transfer_id)


@router.patch("/{transfer_id}/status", response_model=Transfer)
def update_transfer_status(
    transfer_id: int,
    update: TransferStatusUpdate,
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    return lifecycle.update_status(
        session,
        current["role"],
        current["user"].id,
        transfer_id,
        update.status,
        notes=update.notes,
        receipt_images=update.receipt_images,
        expected_status=update.expected_status,
    )


@router.post("/{transfer_id}/receipt")
def confirm_receipt(
    transfer_id: int,
    confirmation: ReceiptConfirmation,
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    """
    Redeem the transfer's voucher and mark the device received, in one step.
    """
    transfer, receipt = lifecycle.confirm_receipt(
        session,
        current["role"],
        current["user"].id,
        transfer_id,
        token=confirmation.token,
        receipt_images=confirmation.receipt_images,
        notes=confirmation.notes,
    )
    return {
        "message": "Device receipt confirmed",
        "transfer": transfer,
        "receipt": receipt,
    }


@router.get("/{transfer_id}/receipt", response_model=DeviceReceipt)
def get_receipt(transfer_id: int, session: SessionDep, current: CurrentUserRoleDep):
    return lifecycle.get_receipt(session, current["role"], current["user"].id, transfer_id)
