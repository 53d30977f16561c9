from fastapi import APIRouter

from db import SessionDep
from models import Voucher
from schemas import VoucherCreate, VoucherVerification, VoucherWithUrl
from services import vouchers
from .auth import CurrentUserRoleDep

router = APIRouter(tags=["vouchers"])


@router.post("/", response_model=VoucherWithUrl, status_code=201)
def issue_voucher(voucher_in: VoucherCreate, session: SessionDep, current: CurrentUserRoleDep):
    voucher = vouchers.issue_voucher(
        session, voucher_in.transfer_id, current["role"], current["user"].id
    )
    return VoucherWithUrl(voucher=voucher, qr_code_url=vouchers.verification_url(voucher.token))


@router.get("/transfer/{transfer_id}", response_model=VoucherWithUrl)
def get_voucher_for_transfer(transfer_id: int, session: SessionDep, current: CurrentUserRoleDep):
    voucher = vouchers.get_voucher_for_transfer(
        session, transfer_id, current["role"], current["user"].id
    )
    return VoucherWithUrl(voucher=voucher, qr_code_url=vouchers.verification_url(voucher.token))


@router.get("/verify/{token}", response_model=VoucherVerification)
def verify_voucher(token: str, session: SessionDep, current: CurrentUserRoleDep):
    """
    Check a scanned voucher. Used or expired vouchers report is_valid=false.
    """
    voucher, is_valid, reason = vouchers.verify_voucher(session, token)
    return VoucherVerification(voucher=voucher, is_valid=is_valid, reason=reason)


@router.put("/{voucher_id}/use", response_model=Voucher)
def redeem_voucher(voucher_id: int, session: SessionDep, current: CurrentUserRoleDep):
    return vouchers.redeem_voucher(session, voucher_id, current["role"], current["user"].id)
