"""
Chain-of-custody vouchers: one per transfer, redeemable exactly once.

Redemption is a single conditional UPDATE (``status = 'active'`` and not yet
expired), so among concurrent callers exactly one sees a changed row.
"""
import logging
import secrets
import time
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from errors import (
    AlreadyUsed,
    DomainError,
    Forbidden,
    NotFound,
    TransferClosed,
    VoucherAlreadyExists,
    VoucherExpired,
)
from models import Transfer, Voucher, as_utc, utcnow
from settings import Config

logger = logging.getLogger(__name__)


def make_token() -> str:
    return f"{secrets.token_hex(16)}-{int(time.time() * 1000)}"


def verification_url(token: str) -> str:
    """URL encoded into the voucher's QR code."""
    return f"{Config.APP_URL}/verify-voucher/{token}"


def is_expired(voucher: Voucher, now: Optional[datetime] = None) -> bool:
    now = as_utc(now) if now else utcnow()
    return voucher.status == "expired" or now >= as_utc(voucher.expires_at)


def _get_transfer(session: Session, transfer_id: int) -> Transfer:
    transfer = session.get(Transfer, transfer_id)
    if transfer is None:
        raise NotFound("Transfer not found")
    return transfer


def issue_voucher(
    session: Session,
    transfer_id: int,
    actor_role: str,
    actor_id: int,
    now: Optional[datetime] = None,
) -> Voucher:
    transfer = _get_transfer(session, transfer_id)

    if not (actor_role == "admin" or (actor_role == "donor" and transfer.donor_id == actor_id)):
        raise Forbidden("Not authorized to create voucher for this transfer")

    existing = session.exec(
        select(Voucher.id).where(Voucher.transfer_id == transfer_id)
    ).first()
    if existing is not None:
        raise VoucherAlreadyExists()

    if transfer.status == "rejected":
        raise TransferClosed()

    now = as_utc(now) if now else utcnow()
    voucher = Voucher(
        transfer_id=transfer_id,
        token=make_token(),
        status="active",
        expires_at=now + timedelta(days=Config.VOUCHER_TTL_DAYS),
        created_at=now,
        updated_at=now,
    )
    session.add(voucher)
    try:
        session.commit()
    except IntegrityError:
        # Lost a race against another issuer for the same transfer.
        session.rollback()
        raise VoucherAlreadyExists()
    session.refresh(voucher)

    logger.info("Issued voucher %s for transfer %s", voucher.id, transfer_id)
    return voucher


def get_voucher_for_transfer(
    session: Session, transfer_id: int, actor_role: str, actor_id: int
) -> Voucher:
    transfer = _get_transfer(session, transfer_id)
    allowed = (
        actor_role == "admin"
        or (actor_role == "donor" and transfer.donor_id == actor_id)
        or (actor_role == "school" and transfer.school_id == actor_id)
    )
    if not allowed:
        raise Forbidden("Not authorized to view this voucher")

    voucher = session.exec(
        select(Voucher).where(Voucher.transfer_id == transfer_id)
    ).first()
    if voucher is None:
        raise NotFound("Voucher not found")
    return voucher


def verify_voucher(
    session: Session, token: str, now: Optional[datetime] = None
) -> tuple[Voucher, bool, Optional[str]]:
    """Return ``(voucher, is_valid, reason)``; never changes the voucher."""
    voucher = session.exec(select(Voucher).where(Voucher.token == token)).first()
    if voucher is None:
        raise NotFound("Voucher not found")

    if voucher.status == "used":
        return voucher, False, "used"
    if is_expired(voucher, now):
        return voucher, False, "expired"
    return voucher, True, None


def claim(session: Session, voucher_id: int, now: datetime) -> bool:
    """Flip an active, unexpired voucher to used. Does not commit."""
    result = session.exec(
        update(Voucher)
        .where(
            Voucher.id == voucher_id,
            Voucher.status == "active",
            Voucher.expires_at > now,
        )
        .values(status="used", updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def redemption_failure(voucher: Voucher, now: datetime) -> DomainError:
    """Explain why ``claim`` changed nothing."""
    if voucher.status == "used":
        return AlreadyUsed()
    if is_expired(voucher, now):
        return VoucherExpired()
    return AlreadyUsed()


def redeem_voucher(
    session: Session,
    voucher_id: int,
    actor_role: str,
    actor_id: int,
    now: Optional[datetime] = None,
) -> Voucher:
    voucher = session.get(Voucher, voucher_id)
    if voucher is None:
        raise NotFound("Voucher not found")

    transfer = _get_transfer(session, voucher.transfer_id)
    if not (actor_role == "admin" or (actor_role == "school" and transfer.school_id == actor_id)):
        raise Forbidden("Not authorized to update this voucher")

    now = as_utc(now) if now else utcnow()
    if not claim(session, voucher_id, now):
        session.rollback()
        session.refresh(voucher)
        raise redemption_failure(voucher, now)

    session.commit()
    session.refresh(voucher)

    logger.info("Voucher %s redeemed by %s %s", voucher_id, actor_role, actor_id)
    return voucher
