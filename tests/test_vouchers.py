import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest
from sqlmodel import Session, SQLModel, select

from db import build_engine
from errors import (
    AlreadyUsed,
    Conflict,
    Expired,
    Forbidden,
    Invalid,
    NotFound,
    TransferClosed,
    TransitionNotAllowed,
    VoucherAlreadyExists,
    VoucherExpired,
    VoucherMismatch,
)
from models import Device, DeviceReceipt, User, Voucher, as_utc, utcnow
from services import transfers as lifecycle
from services import vouchers
from settings import Config


@pytest.fixture
def transfer(session, donor, school, device):
    return lifecycle.create_transfer(session, donor.id, device.id, school.id)


@pytest.fixture
def voucher(session, transfer, donor):
    return vouchers.issue_voucher(session, transfer.id, "donor", donor.id)


def _deliver(session, transfer, admin, donor):
    lifecycle.update_status(session, "admin", admin.id, transfer.id, "approved")
    lifecycle.update_status(session, "donor", donor.id, transfer.id, "in_transit")
    lifecycle.update_status(session, "donor", donor.id, transfer.id, "delivered")


# ---- issue ----

def test_issue_voucher(voucher, transfer):
    assert voucher.transfer_id == transfer.id
    assert voucher.status == "active"
    assert len(voucher.token) > 32
    assert voucher.expires_at - voucher.created_at == timedelta(days=Config.VOUCHER_TTL_DAYS)
    assert vouchers.verification_url(voucher.token).endswith(f"/verify-voucher/{voucher.token}")


def test_tokens_are_unique():
    assert len({vouchers.make_token() for _ in range(50)}) == 50


def test_second_issue_conflicts(session, voucher, transfer, admin):
    with pytest.raises(VoucherAlreadyExists) as excinfo:
        vouchers.issue_voucher(session, transfer.id, "admin", admin.id)
    assert isinstance(excinfo.value, Conflict)
    assert len(session.exec(select(Voucher)).all()) == 1


def test_issue_permissions(session, transfer, school, make_user):
    stranger = make_user(is_donor=True)
    with pytest.raises(Forbidden):
        vouchers.issue_voucher(session, transfer.id, "school", school.id)
    with pytest.raises(Forbidden):
        vouchers.issue_voucher(session, transfer.id, "donor", stranger.id)
    with pytest.raises(NotFound):
        vouchers.issue_voucher(session, 9999, "admin", 1)


def test_no_voucher_for_rejected_transfer(session, transfer, admin):
    lifecycle.update_status(session, "admin", admin.id, transfer.id, "rejected")
    with pytest.raises(TransferClosed):
        vouchers.issue_voucher(session, transfer.id, "admin", admin.id)


def test_get_voucher_for_transfer(session, voucher, transfer, donor, school, make_user):
    assert vouchers.get_voucher_for_transfer(session, transfer.id, "school", school.id).id == voucher.id
    assert vouchers.get_voucher_for_transfer(session, transfer.id, "donor", donor.id).id == voucher.id
    with pytest.raises(Forbidden):
        vouchers.get_voucher_for_transfer(session, transfer.id, "school", make_user(is_school=True).id)


# ---- verify ----

def test_verify_active_voucher(session, voucher):
    found, is_valid, reason = vouchers.verify_voucher(session, voucher.token)
    assert found.id == voucher.id
    assert is_valid is True
    assert reason is None


def test_verify_unknown_token(session):
    with pytest.raises(NotFound):
        vouchers.verify_voucher(session, "nope")


def test_expiry_is_computed_not_stored(session, voucher):
    later = voucher.expires_at + timedelta(seconds=1)
    found, is_valid, reason = vouchers.verify_voucher(session, voucher.token, now=later)

    assert (is_valid, reason) == (False, "expired")
    session.refresh(found)
    assert found.status == "active"

    # exactly at expiry counts as expired
    assert vouchers.verify_voucher(session, voucher.token, now=voucher.expires_at)[1] is False


def test_timestamps_carry_utc(voucher):
    for table in SQLModel.metadata.sorted_tables:
        for column in table.columns:
            if column.name.endswith("_at"):
                assert column.type.timezone is True, f"{table.name}.{column.name}"
    assert utcnow().tzinfo is not None

    # Values read back from SQLite have no offset; both forms compare.
    expires = as_utc(voucher.expires_at)
    assert vouchers.is_expired(voucher, now=expires)
    assert vouchers.is_expired(voucher, now=expires.replace(tzinfo=None))
    assert not vouchers.is_expired(voucher, now=expires - timedelta(seconds=1))


def test_verify_used_voucher(session, voucher, school):
    vouchers.redeem_voucher(session, voucher.id, "school", school.id)
    _, is_valid, reason = vouchers.verify_voucher(session, voucher.token)
    assert (is_valid, reason) == (False, "used")


# ---- redeem ----

def test_redeem_once(session, voucher, school):
    redeemed = vouchers.redeem_voucher(session, voucher.id, "school", school.id)
    assert redeemed.status == "used"

    with pytest.raises(AlreadyUsed) as excinfo:
        vouchers.redeem_voucher(session, voucher.id, "school", school.id)
    assert isinstance(excinfo.value, Conflict)


def test_redeem_expired(session, voucher, admin):
    later = voucher.expires_at + timedelta(minutes=5)
    with pytest.raises(VoucherExpired) as excinfo:
        vouchers.redeem_voucher(session, voucher.id, "admin", admin.id, now=later)

    assert isinstance(excinfo.value, Expired)
    session.refresh(voucher)
    assert voucher.status == "active"


def test_redeem_permissions(session, voucher, donor, make_user):
    with pytest.raises(Forbidden):
        vouchers.redeem_voucher(session, voucher.id, "donor", donor.id)
    with pytest.raises(Forbidden):
        vouchers.redeem_voucher(session, voucher.id, "school", make_user(is_school=True).id)
    with pytest.raises(NotFound):
        vouchers.redeem_voucher(session, 9999, "admin", 1)

    session.refresh(voucher)
    assert voucher.status == "active"


def test_redeem_does_not_touch_transfer(session, voucher, transfer, school):
    vouchers.redeem_voucher(session, voucher.id, "school", school.id)
    session.refresh(transfer)
    assert transfer.status == "pending"


def test_concurrent_redemption_has_one_winner(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'race.db'}")
    SQLModel.metadata.create_all(engine)

    with Session(engine) as session:
        donor = User(email="d@x.org", name="D", password_hash="x", is_donor=True)
        school = User(email="s@x.org", name="S", password_hash="x", is_school=True, is_verified=True)
        session.add(donor)
        session.add(school)
        session.commit()
        device = Device(donor_id=donor.id, name="iPad", device_type="Tablet", status="approved")
        session.add(device)
        session.commit()
        transfer = lifecycle.create_transfer(session, donor.id, device.id, school.id)
        voucher_id = vouchers.issue_voucher(session, transfer.id, "donor", donor.id).id
        school_id = school.id

    barrier = threading.Barrier(8)

    def attempt(_):
        barrier.wait()
        with Session(engine) as session:
            try:
                vouchers.redeem_voucher(session, voucher_id, "school", school_id)
                return "ok"
            except AlreadyUsed:
                return "used"

    with ThreadPoolExecutor(max_workers=8) as pool:
        outcomes = list(pool.map(attempt, range(8)))

    assert outcomes.count("ok") == 1
    assert outcomes.count("used") == 7

    with Session(engine) as session:
        assert session.get(Voucher, voucher_id).status == "used"
    engine.dispose()


# ---- merged receipt confirmation ----

def test_confirm_receipt(session, voucher, transfer, device, admin, donor, school):
    _deliver(session, transfer, admin, donor)

    updated, receipt = lifecycle.confirm_receipt(
        session, "school", school.id, transfer.id,
        token=voucher.token, receipt_images=["https://img/a.jpg"], notes="All 1 units received",
    )

    session.refresh(device)
    session.refresh(voucher)
    assert updated.status == "received"
    assert updated.receipt_images == ["https://img/a.jpg"]
    assert device.status == "completed"
    assert voucher.status == "used"
    assert receipt.transfer_id == transfer.id
    assert receipt.school_id == school.id
    assert lifecycle.get_receipt(session, "donor", donor.id, transfer.id).id == receipt.id


def test_confirm_receipt_requires_delivered(session, voucher, transfer, school):
    with pytest.raises(TransitionNotAllowed):
        lifecycle.confirm_receipt(
            session, "school", school.id, transfer.id,
            token=voucher.token, receipt_images=["https://img/a.jpg"],
        )
    session.refresh(voucher)
    assert voucher.status == "active"


def test_confirm_receipt_checks_token_and_images(session, voucher, transfer, admin, donor, school):
    _deliver(session, transfer, admin, donor)

    with pytest.raises(VoucherMismatch):
        lifecycle.confirm_receipt(
            session, "school", school.id, transfer.id, token="forged", receipt_images=["x"]
        )
    with pytest.raises(Invalid):
        lifecycle.confirm_receipt(
            session, "school", school.id, transfer.id, token=voucher.token, receipt_images=[]
        )
    with pytest.raises(Forbidden):
        lifecycle.confirm_receipt(
            session, "donor", donor.id, transfer.id, token=voucher.token, receipt_images=["x"]
        )


def test_confirm_receipt_with_used_voucher_changes_nothing(session, voucher, transfer, device, admin, donor, school):
    _deliver(session, transfer, admin, donor)
    vouchers.redeem_voucher(session, voucher.id, "school", school.id)

    with pytest.raises(AlreadyUsed):
        lifecycle.confirm_receipt(
            session, "school", school.id, transfer.id, token=voucher.token, receipt_images=["x"]
        )

    session.refresh(transfer)
    session.refresh(device)
    assert transfer.status == "delivered"
    assert device.status == "matched"
    assert session.exec(select(DeviceReceipt)).first() is None


def test_confirm_receipt_with_expired_voucher(session, voucher, transfer, admin, donor, school):
    _deliver(session, transfer, admin, donor)
    with pytest.raises(VoucherExpired):
        lifecycle.confirm_receipt(
            session, "school", school.id, transfer.id, token=voucher.token,
            receipt_images=["x"], now=voucher.expires_at + timedelta(days=1),
        )


def test_confirm_receipt_without_voucher(session, transfer, admin, donor, school):
    _deliver(session, transfer, admin, donor)
    with pytest.raises(NotFound):
        lifecycle.confirm_receipt(
            session, "school", school.id, transfer.id, token="anything", receipt_images=["x"]
        )
