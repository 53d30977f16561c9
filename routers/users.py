# routers/users.py
from typing import List, Optional

from fastapi import APIRouter, HTTPException
from sqlmodel import select

from .auth import CurrentUserRoleDep
from db import SessionDep
from models import User
from schemas import UserRead, VerificationUpdate

router = APIRouter(tags=["users"])


@router.get("/", response_model=List[UserRead])
def list_users(
    session: SessionDep,
    current: CurrentUserRoleDep,
    is_school: Optional[bool] = None,
    is_verified: Optional[bool] = None,
):
    """
    List users (admin only), optionally filtered by school flag and verification.
    """
    if current["role"] != "admin":
        raise HTTPException(status_code=403, detail="Only admins can list users.")

    query = select(User)
    if is_school is not None:
        query = query.where(User.is_school == is_school)
    if is_verified is not None:
        query = query.where(User.is_verified == is_verified)
    return session.exec(query).all()


@router.get("/{user_id}", response_model=UserRead)
def get_user(user_id: int, session: SessionDep):
    """
    Get a single user by ID.
    """
    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.patch("/{user_id}/verify", response_model=UserRead)
def set_verification(
    user_id: int,
    update: VerificationUpdate,
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    """
    Mark a user verified or unverified. Only verified schools can receive transfers.
    """
    if current["role"] != "admin":
        raise HTTPException(status_code=403, detail="Only admins can verify users.")

    user = session.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")

    user.is_verified = update.is_verified
    session.add(user)
    session.commit()
    session.refresh(user)
    return user
