from typing import Annotated, Optional

from db import SessionDep
from fastapi import APIRouter, Cookie, Depends, HTTPException, Response
from itsdangerous import BadSignature, URLSafeTimedSerializer
from models import User
from passlib.context import CryptContext
from schemas import LoginData, UserCreate, UserRead
from settings import Config
from sqlmodel import select

router = APIRouter(tags=["auth"])

serializer = URLSafeTimedSerializer(Config.SECRET_KEY)


pwd_context = CryptContext(
    schemes=["pbkdf2_sha256"],
    deprecated="auto",
)

ROLE_FLAGS = {
    "donor": "is_donor",
    "school": "is_school",
    "admin": "is_admin",
}


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def create_session_token(user_id: int, role: str) -> str:
    """
    Store user_id + role in the signed token.
    Example data:
        {"user_id": 3, "role": "donor"}
    """
    return serializer.dumps({"user_id": user_id, "role": role})


def verify_session_token(token: str, max_age_seconds: int = Config.SESSION_MAX_AGE):
    """
    Returns dict {'user_id': ..., 'role': ...} if valid,
    or None if token is invalid/expired.
    """
    try:
        return serializer.loads(token, max_age=max_age_seconds)
    except BadSignature:
        return None


def has_role(user: User, role: str) -> bool:
    flag = ROLE_FLAGS.get(role)
    return bool(flag and getattr(user, flag))


def set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key="session",
        value=token,
        httponly=True,
        secure=False,
        samesite="lax",
        max_age=Config.SESSION_MAX_AGE,
    )


def get_current_user_and_role(
    session: SessionDep,
    session_token: Optional[str] = Cookie(default=None, alias="session"),
) -> dict:
    """
    Reads the 'session' cookie, verifies the token,
    looks up the user, and returns {"user": User, "role": str}.
    Raises 401 if not logged in / invalid.
    """
    if session_token is None:
        raise HTTPException(status_code=401, detail="Not logged in")

    data = verify_session_token(session_token)
    if not data:
        raise HTTPException(
            status_code=401, detail="Invalid or expired session")

    user = session.get(User, data["user_id"])
    if user is None:
        raise HTTPException(
            status_code=401, detail="User not found for this session")

    # Role flags may have been revoked since the cookie was issued.
    if not has_role(user, data["role"]):
        raise HTTPException(status_code=401, detail="Role no longer granted")

    return {"user": user, "role": data["role"]}


CurrentUserRoleDep = Annotated[dict, Depends(get_current_user_and_role)]


@router.post("/register")
def register(user_in: UserCreate, session: SessionDep, response: Response):
    """
    Register a donor or school with a hashed password and log them in.
    Administrators are created out of band (see create_admin.py).
    """
    if user_in.is_donor:
        role = "donor"
    elif user_in.is_school:
        role = "school"
    else:
        raise HTTPException(
            status_code=400,
            detail="User must be registered as donor or school",
        )

    existing = session.exec(
        select(User).where(User.email == user_in.email)
    ).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")

    user = User(
        email=user_in.email,
        name=user_in.name,
        password_hash=hash_password(user_in.password),
        is_donor=user_in.is_donor,
        is_school=user_in.is_school,
        organization=user_in.organization,
        latitude=user_in.latitude,
        longitude=user_in.longitude,
    )

    session.add(user)
    session.commit()
    session.refresh(user)

    if user.id is None:
        raise HTTPException(
            status_code=500, detail="User was not created successfully"
        )

    set_session_cookie(response, create_session_token(user.id, role))
    return {"message": "Registration successful", "role": role, "id": user.id}


@router.post("/login")
def login(payload: LoginData, session: SessionDep, response: Response):
    """
    Log in with email + password + chosen role ("donor" / "school" / "admin"),
    set a signed cookie.
    """
    user = session.exec(
        select(User).where(User.email == payload.email)
    ).first()

    if user is None or not verify_password(payload.password, user.password_hash):
        raise HTTPException(
            status_code=400, detail="Invalid email or password"
        )

    if not has_role(user, payload.role):
        raise HTTPException(
            status_code=400, detail=f"User is not registered as {payload.role}"
        )

    if user.id is None:
        raise HTTPException(
            status_code=500, detail="User has no ID in database"
        )

    set_session_cookie(response, create_session_token(user.id, payload.role))
    return {"message": "Login successful", "role": payload.role}


@router.post("/logout")
def logout(response: Response):
    """
    Clear the session cookie.
    """
    response.delete_cookie("session")
    return {"message": "Logged out"}


@router.get("/me")
def read_me(current: CurrentUserRoleDep):
    """
    Get info about the currently logged-in user + active role.
    """
    user = current["user"]
    return {
        **UserRead.model_validate(user).model_dump(),
        "role": current["role"],
    }
