from typing import Optional
from fastapi import HTTPException, Request, status
from sqlalchemy.exc import IntegrityError
from shopfront.auth.constants import logger
from shopfront.auth.models import SignIn, SignupIn
from shopfront.auth.repository import (email_registered, insert_user, password_hash_for, role_names_for,
                                       user_by_identifier, username_taken)
from shopfront.auth.utils import create_access_token, verify_password
from shopfront.config.settings import config_settings
from shopfront.schema.full_schema import Users
from shopfront.user_activity.services import record_activity
from shopfront.user_activity.utils import client_ip


async def ensure_identity_available(session, username: str, email: str) -> None:
    if await username_taken(session, username):
        logger.warning("user.duplicate", extra={"username": username, "reason": "username"})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Username already taken")

    if await email_registered(session, email):
        logger.warning("user.duplicate", extra={"email": email, "reason": "email"})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email already registered")


async def create_user(session, payload: SignupIn) -> Users:
    """Insert user, credential and default role. Flushes only; the caller commits."""
    await ensure_identity_available(session, payload.username, payload.email)

    try:
        user = await insert_user(
            session,
            username=payload.username,
            email=payload.email,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            role_names=[config_settings.DEFAULT_ROLE],
        )
    except IntegrityError:
        await session.rollback()
        logger.warning("user.create.integrity_error", extra={"email": payload.email})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User with that username or email already exists")

    logger.info("user.created", extra={"user_public_id": str(user.public_id), "email": payload.email})
    return user


async def _track_login(session, request: Request, user_id: Optional[int], success: bool,
                       identifier: str, error_message: Optional[str] = None) -> None:
    await record_activity(
        session,
        activity_type="login",
        user_id=user_id,
        activity_data={"identifier": identifier},
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        success=success,
        error_message=error_message,
    )
    await session.commit()


async def authenticate(session, request: Request, payload: SignIn) -> str:
    """Check credentials and return a signed access token. Every attempt is logged as a login activity."""
    user = await user_by_identifier(session, payload.identifier)
    pwd_hash = await password_hash_for(session, user.id) if user else None

    if not user or not pwd_hash or not verify_password(payload.password, pwd_hash):
        await _track_login(session, request, user.id if user else None, False, payload.identifier,
                           error_message="Invalid credentials")
        logger.warning("login.failed", extra={"reason": "invalid_credentials"})
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    roles = await role_names_for(session, user.id)
    token = create_access_token(user.public_id, roles)

    await _track_login(session, request, user.id, True, payload.identifier)
    logger.info("auth.tokens.issued", extra={"user_public_id": str(user.public_id)})
    return token
