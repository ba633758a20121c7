from dataclasses import dataclass
from typing import Optional, Tuple
from email_validator import validate_email, EmailNotValidError
from fastapi import Depends, Header, HTTPException, Query, Request, status
from fastapi.security import HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession
from shopfront.auth.constants import ADMIN_ROLE, logger
from shopfront.auth.models import SignupIn
from shopfront.auth.repository import user_id_by_public_id
from shopfront.auth.utils import decode_token, validate_password
from shopfront.db.dependencies import get_session


class Authentication(HTTPBearer):
    def __init__(self,auto_error=True):
        super().__init__(auto_error=auto_error)

    async def __call__(self, request:Request) -> Optional[dict]:
        auth_creds=await super().__call__(request)
        if auth_creds is None:
            return None

        decoded_token=decode_token(auth_creds.credentials)
        if not decoded_token:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,detail="Invalid or expired token provided.")

        return decoded_token


@dataclass(frozen=True)
class Requester:
    """Who is calling: an anonymous visitor, a guest session or a signed-in user."""
    user_type: str
    user_id: Optional[int] = None
    user_public_id: Optional[str] = None
    roles: Tuple[str, ...] = ()
    session_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles

    @property
    def is_guest(self) -> bool:
        return self.user_type == "guest"


async def get_requester(request: Request,
                        session_query: Optional[str] = Query(None, alias="sessionId"),
                        session_header: Optional[str] = Header(None, alias="X-Session-Id"),
                        session: AsyncSession = Depends(get_session)) -> Requester:

    guest_session = (session_query or session_header or "").strip() or None
    user_pid = getattr(request.state, "user_public_id", None)
    roles = tuple(getattr(request.state, "user_roles", None) or ())

    user_id = None
    if user_pid:
        user_id = await user_id_by_public_id(session, user_pid)
        if user_id is None:
            logger.warning("auth.requester.user_not_found", extra={"user_public_id": user_pid, "path": request.url.path})
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User unidentified and not authorized")
        request.state.user_identifier = user_id

    if guest_session:
        user_type = "guest"
    elif user_id is not None:
        user_type = "authenticated"
    else:
        user_type = "public"

    return Requester(user_type=user_type, user_id=user_id, user_public_id=user_pid, roles=roles, session_id=guest_session)


async def require_authenticated(requester: Requester = Depends(get_requester)) -> Requester:
    if requester.user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return requester


async def require_admin(requester: Requester = Depends(require_authenticated)) -> Requester:
    if not requester.is_admin:
        logger.warning("auth.policy.admin_denied", extra={"user_public_id": requester.user_public_id})
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin role required")
    return requester


def require_roles(*role_names: str):
    """Dependency factory: the caller must hold at least one of ``role_names``."""
    wanted = set(role_names)

    async def _checker(requester: Requester = Depends(require_authenticated)) -> Requester:
        if not wanted.intersection(requester.roles):
            logger.warning("auth.policy.role_denied", extra={"user_public_id": requester.user_public_id, "required": sorted(wanted)})
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User doesn't have the required role")
        return requester

    return Depends(_checker)


async def require_owner_or_guest(requester: Requester = Depends(get_requester)) -> Requester:
    """Guest flows: a guest session id or a signed-in user is required."""
    if requester.user_id is None and not requester.session_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Authentication required - provide either user authentication or session ID")
    return requester


def normalize_email_address(email: str) -> str:
    """
    Validate and return normalized email (lowercased, normalized by email-validator).
    Raises ValueError if invalid.
    """
    try:
        v = validate_email(email, check_deliverability=False)
        return v.normalized.lower()
    except EmailNotValidError as e:
        raise ValueError(str(e))


async def signup_validation(payload: SignupIn) -> SignupIn:
    try:
        email = normalize_email_address(payload.email)
    except ValueError as e:
        logger.warning("signup.validation.email_invalid", extra={"error": str(e)})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid email: {e}")

    is_valid, detail = validate_password(payload.password)
    if not is_valid:
        logger.warning("signup.validation.password_invalid", extra={"email": email, "reason": detail})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

    return payload.model_copy(update={"email": email, "username": payload.username.strip()})
