from typing import Any, Dict
from fastapi import HTTPException, status
from shopfront.auth.dependencies import normalize_email_address
from shopfront.auth.repository import email_registered, insert_user, role_names_for
from shopfront.auth.services import ensure_identity_available
from shopfront.auth.utils import create_access_token, validate_password
from shopfront.common.utils import iso, now, percentage, round2
from shopfront.config.settings import config_settings
from shopfront.guests.constants import logger
from shopfront.guests.models import ConvertGuestIn, GuestIn
from shopfront.guests.repository import guest_by_session_id, guest_counts, migrate_guest_records
from shopfront.schema.full_schema import Guest, GuestStatus


def _normalized_email(email: str) -> str:
    try:
        return normalize_email_address(email)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid email: {e}")


async def get_guest_or_404(session, session_id: str, *, lock: bool = False) -> Guest:
    guest = await guest_by_session_id(session, session_id, lock=lock)
    if not guest:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Guest not found")
    return guest


async def create_guest(session, payload: GuestIn) -> Guest:
    email = _normalized_email(payload.email)

    if await email_registered(session, email):
        logger.warning("guest.create.registered_email")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Email is already registered. Please sign in instead")

    if await guest_by_session_id(session, payload.session_id):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Guest already exists for this session")

    guest = Guest(
        session_id=payload.session_id,
        cart_ref=payload.cart_ref,
        email=email,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        status=GuestStatus.ACTIVE.value,
        meta=payload.metadata,
    )
    session.add(guest)
    await session.flush()

    logger.info("guest.create.success", extra={"guest_id": str(guest.public_id)})
    return guest


async def update_guest(session, guest: Guest, updates: Dict[str, Any]) -> Guest:
    if guest.status == GuestStatus.CONVERTED.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Converted guests cannot be updated")

    if "email" in updates and updates["email"] is not None:
        updates["email"] = _normalized_email(updates["email"])

    if "status" in updates:
        if updates["status"] not in (GuestStatus.ACTIVE.value, GuestStatus.ABANDONED.value):
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Status can only be set to active or abandoned")

    if "metadata" in updates:
        guest.meta = {**(guest.meta or {}), **(updates.pop("metadata") or {})}

    for key, value in updates.items():
        if value is not None:
            setattr(guest, key, value)

    guest.updated_at = now()
    await session.flush()
    return guest


async def convert_guest(session, session_id: str, payload: ConvertGuestIn) -> Dict[str, Any]:
    """Register a user for the guest and move its addresses, reservations and checkout sessions over."""
    guest = await get_guest_or_404(session, session_id, lock=True)
    if guest.status == GuestStatus.CONVERTED.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Guest already converted to user")

    email = _normalized_email(payload.email)
    is_valid, detail = validate_password(payload.password)
    if not is_valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)

    username = payload.username.strip()
    await ensure_identity_available(session, username, email)

    user = await insert_user(
        session,
        username=username,
        email=email,
        password=payload.password,
        first_name=payload.first_name or guest.first_name,
        last_name=payload.last_name or guest.last_name,
        role_names=[config_settings.DEFAULT_ROLE],
    )

    migrated = await migrate_guest_records(session, session_id, user.id)

    stamp = now()
    guest.status = GuestStatus.CONVERTED.value
    guest.converted_at = stamp
    guest.converted_user_id = user.id
    guest.updated_at = stamp
    await session.flush()

    roles = await role_names_for(session, user.id)
    logger.info("guest.convert.success", extra={"guest_id": str(guest.public_id), "user_public_id": str(user.public_id), "migrated": migrated})
    return {
        "guest": guest,
        "user": {"id": str(user.public_id), "username": user.username, "email": user.email},
        "access_token": create_access_token(user.public_id, roles),
        "migrated": migrated,
    }


async def guest_analytics(session) -> Dict[str, Any]:
    counts = await guest_counts(session)
    total = counts["total"]
    return {
        "total_guest": total,
        "active_guest": counts["active"],
        "converted_guest": counts["converted"],
        "abandoned_guest": counts["abandoned"],
        "conversion_rate": round2(percentage(counts["converted"], total)),
        "completion_rate": round2(percentage(counts["active"] + counts["converted"], total)),
    }


def guest_to_dict(guest: Guest) -> Dict[str, Any]:
    return {
        "id": str(guest.public_id),
        "session_id": guest.session_id,
        "email": guest.email,
        "first_name": guest.first_name,
        "last_name": guest.last_name,
        "phone": guest.phone,
        "cart_ref": guest.cart_ref,
        "status": guest.status,
        "converted_at": iso(guest.converted_at),
        "metadata": guest.meta,
        "created_at": iso(guest.created_at),
        "updated_at": iso(guest.updated_at),
    }
