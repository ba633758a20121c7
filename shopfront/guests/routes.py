from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from shopfront.auth.dependencies import Requester, require_admin
from shopfront.common.utils import success_response
from shopfront.db.dependencies import get_session
from shopfront.guests.constants import logger
from shopfront.guests.models import ConvertGuestIn, GuestIn, GuestUpdateIn
from shopfront.guests.services import (convert_guest, create_guest, get_guest_or_404, guest_analytics,
                                       guest_to_dict, update_guest)

guest_router = APIRouter()
guest_admin_router = APIRouter()


@guest_router.post("", status_code=status.HTTP_201_CREATED)
async def create(payload: GuestIn, session: AsyncSession = Depends(get_session)):

    guest = await create_guest(session, payload)
    await session.commit()
    return success_response({"message": "Guest created successfully", "guest": guest_to_dict(guest)},
                            status_code=status.HTTP_201_CREATED)


@guest_router.get("/{session_id}")
async def get_guest(session_id: str, session: AsyncSession = Depends(get_session)):
    guest = await get_guest_or_404(session, session_id)
    return success_response({"guest": guest_to_dict(guest)})


@guest_router.put("/{session_id}")
async def update(session_id: str, payload: GuestUpdateIn, session: AsyncSession = Depends(get_session)):

    guest = await get_guest_or_404(session, session_id, lock=True)
    guest = await update_guest(session, guest, payload.model_dump(exclude_unset=True))
    await session.commit()
    return success_response({"message": "Guest updated successfully", "guest": guest_to_dict(guest)})


@guest_router.delete("/{session_id}")
async def delete(session_id: str, session: AsyncSession = Depends(get_session)):

    guest = await get_guest_or_404(session, session_id)
    await session.delete(guest)
    await session.commit()

    logger.info("guest.delete.success", extra={"guest_id": str(guest.public_id)})
    return success_response({"message": "Guest deleted successfully"})


@guest_router.post("/{session_id}/convert", status_code=status.HTTP_201_CREATED)
async def convert(session_id: str, payload: ConvertGuestIn, session: AsyncSession = Depends(get_session)):

    logger.info("guest.convert.attempt")

    result = await convert_guest(session, session_id, payload)
    await session.commit()

    result["guest"] = guest_to_dict(result["guest"])
    return success_response({"message": "Guest successfully converted to user account", **result},
                            status_code=status.HTTP_201_CREATED)

# -----------------------------------------------------------------------------------------------------------------------

@guest_admin_router.get("/analytics")
async def analytics(requester: Requester = Depends(require_admin), session: AsyncSession = Depends(get_session)):
    return success_response({"analytics": await guest_analytics(session)})
