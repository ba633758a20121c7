from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from shopfront.auth.dependencies import Requester, require_owner_or_guest
from shopfront.auth.repository import public_ids_for
from shopfront.checkout.constants import logger
from shopfront.checkout.models import CheckoutSessionIn, JumpIn, StepDataIn
from shopfront.checkout.repository import checkout_by_public_id
from shopfront.checkout.services import (abandon_checkout, build_progress, checkout_to_dict, create_checkout,
                                         ensure_can_access, ensure_open, jump_to_step, move_to_next_step,
                                         move_to_previous_step, step_analytics, validate_checkout_step)
from shopfront.common.utils import success_response, validate_uuid
from shopfront.db.dependencies import get_session

checkout_router = APIRouter()


async def _checkout_for(session, checkout_id: str, requester: Requester, *, lock: bool = False, open_only: bool = False):
    cs = await checkout_by_public_id(session, validate_uuid(checkout_id, "Invalid checkout session id"), lock=lock)
    if not cs:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Checkout session not found")
    ensure_can_access(cs, requester)
    if open_only:
        await ensure_open(session, cs)
    return cs


async def _owner_pid(session, cs):
    if cs.user_id is None:
        return None
    return (await public_ids_for(session, [cs.user_id])).get(cs.user_id)


@checkout_router.post("/session", status_code=status.HTTP_201_CREATED)
async def create_session(payload: Optional[CheckoutSessionIn] = None,
                         requester: Requester = Depends(require_owner_or_guest),
                         session: AsyncSession = Depends(get_session)):

    cs = await create_checkout(session, requester, payload.metadata if payload else None)
    await session.commit()

    return success_response({
        "checkout_session": checkout_to_dict(cs, requester.user_public_id),
        "progress": build_progress(cs),
    }, status_code=status.HTTP_201_CREATED)


@checkout_router.get("/session/{checkout_id}")
async def get_checkout(checkout_id: str,
                       requester: Requester = Depends(require_owner_or_guest),
                       session: AsyncSession = Depends(get_session)):

    cs = await _checkout_for(session, checkout_id, requester)
    return success_response({
        "checkout_session": checkout_to_dict(cs, await _owner_pid(session, cs)),
        "progress": build_progress(cs),
    })


@checkout_router.post("/session/{checkout_id}/validate-step")
async def validate_step(checkout_id: str, payload: StepDataIn,
                        requester: Requester = Depends(require_owner_or_guest),
                        session: AsyncSession = Depends(get_session)):

    cs = await _checkout_for(session, checkout_id, requester, lock=True, open_only=True)
    result = validate_checkout_step(cs, payload.step, payload.data)
    await session.commit()

    return success_response({"validation": result, "progress": build_progress(cs)})


@checkout_router.post("/session/{checkout_id}/next")
async def next_step(checkout_id: str,
                    requester: Requester = Depends(require_owner_or_guest),
                    session: AsyncSession = Depends(get_session)):

    cs = await _checkout_for(session, checkout_id, requester, lock=True, open_only=True)
    progress = move_to_next_step(cs)
    await session.commit()

    logger.info("checkout.navigate.next", extra={"checkout_id": checkout_id, "step": cs.current_step})
    return success_response({"progress": progress, "status": cs.status})


@checkout_router.post("/session/{checkout_id}/previous")
async def previous_step(checkout_id: str,
                        requester: Requester = Depends(require_owner_or_guest),
                        session: AsyncSession = Depends(get_session)):

    cs = await _checkout_for(session, checkout_id, requester, lock=True, open_only=True)
    progress = move_to_previous_step(cs)
    await session.commit()

    logger.info("checkout.navigate.previous", extra={"checkout_id": checkout_id, "step": cs.current_step})
    return success_response({"progress": progress})


@checkout_router.post("/session/{checkout_id}/jump")
async def jump(checkout_id: str, payload: JumpIn,
               requester: Requester = Depends(require_owner_or_guest),
               session: AsyncSession = Depends(get_session)):

    cs = await _checkout_for(session, checkout_id, requester, lock=True, open_only=True)
    progress = jump_to_step(cs, payload.step)
    await session.commit()

    logger.info("checkout.navigate.jump", extra={"checkout_id": checkout_id, "step": payload.step})
    return success_response({"progress": progress})


@checkout_router.get("/session/{checkout_id}/analytics")
async def analytics(checkout_id: str,
                    requester: Requester = Depends(require_owner_or_guest),
                    session: AsyncSession = Depends(get_session)):

    cs = await _checkout_for(session, checkout_id, requester)
    return success_response({"analytics": step_analytics(cs), "status": cs.status})


@checkout_router.post("/session/{checkout_id}/abandon")
async def abandon(checkout_id: str,
                  reason: Optional[str] = Query(None, max_length=255),
                  requester: Requester = Depends(require_owner_or_guest),
                  session: AsyncSession = Depends(get_session)):

    cs = await _checkout_for(session, checkout_id, requester, lock=True, open_only=True)
    cs = abandon_checkout(cs, reason)
    await session.commit()

    return success_response({"message": "Checkout session abandoned",
                             "checkout_session": checkout_to_dict(cs, await _owner_pid(session, cs))})
