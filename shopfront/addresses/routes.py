from typing import Literal
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession
from shopfront.addresses.constants import RECENTLY_ADDED_LIMIT, logger
from shopfront.addresses.models import AddressIn, AddressImportIn, AddressUpdateIn
from shopfront.addresses.repository import (address_analytics, address_by_public_id, default_for_type, list_owned,
                                            search_owned)
from shopfront.addresses.services import (address_book, address_stats, address_to_dict, create_address,
                                          delete_address, ensure_address_type, ensure_can_access, export_csv,
                                          import_addresses, requester_owner, set_default_address, update_address)
from shopfront.addresses.validation import validate_address, validate_address_for_country
from shopfront.auth.constants import ADMIN_ROLE, SERVICE_ROLE
from shopfront.auth.dependencies import Requester, require_owner_or_guest, require_roles
from shopfront.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from shopfront.common.utils import page_meta, success_response, validate_uuid
from shopfront.db.dependencies import get_session

address_router = APIRouter()
address_admin_router = APIRouter()


async def _accessible(session, address_id: str, requester: Requester):
    address = await address_by_public_id(session, validate_uuid(address_id, "Invalid address id"))
    if not address:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Address not found")
    ensure_can_access(address, requester)
    return address


@address_router.post("", status_code=status.HTTP_201_CREATED)
async def create(payload: AddressIn,
                 requester: Requester = Depends(require_owner_or_guest),
                 session: AsyncSession = Depends(get_session)):

    address = await create_address(session, payload.model_dump(), requester)
    await session.commit()
    return success_response({"address": address_to_dict(address)}, status_code=status.HTTP_201_CREATED)


@address_router.get("")
async def get_addresses(page: int = Query(1, ge=1),
                        page_size: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                        requester: Requester = Depends(require_owner_or_guest),
                        session: AsyncSession = Depends(get_session)):

    rows, total = await list_owned(session, requester_owner(requester), page=page, page_size=page_size)
    return success_response({"items": [address_to_dict(a) for a in rows], "pagination": page_meta(page, page_size, total)})


@address_router.get("/type/{address_type}")
async def get_by_type(address_type: str,
                      requester: Requester = Depends(require_owner_or_guest),
                      session: AsyncSession = Depends(get_session)):

    rows, _ = await list_owned(session, requester_owner(requester), address_type=ensure_address_type(address_type))
    return success_response({"items": [address_to_dict(a) for a in rows], "count": len(rows)})


@address_router.get("/default/{address_type}")
async def get_default(address_type: str,
                      requester: Requester = Depends(require_owner_or_guest),
                      session: AsyncSession = Depends(get_session)):

    address = await default_for_type(session, requester_owner(requester), ensure_address_type(address_type))
    if not address:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No default {address_type} address found")
    return success_response({"address": address_to_dict(address)})


@address_router.get("/search")
async def search(q: str = Query(..., min_length=1),
                 requester: Requester = Depends(require_owner_or_guest),
                 session: AsyncSession = Depends(get_session)):

    rows = await search_owned(session, requester_owner(requester), q)
    return success_response({"items": [address_to_dict(a) for a in rows], "count": len(rows), "query": q})


@address_router.get("/stats")
async def stats(requester: Requester = Depends(require_owner_or_guest),
                session: AsyncSession = Depends(get_session)):

    rows, _ = await list_owned(session, requester_owner(requester))
    return success_response({"stats": address_stats(rows)})


@address_router.post("/validate")
async def validate(payload: AddressIn):
    return success_response({"validation": validate_address(payload.model_dump())})


@address_router.post("/validate/{country}")
async def validate_for_country(country: str, payload: AddressIn):
    return success_response({"validation": validate_address_for_country(payload.model_dump(), country)})


@address_router.get("/book")
async def book(requester: Requester = Depends(require_owner_or_guest),
               session: AsyncSession = Depends(get_session)):
    return success_response({"address_book": await address_book(session, requester)})


@address_router.get("/export")
async def export(export_format: Literal["json", "csv"] = Query("json", alias="format"),
                 requester: Requester = Depends(require_owner_or_guest),
                 session: AsyncSession = Depends(get_session)):

    rows, _ = await list_owned(session, requester_owner(requester))
    logger.info("address.export", extra={"export_format": export_format, "count": len(rows)})

    if export_format == "csv":
        return Response(
            content=export_csv(rows),
            media_type="text/csv",
            headers={"Content-Disposition": 'attachment; filename="addresses.csv"'},
        )
    return success_response({"addresses": [address_to_dict(a) for a in rows], "count": len(rows)})


@address_router.post("/import")
async def import_route(payload: AddressImportIn,
                       requester: Requester = Depends(require_owner_or_guest),
                       session: AsyncSession = Depends(get_session)):

    result = await import_addresses(session, payload.addresses, requester)
    await session.commit()
    return success_response(result)


@address_router.get("/{address_id}")
async def get_address(address_id: str,
                      requester: Requester = Depends(require_owner_or_guest),
                      session: AsyncSession = Depends(get_session)):
    address = await _accessible(session, address_id, requester)
    return success_response({"address": address_to_dict(address)})


@address_router.put("/{address_id}")
async def update(address_id: str, payload: AddressUpdateIn,
                 requester: Requester = Depends(require_owner_or_guest),
                 session: AsyncSession = Depends(get_session)):

    address = await _accessible(session, address_id, requester)
    address = await update_address(session, address, payload.model_dump(exclude_unset=True), requester)
    await session.commit()
    return success_response({"address": address_to_dict(address)})


@address_router.put("/{address_id}/set-default")
async def set_default(address_id: str,
                      requester: Requester = Depends(require_owner_or_guest),
                      session: AsyncSession = Depends(get_session)):

    address = await _accessible(session, address_id, requester)
    address = await set_default_address(session, address)
    await session.commit()
    return success_response({"address": address_to_dict(address)})


@address_router.delete("/{address_id}")
async def delete(address_id: str,
                 requester: Requester = Depends(require_owner_or_guest),
                 session: AsyncSession = Depends(get_session)):

    address = await _accessible(session, address_id, requester)
    promoted = await delete_address(session, address)
    await session.commit()

    return success_response({"message": "Address deleted successfully",
                             "new_default": str(promoted.public_id) if promoted else None})

# -----------------------------------------------------------------------------------------------------------------------

@address_admin_router.get("/analytics")
async def analytics(requester: Requester = require_roles(ADMIN_ROLE, SERVICE_ROLE),
                    session: AsyncSession = Depends(get_session)):

    data = await address_analytics(session, RECENTLY_ADDED_LIMIT)
    data["recently_added"] = [address_to_dict(a) for a in data["recently_added"]]
    return success_response({"analytics": data})
