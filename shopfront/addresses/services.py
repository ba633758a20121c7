import csv
import io
from typing import Any, Dict, List, Optional
from fastapi import HTTPException, status
from shopfront.addresses.constants import EXPORT_FIELDS, logger
from shopfront.addresses.repository import (count_of_type, list_owned, most_recent_of_type, owner_filter,
                                            unset_defaults)
from shopfront.addresses.validation import ADDRESS_TYPES, validate_address
from shopfront.auth.dependencies import Requester
from shopfront.common.utils import iso, now
from shopfront.schema.full_schema import Address

ADDRESS_FIELDS = ("type", "first_name", "last_name", "company", "address1", "address2",
                  "city", "state", "postal_code", "country", "phone")


def requester_owner(requester: Requester):
    if requester.user_id is None and not requester.session_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Authentication required - provide either user authentication or session ID")
    return owner_filter(requester.user_id, requester.session_id)


def ensure_can_access(address: Address, requester: Requester) -> None:
    if requester.is_admin:
        return
    if address.user_id is not None and address.user_id == requester.user_id:
        return
    if address.user_id is None and address.session_id and address.session_id == requester.session_id:
        return
    logger.warning("address.access.denied", extra={"address_id": str(address.public_id), "user_public_id": requester.user_public_id})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


def ensure_address_type(address_type: str) -> str:
    if address_type not in ADDRESS_TYPES:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail="Invalid address type. Must be shipping, billing, or both")
    return address_type


def _validated(data: Dict[str, Any]) -> Dict[str, Any]:
    result = validate_address(data)
    if not result["is_valid"]:
        logger.warning("address.validation.failed", extra={"errors": result["errors"]})
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST,
                            detail=f"Address validation failed: {'; '.join(result['errors'])}")
    return result["formatted_address"]


async def create_address(session, data: Dict[str, Any], requester: Requester) -> Address:
    owner = requester_owner(requester)
    fields = _validated(data)

    address = Address(
        **fields,
        user_id=requester.user_id,
        session_id=None if requester.user_id is not None else requester.session_id,
        is_default=bool(data.get("is_default")),
    )

    # first address of a type becomes its default
    if not address.is_default and await count_of_type(session, owner, address.type) == 0:
        address.is_default = True

    if address.is_default:
        await unset_defaults(session, owner, address.type)

    session.add(address)
    await session.flush()

    logger.info("address.create.success", extra={"address_id": str(address.public_id), "address_type": address.type})
    return address


async def update_address(session, address: Address, updates: Dict[str, Any], requester: Requester) -> Address:
    merged = {f: getattr(address, f) for f in ADDRESS_FIELDS}
    merged.update({k: v for k, v in updates.items() if k in ADDRESS_FIELDS})
    fields = _validated(merged)

    for key, value in fields.items():
        setattr(address, key, value)

    if updates.get("is_default"):
        owner = owner_filter(address.user_id, address.session_id)
        await unset_defaults(session, owner, address.type, keep_id=address.id)
        address.is_default = True
    elif updates.get("is_default") is False:
        address.is_default = False

    address.updated_at = now()
    await session.flush()
    return address


async def set_default_address(session, address: Address) -> Address:
    owner = owner_filter(address.user_id, address.session_id)
    await unset_defaults(session, owner, address.type, keep_id=address.id)
    address.is_default = True
    address.updated_at = now()
    await session.flush()
    return address


async def delete_address(session, address: Address) -> Optional[Address]:
    """Delete and, when the address was a default, promote the newest remaining one of its type."""
    promoted = None
    if address.is_default:
        owner = owner_filter(address.user_id, address.session_id)
        promoted = await most_recent_of_type(session, owner, address.type, exclude_id=address.id)

    await session.delete(address)
    if promoted:
        promoted.is_default = True
    await session.flush()
    return promoted


def address_stats(addresses: List[Address]) -> Dict[str, int]:
    return {
        "total": len(addresses),
        "shipping": sum(1 for a in addresses if a.type in ("shipping", "both")),
        "billing": sum(1 for a in addresses if a.type in ("billing", "both")),
        "defaults": sum(1 for a in addresses if a.is_default),
    }


async def address_book(session, requester: Requester) -> Dict[str, Any]:
    addresses, _ = await list_owned(session, requester_owner(requester))
    return {
        "shipping": [address_to_dict(a) for a in addresses if a.type in ("shipping", "both")],
        "billing": [address_to_dict(a) for a in addresses if a.type in ("billing", "both")],
        "all": [address_to_dict(a) for a in addresses],
        "stats": address_stats(addresses),
    }


def export_csv(addresses: List[Address]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_FIELDS)
    for a in addresses:
        row = address_to_dict(a)
        writer.writerow(["" if row.get(f) is None else row.get(f) for f in EXPORT_FIELDS])
    return buf.getvalue()


async def import_addresses(session, rows: List[Dict[str, Any]], requester: Requester) -> Dict[str, Any]:
    requester_owner(requester)
    imported, errors_list = 0, []

    for index, row in enumerate(rows):
        data = {f: row.get(f) for f in ADDRESS_FIELDS}
        data["is_default"] = bool(row.get("is_default"))
        try:
            await create_address(session, data, requester)
        except HTTPException as e:
            errors_list.append({"index": index, "error": e.detail})
            continue
        imported += 1

    logger.info("address.import.done", extra={"imported": imported, "failed": len(errors_list)})
    return {"success": imported, "errors": len(errors_list), "errors_list": errors_list}


def address_to_dict(address: Address) -> Dict[str, Any]:
    return {
        "id": str(address.public_id),
        "type": address.type,
        "first_name": address.first_name,
        "last_name": address.last_name,
        "company": address.company,
        "address1": address.address1,
        "address2": address.address2,
        "city": address.city,
        "state": address.state,
        "postal_code": address.postal_code,
        "country": address.country,
        "phone": address.phone,
        "is_default": address.is_default,
        "session_id": address.session_id,
        "created_at": iso(address.created_at),
        "updated_at": iso(address.updated_at),
    }
