import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from fastapi import HTTPException, status
from sqlalchemy.orm.attributes import flag_modified
from shopfront.auth.dependencies import Requester
from shopfront.checkout.constants import FIRST_STEP, NAV_JUMP, NAV_NEXT, NAV_PREVIOUS, logger
from shopfront.checkout.steps_config import (can_skip_step, get_next_step, get_previous_step, get_step_config,
                                             get_step_dependencies, get_step_display_name, get_step_names,
                                             is_step_required)
from shopfront.checkout.validation import validate_step_data
from shopfront.common.utils import as_utc, iso, now, round2
from shopfront.config.settings import config_settings
from shopfront.schema.full_schema import CheckoutSession, CheckoutStatus


def _fresh_step(active: bool, stamp: datetime) -> Dict[str, Any]:
    return {
        "active": active,
        "completed": False,
        "started_at": iso(stamp) if active else None,
        "completed_at": None,
        "time_spent": 0,
        "attempts": 0,
        "step_data": {},
        "validation_errors": {},
        "last_validation_ok": False,
        "navigation_history": [],
    }


def initial_steps(stamp: Optional[datetime] = None) -> Dict[str, Dict[str, Any]]:
    stamp = stamp or now()
    return {name: _fresh_step(name == FIRST_STEP, stamp) for name in get_step_names()}


def _elapsed_seconds(started_at: Optional[str], stamp: datetime) -> int:
    if not started_at:
        return 0
    return max(int((stamp - as_utc(datetime.fromisoformat(started_at))).total_seconds()), 0)


def _activate(state: Dict[str, Any], stamp: datetime) -> None:
    state["active"] = True
    state["started_at"] = iso(stamp)


def _deactivate(state: Dict[str, Any], stamp: datetime) -> None:
    if state["active"]:
        state["time_spent"] += _elapsed_seconds(state["started_at"], stamp)
    state["active"] = False


def _record_navigation(steps: Dict[str, Dict[str, Any]], action: str, from_step: str, to_step: str, stamp: datetime) -> None:
    steps[to_step]["navigation_history"].append({
        "action": action,
        "from_step": from_step,
        "to_step": to_step,
        "timestamp": iso(stamp),
    })


def _save_steps(cs: CheckoutSession, stamp: datetime) -> None:
    # steps is a plain JSON column, in-place edits are invisible to the unit of work
    flag_modified(cs, "steps")
    cs.updated_at = stamp


def mask_payment_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Keep only the last four card digits; the CVV is never stored."""
    masked = dict(data)
    if masked.get("card_number"):
        digits = re.sub(r"\D", "", str(masked["card_number"]))
        masked["card_number"] = "*" * max(len(digits) - 4, 0) + digits[-4:]
    if masked.get("cvv"):
        masked["cvv"] = "***"
    return masked


def ensure_can_access(cs: CheckoutSession, requester: Requester) -> None:
    if requester.is_admin:
        return
    if cs.user_id is not None and cs.user_id == requester.user_id:
        return
    if cs.session_id is not None and cs.session_id == requester.session_id:
        return
    logger.warning("checkout.access.denied", extra={"checkout_id": str(cs.public_id)})
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")


async def ensure_open(session, cs: CheckoutSession) -> None:
    if cs.status != CheckoutStatus.ACTIVE.value:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Checkout session is {cs.status}")

    if as_utc(cs.expires_at) < now():
        stamp = now()
        cs.status = CheckoutStatus.ABANDONED.value
        cs.abandoned_at = stamp
        cs.updated_at = stamp
        await session.commit()
        logger.info("checkout.session.expired", extra={"checkout_id": str(cs.public_id)})
        raise HTTPException(status_code=status.HTTP_410_GONE, detail="checkout session expired")


async def create_checkout(session, requester: Requester, metadata: Optional[Dict[str, Any]] = None) -> CheckoutSession:
    stamp = now()
    cs = CheckoutSession(
        user_id=requester.user_id,
        session_id=None if requester.user_id is not None else requester.session_id,
        status=CheckoutStatus.ACTIVE.value,
        current_step=FIRST_STEP,
        steps=initial_steps(stamp),
        meta=metadata or None,
        expires_at=stamp + timedelta(minutes=config_settings.CHECKOUT_SESSION_TTL_MINUTES),
    )
    session.add(cs)
    await session.flush()

    logger.info("checkout.session.created", extra={"checkout_id": str(cs.public_id), "user_type": requester.user_type})
    return cs


def available_steps(steps: Dict[str, Dict[str, Any]]) -> List[str]:
    """Steps whose dependencies are all completed."""
    completed = {name for name, state in steps.items() if state["completed"]}
    return [name for name in get_step_names() if set(get_step_dependencies(name)) <= completed]


def build_progress(cs: CheckoutSession) -> Dict[str, Any]:
    steps = cs.steps
    current = cs.current_step
    state = steps.get(current, {})

    completed_steps = [name for name in get_step_names() if steps[name]["completed"]]
    can_proceed = bool(state.get("completed") or state.get("last_validation_ok") or can_skip_step(current))

    return {
        "current_step": current,
        "current_step_display_name": get_step_display_name(current),
        "completed_steps": completed_steps,
        "available_steps": available_steps(steps),
        "next_step": get_next_step(current),
        "previous_step": get_previous_step(current),
        "can_proceed": can_proceed,
        "errors": state.get("validation_errors") or {},
        "progress_percentage": round(len(completed_steps) / len(steps) * 100) if steps else 0,
    }


def validate_checkout_step(cs: CheckoutSession, step_name: str, data: Dict[str, Any]) -> Dict[str, Any]:
    if get_step_config(step_name) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid step: {step_name}")

    is_valid, errors = validate_step_data(step_name, data)

    stamp = now()
    state = cs.steps[step_name]
    state["step_data"] = mask_payment_fields(data)
    state["validation_errors"] = errors
    state["attempts"] += 1
    state["last_validation_ok"] = is_valid
    state["last_attempt_at"] = iso(stamp)
    _save_steps(cs, stamp)

    logger.info("checkout.step.validated", extra={"step": step_name, "is_valid": is_valid, "checkout_id": str(cs.public_id)})
    return {"step": step_name, "is_valid": is_valid, "errors": errors}


def move_to_next_step(cs: CheckoutSession) -> Dict[str, Any]:
    progress = build_progress(cs)
    if not progress["can_proceed"]:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot proceed to next step - validation failed")

    target = progress["next_step"]
    if not target:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No next step available")

    stamp = now()
    current = cs.current_step
    steps = cs.steps

    _deactivate(steps[current], stamp)
    steps[current]["completed"] = True
    steps[current]["completed_at"] = iso(stamp)

    _activate(steps[target], stamp)
    _record_navigation(steps, NAV_NEXT, current, target, stamp)
    cs.current_step = target

    if get_next_step(target) is None:
        cs.status = CheckoutStatus.COMPLETED.value
        cs.completed_at = stamp
        logger.info("checkout.session.completed", extra={"checkout_id": str(cs.public_id)})

    _save_steps(cs, stamp)
    return build_progress(cs)


def move_to_previous_step(cs: CheckoutSession) -> Dict[str, Any]:
    current = cs.current_step
    target = get_previous_step(current)
    if not target:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No previous step available")

    stamp = now()
    steps = cs.steps
    _deactivate(steps[current], stamp)
    _activate(steps[target], stamp)
    _record_navigation(steps, NAV_PREVIOUS, current, target, stamp)
    cs.current_step = target

    _save_steps(cs, stamp)
    return build_progress(cs)


def jump_to_step(cs: CheckoutSession, target: str) -> Dict[str, Any]:
    if get_step_config(target) is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Target step not found")
    if target not in available_steps(cs.steps):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Target step is not available")

    stamp = now()
    current = cs.current_step
    steps = cs.steps
    for state in steps.values():
        _deactivate(state, stamp)
    _activate(steps[target], stamp)
    _record_navigation(steps, NAV_JUMP, current, target, stamp)
    cs.current_step = target

    _save_steps(cs, stamp)
    return build_progress(cs)


def step_analytics(cs: CheckoutSession) -> Dict[str, Dict[str, Any]]:
    stamp = now()
    out = {}
    for name in get_step_names():
        state = cs.steps[name]
        time_spent = state["time_spent"]
        if state["active"]:
            time_spent += _elapsed_seconds(state["started_at"], stamp)
        attempts = state["attempts"]
        out[name] = {
            "display_name": get_step_display_name(name),
            "required": is_step_required(name),
            "time_spent": time_spent,
            "attempts": attempts,
            "completion_rate": 100 if state["completed"] else 0,
            "average_time": round2(time_spent / attempts) if attempts else 0,
            "abandonment_rate": 100 if attempts > 0 and not state["completed"] else 0,
        }
    return out


def abandon_checkout(cs: CheckoutSession, reason: Optional[str] = None) -> CheckoutSession:
    stamp = now()
    _deactivate(cs.steps[cs.current_step], stamp)
    cs.status = CheckoutStatus.ABANDONED.value
    cs.abandoned_at = stamp
    if reason:
        cs.meta = {**(cs.meta or {}), "abandon_reason": reason}
    _save_steps(cs, stamp)

    logger.info("checkout.session.abandoned", extra={"checkout_id": str(cs.public_id), "step": cs.current_step})
    return cs


def checkout_to_dict(cs: CheckoutSession, owner_pid=None) -> Dict[str, Any]:
    return {
        "id": str(cs.public_id),
        "user_id": str(owner_pid) if owner_pid else None,
        "session_id": cs.session_id,
        "status": cs.status,
        "current_step": cs.current_step,
        "steps": cs.steps,
        "metadata": cs.meta,
        "expires_at": iso(cs.expires_at),
        "completed_at": iso(cs.completed_at),
        "abandoned_at": iso(cs.abandoned_at),
        "created_at": iso(cs.created_at),
        "updated_at": iso(cs.updated_at),
    }
