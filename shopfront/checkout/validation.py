import math
import re
from typing import Any, Dict, List, Optional, Tuple
from shopfront.auth.dependencies import normalize_email_address
from shopfront.checkout.steps_config import get_step_config, get_step_error_messages, get_step_validation_rules

CVV_RE = re.compile(r"^\d{3,4}$")
EXPIRY_RE = re.compile(r"^(\d{1,2})/(\d{2})$")


def luhn_check(card_number: str) -> bool:
    if not card_number or not card_number.isdigit() or not 13 <= len(card_number) <= 19:
        return False

    total = 0
    for i, ch in enumerate(reversed(card_number)):
        digit = int(ch)
        if i % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def is_valid_email(email: str) -> bool:
    try:
        normalize_email_address(email)
    except ValueError:
        return False
    return True


def validate_field_format(value: Any, fmt: str) -> Optional[str]:
    """Return an error message when ``value`` does not match ``fmt``, else None."""
    text = str(value).strip()
    if fmt == "credit_card":
        if not luhn_check(re.sub(r"\D", "", text)):
            return "Invalid card number"
    elif fmt == "expiry":
        m = EXPIRY_RE.match(text)
        if not m or not 1 <= int(m.group(1)) <= 12:
            return "Invalid expiry date format (MM/YY)"
    elif fmt == "cvv":
        if not CVV_RE.match(text):
            return "Invalid CVV format"
    return None


def _is_blank(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, dict)):
        return len(value) == 0
    return False


def validate_step_data(step_name: str, data: Dict[str, Any]) -> Tuple[bool, Dict[str, List[str]]]:
    """
    Check ``data`` against the rules of ``step_name``.

    Returns ``(is_valid, errors)`` where ``errors`` maps a field name to its messages.
    An email, when present, is checked on every step.
    """
    if get_step_config(step_name) is None:
        return False, {"step": [f"Invalid step: {step_name}"]}

    errors: Dict[str, List[str]] = {}

    email = data.get("email")
    if email and not is_valid_email(str(email)):
        errors["email"] = ["Invalid email format"]

    messages = get_step_error_messages(step_name)
    for field, rule in get_step_validation_rules(step_name).items():
        value = data.get(field)
        field_errors = []

        if rule.get("required") and _is_blank(value):
            field_errors.append(messages.get(field, f"{field} is required"))
        elif not _is_blank(value):
            if "min" in rule:
                try:
                    number = float(value)
                except (TypeError, ValueError):
                    number = None
                if number is None or not math.isfinite(number):
                    field_errors.append(f"{field} must be a number")
                elif number < rule["min"]:
                    field_errors.append(messages.get(field, f"{field} must be at least {rule['min']}"))
            if "format" in rule:
                format_error = validate_field_format(value, rule["format"])
                if format_error:
                    field_errors.append(format_error)

        if field_errors:
            errors[field] = field_errors

    return not errors, errors
