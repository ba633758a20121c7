"""
Address validation and formatting.

Pure functions over plain dicts keyed like the ``Address`` columns, so they can be
used on request payloads, import rows and stored addresses alike.
"""
import re
from typing import Any, Dict, List, Optional

ADDRESS_TYPES = ("shipping", "billing", "both")

REQUIRED_FIELDS = ("type", "first_name", "last_name", "address1", "city", "state", "postal_code", "country", "phone")

# field -> (max length, label used in messages)
MAX_LENGTHS = {
    "first_name": (255, "First name"),
    "last_name": (255, "Last name"),
    "company": (255, "Company"),
    "address1": (255, "Address line 1"),
    "address2": (255, "Address line 2"),
    "city": (255, "City"),
    "state": (255, "State/Province"),
    "postal_code": (20, "Postal code"),
    "country": (255, "Country"),
    "phone": (20, "Phone number"),
}

_POSTAL_RE = re.compile(r"^[A-Z0-9\-]{3,10}$")
_US_ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
_CA_POSTAL_RE = re.compile(r"^[A-Z]\d[A-Z]\s?\d[A-Z]\d$")
_PHONE_KEEP_RE = re.compile(r"[^\d+\-()\s]")

US_ALIASES = ("US", "USA", "UNITED STATES")
CA_ALIASES = ("CA", "CANADA")


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _clean_code(postal_code: str) -> str:
    return re.sub(r"\s", "", postal_code).upper()


def is_valid_postal_code(postal_code: Optional[str]) -> bool:
    if not postal_code:
        return False
    code = _clean_code(postal_code)
    return bool(_POSTAL_RE.match(code)) and any(c.isdigit() for c in code)


def is_valid_us_postal_code(postal_code: Optional[str]) -> bool:
    return bool(postal_code) and bool(_US_ZIP_RE.match(_clean_code(postal_code)))


def is_valid_canadian_postal_code(postal_code: Optional[str]) -> bool:
    return bool(postal_code) and bool(_CA_POSTAL_RE.match(_clean_code(postal_code)))


def is_valid_phone_number(phone: Optional[str]) -> bool:
    if not phone:
        return False
    digits = sum(1 for c in _PHONE_KEEP_RE.sub("", phone) if c.isdigit())
    return 7 <= digits <= 15


def format_phone_number(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return None

    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    if len(digits) == 11 and digits.startswith("1"):
        return f"+1 ({digits[1:4]}) {digits[4:7]}-{digits[7:]}"
    if 7 <= len(digits) <= 15:
        return phone if phone.startswith("+") else f"+{digits}"
    return phone


def format_address(data: Dict[str, Any]) -> Dict[str, Any]:
    def trimmed(key):
        value = data.get(key)
        return value.strip() if isinstance(value, str) else value

    postal = trimmed("postal_code")
    return {
        "type": trimmed("type"),
        "first_name": trimmed("first_name"),
        "last_name": trimmed("last_name"),
        "company": trimmed("company"),
        "address1": trimmed("address1"),
        "address2": trimmed("address2"),
        "city": trimmed("city"),
        "state": trimmed("state"),
        "postal_code": postal.upper() if postal else postal,
        "country": trimmed("country"),
        "phone": format_phone_number(data.get("phone")),
    }


def _result(errors: List[str], warnings: List[str], confidence: float, data: Dict[str, Any]) -> Dict[str, Any]:
    is_valid = not errors
    return {
        "is_valid": is_valid,
        "errors": errors,
        "warnings": warnings,
        "confidence": round(max(0.0, confidence), 2),
        "formatted_address": format_address(data) if is_valid else None,
    }


def validate_address(data: Dict[str, Any]) -> Dict[str, Any]:
    errors: List[str] = []
    warnings: List[str] = []
    confidence = 1.0

    for field in REQUIRED_FIELDS:
        if not _text(data.get(field)):
            errors.append(f"{field} is required")
            confidence -= 0.1

    if data.get("type") and data.get("type") not in ADDRESS_TYPES:
        errors.append("Invalid address type. Must be shipping, billing, or both")
        confidence -= 0.1

    for field, (limit, label) in MAX_LENGTHS.items():
        value = data.get(field)
        if isinstance(value, str) and len(value) > limit:
            errors.append(f"{label} is too long (max {limit} characters)")
            confidence -= 0.05

    postal_code = data.get("postal_code")
    if postal_code and not is_valid_postal_code(postal_code):
        errors.append("Invalid postal code format")
        confidence -= 0.1

    phone = data.get("phone")
    if phone and not is_valid_phone_number(phone):
        errors.append("Invalid phone number format")
        confidence -= 0.1

    if not _text(data.get("address2")) and not _text(data.get("company")):
        warnings.append("No secondary address line or company provided")

    return _result(errors, warnings, confidence, data)


def validate_address_for_country(data: Dict[str, Any], country: str) -> Dict[str, Any]:
    base = validate_address(data)
    if not base["is_valid"]:
        return base

    errors = list(base["errors"])
    warnings = list(base["warnings"])
    confidence = base["confidence"]
    postal_code = data.get("postal_code")
    code = (country or "").strip().upper()

    if code in US_ALIASES:
        if postal_code and not is_valid_us_postal_code(postal_code):
            errors.append("Invalid US postal code format")
            confidence -= 0.1
    elif code in CA_ALIASES:
        if postal_code and not is_valid_canadian_postal_code(postal_code):
            errors.append("Invalid Canadian postal code format")
            confidence -= 0.1
    else:
        warnings.append(f"No country-specific rules for {country}; generic checks applied")

    return _result(errors, warnings, confidence, data)
