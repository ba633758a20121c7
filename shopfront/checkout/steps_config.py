"""
Static checkout step configuration.

Steps live in code rather than in the database. Each entry describes its order,
whether it is required, which steps must be completed before it becomes
available and the validation rules applied to the data submitted for it.
"""
from typing import Any, Dict, List, Optional

CHECKOUT_STEPS: Dict[str, Dict[str, Any]] = {
    "cart": {
        "order": 1,
        "required": True,
        "depends_on": [],
        "can_skip": False,
        "display_name": "Cart Review",
        "description": "Review your cart items and quantities",
        "is_active": True,
        "validation_rules": {
            "has_items": {"required": True},
            "total_amount": {"required": True, "min": 0.01},
        },
        "error_messages": {
            "has_items": "Cart must contain at least one item",
            "total_amount": "Cart total must be greater than zero",
        },
        "accessibility_features": {"aria_label": "Cart review"},
    },
    "shipping": {
        "order": 2,
        "required": True,
        "depends_on": ["cart"],
        "can_skip": False,
        "display_name": "Shipping Address",
        "description": "Enter your shipping address",
        "is_active": True,
        "validation_rules": {
            "address": {"required": True},
            "shipping_method": {"required": True},
        },
        "error_messages": {
            "address": "Shipping address is required",
            "shipping_method": "Please select a shipping method",
        },
        "accessibility_features": {
            "aria_label": "Shipping address form",
            "required_fields": ["address", "shipping_method"],
        },
    },
    "billing": {
        "order": 3,
        "required": True,
        "depends_on": ["shipping"],
        "can_skip": False,
        "display_name": "Billing Address",
        "description": "Enter your billing address",
        "is_active": True,
        "validation_rules": {
            "address": {"required": True},
            "payment_method": {"required": True},
        },
        "error_messages": {
            "address": "Billing address is required",
            "payment_method": "Please select a payment method",
        },
        "accessibility_features": {
            "aria_label": "Billing address form",
            "required_fields": ["address", "payment_method"],
        },
    },
    "payment": {
        "order": 4,
        "required": True,
        "depends_on": ["billing"],
        "can_skip": False,
        "display_name": "Payment Method",
        "description": "Enter your payment information",
        "is_active": True,
        "validation_rules": {
            "card_number": {"required": True, "format": "credit_card"},
            "expiry_date": {"required": True, "format": "expiry"},
            "cvv": {"required": True, "format": "cvv"},
        },
        "error_messages": {
            "card_number": "Valid card number is required",
            "expiry_date": "Valid expiry date is required",
            "cvv": "Valid CVV is required",
        },
        "accessibility_features": {
            "aria_label": "Payment method form",
            "required_fields": ["card_number", "expiry_date", "cvv"],
        },
    },
    "review": {
        "order": 5,
        "required": True,
        "depends_on": ["payment"],
        "can_skip": False,
        "display_name": "Order Review",
        "description": "Review your order details before confirmation",
        "is_active": True,
        "validation_rules": {
            "terms_accepted": {"required": True},
            "privacy_accepted": {"required": True},
        },
        "error_messages": {
            "terms_accepted": "You must accept the terms and conditions",
            "privacy_accepted": "You must accept the privacy policy",
        },
        "accessibility_features": {"aria_label": "Order review summary"},
    },
    "confirmation": {
        "order": 6,
        "required": False,
        "depends_on": ["review"],
        "can_skip": True,
        "display_name": "Order Confirmation",
        "description": "Your order has been confirmed",
        "is_active": True,
        "validation_rules": {},
        "error_messages": {},
        "accessibility_features": {"aria_label": "Order confirmation page"},
    },
}


def get_step_config(step_name: str) -> Optional[Dict[str, Any]]:
    return CHECKOUT_STEPS.get(step_name)


def get_step_names() -> List[str]:
    return sorted(CHECKOUT_STEPS, key=lambda name: CHECKOUT_STEPS[name]["order"])


def get_next_step(current_step: str) -> Optional[str]:
    names = get_step_names()
    if current_step not in names:
        return None
    idx = names.index(current_step)
    return names[idx + 1] if idx + 1 < len(names) else None


def get_previous_step(current_step: str) -> Optional[str]:
    names = get_step_names()
    if current_step not in names:
        return None
    idx = names.index(current_step)
    return names[idx - 1] if idx > 0 else None


def is_step_required(step_name: str) -> bool:
    config = get_step_config(step_name)
    return bool(config and config["required"])


def can_skip_step(step_name: str) -> bool:
    config = get_step_config(step_name)
    return bool(config and config["can_skip"])


def get_step_dependencies(step_name: str) -> List[str]:
    config = get_step_config(step_name)
    return list(config["depends_on"]) if config else []


def get_step_validation_rules(step_name: str) -> Dict[str, Any]:
    config = get_step_config(step_name)
    return config["validation_rules"] if config else {}


def get_step_display_name(step_name: str) -> str:
    config = get_step_config(step_name)
    return config["display_name"] if config else step_name


def is_step_active(step_name: str) -> bool:
    config = get_step_config(step_name)
    return config.get("is_active", True) is not False if config else False


def get_step_error_messages(step_name: str) -> Dict[str, str]:
    config = get_step_config(step_name)
    return config["error_messages"] if config else {}


def get_step_accessibility_features(step_name: str) -> Dict[str, Any]:
    config = get_step_config(step_name)
    return config["accessibility_features"] if config else {}
