from shopfront.common.logging_setup import get_logger

logger = get_logger("shopfront.addresses")

RECENTLY_ADDED_LIMIT = 5

EXPORT_FIELDS = (
    "id", "type", "first_name", "last_name", "company", "address1", "address2",
    "city", "state", "postal_code", "country", "phone", "is_default", "created_at",
)
