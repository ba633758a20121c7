from shopfront.common.logging_setup import get_logger

logger = get_logger("shopfront.stock_reservations")

DEFAULT_EXPIRING_SOON_HOURS = 24
