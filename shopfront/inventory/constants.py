from shopfront.common.logging_setup import get_logger
from shopfront.config.settings import config_settings

logger = get_logger("shopfront.inventory")

DEFAULT_LOW_STOCK_THRESHOLD = config_settings.DEFAULT_LOW_STOCK_THRESHOLD
RESERVATION_EXPIRATION_MINUTES = config_settings.RESERVATION_EXPIRATION_MINUTES

TOP_LOW_STOCK_LIMIT = 10

INITIAL_SETUP_REASON = "Initial inventory setup"
MANUAL_RELEASE_REASON = "Manual release"
ORDER_FULFILLED_REASON = "Order fulfilled"
EXPIRED_REASON = "Reservation expired"
CANCELLED_REASON = "Reservation cancelled"
