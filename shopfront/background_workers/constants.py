from shopfront.common.logging_setup import get_logger

logger = get_logger("shopfront.workers")

STOP_WAIT_TIMEOUT = 10.0
CANCEL_WAIT_TIMEOUT = 5.0
