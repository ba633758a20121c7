from shopfront.common.logging_setup import get_logger

logger = get_logger("shopfront.checkout")

FIRST_STEP = "cart"

NAV_NEXT = "next"
NAV_PREVIOUS = "previous"
NAV_JUMP = "jump"
