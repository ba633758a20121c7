from shopfront.common.logging_setup import get_logger

logger = get_logger("shopfront.user_activity")

ANONYMIZED_USER_AGENT = "ANONYMIZED"
