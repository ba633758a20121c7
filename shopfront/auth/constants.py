from shopfront.config.settings import config_settings
from shopfront.common.logging_setup import get_logger

logger = get_logger("shopfront.auth")

ACCESS_TOKEN_TTL_SECONDS = int(config_settings.ACCESS_TOKEN_EXPIRE_MINUTES) * 60

ADMIN_ROLE = "admin"

SERVICE_ROLE = "service"
