import contextvars
from typing import Optional

DEFAULT_PAGE_SIZE = 25
MAX_PAGE_SIZE = 100

# Context variables for request and trace id
request_id_ctx: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)
