import redis
import structlog
from rq import Queue

from app.core.config import settings

logger = structlog.get_logger()

# ---------------------------------------------------------------------------
# Redis connection
# ---------------------------------------------------------------------------

redis_conn = redis.from_url(settings.redis_url, decode_responses=False)

# ---------------------------------------------------------------------------
# Queues
# ---------------------------------------------------------------------------

cas_parsing_queue = Queue("cas_parsing", connection=redis_conn)

_QUEUES = {
    "cas_parsing": cas_parsing_queue,
}

# A CAS parse is never retried automatically; a retry is a new parse request
CAS_PARSE_JOB_TIMEOUT = 300


def get_queue(name: str) -> Queue:
    """Return a named RQ queue. Raises KeyError for unknown names."""
    try:
        return _QUEUES[name]
    except KeyError:
        raise KeyError(f"Unknown queue '{name}'. Valid queues: {list(_QUEUES)}")
