from redis import Redis

from .config import settings

# decode_responses so list payloads come back as str
redis_client = Redis.from_url(
    settings.redis_url,
    decode_responses=True,
    socket_timeout=2.0,
)
