from urllib.parse import urlparse, urlunparse, parse_qs, urlencode

from celery import Celery
from slotbook.core.config import settings


def _redis_url_for_celery(url: str) -> str:
    """Celery requires ssl_cert_reqs for rediss:// (e.g. Upstash TLS)."""
    if not url or not url.strip().lower().startswith("rediss://"):
        return url
    parsed = urlparse(url)
    qs = parse_qs(parsed.query)
    if "ssl_cert_reqs" in qs:
        return url
    qs["ssl_cert_reqs"] = ["CERT_NONE"]
    return urlunparse(parsed._replace(query=urlencode(qs, doseq=True)))


_redis_url = _redis_url_for_celery(settings.REDIS_URL)

celery = Celery(
    "slotbook",
    broker=_redis_url,
    backend=_redis_url,
    include=["slotbook.tasks.jobs"],
)

# beat runs in UTC; booking times are stored as instants
celery.conf.timezone = "UTC"

celery.conf.beat_schedule = {
    "expire-requests-every-minute": {
        "task": "slotbook.tasks.jobs.expire_requests",
        "schedule": 60.0,
    },
}
