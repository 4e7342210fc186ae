import hmac
import time
from dataclasses import dataclass

from django.core.cache import cache
from django.utils.text import slugify


def unique_slug(model, base: str, slug_field: str = "slug") -> str:
    base_slug = slugify(base)[:90] or "item"
    slug = base_slug
    i = 2
    while model.objects.filter(**{slug_field: slug}).exists():
        slug = f"{base_slug}-{i}"
        i += 1
    return slug


def is_manager(user) -> bool:
    if user is None or not user.is_authenticated:
        return False
    if user.is_staff or user.is_superuser:
        return True
    return user.groups.filter(name="Manager").exists()


def mask_email(email) -> str:
    """Mask an email for log lines: jo***@example.com."""
    if not email or not isinstance(email, str):
        return "***"
    at = email.find("@")
    if at <= 0:
        return "***"
    local, domain = email[:at], email[at:]
    if len(local) <= 2:
        return "***" + domain
    return local[:2] + "***" + domain


def secrets_match(provided, expected) -> bool:
    if not provided or not expected:
        return False
    return hmac.compare_digest(str(provided).encode("utf-8"), str(expected).encode("utf-8"))


def client_identifier(request) -> str:
    forwarded = request.META.get("HTTP_X_FORWARDED_FOR", "")
    ip = forwarded.split(",")[0].strip() if forwarded else ""
    return ip or request.META.get("HTTP_X_REAL_IP") or request.META.get("REMOTE_ADDR") or "unknown"


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float

    @property
    def retry_after(self) -> int:
        return max(1, int(self.reset_at - time.time() + 0.999))


def check_rate_limit(identifier: str, max_requests: int = 10, window_seconds: int = 60) -> RateLimitResult:
    """Fixed-window counter kept in the Django cache.

    With LocMemCache the counters are per process and lost on restart;
    point the cache at Redis to share them between instances.
    """
    key = f"ratelimit:{identifier}"
    reset_key = f"{key}:reset"
    now = time.time()
    cache.add(reset_key, now + window_seconds, timeout=window_seconds)
    cache.add(key, 0, timeout=window_seconds)
    try:
        count = cache.incr(key)
    except ValueError:
        # expired between add() and incr()
        cache.set(key, 1, timeout=window_seconds)
        count = 1
    reset_at = cache.get(reset_key) or now + window_seconds
    if count > max_requests:
        return RateLimitResult(allowed=False, remaining=0, reset_at=reset_at)
    return RateLimitResult(allowed=True, remaining=max_requests - count, reset_at=reset_at)
