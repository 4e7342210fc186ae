"""Open/closed predicates over already-fetched auction state.

Closing is two-layered: an explicit flag (per item, or global on the
settings row) and the settings deadline. The deadline layer is evaluated
on every call and is never written back to items.
"""
from django.utils import timezone


def _now(now=None):
    return now or timezone.now()


def deadline_passed(settings, now=None) -> bool:
    if settings is None or settings.auction_deadline is None:
        return False
    return _now(now) >= settings.auction_deadline


def auction_ended(settings, now=None) -> bool:
    """Auction-level layers only: the global flag or the deadline."""
    if settings is None:
        return False
    return bool(settings.auction_closed) or deadline_passed(settings, now)


def is_open(settings, item, now=None) -> bool:
    if auction_ended(settings, now):
        return False
    return not item.is_closed


def has_started(settings, now=None) -> bool:
    if settings is None or settings.auction_start is None:
        return True
    return _now(now) >= settings.auction_start


def is_effectively_closed(settings, item, now=None) -> bool:
    return not is_open(settings, item, now)
