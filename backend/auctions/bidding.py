import logging
import random
from dataclasses import dataclass
from decimal import Decimal

from django.db import IntegrityError, transaction

from . import clock
from .models import Alias, AuctionSettings, Bid, Item
from .utils import mask_email

logger = logging.getLogger(__name__)


class BidRejected(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AuctionClosed(BidRejected):
    pass


class AuctionNotStarted(BidRejected):
    pass


class BidTooLow(BidRejected):
    def __init__(self, minimum: Decimal):
        super().__init__(f"Minimum allowed bid: {minimum:.2f}")
        self.minimum = minimum


@dataclass(frozen=True)
class HighBid:
    bid_id: int
    amount: Decimal
    email: str
    bidder_name: str


# Ledger


def current_high_bid(item_id) -> HighBid | None:
    """Highest bid for the item, or None when nobody has bid yet.

    Equal amounts resolve to the earliest bid, matching winner resolution.
    """
    top = (
        Bid.objects.filter(item_id=item_id)
        .order_by("-amount", "created_at", "id")
        .values("id", "amount", "email", "bidder_name")
        .first()
    )
    if top is None:
        return None
    return HighBid(bid_id=top["id"], amount=top["amount"], email=top["email"], bidder_name=top["bidder_name"])


def bids_for_items(item_ids):
    """Bids ordered so the first row per item is its winning bid."""
    return (
        Bid.objects.filter(item_id__in=list(item_ids))
        .order_by("item_id", "-amount", "created_at", "id")
    )


# Policy


def minimum_next_bid(item: Item, current_high: HighBid | None) -> Decimal:
    if current_high is None:
        return Decimal(item.start_price)
    return Decimal(current_high.amount) + Decimal(item.min_increment)


def is_acceptable(amount, minimum) -> bool:
    return Decimal(amount) >= Decimal(minimum)


# Placement


@dataclass(frozen=True)
class PlacedBid:
    bid: Bid
    next_minimum: Decimal


def place_bid(*, item_slug: str, bidder_name: str, email: str, amount: Decimal, now=None) -> PlacedBid:
    """Validate and record a bid.

    The item row is locked for the duration of the check and the insert, so
    two concurrent bids on one item cannot both pass against the same high bid.
    """
    amount = Decimal(amount)
    with transaction.atomic():
        item = Item.objects.select_for_update().get(slug=item_slug)
        settings = AuctionSettings.load()
        if not clock.has_started(settings, now):
            raise AuctionNotStarted("Bidding has not opened yet.")
        if clock.deadline_passed(settings, now):
            raise AuctionClosed("Bidding closed - deadline passed")
        if not clock.is_open(settings, item, now):
            raise AuctionClosed("Bidding closed - item is closed")

        high = current_high_bid(item.pk)
        minimum = minimum_next_bid(item, high)
        if not is_acceptable(amount, minimum):
            raise BidTooLow(minimum)

        alias = Alias.objects.filter(email__iexact=email).first()
        bid = Bid.objects.create(item=item, bidder_name=bidder_name, email=email, alias=alias, amount=amount)

    logger.info("Bid %s accepted on %s from %s", amount, item.slug, mask_email(email))
    return PlacedBid(bid=bid, next_minimum=amount + Decimal(item.min_increment))


# Bidder status


@dataclass(frozen=True)
class BidStatus:
    bid: Bid
    current_high: Decimal
    is_outbid: bool
    is_winning: bool
    is_closed: bool


def bid_status(bid: Bid, high: HighBid | None, settings, now=None) -> BidStatus:
    """Where one bid stands against the item's current high bid."""
    current = high.amount if high is not None else Decimal(bid.item.start_price)
    return BidStatus(
        bid=bid,
        current_high=current,
        is_outbid=Decimal(bid.amount) < current,
        is_winning=high is not None and high.bid_id == bid.pk,
        is_closed=clock.is_effectively_closed(settings, bid.item, now),
    )


def bids_for_bidder(email: str, now=None) -> list:
    """Every bid placed with this email, newest first, each with its outbid status."""
    settings = AuctionSettings.load()
    bids = (
        Bid.objects.filter(email__iexact=email.strip())
        .select_related("item")
        .order_by("-created_at", "-id")
    )
    highs = {}
    statuses = []
    for bid in bids:
        if bid.item_id not in highs:
            highs[bid.item_id] = current_high_bid(bid.item_id)
        statuses.append(bid_status(bid, highs[bid.item_id], settings, now))
    return statuses


# Aliases


def get_or_create_alias(email: str):
    """Return (alias, created). New aliases get an unused color/animal pair
    while any remain."""
    email = email.strip().lower()
    alias = Alias.objects.filter(email=email).first()
    if alias is not None:
        return alias, False
    taken = set(Alias.objects.values_list("color", "animal"))
    free = [(c, a) for c in Alias.COLORS for a in Alias.ANIMALS if (c, a) not in taken]
    if free:
        color, animal = random.choice(free)
    else:
        color, animal = random.choice(Alias.COLORS), random.choice(Alias.ANIMALS)
    try:
        with transaction.atomic():
            alias = Alias.objects.create(email=email, color=color, animal=animal)
    except IntegrityError:
        # lost a race with another request for the same email
        return Alias.objects.get(email=email), False
    return alias, True
