from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from .bidding import bids_for_items
from .models import Item


@dataclass(frozen=True)
class Winner:
    item_id: int
    item_title: str
    item_slug: str
    bid_id: int
    bidder_name: str
    email: str
    amount: Decimal
    placed_at: datetime

    def as_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_title": self.item_title,
            "item_slug": self.item_slug,
            "bidder_name": self.bidder_name,
            "email": self.email,
            "winning_bid": f"{self.amount:.2f}",
        }


@dataclass
class BidderWins:
    email: str
    bidder_name: str
    winners: list = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((w.amount for w in self.winners), Decimal("0"))


def resolve_winners(item_ids) -> list:
    """Winning bid per item, in the order given; None for unsold items.

    Highest amount wins; equal amounts go to the earliest bid. Read-only,
    so repeated calls over a frozen bid set return the same answer.
    """
    item_ids = list(item_ids)
    items = Item.objects.in_bulk(item_ids)
    top = {}
    for bid in bids_for_items(item_ids).iterator():
        top.setdefault(bid.item_id, bid)

    results = []
    for item_id in item_ids:
        item = items.get(item_id)
        bid = top.get(item_id)
        if item is None or bid is None:
            results.append(None)
            continue
        results.append(
            Winner(
                item_id=item.pk,
                item_title=item.title,
                item_slug=item.slug,
                bid_id=bid.pk,
                bidder_name=bid.bidder_name,
                email=bid.email,
                amount=bid.amount,
                placed_at=bid.created_at,
            )
        )
    return results


def group_by_bidder(winners) -> list:
    """One entry per distinct winning email (case-insensitive), first-seen order."""
    groups = {}
    for winner in winners:
        if winner is None:
            continue
        key = winner.email.strip().lower()
        group = groups.get(key)
        if group is None:
            group = groups[key] = BidderWins(email=winner.email.strip(), bidder_name=winner.bidder_name)
        group.winners.append(winner)
    return list(groups.values())
