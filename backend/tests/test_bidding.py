import pytest
from datetime import timedelta
from decimal import Decimal
from django.urls import reverse
from django.utils import timezone

from auctions import bidding
from auctions.models import Alias, AuctionSettings, Bid


def _bid(client, slug, amount, name="Ann", email="ann@example.org", **extra):
    return client.post(
        reverse("auctions:place_bid"),
        data={"slug": slug, "bidder_name": name, "email": email, "amount": str(amount)},
        content_type="application/json",
        **extra,
    )


@pytest.mark.django_db
def test_minimum_increment_scenario(client, make_item, open_auction, mailoutbox):
    item = make_item(title="Lamp", start_price="100.00", min_increment="5.00")

    r = _bid(client, item.slug, "100.00", name="Alice", email="alice@example.org")
    assert r.status_code == 201
    assert r.json()["next_min"] == "105.00"

    r = _bid(client, item.slug, "103.00", name="Bob", email="bob@example.org")
    assert r.status_code == 400
    assert r.json()["error"] == "Minimum allowed bid: 105.00"
    assert r.json()["minimum"] == "105.00"

    r = _bid(client, item.slug, "105.00", name="Carol", email="carol@example.org")
    assert r.status_code == 201

    amounts = list(Bid.objects.filter(item=item).values_list("amount", flat=True))
    assert amounts == [Decimal("105.00"), Decimal("100.00")]
    # one confirmation per accepted bid
    assert [m.to for m in mailoutbox] == [["alice@example.org"], ["carol@example.org"]]


@pytest.mark.django_db
def test_first_bid_below_start_price_rejected(client, make_item, open_auction):
    item = make_item(start_price="50.00")
    r = _bid(client, item.slug, "49.99")
    assert r.status_code == 400
    assert r.json()["minimum"] == "50.00"
    assert not Bid.objects.exists()


@pytest.mark.django_db
def test_bid_on_closed_item_rejected(client, make_item, open_auction):
    item = make_item(is_closed=True)
    r = _bid(client, item.slug, "500.00")
    assert r.status_code == 400
    assert r.json()["error"] == "Bidding closed - item is closed"


@pytest.mark.django_db
def test_bid_after_deadline_rejected_without_item_flag(client, make_item, past_deadline):
    item = make_item()
    r = _bid(client, item.slug, "500.00")
    assert r.status_code == 400
    assert r.json()["error"] == "Bidding closed - deadline passed"
    item.refresh_from_db()
    assert item.is_closed is False


@pytest.mark.django_db
def test_bid_rejected_when_global_flag_set(client, make_item, open_auction):
    AuctionSettings.objects.filter(pk=open_auction.pk).update(auction_closed=True)
    item = make_item()
    r = _bid(client, item.slug, "500.00")
    assert r.status_code == 400
    assert not Bid.objects.exists()


@pytest.mark.django_db
def test_bid_before_start_rejected(make_item, open_auction):
    AuctionSettings.objects.filter(pk=open_auction.pk).update(auction_start=timezone.now() + timedelta(hours=1))
    item = make_item()
    with pytest.raises(bidding.AuctionNotStarted):
        bidding.place_bid(item_slug=item.slug, bidder_name="Ann", email="ann@example.org", amount=Decimal("100"))


@pytest.mark.django_db
def test_unknown_item_returns_404(client, open_auction):
    r = _bid(client, "missing", "10.00")
    assert r.status_code == 404


@pytest.mark.django_db
def test_invalid_payload_rejected(client, make_item, open_auction):
    item = make_item()
    r = _bid(client, item.slug, "-5", email="not-an-email")
    assert r.status_code == 400
    assert "email" in r.json()["fields"]


@pytest.mark.django_db
def test_bid_links_existing_alias(make_item, open_auction):
    alias, created = bidding.get_or_create_alias("Ann@Example.org")
    assert created
    item = make_item()
    placed = bidding.place_bid(item_slug=item.slug, bidder_name="Ann", email="ann@example.org", amount=Decimal("100"))
    assert placed.bid.alias == alias
    assert placed.next_minimum == Decimal("105.00")


@pytest.mark.django_db
def test_alias_endpoint_is_stable_per_email(client):
    r1 = client.post(reverse("auctions:alias"), data={"email": "zed@example.org"}, content_type="application/json")
    assert r1.status_code == 201
    r2 = client.post(reverse("auctions:alias"), data={"email": "ZED@example.org"}, content_type="application/json")
    assert r2.status_code == 200
    assert r1.json()["alias"] == r2.json()["alias"]
    assert Alias.objects.count() == 1


@pytest.mark.django_db
def test_bid_rate_limit(client, make_item, open_auction, settings):
    settings.BID_RATE_LIMIT_MAX = 2
    item = make_item(start_price="10.00", min_increment="1.00")
    assert _bid(client, item.slug, "10.00").status_code == 201
    assert _bid(client, item.slug, "11.00").status_code == 201
    r = _bid(client, item.slug, "12.00")
    assert r.status_code == 429
    assert int(r["Retry-After"]) >= 1
    assert Bid.objects.count() == 2


@pytest.mark.django_db
def test_item_state_reports_high_bid_and_floor(client, make_item, open_auction):
    item = make_item(start_price="100.00", min_increment="5.00")
    bidding.get_or_create_alias("ann@example.org")
    bidding.place_bid(item_slug=item.slug, bidder_name="Ann", email="ann@example.org", amount=Decimal("120"))

    r = client.get(reverse("auctions:item_state", args=[item.slug]))
    assert r.status_code == 200
    data = r.json()
    assert data["current_high"]["amount"] == "120.00"
    assert data["current_high"]["alias"] == Alias.objects.get().display_name
    # email is never exposed publicly
    assert "ann@example.org" not in r.content.decode()
    assert data["minimum_next_bid"] == "125.00"
    assert data["bid_count"] == 1
    assert data["is_open"] is True


@pytest.mark.django_db
def test_item_state_closed_after_deadline(client, make_item, past_deadline):
    item = make_item()
    data = client.get(reverse("auctions:item_state", args=[item.slug])).json()
    assert data["is_open"] is False
    assert data["current_high"] is None
    assert data["minimum_next_bid"] == "100.00"


@pytest.mark.django_db
def test_donation_pledge(client, open_auction):
    r = client.post(
        reverse("auctions:donate"),
        data={"donor_name": "Dee", "email": "dee@example.org", "amount": "25.00"},
        content_type="application/json",
    )
    assert r.status_code == 201


@pytest.mark.django_db
def test_donation_refused_after_close(client, past_deadline):
    r = client.post(
        reverse("auctions:donate"),
        data={"donor_name": "Dee", "email": "dee@example.org", "amount": "25.00"},
        content_type="application/json",
    )
    assert r.status_code == 400


def _my_bids(client, email):
    return client.post(reverse("auctions:user_bids"), data={"email": email}, content_type="application/json")


@pytest.mark.django_db
def test_bidder_sees_outbid_and_winning_bids(client, make_item, open_auction):
    lamp = make_item(title="Lamp", start_price="100.00", min_increment="5.00")
    vase = make_item(title="Vase", start_price="20.00", min_increment="1.00")
    bidding.place_bid(item_slug=lamp.slug, bidder_name="Ann", email="ann@example.org", amount=Decimal("100"))
    bidding.place_bid(item_slug=lamp.slug, bidder_name="Bob", email="bob@example.org", amount=Decimal("110"))
    bidding.place_bid(item_slug=vase.slug, bidder_name="Ann", email="ann@example.org", amount=Decimal("20"))

    r = _my_bids(client, "ANN@example.org")
    assert r.status_code == 200
    by_item = {b["item"]["slug"]: b for b in r.json()["bids"]}
    assert by_item[lamp.slug]["is_outbid"] is True
    assert by_item[lamp.slug]["is_winning"] is False
    assert by_item[lamp.slug]["current_high_bid"] == "110.00"
    assert by_item[vase.slug]["is_outbid"] is False
    assert by_item[vase.slug]["is_winning"] is True
    assert by_item[vase.slug]["is_closed"] is False
    # newest first
    assert [b["item"]["slug"] for b in r.json()["bids"]] == [vase.slug, lamp.slug]


@pytest.mark.django_db
def test_bid_status_closed_after_deadline(client, make_item, open_auction):
    item = make_item()
    bidding.place_bid(item_slug=item.slug, bidder_name="Ann", email="ann@example.org", amount=Decimal("100"))
    AuctionSettings.objects.filter(pk=open_auction.pk).update(auction_deadline=timezone.now() - timedelta(seconds=1))

    [status] = bidding.bids_for_bidder("ann@example.org")
    assert status.is_closed is True
    assert status.is_winning is True
    # deadline alone, no item flag
    item.refresh_from_db()
    assert item.is_closed is False

    [bid] = _my_bids(client, "ann@example.org").json()["bids"]
    assert bid["is_closed"] is True


@pytest.mark.django_db
def test_user_bids_requires_valid_email(client):
    assert _my_bids(client, "").status_code == 400
    r = _my_bids(client, "nobody@example.org")
    assert r.status_code == 200
    assert r.json()["bids"] == []
