import base64
from datetime import timedelta
from decimal import Decimal

import pytest
from django.core.cache import cache
from django.utils import timezone

from auctions.models import AuctionSettings, Category, Item


@pytest.fixture(autouse=True)
def auction_config(settings):
    settings.AUCTION_EMAIL_SPACING_SECONDS = 0
    settings.AUCTION_CRON_SECRET = "cron-secret"
    settings.ADMIN_EMAILS = ["admin@example.org"]
    settings.SITE_URL = "https://auction.example.org"
    settings.BID_RATE_LIMIT_MAX = 100
    cache.clear()
    yield settings
    cache.clear()


@pytest.fixture
def make_item(db):
    counter = {"n": 0}

    def _make(title=None, start_price="100.00", min_increment="5.00", **kwargs):
        counter["n"] += 1
        title = title or f"Item {counter['n']}"
        slug = kwargs.pop("slug", None) or f"item-{counter['n']}"
        return Item.objects.create(
            title=title,
            slug=slug,
            start_price=Decimal(start_price),
            min_increment=Decimal(min_increment),
            **kwargs,
        )

    return _make


@pytest.fixture
def category(db):
    return Category.objects.create(name="Goods", slug="goods")


@pytest.fixture
def open_auction(db):
    now = timezone.now()
    return AuctionSettings.objects.create(
        auction_title="Spring Auction",
        auction_start=now - timedelta(days=1),
        auction_deadline=now + timedelta(hours=2),
        payment_instructions="Pay at the front desk.",
        pickup_instructions="Pick up Friday.",
        contact_email="help@example.org",
    )


@pytest.fixture
def past_deadline(open_auction):
    AuctionSettings.objects.filter(pk=open_auction.pk).update(
        auction_deadline=timezone.now() - timedelta(minutes=1)
    )
    return AuctionSettings.load()


def _basic_auth(username, password):
    token = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
    return {"HTTP_AUTHORIZATION": f"Basic {token}"}


@pytest.fixture
def basic_auth():
    return _basic_auth


@pytest.fixture
def manager_auth(admin_user):
    # pytest-django's admin_user has password "password"
    return _basic_auth(admin_user.username, "password")
