import pytest
from datetime import timedelta
from django.contrib.auth.models import Group
from django.urls import reverse
from django.utils import timezone

from auctions import closing
from auctions.models import AuctionSettings, Bid, Item


def _expire(auction):
    AuctionSettings.objects.filter(pk=auction.pk).update(auction_deadline=timezone.now() - timedelta(seconds=1))


# close-check


@pytest.mark.django_db
def test_close_check_requires_secret(client, make_item, past_deadline):
    make_item()
    url = reverse("auctions:close_check")
    assert client.get(url).status_code == 401
    assert client.get(url, HTTP_X_AUCTION_CRON_SECRET="wrong").status_code == 401
    assert client.get(url, {"token": "wrong"}).status_code == 401
    assert not Item.objects.filter(is_closed=True).exists()


@pytest.mark.django_db
def test_close_check_rejects_everything_when_secret_unset(client, settings, past_deadline):
    settings.AUCTION_CRON_SECRET = ""
    r = client.get(reverse("auctions:close_check"), {"token": ""})
    assert r.status_code == 401


@pytest.mark.django_db
def test_close_check_with_header_secret(client, make_item, past_deadline, mailoutbox):
    item = make_item()
    Bid.objects.create(item=item, bidder_name="Ann", email="ann@example.org", amount="100.00")
    r = client.post(reverse("auctions:close_check"), HTTP_X_AUCTION_CRON_SECRET="cron-secret")
    assert r.status_code == 200
    data = r.json()
    assert data["ok"] is True
    assert data["state"] == "closed-notified"
    assert data["closed_count"] == 1
    assert data["emails_sent"] == 1
    assert data["triggered_by"] == "scheduler"
    assert data["winners"][0]["winning_bid"] == "100.00"


@pytest.mark.django_db
def test_close_check_with_query_secret(client, make_item, past_deadline):
    make_item()
    r = client.get(reverse("auctions:close_check"), {"secret": "cron-secret"})
    assert r.status_code == 200
    # second run: nothing left to close
    r = client.get(reverse("auctions:close_check"), {"token": "cron-secret"})
    assert r.status_code == 200
    assert r.json()["state"] == "already-closed"


@pytest.mark.django_db
def test_close_check_not_due(client, make_item, open_auction):
    make_item()
    r = client.get(reverse("auctions:close_check"), HTTP_X_AUCTION_CRON_SECRET="cron-secret")
    assert r.status_code == 400
    data = r.json()
    assert data["ok"] is False
    assert data["state"] == "not-due"
    assert data["deadline"]


# Admin


@pytest.mark.django_db
def test_admin_endpoints_require_basic_auth(client, basic_auth):
    r = client.post(reverse("auctions:toggle_auction"), data={"auction_closed": True}, content_type="application/json")
    assert r.status_code == 401
    assert r["WWW-Authenticate"] == 'Basic realm="Admin Area"'
    r = client.post(reverse("auctions:toggle_auction"), **basic_auth("nobody", "wrong"))
    assert r.status_code == 401


@pytest.mark.django_db
def test_non_manager_forbidden(client, django_user_model, basic_auth):
    django_user_model.objects.create_user(username="bidder", email="b@example.org", password="pw")
    r = client.post(reverse("auctions:close_all"), **basic_auth("bidder", "pw"))
    assert r.status_code == 403


@pytest.mark.django_db
def test_manager_group_member_allowed(client, django_user_model, basic_auth, make_item, open_auction):
    user = django_user_model.objects.create_user(username="mgr", email="m@example.org", password="pw")
    user.groups.add(Group.objects.create(name="Manager"))
    make_item()
    r = client.post(reverse("auctions:close_all"), **basic_auth("mgr", "pw"))
    assert r.status_code == 200
    assert r.json()["triggered_by"] == "manual"


@pytest.mark.django_db
@pytest.mark.parametrize("payload", [{}, {"auction_closed": "true"}, {"auction_closed": 1}])
def test_toggle_rejects_non_boolean(client, manager_auth, payload):
    r = client.post(
        reverse("auctions:toggle_auction"), data=payload, content_type="application/json", **manager_auth
    )
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid request: auction_closed must be a boolean"


@pytest.mark.django_db
def test_toggle_close_then_reopen(client, manager_auth, make_item, open_auction, mailoutbox):
    item = make_item()
    Bid.objects.create(item=item, bidder_name="Ann", email="ann@example.org", amount="100.00")
    url = reverse("auctions:toggle_auction")

    r = client.post(url, data={"auction_closed": True}, content_type="application/json", **manager_auth)
    assert r.status_code == 200
    data = r.json()
    assert data["triggered_by"] == "manual-toggle"
    assert data["closed_count"] == 1
    assert data["settings"]["auction_closed"] is True
    assert len(mailoutbox) == 2

    r = client.post(url, data={"auction_closed": False}, content_type="application/json", **manager_auth)
    assert r.status_code == 200
    data = r.json()
    assert data["state"] == "open"
    assert data["reopened_count"] == 1
    assert data["settings"]["auction_closed"] is False
    item.refresh_from_db()
    assert item.is_closed is False


@pytest.mark.django_db
def test_send_closing_emails_endpoint(client, manager_auth, make_item, open_auction, mailoutbox):
    item = make_item()
    Bid.objects.create(item=item, bidder_name="Ann", email="ann@example.org", amount="100.00")
    _expire(open_auction)
    r = client.post(reverse("auctions:send_closing_emails"), **manager_auth)
    assert r.status_code == 200
    assert r.json()["triggered_by"] == "manual-resend"
    assert r.json()["closed_count"] == 0
    item.refresh_from_db()
    assert item.is_closed is False
    assert {m.to[0] for m in mailoutbox} == {"ann@example.org", "admin@example.org"}


@pytest.mark.django_db
def test_settings_patch_creates_row_then_merges(client, manager_auth):
    url = reverse("auctions:auction_settings")
    deadline = (timezone.now() + timedelta(days=1)).replace(microsecond=0)

    r = client.patch(
        url,
        data={"auction_title": "Gala", "auction_deadline": deadline.isoformat()},
        content_type="application/json",
        **manager_auth,
    )
    assert r.status_code == 200
    s = AuctionSettings.load()
    assert s.auction_title == "Gala"
    assert s.auction_deadline == deadline

    r = client.patch(url, data={"contact_email": "help@example.org"}, content_type="application/json", **manager_auth)
    assert r.status_code == 200
    s = AuctionSettings.load()
    # untouched fields survive a partial update
    assert s.auction_title == "Gala"
    assert s.auction_deadline == deadline
    assert s.contact_email == "help@example.org"
    assert AuctionSettings.objects.count() == 1


@pytest.mark.django_db
def test_settings_patch_clears_deadline_with_null(client, manager_auth, open_auction):
    r = client.patch(
        reverse("auctions:auction_settings"),
        data={"auction_deadline": None},
        content_type="application/json",
        **manager_auth,
    )
    assert r.status_code == 200
    assert AuctionSettings.load().auction_deadline is None


@pytest.mark.django_db
def test_settings_patch_rejects_deadline_before_start(client, manager_auth):
    now = timezone.now()
    r = client.patch(
        reverse("auctions:auction_settings"),
        data={"auction_start": now.isoformat(), "auction_deadline": (now - timedelta(hours=1)).isoformat()},
        content_type="application/json",
        **manager_auth,
    )
    assert r.status_code == 400
    assert "auction_deadline" in r.json()["fields"]
    assert AuctionSettings.load() is None


@pytest.mark.django_db
def test_settings_get_without_row(client, manager_auth):
    r = client.get(reverse("auctions:auction_settings"), **manager_auth)
    assert r.status_code == 200
    assert r.json()["settings"]["auction_closed"] is False


@pytest.mark.django_db
def test_close_check_unexpected_failure_returns_error_state(client, make_item, past_deadline, monkeypatch):
    make_item()

    def explode(item_ids):
        raise RuntimeError("template blew up")

    monkeypatch.setattr(closing, "resolve_winners", explode)
    r = client.post(reverse("auctions:close_check"), HTTP_X_AUCTION_CRON_SECRET="cron-secret")
    assert r.status_code == 500
    data = r.json()
    assert data["ok"] is False
    assert data["state"] == "error"
    assert "template blew up" not in r.content.decode()


@pytest.mark.django_db
def test_settings_patch_checks_deadline_against_stored_start(client, manager_auth, open_auction):
    url = reverse("auctions:auction_settings")
    too_early = open_auction.auction_start - timedelta(hours=1)
    r = client.patch(
        url, data={"auction_deadline": too_early.isoformat()}, content_type="application/json", **manager_auth
    )
    assert r.status_code == 400
    assert "auction_deadline" in r.json()["fields"]
    assert AuctionSettings.load().auction_deadline == open_auction.auction_deadline

    too_late = open_auction.auction_deadline + timedelta(hours=1)
    r = client.patch(url, data={"auction_start": too_late.isoformat()}, content_type="application/json", **manager_auth)
    assert r.status_code == 400
