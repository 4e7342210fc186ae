import logging

from django.conf import settings
from django.db import DatabaseError
from django.shortcuts import get_object_or_404
from rest_framework.authentication import BasicAuthentication
from rest_framework.decorators import api_view, authentication_classes, permission_classes
from rest_framework.permissions import AllowAny, BasePermission
from rest_framework.response import Response

from . import bidding, clock
from .closing import AuctionCloser
from .models import AuctionSettings, Donation, Item
from .notifications import NotificationDispatcher
from .serializers import (
    AliasRequestSerializer,
    AuctionSettingsSerializer,
    BidSerializer,
    DonationSerializer,
    SettingsUpdateSerializer,
    ToggleAuctionSerializer,
)
from .settings_patch import SettingsPatch, upsert_settings
from .utils import check_rate_limit, client_identifier, is_manager, mask_email, secrets_match

logger = logging.getLogger(__name__)

CRON_SECRET_HEADER = "X-Auction-Cron-Secret"


class AdminBasicAuthentication(BasicAuthentication):
    www_authenticate_realm = "Admin Area"


class IsAuctionManager(BasePermission):
    def has_permission(self, request, view):
        return is_manager(request.user)


def _error(message, status):
    return Response({"ok": False, "error": message}, status=status)


def _internal_error(context):
    logger.exception("%s: unexpected error", context)
    return Response({"ok": False, "state": "error", "error": "Internal server error"}, status=500)


def _rate_limited(request, scope):
    result = check_rate_limit(
        f"{scope}:{client_identifier(request)}",
        settings.BID_RATE_LIMIT_MAX,
        settings.BID_RATE_LIMIT_WINDOW,
    )
    if result.allowed:
        return None
    resp = Response(
        {"ok": False, "error": "Too many requests. Please slow down.", "retry_after": result.retry_after},
        status=429,
    )
    resp["Retry-After"] = str(result.retry_after)
    return resp


def _closing_response(result):
    return Response(result.as_dict(), status=result.http_status)


def cron_authorized(request) -> bool:
    """Header first so the secret stays out of access logs; query string as fallback."""
    expected = settings.AUCTION_CRON_SECRET
    if not expected:
        logger.warning("close-check: AUCTION_CRON_SECRET not configured")
        return False
    if secrets_match(request.headers.get(CRON_SECRET_HEADER), expected):
        return True
    token = request.query_params.get("token") or request.query_params.get("secret")
    return secrets_match(token, expected)


# Scheduler


@api_view(["GET", "POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def close_check(request):
    if not cron_authorized(request):
        return _error("Unauthorized", 401)
    try:
        result = AuctionCloser().close_check(triggered_by="scheduler")
    except Exception:
        return _internal_error("close-check")
    return _closing_response(result)


# Admin


@api_view(["POST"])
@authentication_classes([AdminBasicAuthentication])
@permission_classes([IsAuctionManager])
def toggle_auction(request):
    serializer = ToggleAuctionSerializer(data=request.data)
    if not serializer.is_valid():
        return _error("Invalid request: auction_closed must be a boolean", 400)
    desired = serializer.validated_data["auction_closed"]
    try:
        result = AuctionCloser().toggle_auction(desired, force=True, triggered_by="manual-toggle")
        body = result.as_dict()
        auction_settings = AuctionSettings.load()
        if auction_settings is not None:
            body["settings"] = AuctionSettingsSerializer(auction_settings).data
    except Exception:
        return _internal_error("toggle-auction")
    return Response(body, status=result.http_status)


@api_view(["POST"])
@authentication_classes([AdminBasicAuthentication])
@permission_classes([IsAuctionManager])
def close_all(request):
    try:
        result = AuctionCloser().close_all_now(triggered_by="manual")
    except Exception:
        return _internal_error("close-all")
    return _closing_response(result)


@api_view(["POST"])
@authentication_classes([AdminBasicAuthentication])
@permission_classes([IsAuctionManager])
def send_closing_emails(request):
    try:
        result = AuctionCloser().send_closing_emails_only(triggered_by="manual-resend")
    except Exception:
        return _internal_error("send-closing-emails")
    return _closing_response(result)


@api_view(["GET", "PATCH"])
@authentication_classes([AdminBasicAuthentication])
@permission_classes([IsAuctionManager])
def auction_settings(request):
    if request.method == "GET":
        current = AuctionSettings.load() or AuctionSettings()
        return Response({"ok": True, "settings": AuctionSettingsSerializer(current).data})

    serializer = SettingsUpdateSerializer(data=request.data, partial=True)
    if not serializer.is_valid():
        return Response({"ok": False, "error": "Invalid settings data", "fields": serializer.errors}, status=400)
    try:
        updated = upsert_settings(SettingsPatch.from_data(serializer.validated_data))
    except DatabaseError:
        logger.exception("settings: update failed")
        return _error("Failed to update settings", 500)
    return Response({"ok": True, "settings": AuctionSettingsSerializer(updated).data})


# Public


@api_view(["GET"])
@authentication_classes([])
@permission_classes([AllowAny])
def item_state(request, slug):
    """Polled by item pages in place of push updates."""
    item = get_object_or_404(Item, slug=slug)
    auction = AuctionSettings.load()
    high = bidding.current_high_bid(item.pk)
    current = None
    if high is not None:
        top = item.bids.select_related("alias").get(pk=high.bid_id)
        current = {
            "amount": f"{high.amount:.2f}",
            "alias": top.alias.display_name if top.alias else None,
            "placed_at": top.created_at.isoformat(),
        }
    return Response(
        {
            "ok": True,
            "slug": item.slug,
            "title": item.title,
            "start_price": f"{item.start_price:.2f}",
            "min_increment": f"{item.min_increment:.2f}",
            "current_high": current,
            "minimum_next_bid": f"{bidding.minimum_next_bid(item, high):.2f}",
            "bid_count": item.bids.count(),
            "is_open": clock.is_open(auction, item) and clock.has_started(auction),
            "has_started": clock.has_started(auction),
            "deadline": auction.auction_deadline.isoformat() if auction and auction.auction_deadline else None,
        }
    )


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def place_bid(request):
    limited = _rate_limited(request, "bid")
    if limited is not None:
        return limited
    serializer = BidSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({"ok": False, "error": "Invalid request data", "fields": serializer.errors}, status=400)
    data = serializer.validated_data
    try:
        placed = bidding.place_bid(
            item_slug=data["slug"],
            bidder_name=data["bidder_name"],
            email=data["email"],
            amount=data["amount"],
        )
    except Item.DoesNotExist:
        return _error("Item not found", 404)
    except bidding.BidTooLow as exc:
        return Response(
            {"ok": False, "error": exc.message, "minimum": f"{exc.minimum:.2f}"}, status=exc.status_code
        )
    except bidding.BidRejected as exc:
        return _error(exc.message, exc.status_code)
    except DatabaseError:
        logger.exception("bid: insert failed")
        return _error("Failed to place bid", 500)

    auction = AuctionSettings.load()
    try:
        NotificationDispatcher(spacing_seconds=0).send_bid_confirmation(
            placed.bid, contact_email=auction.contact_email if auction else ""
        )
    except Exception:
        logger.exception("bid: confirmation email for %s failed", mask_email(placed.bid.email))

    return Response(
        {
            "ok": True,
            "bid_id": placed.bid.pk,
            "amount": f"{placed.bid.amount:.2f}",
            "next_min": f"{placed.next_minimum:.2f}",
        },
        status=201,
    )


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def user_bids(request):
    limited = _rate_limited(request, "bids")
    if limited is not None:
        return limited
    serializer = AliasRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _error("Email is required", 400)
    try:
        statuses = bidding.bids_for_bidder(serializer.validated_data["email"])
    except DatabaseError:
        logger.exception("user-bids: lookup failed")
        return Response({"ok": False, "error": "Error fetching bids", "bids": []}, status=500)
    return Response(
        {
            "ok": True,
            "bids": [
                {
                    "bid_id": s.bid.pk,
                    "amount": f"{s.bid.amount:.2f}",
                    "created_at": s.bid.created_at.isoformat(),
                    "current_high_bid": f"{s.current_high:.2f}",
                    "is_outbid": s.is_outbid,
                    "is_winning": s.is_winning,
                    "is_closed": s.is_closed,
                    "item": {"slug": s.bid.item.slug, "title": s.bid.item.title},
                }
                for s in statuses
            ],
        }
    )


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def alias(request):
    limited = _rate_limited(request, "alias")
    if limited is not None:
        return limited
    serializer = AliasRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return _error("Please enter a valid email address", 400)
    try:
        obj, created = bidding.get_or_create_alias(serializer.validated_data["email"])
    except DatabaseError:
        logger.exception("alias: create failed")
        return _error("Failed to create alias", 500)
    return Response(
        {
            "ok": True,
            "created": created,
            "alias": {"display_name": obj.display_name, "color": obj.color, "animal": obj.animal},
        },
        status=201 if created else 200,
    )


@api_view(["POST"])
@authentication_classes([])
@permission_classes([AllowAny])
def donate(request):
    limited = _rate_limited(request, "donate")
    if limited is not None:
        return limited
    serializer = DonationSerializer(data=request.data)
    if not serializer.is_valid():
        return Response({"ok": False, "error": "Invalid request data", "fields": serializer.errors}, status=400)
    auction = AuctionSettings.load()
    if clock.auction_ended(auction):
        return _error("The auction is closed. Donations are no longer being accepted.", 400)
    try:
        donation = Donation.objects.create(**serializer.validated_data)
    except DatabaseError:
        logger.exception("donate: insert failed")
        return _error("Failed to submit donation pledge", 500)
    logger.info("Donation %s pledged by %s", donation.amount, mask_email(donation.email))
    return Response({"ok": True, "donation_id": donation.pk}, status=201)
