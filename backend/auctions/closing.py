"""Auction closing workflow.

close-check (scheduler), toggle/close-all (admin) and resend all end up in
``AuctionCloser``. Closing flips item flags in one atomic update, resolves
the winners of the items closed by that update and emails them. Items
already closed by an earlier run are not notified again; the resend path
is the only way to repeat emails and it never closes anything.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime

from django.conf import settings as django_settings
from django.db import DatabaseError, transaction
from django.utils import timezone

from . import clock
from .models import AuctionSettings, Donation, Item
from .notifications import DispatchReport, NotificationDispatcher, closing_context
from .settings_patch import SettingsPatch, upsert_settings
from .winners import resolve_winners

logger = logging.getLogger(__name__)

STATE_NOT_DUE = "not-due"
STATE_CLOSING = "closing"
STATE_PENDING_NOTIFY = "closed-pending-notify"
STATE_NOTIFIED = "closed-notified"
STATE_ALREADY_CLOSED = "already-closed"
STATE_OPEN = "open"
STATE_ERROR = "error"

GENERIC_ERROR = "Failed to close the auction. Check the server logs."


@dataclass(frozen=True)
class CloseOutcome:
    closed_count: int
    item_ids: list


def close_all() -> CloseOutcome:
    """Close every open item. A second call closes nothing."""
    with transaction.atomic():
        ids = list(
            Item.objects.select_for_update().filter(is_closed=False).order_by("pk").values_list("pk", flat=True)
        )
        if not ids:
            return CloseOutcome(closed_count=0, item_ids=[])
        count = Item.objects.filter(pk__in=ids, is_closed=False).update(is_closed=True, updated_at=timezone.now())
    return CloseOutcome(closed_count=count, item_ids=ids)


def reopen_all() -> int:
    """Explicit admin reopen of every item."""
    with transaction.atomic():
        return Item.objects.filter(is_closed=True).update(is_closed=False, updated_at=timezone.now())


@dataclass
class ClosingResult:
    ok: bool
    state: str
    triggered_by: str
    message: str = ""
    closed_count: int = 0
    winners: list = field(default_factory=list)
    report: DispatchReport = None
    deadline: datetime = None
    error: str = None
    reopened_count: int = None

    @property
    def http_status(self) -> int:
        if self.ok:
            return 200
        if self.state == STATE_ERROR:
            return 500
        return 400

    @property
    def failed(self) -> list:
        return list(self.report.failed) if self.report else []

    def as_dict(self) -> dict:
        body = {
            "ok": self.ok,
            "state": self.state,
            "triggered_by": self.triggered_by,
            "closed_count": self.closed_count,
            "deadline": self.deadline.isoformat() if self.deadline else None,
        }
        if self.message:
            body["message"] = self.message
        if self.error:
            body["error"] = self.error
        if self.reopened_count is not None:
            body["reopened_count"] = self.reopened_count
        if self.report is not None or self.winners:
            body["winners"] = [w.as_dict() for w in self.winners]
            body["winners_count"] = len(self.winners)
            body.update((self.report or DispatchReport()).as_dict())
        return body


class AuctionCloser:
    def __init__(self, dispatcher=None, admin_recipients=None, now=None):
        self.dispatcher = dispatcher or NotificationDispatcher()
        if admin_recipients is None:
            admin_recipients = django_settings.ADMIN_EMAILS
        self.admin_recipients = list(admin_recipients)
        self._now = now

    def now(self):
        return self._now or timezone.now()

    def _guard(self, triggered_by, run):
        try:
            return run()
        except DatabaseError:
            logger.exception("Auction closing (%s) failed on the datastore", triggered_by)
            return ClosingResult(ok=False, state=STATE_ERROR, triggered_by=triggered_by, error=GENERIC_ERROR)
        except Exception:
            logger.exception("Auction closing (%s) failed", triggered_by)
            return ClosingResult(ok=False, state=STATE_ERROR, triggered_by=triggered_by, error=GENERIC_ERROR)

    def close_check(self, triggered_by: str = "scheduler", force: bool = False) -> ClosingResult:
        """Close and notify once the deadline has passed (or the global flag is set)."""

        def run():
            auction_settings = AuctionSettings.load()
            deadline = auction_settings.auction_deadline if auction_settings else None
            if not force and not clock.auction_ended(auction_settings, self.now()):
                return ClosingResult(
                    ok=False,
                    state=STATE_NOT_DUE,
                    triggered_by=triggered_by,
                    message="Auction deadline has not passed yet.",
                    deadline=deadline,
                )
            return self._close_and_notify(auction_settings, triggered_by)

        return self._guard(triggered_by, run)

    def close_all_now(self, triggered_by: str = "manual") -> ClosingResult:
        return self.close_check(triggered_by=triggered_by, force=True)

    def toggle_auction(self, desired_closed: bool, force: bool = True, triggered_by: str = "manual-toggle") -> ClosingResult:
        if desired_closed:
            try:
                upsert_settings(SettingsPatch(auction_closed=True))
            except DatabaseError:
                logger.exception("Could not set the auction closed flag")
                return ClosingResult(ok=False, state=STATE_ERROR, triggered_by=triggered_by, error=GENERIC_ERROR)
            return self.close_check(triggered_by=triggered_by, force=force)

        def reopen():
            with transaction.atomic():
                auction_settings = upsert_settings(SettingsPatch(auction_closed=False))
                reopened = reopen_all()
            if clock.deadline_passed(auction_settings, self.now()):
                logger.warning("Auction reopened but its deadline has already passed; bidding stays closed")
            logger.info("Auction reopened by %s: %d item(s) reopened", triggered_by, reopened)
            return ClosingResult(
                ok=True,
                state=STATE_OPEN,
                triggered_by=triggered_by,
                message="Auction reopened.",
                deadline=auction_settings.auction_deadline,
                reopened_count=reopened,
            )

        return self._guard(triggered_by, reopen)

    def send_closing_emails_only(self, triggered_by: str = "manual-resend") -> ClosingResult:
        """Recompute winners over every effectively closed item and email them again.

        Never closes items, so it is safe to run after a partially failed close.
        """

        def run():
            auction_settings = AuctionSettings.load()
            deadline = auction_settings.auction_deadline if auction_settings else None
            items = Item.objects.all()
            if not clock.auction_ended(auction_settings, self.now()):
                items = items.filter(is_closed=True)
            item_ids = list(items.order_by("pk").values_list("pk", flat=True))
            if not item_ids:
                return ClosingResult(
                    ok=False,
                    state=STATE_NOT_DUE,
                    triggered_by=triggered_by,
                    message="No closed items to send emails for.",
                    deadline=deadline,
                )
            winners = [w for w in resolve_winners(item_ids) if w is not None]
            report = self._dispatch(auction_settings, winners)
            return ClosingResult(
                ok=True,
                state=STATE_PENDING_NOTIFY if report.failed else STATE_NOTIFIED,
                triggered_by=triggered_by,
                message=f"Sent {report.emails_sent} winner email(s) and {report.admin_emails_sent} admin email(s).",
                winners=winners,
                report=report,
                deadline=deadline,
            )

        return self._guard(triggered_by, run)

    def _close_and_notify(self, auction_settings, triggered_by) -> ClosingResult:
        deadline = auction_settings.auction_deadline if auction_settings else None
        logger.info("Auction %s (triggered by %s)", STATE_CLOSING, triggered_by)
        outcome = close_all()
        if outcome.closed_count == 0:
            return ClosingResult(
                ok=True,
                state=STATE_ALREADY_CLOSED,
                triggered_by=triggered_by,
                message="All items are already closed.",
                deadline=deadline,
            )
        logger.info("Closed %d item(s)", outcome.closed_count)
        winners = [w for w in resolve_winners(outcome.item_ids) if w is not None]
        report = self._dispatch(auction_settings, winners)
        return ClosingResult(
            ok=True,
            state=STATE_PENDING_NOTIFY if report.failed else STATE_NOTIFIED,
            triggered_by=triggered_by,
            closed_count=outcome.closed_count,
            winners=winners,
            report=report,
            deadline=deadline,
        )

    def _dispatch(self, auction_settings, winners) -> DispatchReport:
        donations = list(Donation.objects.order_by("created_at", "pk"))
        return self.dispatcher.dispatch_closing(
            winners, donations, self.admin_recipients, context=closing_context(auction_settings)
        )


def close_check(triggered_by: str = "scheduler") -> ClosingResult:
    return AuctionCloser().close_check(triggered_by=triggered_by)


def toggle_auction(force: bool, desired_closed: bool) -> ClosingResult:
    return AuctionCloser().toggle_auction(desired_closed, force=force)


def send_closing_emails_only(triggered_by: str = "manual-resend") -> ClosingResult:
    return AuctionCloser().send_closing_emails_only(triggered_by=triggered_by)
