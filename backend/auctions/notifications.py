"""Outbound auction email.

Every send goes through ``EmailTransport.send(to, template, data)``. The
dispatcher wraps each send so one failing recipient never stops the rest of
a batch, and spaces consecutive sends to stay under provider rate limits.
"""
import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from email.utils import formataddr

from django.conf import settings
from django.core.mail import EmailMultiAlternatives
from django.template.loader import render_to_string

from .utils import mask_email
from .winners import group_by_bidder

logger = logging.getLogger(__name__)


class EmailTransport:
    """Render ``auctions/email/<template>*`` and send it with Django's mail framework.

    Returns True when the backend accepted the message; connection errors
    propagate to the caller.
    """

    def __init__(self, connection=None):
        self.connection = connection

    def from_header(self) -> str:
        return formataddr((settings.AUCTION_FROM_NAME, settings.DEFAULT_FROM_EMAIL))

    def send(self, to: str, template: str, data: dict) -> bool:
        context = {"site_url": settings.SITE_URL, **data}
        subject = render_to_string(f"auctions/email/{template}_subject.txt", context)
        subject = " ".join(subject.split())
        text = render_to_string(f"auctions/email/{template}.txt", context)
        html = render_to_string(f"auctions/email/{template}.html", context)
        reply_to = data.get("contact_email")
        msg = EmailMultiAlternatives(
            subject=subject,
            body=text,
            from_email=self.from_header(),
            to=[to],
            reply_to=[reply_to] if reply_to else None,
            connection=self.connection,
        )
        msg.attach_alternative(html, "text/html")
        return msg.send() == 1


@dataclass(frozen=True)
class SendFailure:
    name: str
    error: str

    def as_dict(self) -> dict:
        return {"name": mask_email(self.name), "error": self.error}


@dataclass
class DispatchReport:
    sent: list = field(default_factory=list)
    failed: list = field(default_factory=list)
    emails_sent: int = 0
    admin_emails_sent: int = 0
    donor_emails_sent: int = 0

    def as_dict(self) -> dict:
        return {
            "sent": [mask_email(s) for s in self.sent],
            "failed": [f.as_dict() for f in self.failed],
            "emails_sent": self.emails_sent,
            "admin_emails_sent": self.admin_emails_sent,
            "donor_emails_sent": self.donor_emails_sent,
        }


def closing_context(auction_settings) -> dict:
    """Shared template data for closing emails, drawn from the settings row."""
    contact = ""
    payment = pickup = ""
    title = ""
    if auction_settings is not None:
        contact = auction_settings.contact_email
        payment = auction_settings.payment_instructions
        pickup = auction_settings.pickup_instructions
        title = auction_settings.auction_title
    return {
        "auction_title": title or settings.AUCTION_FROM_NAME,
        "contact_email": contact or settings.AUCTION_CONTACT_EMAIL,
        "payment_instructions": payment,
        "pickup_instructions": pickup,
        "payment_instructions_url": f"{settings.SITE_URL}/payment-instructions",
    }


def item_url(slug: str) -> str:
    return f"{settings.SITE_URL}/i/{slug}"


class NotificationDispatcher:
    def __init__(self, transport=None, spacing_seconds=None, sleep=time.sleep, clock=time.monotonic):
        self.transport = transport or EmailTransport()
        if spacing_seconds is None:
            spacing_seconds = settings.AUCTION_EMAIL_SPACING_SECONDS
        self.spacing_seconds = max(0.0, float(spacing_seconds))
        self._sleep = sleep
        self._clock = clock
        self._last_send = None

    def _throttle(self):
        if self._last_send is not None and self.spacing_seconds:
            wait = self.spacing_seconds - (self._clock() - self._last_send)
            if wait > 0:
                self._sleep(wait)
        self._last_send = self._clock()

    def _attempt(self, recipient: str, template: str, data: dict, report: DispatchReport) -> bool:
        self._throttle()
        try:
            ok = self.transport.send(recipient, template, data)
        except Exception as exc:
            logger.warning("Email %s to %s failed: %s", template, mask_email(recipient), exc, exc_info=True)
            report.failed.append(SendFailure(name=recipient, error=exc.__class__.__name__))
            return False
        if not ok:
            logger.warning("Email %s to %s was not accepted", template, mask_email(recipient))
            report.failed.append(SendFailure(name=recipient, error="not accepted by transport"))
            return False
        report.sent.append(recipient)
        return True

    def send_winner_digest(self, recipient: str, items, bidder_name: str = "", context=None, report=None) -> bool:
        """One email listing every item the bidder won."""
        report = report if report is not None else DispatchReport()
        rows = [
            {"title": w.item_title, "amount": w.amount, "url": item_url(w.item_slug)}
            for w in items
        ]
        if not rows:
            logger.warning("Winner digest for %s has no items", mask_email(recipient))
            return False
        data = {
            **(context or {}),
            "bidder_name": bidder_name,
            "items": rows,
            "total": sum((r["amount"] for r in rows), Decimal("0")),
        }
        ok = self._attempt(recipient, "winner_digest", data, report)
        if ok:
            report.emails_sent += 1
        return ok

    def send_admin_winners_list(self, admin_recipients, winners, donors, context=None, report=None) -> bool:
        """Winners and pledges summary to each admin; True only if every admin got it."""
        report = report if report is not None else DispatchReport()
        if not admin_recipients:
            logger.warning("No admin recipients configured; skipping winners list")
            return False
        winners = [w for w in winners if w is not None]
        donors = list(donors)
        winners_total = sum((w.amount for w in winners), Decimal("0"))
        donations_total = sum((d.amount for d in donors), Decimal("0"))
        data = {
            **(context or {}),
            "winners": winners,
            "winners_total": winners_total,
            "donors": donors,
            "donations_total": donations_total,
            "grand_total": winners_total + donations_total,
        }
        all_ok = True
        for admin in admin_recipients:
            if self._attempt(admin, "admin_winners_list", data, report):
                report.admin_emails_sent += 1
            else:
                all_ok = False
        return all_ok

    def send_donor_digest(self, recipient: str, donations, donor_name: str = "", context=None, report=None) -> bool:
        report = report if report is not None else DispatchReport()
        donations = list(donations)
        if not donations:
            return False
        data = {
            **(context or {}),
            "donor_name": donor_name,
            "donations": donations,
            "total": sum((d.amount for d in donations), Decimal("0")),
        }
        ok = self._attempt(recipient, "donor_digest", data, report)
        if ok:
            report.donor_emails_sent += 1
        return ok

    def send_bid_confirmation(self, bid, contact_email: str = "") -> bool:
        data = {
            "bidder_name": bid.bidder_name,
            "item_title": bid.item.title,
            "amount": bid.amount,
            "item_url": item_url(bid.item.slug),
            "contact_email": contact_email or settings.AUCTION_CONTACT_EMAIL,
        }
        return self._attempt(bid.email, "bid_confirmation", data, DispatchReport())

    def dispatch_closing(self, winners, donations, admin_recipients, context=None) -> DispatchReport:
        """Winner digests (one per bidder), the admin winners list, then donor digests."""
        report = DispatchReport()
        winners = [w for w in winners if w is not None]
        donations = list(donations)
        for group in group_by_bidder(winners):
            self.send_winner_digest(
                group.email, group.winners, bidder_name=group.bidder_name, context=context, report=report
            )
        self.send_admin_winners_list(admin_recipients, winners, donations, context=context, report=report)
        for email, donor_name, rows in _group_donations(donations):
            self.send_donor_digest(email, rows, donor_name=donor_name, context=context, report=report)
        logger.info(
            "Closing emails: %d winner, %d admin, %d donor, %d failed",
            report.emails_sent,
            report.admin_emails_sent,
            report.donor_emails_sent,
            len(report.failed),
        )
        return report


def _group_donations(donations):
    groups = {}
    for d in donations:
        key = d.email.strip().lower()
        if key not in groups:
            groups[key] = (d.email.strip(), d.donor_name, [])
        groups[key][2].append(d)
    return list(groups.values())
