from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from auctions import clock
from auctions.closing import AuctionCloser, STATE_ERROR
from auctions.models import AuctionSettings, Item
from auctions.winners import resolve_winners


class Command(BaseCommand):
    help = "Close the auction once its deadline has passed and email winners, or resend closing emails."

    def add_arguments(self, parser):
        g = parser.add_mutually_exclusive_group()
        g.add_argument(
            "--force",
            action="store_true",
            help="Close every open item now, ignoring the deadline",
        )
        g.add_argument(
            "--resend",
            action="store_true",
            help="Only resend closing emails for items that are already closed",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Show what would be closed and who would win without persisting or sending",
        )

    def handle(self, *args, **options):
        force = options.get("force", False)
        resend = options.get("resend", False)
        dry_run = options.get("dry_run", False)

        if dry_run:
            self._dry_run(force)
            return

        closer = AuctionCloser()
        if resend:
            result = closer.send_closing_emails_only(triggered_by="command")
        elif force:
            result = closer.close_all_now(triggered_by="command")
        else:
            result = closer.close_check(triggered_by="command")

        if result.state == STATE_ERROR:
            raise CommandError(result.error or "Closing failed.")

        body = result.as_dict()
        self.stdout.write(self.style.NOTICE(f"State: {result.state}"))
        if result.message:
            self.stdout.write(result.message)
        self.stdout.write(
            f"Closed {result.closed_count} item(s); "
            f"{body.get('emails_sent', 0)} winner email(s), {body.get('admin_emails_sent', 0)} admin email(s)."
        )
        for failure in result.failed:
            self.stdout.write(self.style.ERROR(f"FAILED: {failure.name}: {failure.error}"))
        if result.ok:
            self.stdout.write(self.style.SUCCESS("Done."))

    def _dry_run(self, force):
        settings = AuctionSettings.load()
        due = force or clock.auction_ended(settings, timezone.now())
        if not due:
            self.stdout.write(self.style.WARNING("Not due: the auction deadline has not passed."))
            return
        open_ids = list(Item.objects.filter(is_closed=False).order_by("pk").values_list("pk", flat=True))
        self.stdout.write(self.style.WARNING(f"Summary: {len(open_ids)} item(s) would be closed"))
        titles = dict(Item.objects.filter(pk__in=open_ids).values_list("pk", "title"))
        for item_id, winner in zip(open_ids, resolve_winners(open_ids)):
            if winner is None:
                self.stdout.write(f"NO BIDS: {titles[item_id]}")
            else:
                self.stdout.write(f"WIN: {winner.item_title} -> {winner.bidder_name} at {winner.amount}")
        self.stdout.write(self.style.SUCCESS("Dry-run complete. No changes saved."))
