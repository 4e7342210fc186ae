from django.core.management.base import BaseCommand
from django.contrib.auth.models import Group, Permission
from django.contrib.contenttypes.models import ContentType

from auctions.models import AuctionSettings, Item

GROUPS = [
    ("Manager", "Managers run the auction: items, settings, closing and resends"),
    ("Vendor", "Vendors add and edit their own items"),
]


class Command(BaseCommand):
    help = "Create default auth groups (Manager, Vendor) with item permissions. Safe to run multiple times."

    def handle(self, *args, **options):
        created = []
        groups = {}
        for name, _desc in GROUPS:
            g, was_created = Group.objects.get_or_create(name=name)
            groups[name] = g
            if was_created:
                created.append(name)

        item_ct = ContentType.objects.get_for_model(Item)
        settings_ct = ContentType.objects.get_for_model(AuctionSettings)
        groups["Manager"].permissions.set(
            Permission.objects.filter(
                content_type__in=[item_ct, settings_ct],
                codename__in=["add_item", "change_item", "view_item", "change_auctionsettings", "view_auctionsettings"],
            )
        )
        # edits restricted in code to the vendor's own items
        groups["Vendor"].permissions.set(
            Permission.objects.filter(content_type=item_ct, codename__in=["add_item", "view_item", "change_item"])
        )

        if created:
            self.stdout.write(self.style.SUCCESS(f"Created groups: {', '.join(created)}"))
        else:
            self.stdout.write("Groups already exist; permissions refreshed.")
