from decimal import Decimal

from django.db import models
from django.conf import settings
from django.db.models import Q


class Category(models.Model):
    name = models.CharField(max_length=120, unique=True)
    slug = models.SlugField(unique=True)
    active = models.BooleanField(default=True)
    sort_order = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["sort_order", "name"]
        verbose_name_plural = "categories"

    def __str__(self) -> str:
        return self.name


class Item(models.Model):
    # created_by is null for items added by a superadmin, set for vendor items
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, on_delete=models.SET_NULL, null=True, blank=True, related_name="created_items"
    )
    category = models.ForeignKey(Category, on_delete=models.SET_NULL, null=True, blank=True, related_name="items")

    slug = models.SlugField(max_length=100, unique=True)
    title = models.CharField(max_length=200)
    description = models.TextField(blank=True)

    start_price = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("0.00"))
    min_increment = models.DecimalField(max_digits=10, decimal_places=2, default=Decimal("1.00"))

    # Only cleared by an explicit admin reopen
    is_closed = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["title"]
        constraints = [
            models.CheckConstraint(condition=Q(start_price__gte=0), name="item_start_price_non_negative"),
            models.CheckConstraint(condition=Q(min_increment__gt=0), name="item_min_increment_positive"),
        ]

    def __str__(self) -> str:
        return self.title

    @property
    def is_vendor_item(self) -> bool:
        return self.created_by_id is not None


class Alias(models.Model):
    """Anonymous public identity for a bidder; the email stays private to admins."""

    COLORS = [
        "Red", "Orange", "Amber", "Lime", "Green", "Teal",
        "Cyan", "Blue", "Indigo", "Violet", "Pink", "Rose",
    ]
    ANIMALS = [
        "Fox", "Owl", "Otter", "Panda", "Koala", "Tiger", "Lion", "Bear",
        "Wolf", "Hawk", "Dolphin", "Penguin", "Rabbit", "Turtle", "Moose", "Badger",
    ]

    email = models.EmailField(unique=True)
    color = models.CharField(max_length=20)
    animal = models.CharField(max_length=20)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        verbose_name_plural = "aliases"

    def __str__(self) -> str:
        return self.display_name

    @property
    def display_name(self) -> str:
        return f"{self.color} {self.animal}"


class Bid(models.Model):
    item = models.ForeignKey(Item, on_delete=models.CASCADE, related_name="bids")
    alias = models.ForeignKey(Alias, on_delete=models.SET_NULL, null=True, blank=True, related_name="bids")
    bidder_name = models.CharField(max_length=80)
    email = models.EmailField()
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["-amount", "created_at", "id"]
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name="bid_amount_positive"),
        ]
        indexes = [
            models.Index(fields=["item", "-amount"], name="bid_item_amount_idx"),
        ]

    def __str__(self) -> str:
        return f"Bid {self.amount} on {self.item_id} by {self.bidder_name}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Bids are immutable once placed.")
        super().save(*args, **kwargs)


class AuctionSettings(models.Model):
    """Singleton row (pk=1) governing auction timing and the global close flag."""

    SINGLETON_PK = 1

    id = models.PositiveSmallIntegerField(primary_key=True, default=SINGLETON_PK, editable=False)
    auction_title = models.CharField(max_length=200, blank=True)
    auction_closed = models.BooleanField(default=False)
    auction_start = models.DateTimeField(null=True, blank=True)
    auction_deadline = models.DateTimeField(null=True, blank=True)
    payment_instructions = models.TextField(blank=True)
    pickup_instructions = models.TextField(blank=True)
    contact_email = models.EmailField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "auction settings"
        verbose_name_plural = "auction settings"

    def __str__(self) -> str:
        return self.auction_title or "Auction settings"

    def save(self, *args, **kwargs):
        self.pk = self.SINGLETON_PK
        super().save(*args, **kwargs)

    @classmethod
    def load(cls):
        """Return the settings row, or None when it has never been written."""
        return cls.objects.filter(pk=cls.SINGLETON_PK).first()


class Donation(models.Model):
    donor_name = models.CharField(max_length=80)
    email = models.EmailField()
    amount = models.DecimalField(max_digits=10, decimal_places=2)
    message = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(condition=Q(amount__gt=0), name="donation_amount_positive"),
        ]

    def __str__(self) -> str:
        return f"Donation {self.amount} from {self.donor_name}"
