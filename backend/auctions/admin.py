from django.contrib import admin, messages
from django.shortcuts import redirect
from django.urls import path

from .closing import AuctionCloser, STATE_ERROR
from .models import Alias, AuctionSettings, Bid, Category, Donation, Item
from .utils import is_manager, unique_slug


def _report(modeladmin, request, result):
    level = messages.ERROR if result.state == STATE_ERROR else messages.SUCCESS if result.ok else messages.WARNING
    text = result.message or f"{result.state}: closed {result.closed_count} item(s)"
    for failure in result.failed:
        text += f" | failed: {failure.name}"
    modeladmin.message_user(request, text, level=level)


@admin.register(AuctionSettings)
class AuctionSettingsAdmin(admin.ModelAdmin):
    list_display = ("__str__", "auction_closed", "auction_start", "auction_deadline", "updated_at")

    def has_add_permission(self, request):
        return not AuctionSettings.objects.exists()

    def has_delete_permission(self, request, obj=None):
        return False

    def get_urls(self):
        urls = super().get_urls()
        custom = [
            path(
                "close-now/",
                self.admin_site.admin_view(self.close_now_view),
                name="auctions_auctionsettings_close_now",
            ),
            path(
                "send-closing-emails/",
                self.admin_site.admin_view(self.send_closing_emails_view),
                name="auctions_auctionsettings_send_closing_emails",
            ),
        ]
        return custom + urls

    def close_now_view(self, request):
        if request.method == "POST" and is_manager(request.user):
            _report(self, request, AuctionCloser().toggle_auction(True, force=True, triggered_by="admin-site"))
        return redirect("admin:auctions_auctionsettings_changelist")

    def send_closing_emails_view(self, request):
        if request.method == "POST" and is_manager(request.user):
            _report(self, request, AuctionCloser().send_closing_emails_only(triggered_by="admin-site"))
        return redirect("admin:auctions_auctionsettings_changelist")


@admin.register(Category)
class CategoryAdmin(admin.ModelAdmin):
    list_display = ("name", "active", "sort_order")
    search_fields = ("name", "slug")
    list_filter = ("active",)
    prepopulated_fields = {"slug": ("name",)}


class BidInline(admin.TabularInline):
    model = Bid
    extra = 0
    fields = ("bidder_name", "email", "alias", "amount", "created_at")
    readonly_fields = fields
    can_delete = False

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Item)
class ItemAdmin(admin.ModelAdmin):
    list_display = ("title", "category", "start_price", "min_increment", "is_closed", "created_by")
    list_filter = ("is_closed", "category")
    search_fields = ("title", "slug", "description")
    autocomplete_fields = ("category",)
    prepopulated_fields = {"slug": ("title",)}
    readonly_fields = ("created_by",)
    inlines = [BidInline]
    actions = ["close_selected", "reopen_selected"]

    def get_queryset(self, request):
        qs = super().get_queryset(request).select_related("category", "created_by")
        if is_manager(request.user):
            return qs
        return qs.filter(created_by=request.user)

    def save_model(self, request, obj, form, change):
        if not obj.slug:
            obj.slug = unique_slug(Item, obj.title)
        if not change and not request.user.is_superuser:
            obj.created_by = request.user
        super().save_model(request, obj, form, change)

    @admin.action(description="Close selected items")
    def close_selected(self, request, queryset):
        count = queryset.filter(is_closed=False).update(is_closed=True)
        self.message_user(request, f"Closed {count} item(s).")

    @admin.action(description="Reopen selected items")
    def reopen_selected(self, request, queryset):
        count = queryset.filter(is_closed=True).update(is_closed=False)
        self.message_user(request, f"Reopened {count} item(s).")


@admin.register(Bid)
class BidAdmin(admin.ModelAdmin):
    list_display = ("item", "bidder_name", "email", "amount", "created_at")
    list_filter = ("item",)
    search_fields = ("item__title", "item__slug", "bidder_name", "email")
    date_hierarchy = "created_at"
    list_select_related = ("item", "alias")

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Alias)
class AliasAdmin(admin.ModelAdmin):
    list_display = ("display_name", "email", "created_at")
    search_fields = ("email", "color", "animal")


@admin.register(Donation)
class DonationAdmin(admin.ModelAdmin):
    list_display = ("donor_name", "email", "amount", "created_at")
    search_fields = ("donor_name", "email")
    date_hierarchy = "created_at"
