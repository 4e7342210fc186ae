from django.urls import path
from . import views

app_name = "auctions"

urlpatterns = [
    path("api/bid/", views.place_bid, name="place_bid"),
    path("api/bid/user/", views.user_bids, name="user_bids"),
    path("api/items/<slug:slug>/", views.item_state, name="item_state"),
    path("api/alias/", views.alias, name="alias"),
    path("api/donate/", views.donate, name="donate"),
    # Scheduler
    path("api/admin/close-check/", views.close_check, name="close_check"),
    # Admin
    path("api/admin/toggle-auction/", views.toggle_auction, name="toggle_auction"),
    path("api/admin/close-all/", views.close_all, name="close_all"),
    path("api/admin/send-closing-emails/", views.send_closing_emails, name="send_closing_emails"),
    path("api/admin/settings/", views.auction_settings, name="auction_settings"),
]
