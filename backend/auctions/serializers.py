from decimal import Decimal

from rest_framework import serializers

from .models import AuctionSettings


class BidSerializer(serializers.Serializer):
    slug = serializers.SlugField(max_length=100)
    bidder_name = serializers.CharField(min_length=1, max_length=80, trim_whitespace=True)
    email = serializers.EmailField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal("0.01"))


class ToggleAuctionSerializer(serializers.Serializer):
    auction_closed = serializers.BooleanField()

    def to_internal_value(self, data):
        # Only real JSON booleans; "true"/1 are rejected
        if not isinstance(data, dict) or not isinstance(data.get("auction_closed"), bool):
            raise serializers.ValidationError({"auction_closed": ["Must be a boolean."]})
        return super().to_internal_value(data)


class SettingsUpdateSerializer(serializers.Serializer):
    auction_title = serializers.CharField(max_length=200, required=False, allow_blank=True)
    auction_closed = serializers.BooleanField(required=False)
    auction_start = serializers.DateTimeField(required=False, allow_null=True)
    auction_deadline = serializers.DateTimeField(required=False, allow_null=True)
    payment_instructions = serializers.CharField(required=False, allow_blank=True)
    pickup_instructions = serializers.CharField(required=False, allow_blank=True)
    contact_email = serializers.EmailField(required=False, allow_blank=True)

    def validate(self, attrs):
        if "auction_start" not in attrs and "auction_deadline" not in attrs:
            return attrs
        # fields missing from a partial update keep their stored values
        stored = AuctionSettings.load()
        start = attrs.get("auction_start", stored.auction_start if stored else None)
        deadline = attrs.get("auction_deadline", stored.auction_deadline if stored else None)
        if start and deadline and deadline <= start:
            raise serializers.ValidationError({"auction_deadline": ["Must be after the auction start."]})
        return attrs


class AuctionSettingsSerializer(serializers.ModelSerializer):
    class Meta:
        model = AuctionSettings
        fields = [
            "auction_title",
            "auction_closed",
            "auction_start",
            "auction_deadline",
            "payment_instructions",
            "pickup_instructions",
            "contact_email",
            "updated_at",
        ]


class AliasRequestSerializer(serializers.Serializer):
    email = serializers.EmailField()


class DonationSerializer(serializers.Serializer):
    donor_name = serializers.CharField(min_length=1, max_length=80)
    email = serializers.EmailField()
    amount = serializers.DecimalField(max_digits=10, decimal_places=2, min_value=Decimal("1.00"))
    message = serializers.CharField(max_length=500, required=False, allow_blank=True, default="")
