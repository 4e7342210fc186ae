from dataclasses import dataclass, fields

from django.db import transaction

from .models import AuctionSettings


class _Unset:
    def __repr__(self):
        return "UNSET"

    def __bool__(self):
        return False


UNSET = _Unset()


@dataclass(frozen=True)
class SettingsPatch:
    """Partial update of the settings row. Fields left UNSET are not touched;
    an explicit None clears a nullable field."""

    auction_title: object = UNSET
    auction_closed: object = UNSET
    auction_start: object = UNSET
    auction_deadline: object = UNSET
    payment_instructions: object = UNSET
    pickup_instructions: object = UNSET
    contact_email: object = UNSET

    @classmethod
    def from_data(cls, data: dict) -> "SettingsPatch":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    def present(self) -> dict:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }

    def apply(self, settings: AuctionSettings) -> list:
        changed = []
        for name, value in self.present().items():
            if value is None and name not in ("auction_start", "auction_deadline"):
                value = ""
            setattr(settings, name, value)
            changed.append(name)
        return changed


def upsert_settings(patch: SettingsPatch) -> AuctionSettings:
    """Apply the patch to the singleton row, creating it on first write.

    Concurrent writers are last-writer-wins.
    """
    with transaction.atomic():
        settings, created = AuctionSettings.objects.select_for_update().get_or_create(
            pk=AuctionSettings.SINGLETON_PK
        )
        changed = patch.apply(settings)
        if created:
            settings.save()
        elif changed:
            settings.save(update_fields=changed + ["updated_at"])
    return settings
