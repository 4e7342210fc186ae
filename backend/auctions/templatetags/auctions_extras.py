from decimal import Decimal, InvalidOperation

from django import template

register = template.Library()


@register.filter(name="money")
def money(value):
    """Format an amount as $1,234.50; blanks and junk render as $0.00."""
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        amount = Decimal("0")
    return f"${amount:,.2f}"


@register.filter(name="pluralize_items")
def pluralize_items(count):
    return "item" if count == 1 else "items"
