"""
Pricing for the booking form total.

The display total multiplies the top-level add-on selection by the number of
visits. Persisted visit prices embed each visit's own add-ons instead, so the
two diverge once individual visits get different add-ons.
"""

from typing import Iterable, Mapping, Optional

from .schemas import Discount, PricingBreakdown, VisitInstance


def addons_total(addon_ids: Iterable[str], addon_catalog: Mapping[str, float]) -> float:
    """Sum catalog prices; ids missing from the catalog count as 0"""
    return sum(addon_catalog.get(addon_id, 0) for addon_id in addon_ids)


def persisted_price(instance: VisitInstance, addon_catalog: Mapping[str, float]) -> float:
    """Price written to the bookings row: base price plus this visit's add-ons"""
    return round(instance.price + addons_total(instance.addon_ids, addon_catalog), 2)


def discount_amount(subtotal: float, discount: Optional[Discount]) -> float:
    if discount is None:
        return 0
    if discount.kind == "fixed":
        return discount.value
    return subtotal * discount.value / 100


def price_breakdown(
    instances: list[VisitInstance],
    recurrence_active: bool,
    selected_addons: Iterable[str],
    addon_catalog: Mapping[str, float],
    discount: Optional[Discount] = None,
    template_price: float = 0,
) -> PricingBreakdown:
    if recurrence_active:
        instances_total = sum(instance.price for instance in instances)
        count = len(instances)
    else:
        instances_total = template_price
        count = 1

    per_visit = addons_total(selected_addons, addon_catalog)
    subtotal = instances_total + per_visit * count
    amount = discount_amount(subtotal, discount)

    return PricingBreakdown(
        instances_total=instances_total,
        addons_per_visit=per_visit,
        count=count,
        subtotal=subtotal,
        discount_amount=amount,
        total=max(0, subtotal - amount),
    )


def calculate_total(
    instances: list[VisitInstance],
    recurrence_active: bool,
    selected_addons: Iterable[str],
    addon_catalog: Mapping[str, float],
    discount: Optional[Discount] = None,
    template_price: float = 0,
) -> float:
    """Grand total shown on the booking form, never negative"""
    return price_breakdown(
        instances, recurrence_active, selected_addons, addon_catalog, discount, template_price
    ).total
