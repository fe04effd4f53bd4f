from __future__ import annotations

import django_filters as filters

from trip_charges.categories import ChargeCategory
from trip_charges.models import TripCharge


class OperatorTripChargeFilter(filters.FilterSet):
    charge_status = filters.MultipleChoiceFilter(choices=TripCharge.ChargeStatus.choices)
    requires_approval = filters.BooleanFilter(field_name="requires_approval")
    booking_id = filters.NumberFilter(field_name="booking_id")
    guest_email = filters.CharFilter(field_name="booking__guest__email", lookup_expr="icontains")
    host_email = filters.CharFilter(field_name="booking__host__email", lookup_expr="icontains")
    category = filters.ChoiceFilter(
        choices=ChargeCategory.choices, field_name="dispute_lines__category", distinct=True
    )
    min_total = filters.NumberFilter(field_name="total_charges", lookup_expr="gte")
    disputed_after = filters.IsoDateTimeFilter(field_name="disputed_at", lookup_expr="gte")
    disputed_before = filters.IsoDateTimeFilter(field_name="disputed_at", lookup_expr="lte")

    class Meta:
        model = TripCharge
        fields = ["charge_status", "requires_approval", "booking_id", "category"]
