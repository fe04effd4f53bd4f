import django_filters as filters

from claims.models import Claim
from payments.models import PendingTransfer


class OperatorClaimFilter(filters.FilterSet):
    status = filters.MultipleChoiceFilter(choices=Claim.Status.choices)
    type = filters.ChoiceFilter(choices=Claim.Type.choices)
    recovery_status = filters.ChoiceFilter(choices=Claim.RecoveryStatus.choices)
    guest_at_fault = filters.BooleanFilter(field_name="guest_at_fault")
    primary_payer = filters.CharFilter(field_name="primary_payer")
    booking_id = filters.NumberFilter(field_name="booking_id")
    host_email = filters.CharFilter(field_name="host__email", lookup_expr="icontains")

    class Meta:
        model = Claim
        fields = ["status", "type", "recovery_status", "guest_at_fault", "booking_id"]


class PendingTransferFilter(filters.FilterSet):
    status = filters.MultipleChoiceFilter(choices=PendingTransfer.Status.choices)
    claim_id = filters.NumberFilter(field_name="claim_id")
    host_id = filters.NumberFilter(field_name="host_id")

    class Meta:
        model = PendingTransfer
        fields = ["status", "claim_id", "host_id"]
