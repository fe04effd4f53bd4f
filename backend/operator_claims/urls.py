from django.urls import path

from operator_claims.api import (
    OperatorClaimApproveView,
    OperatorClaimChargeView,
    OperatorClaimDenyView,
    OperatorClaimDetailView,
    OperatorClaimListView,
    PendingTransferListView,
    PendingTransferRetryView,
)

urlpatterns = [
    path("claims/", OperatorClaimListView.as_view(), name="operator_claim_list"),
    path("claims/<int:pk>/", OperatorClaimDetailView.as_view(), name="operator_claim_detail"),
    path(
        "claims/<int:pk>/approve/",
        OperatorClaimApproveView.as_view(),
        name="operator_claim_approve",
    ),
    path("claims/<int:pk>/deny/", OperatorClaimDenyView.as_view(), name="operator_claim_deny"),
    path(
        "claims/<int:pk>/charge/",
        OperatorClaimChargeView.as_view(),
        name="operator_claim_charge",
    ),
    path("transfers/", PendingTransferListView.as_view(), name="operator_transfer_list"),
    path(
        "transfers/<int:pk>/retry/",
        PendingTransferRetryView.as_view(),
        name="operator_transfer_retry",
    ),
]
