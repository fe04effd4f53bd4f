from django.urls import include, path

from operator_core.api import OperatorAuditEventListView, OperatorMeView

urlpatterns = [
    path("me/", OperatorMeView.as_view(), name="operator_me"),
    path("audit/", OperatorAuditEventListView.as_view(), name="operator_audit_events"),
    path("users/", include("operator_users.urls")),
    path("trip-charges/", include("operator_disputes.urls")),
    path("", include("operator_claims.urls")),
]
