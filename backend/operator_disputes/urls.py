from django.urls import path

from operator_disputes.api import (
    OperatorTripChargeDetailView,
    OperatorTripChargeListView,
    OperatorTripChargeResolveView,
)

urlpatterns = [
    path("", OperatorTripChargeListView.as_view(), name="operator_trip_charge_list"),
    path("<int:pk>/", OperatorTripChargeDetailView.as_view(), name="operator_trip_charge_detail"),
    path(
        "<int:pk>/resolve/",
        OperatorTripChargeResolveView.as_view(),
        name="operator_trip_charge_resolve",
    ),
]
