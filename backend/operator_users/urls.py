from django.urls import path

from operator_users.api import (
    OperatorAppealDecideView,
    OperatorAppealListView,
    OperatorUserDetailView,
    OperatorUserListView,
    OperatorUserModerateView,
)

urlpatterns = [
    path("", OperatorUserListView.as_view(), name="operator_user_list"),
    path("appeals/", OperatorAppealListView.as_view(), name="operator_appeal_list"),
    path(
        "appeals/<int:pk>/decide/",
        OperatorAppealDecideView.as_view(),
        name="operator_appeal_decide",
    ),
    path("<int:pk>/", OperatorUserDetailView.as_view(), name="operator_user_detail"),
    path("<int:pk>/moderate/", OperatorUserModerateView.as_view(), name="operator_user_moderate"),
]
