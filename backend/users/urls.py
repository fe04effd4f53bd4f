from django.urls import path
from rest_framework_simplejwt.views import TokenObtainPairView, TokenRefreshView

from .api import AppealListCreateView, MeView, StandingView

app_name = "users"

urlpatterns = [
    path("token/", TokenObtainPairView.as_view(), name="token_obtain_pair"),
    path("token/refresh/", TokenRefreshView.as_view(), name="token_refresh"),
    path("me/", MeView.as_view(), name="me"),
    path("me/standing/", StandingView.as_view(), name="standing"),
    path("me/appeals/", AppealListCreateView.as_view(), name="appeals"),
]
