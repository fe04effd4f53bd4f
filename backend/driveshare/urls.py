from django.conf import settings
from django.contrib import admin
from django.urls import include, path

urlpatterns = [
    path("api/bookings/", include(("bookings.urls", "bookings"), namespace="bookings")),
    path("api/claims/", include(("claims.urls", "claims"), namespace="claims")),
    path("api/users/", include("users.urls")),
]

if settings.ENABLE_DJANGO_ADMIN:
    urlpatterns.insert(0, path("admin/", admin.site.urls))

if settings.ENABLE_OPERATOR:
    urlpatterns.append(path("api/operator/", include("operator_core.urls")))
