from rest_framework.routers import SimpleRouter

from .api import ClaimViewSet

app_name = "claims"

router = SimpleRouter()
router.register("", ClaimViewSet, basename="claim")

urlpatterns = router.urls
