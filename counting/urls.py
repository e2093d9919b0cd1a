from rest_framework.routers import DefaultRouter

from counting.views import StockCountViewSet

router = DefaultRouter()
router.register(r"stock-counts", StockCountViewSet, basename="stock-count")

urlpatterns = router.urls
