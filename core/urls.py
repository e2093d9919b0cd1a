from django.urls import path
from rest_framework.routers import DefaultRouter

from core.views import AdminUserViewSet, healthz, readyz

router = DefaultRouter()
router.register(r"admin/users", AdminUserViewSet, basename="admin-user")

urlpatterns = router.urls + [
    path("healthz/", healthz, name="healthz"),
    path("readyz/", readyz, name="readyz"),
]
