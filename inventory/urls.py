from rest_framework.routers import DefaultRouter

from inventory.views import (
    AdminCategoryViewSet,
    AdminProductViewSet,
    AdminStoreViewSet,
    AdminSubcategoryViewSet,
    CategoryViewSet,
    ProductViewSet,
    StockEntryViewSet,
    StoreViewSet,
    SubcategoryViewSet,
)

router = DefaultRouter()
router.register(r"categories", CategoryViewSet, basename="category")
router.register(r"subcategories", SubcategoryViewSet, basename="subcategory")
router.register(r"stores", StoreViewSet, basename="store")
router.register(r"products", ProductViewSet, basename="product")
router.register(r"stock-entries", StockEntryViewSet, basename="stock-entry")
router.register(r"admin/categories", AdminCategoryViewSet, basename="admin-category")
router.register(r"admin/subcategories", AdminSubcategoryViewSet, basename="admin-subcategory")
router.register(r"admin/stores", AdminStoreViewSet, basename="admin-store")
router.register(r"admin/products", AdminProductViewSet, basename="admin-product")

urlpatterns = router.urls
