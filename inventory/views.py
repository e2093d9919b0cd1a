import logging

from django.db.models import Prefetch, ProtectedError
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.exceptions import ValidationError
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from common.params import datetime_param, uuid_param
from common.permissions import RoleCapabilityPermission
from inventory.models import Category, InventoryLevel, Product, Store, Subcategory
from inventory.serializers import (
    CategorySerializer,
    InventoryLevelSerializer,
    ProductActivationSerializer,
    ProductSerializer,
    StockEntryCreateSerializer,
    StockEntrySerializer,
    StoreSerializer,
    SubcategorySerializer,
)
from inventory.services import delete_product, list_stock_entries, record_stock_entry, set_active

logger = logging.getLogger(__name__)

READ_ACTIONS = ["list", "retrieve"]
WRITE_ACTIONS = ["create", "update", "partial_update", "destroy"]


def _capabilities(read, write):
    mapping = {action: read for action in READ_ACTIONS}
    mapping.update({action: write for action in WRITE_ACTIONS})
    return mapping


class CategoryViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Category.objects.all()
    serializer_class = CategorySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "retrieve": "inventory.view"}


class SubcategoryViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Subcategory.objects.select_related("category")
    serializer_class = SubcategorySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "retrieve": "inventory.view"}

    def get_queryset(self):
        qs = super().get_queryset()
        category_id = uuid_param(self.request, "category")
        if category_id:
            qs = qs.filter(category_id=category_id)
        return qs


class StoreViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Store.objects.all()
    serializer_class = StoreSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "retrieve": "inventory.view"}


class ProductViewSet(viewsets.ReadOnlyModelViewSet):
    queryset = Product.objects.select_related("category", "subcategory").prefetch_related(
        Prefetch("inventory_levels", queryset=InventoryLevel.objects.order_by("store__name"))
    )
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {
        "list": "inventory.view",
        "retrieve": "inventory.view",
        "levels": "inventory.view",
        "activation": "catalog.manage",
    }

    def get_queryset(self):
        qs = super().get_queryset()
        params = self.request.query_params
        category_id = uuid_param(self.request, "category")
        if category_id:
            qs = qs.filter(category_id=category_id)
        if params.get("search"):
            qs = qs.filter(name__icontains=params["search"])
        if self.action == "list" and params.get("include_inactive") not in {"1", "true"}:
            qs = qs.filter(is_active=True)
        return qs

    @action(detail=True, methods=["get"], url_path="levels")
    def levels(self, request, pk=None):
        product = self.get_object()
        levels = product.inventory_levels.select_related("store").order_by("store__name")
        return Response(
            {
                "product": str(product.id),
                "current_stock": str(product.current_stock),
                "levels": InventoryLevelSerializer(levels, many=True).data,
            }
        )

    @action(detail=True, methods=["post"], url_path="activation")
    def activation(self, request, pk=None):
        product = self.get_object()
        serializer = ProductActivationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        level = set_active(product, serializer.validated_data["store"], serializer.validated_data["is_active"])
        return Response(InventoryLevelSerializer(level).data)


class StockEntryViewSet(mixins.CreateModelMixin, viewsets.ReadOnlyModelViewSet):
    serializer_class = StockEntrySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"list": "inventory.view", "retrieve": "inventory.view", "create": "stock.entry.create"}

    def get_queryset(self):
        return list_stock_entries(
            product_id=uuid_param(self.request, "product"),
            store_id=uuid_param(self.request, "store"),
            start=datetime_param(self.request, "start"),
            end=datetime_param(self.request, "end"),
        )

    def create(self, request, *args, **kwargs):
        serializer = StockEntryCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        entry = record_stock_entry(
            product_id=data["product"],
            store_id=data.get("store"),
            quantity=data["quantity"],
            cost_price=data["cost_price"],
            user=request.user,
        )
        return Response(StockEntrySerializer(entry).data, status=status.HTTP_201_CREATED)


class AdminCategoryViewSet(viewsets.ModelViewSet):
    queryset = Category.objects.all()
    serializer_class = CategorySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = _capabilities("catalog.manage", "catalog.manage")


class AdminSubcategoryViewSet(viewsets.ModelViewSet):
    queryset = Subcategory.objects.select_related("category")
    serializer_class = SubcategorySerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = _capabilities("catalog.manage", "catalog.manage")


class AdminStoreViewSet(viewsets.ModelViewSet):
    queryset = Store.objects.all()
    serializer_class = StoreSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = _capabilities("catalog.manage", "catalog.manage")

    def perform_destroy(self, instance):
        try:
            instance.delete()
        except ProtectedError:
            raise ValidationError("Stores with inventory, entries or counts cannot be deleted; deactivate them instead.")


class AdminProductViewSet(viewsets.ModelViewSet):
    queryset = Product.objects.select_related("category", "subcategory").prefetch_related("inventory_levels")
    serializer_class = ProductSerializer
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = _capabilities("catalog.manage", "catalog.manage")

    def perform_create(self, serializer):
        product = serializer.save()
        logger.info("product_created", extra={"product_id": product.id})

    def perform_destroy(self, instance):
        delete_product(instance)
