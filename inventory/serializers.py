from rest_framework import serializers

from inventory.models import Category, InventoryLevel, Product, StockEntry, Store, Subcategory


class CategorySerializer(serializers.ModelSerializer):
    class Meta:
        model = Category
        fields = ["id", "name", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class SubcategorySerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source="category.name", read_only=True)

    class Meta:
        model = Subcategory
        fields = ["id", "category", "category_name", "name", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class StoreSerializer(serializers.ModelSerializer):
    class Meta:
        model = Store
        fields = ["id", "name", "code", "is_active", "created_at", "updated_at"]
        read_only_fields = ["id", "created_at", "updated_at"]


class ProductSerializer(serializers.ModelSerializer):
    category_name = serializers.CharField(source="category.name", read_only=True, default="")
    subcategory_name = serializers.CharField(source="subcategory.name", read_only=True, default="")
    inventory = serializers.SerializerMethodField()
    active_status = serializers.SerializerMethodField()

    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "barcode",
            "category",
            "category_name",
            "subcategory",
            "subcategory_name",
            "unit",
            "min_stock",
            "current_stock",
            "average_cost",
            "last_cost",
            "is_active",
            "inventory",
            "active_status",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "current_stock", "average_cost", "last_cost", "created_at", "updated_at"]

    def _levels(self, obj):
        # Uses the prefetch from the viewset queryset when present.
        return list(obj.inventory_levels.all())

    def get_inventory(self, obj):
        return {str(level.store_id): str(level.quantity) for level in self._levels(obj)}

    def get_active_status(self, obj):
        return {str(level.store_id): level.is_active for level in self._levels(obj)}

    def validate(self, attrs):
        # Form submissions commonly send empty strings for optional fields.
        for field_name in ("category", "subcategory", "barcode"):
            if self.initial_data.get(field_name, None) == "":
                attrs[field_name] = None

        category = attrs.get("category", getattr(self.instance, "category", None))
        subcategory = attrs.get("subcategory", getattr(self.instance, "subcategory", None))
        if subcategory is not None and category is not None and subcategory.category_id != category.id:
            raise serializers.ValidationError({"subcategory": "Subcategory must belong to the selected category."})
        if subcategory is not None and category is None:
            attrs["category"] = subcategory.category
        return attrs


class InventoryLevelSerializer(serializers.ModelSerializer):
    store_name = serializers.CharField(source="store.name", read_only=True)

    class Meta:
        model = InventoryLevel
        fields = ["store", "store_name", "quantity", "is_active", "updated_at"]
        read_only_fields = fields


class ProductActivationSerializer(serializers.Serializer):
    store = serializers.PrimaryKeyRelatedField(queryset=Store.objects.all())
    is_active = serializers.BooleanField()


class StockEntrySerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    store_name = serializers.CharField(source="store.name", read_only=True)

    class Meta:
        model = StockEntry
        fields = [
            "id",
            "product",
            "product_name",
            "store",
            "store_name",
            "quantity",
            "cost_price",
            "total_cost",
            "created_at",
        ]
        read_only_fields = fields


class StockEntryCreateSerializer(serializers.Serializer):
    """Shape-only validation; range checks and lookups happen in the recorder."""

    product = serializers.CharField()
    store = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    quantity = serializers.CharField()
    cost_price = serializers.CharField()
