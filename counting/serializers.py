from rest_framework import serializers

from counting.models import StockCount, StockCountItem


class StockCountItemSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)
    unit = serializers.CharField(source="product.unit", read_only=True)
    category = serializers.CharField(source="product.category_id", read_only=True, default=None)
    category_name = serializers.CharField(source="product.category.name", read_only=True, default="")
    variance = serializers.DecimalField(max_digits=15, decimal_places=3, read_only=True)

    class Meta:
        model = StockCountItem
        fields = [
            "id",
            "product",
            "product_name",
            "unit",
            "category",
            "category_name",
            "position",
            "quantity_counted",
            "quantity_system",
            "variance",
        ]
        read_only_fields = fields


class StockCountSerializer(serializers.ModelSerializer):
    store_name = serializers.CharField(source="store.name", read_only=True, default="")
    items = serializers.SerializerMethodField()

    class Meta:
        model = StockCount
        fields = [
            "id",
            "store",
            "store_name",
            "status",
            "period",
            "completed_categories",
            "created_by",
            "approved_by",
            "submitted_at",
            "approved_at",
            "created_at",
            "updated_at",
            "items",
        ]
        read_only_fields = fields

    def get_items(self, obj):
        items = obj.items.select_related("product", "product__category").order_by("position")
        return StockCountItemSerializer(items, many=True).data


class StockCountListSerializer(serializers.ModelSerializer):
    store_name = serializers.CharField(source="store.name", read_only=True, default="")
    item_count = serializers.IntegerField(read_only=True)
    counted_items = serializers.IntegerField(read_only=True)

    class Meta:
        model = StockCount
        fields = [
            "id",
            "store",
            "store_name",
            "status",
            "period",
            "item_count",
            "counted_items",
            "submitted_at",
            "approved_at",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class StockCountCreateSerializer(serializers.Serializer):
    store = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    force = serializers.BooleanField(required=False, default=False)


class CountedItemSerializer(serializers.Serializer):
    product_id = serializers.CharField()
    # Range checks live in the service so the whole batch fails as one unit.
    quantity_counted = serializers.CharField()


class StockCountItemsSerializer(serializers.Serializer):
    items = CountedItemSerializer(many=True, required=False, default=list)
    completed_categories = serializers.ListField(child=serializers.CharField(), required=False)


class StockCountFinalizeSerializer(StockCountItemsSerializer):
    pass
