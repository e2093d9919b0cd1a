from rest_framework import serializers

from reports.models import WeeklyReport, WeeklyReportItem


class WeeklyReportItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = WeeklyReportItem
        fields = [
            "product",
            "product_name",
            "category_name",
            "unit",
            "initial_stock",
            "entries_quantity",
            "final_stock",
            "consumption_quantity",
            "consumption_value",
        ]
        read_only_fields = fields


class WeeklyReportSerializer(serializers.ModelSerializer):
    class Meta:
        model = WeeklyReport
        fields = [
            "id",
            "start_date",
            "end_date",
            "status",
            "total_consumption_value",
            "closed_by",
            "created_at",
        ]
        read_only_fields = fields


class WeeklyReportDetailSerializer(WeeklyReportSerializer):
    items = WeeklyReportItemSerializer(many=True, read_only=True)

    class Meta(WeeklyReportSerializer.Meta):
        fields = WeeklyReportSerializer.Meta.fields + ["items"]
        read_only_fields = fields


class WeeklyReportPreviewSerializer(serializers.Serializer):
    """Unsaved report for the open period."""

    start_date = serializers.DateTimeField()
    end_date = serializers.DateTimeField()
    status = serializers.CharField()
    total_consumption_value = serializers.DecimalField(max_digits=16, decimal_places=2)
    items = WeeklyReportItemSerializer(many=True)


class WeeklyReportCloseSerializer(serializers.Serializer):
    start_date = serializers.DateTimeField(required=False, allow_null=True)
    end_date = serializers.DateTimeField(required=False, allow_null=True)
