import csv

from django.http import HttpResponse
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from common.pagination import StandardResultsSetPagination
from common.params import datetime_param, uuid_param
from common.permissions import RoleCapabilityPermission
from reports.serializers import (
    WeeklyReportCloseSerializer,
    WeeklyReportDetailSerializer,
    WeeklyReportPreviewSerializer,
    WeeklyReportSerializer,
)
from reports.services import (
    build_weekly_report,
    close_weekly_report,
    current_period,
    dashboard_stats,
    get_report,
    list_reports,
    shopping_list,
)

REPORT_CSV_COLUMNS = [
    "category_name",
    "product_name",
    "unit",
    "initial_stock",
    "entries_quantity",
    "final_stock",
    "consumption_quantity",
    "consumption_value",
]


class BaseReportView(APIView):
    permission_classes = [IsAuthenticated, RoleCapabilityPermission]
    permission_action_map = {"get": "reports.view"}

    def _wants_csv(self, request):
        return request.query_params.get("export") == "csv"

    def _csv_response(self, filename, rows):
        response = HttpResponse(content_type="text/csv")
        response["Content-Disposition"] = f'attachment; filename="{filename}"'

        if not rows:
            return response

        writer = csv.DictWriter(response, fieldnames=list(rows[0].keys()))
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
        return response

    def _report_rows(self, items):
        return [{column: getattr(item, column) for column in REPORT_CSV_COLUMNS} for item in items]


class CurrentWeeklyReportView(BaseReportView):
    def get(self, request):
        default_start, default_end = current_period()
        start = datetime_param(request, "start_date") or default_start
        end = datetime_param(request, "end_date") or default_end
        report, items = build_weekly_report(start, end)

        if self._wants_csv(request):
            return self._csv_response("weekly_report_preview.csv", self._report_rows(items))
        payload = {
            "start_date": report.start_date,
            "end_date": report.end_date,
            "status": report.status,
            "total_consumption_value": report.total_consumption_value,
            "items": items,
        }
        return Response(WeeklyReportPreviewSerializer(payload).data)


class WeeklyReportCloseView(BaseReportView):
    permission_action_map = {"post": "reports.close"}

    def post(self, request):
        serializer = WeeklyReportCloseSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        report = close_weekly_report(
            start=serializer.validated_data.get("start_date"),
            end=serializer.validated_data.get("end_date"),
            user=request.user,
        )
        return Response(WeeklyReportDetailSerializer(report).data, status=status.HTTP_201_CREATED)


class WeeklyReportListView(BaseReportView):
    def get(self, request):
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(list_reports(), request, view=self)
        return paginator.get_paginated_response(WeeklyReportSerializer(page, many=True).data)


class WeeklyReportDetailView(BaseReportView):
    def get(self, request, report_id):
        report = get_report(report_id)
        if self._wants_csv(request):
            filename = f"weekly_report_{report.end_date:%Y-%m-%d}.csv"
            return self._csv_response(filename, self._report_rows(report.items.all()))
        return Response(WeeklyReportDetailSerializer(report).data)


class ShoppingListView(BaseReportView):
    permission_action_map = {"get": "inventory.view"}

    def get(self, request):
        groups = shopping_list(
            store_id=uuid_param(request, "store"),
            search=request.query_params.get("search"),
        )
        if self._wants_csv(request):
            rows = [
                {
                    "store": group["store_name"],
                    "category": category["category"],
                    "product": product["name"],
                    "unit": product["unit"],
                    "current_stock": product["current_stock"],
                    "min_stock": product["min_stock"],
                    "suggested_quantity": product["suggested_quantity"],
                }
                for group in groups
                for category in group["categories"]
                for product in category["products"]
            ]
            return self._csv_response("shopping_list.csv", rows)
        return Response({"results": groups})


class DashboardView(BaseReportView):
    permission_action_map = {"get": "inventory.view"}

    def get(self, request):
        return Response(dashboard_stats())
