from django.urls import path

from reports.views import (
    CurrentWeeklyReportView,
    DashboardView,
    ShoppingListView,
    WeeklyReportCloseView,
    WeeklyReportDetailView,
    WeeklyReportListView,
)

urlpatterns = [
    path("reports/weekly/current/", CurrentWeeklyReportView.as_view(), name="weekly-report-current"),
    path("reports/weekly/close/", WeeklyReportCloseView.as_view(), name="weekly-report-close"),
    path("reports/weekly/", WeeklyReportListView.as_view(), name="weekly-report-list"),
    path("reports/weekly/<uuid:report_id>/", WeeklyReportDetailView.as_view(), name="weekly-report-detail"),
    path("reports/shopping-list/", ShoppingListView.as_view(), name="shopping-list"),
    path("dashboard/", DashboardView.as_view(), name="dashboard"),
]
