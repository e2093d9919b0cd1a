from datetime import timedelta
from decimal import Decimal

from django.contrib.auth import get_user_model
from django.test import TestCase, override_settings
from django.utils import timezone
from rest_framework.test import APIClient

from common.exceptions import InvalidPeriod, PeriodOverlap, ReportNotFound
from counting.services import approve_count, create_count, finalize_count
from inventory.models import Category, Product, Store
from inventory.services import record_stock_entry, set_active, set_level
from reports.models import WeeklyReport
from reports.services import (
    build_weekly_report,
    close_weekly_report,
    current_period,
    dashboard_stats,
    get_report,
    list_reports,
    shopping_list,
    suggested_purchase,
)


class ReportFixtureMixin:
    def make_fixtures(self):
        self.dairy = Category.objects.create(name="Dairy")
        self.store = Store.objects.create(name="Main kitchen", code="MK")
        self.bar = Store.objects.create(name="Bar", code="BAR")
        self.milk = Product.objects.create(name="Milk", category=self.dairy, unit="L", min_stock=Decimal("5"))

    def items_by_product(self, items):
        return {item.product_id: item for item in items}


class CurrentPeriodTests(ReportFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()

    @override_settings(WEEKLY_REPORT_DEFAULT_DAYS=7)
    def test_defaults_to_last_week_without_closed_reports(self):
        now = timezone.now()

        start, end = current_period(now)

        self.assertEqual(end, now)
        self.assertEqual(start, now - timedelta(days=7))

    def test_starts_at_last_closed_end(self):
        report = close_weekly_report()

        start, _ = current_period()

        self.assertEqual(start, report.end_date)


class WeeklyReportTests(ReportFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()

    def test_consumption_uses_approved_count(self):
        record_stock_entry(product_id=self.milk.id, store_id=self.store.id, quantity="10", cost_price="2.00")
        count = create_count(store_id=self.store.id)
        finalize_count(count, items=[{"product_id": self.milk.id, "quantity_counted": "8"}])
        approve_count(count)

        report = close_weekly_report()

        item = report.items.get(product=self.milk)
        self.assertEqual(report.status, WeeklyReport.Status.CLOSED)
        self.assertEqual(item.initial_stock, Decimal("0"))
        self.assertEqual(item.entries_quantity, Decimal("10.000"))
        self.assertEqual(item.final_stock, Decimal("8.000"))
        self.assertEqual(item.consumption_quantity, Decimal("2.000"))
        self.assertEqual(item.consumption_value, Decimal("4.00"))
        self.assertEqual(report.total_consumption_value, Decimal("4.00"))
        self.assertEqual(item.product_name, "Milk")
        self.assertEqual(item.category_name, "Dairy")

    def test_uncounted_store_contributes_live_level(self):
        set_level(self.milk, self.bar, 6)
        record_stock_entry(product_id=self.milk.id, store_id=self.store.id, quantity="10", cost_price="1")
        count = create_count(store_id=self.store.id)
        finalize_count(count, items=[{"product_id": self.milk.id, "quantity_counted": "7"}])
        approve_count(count)
        set_level(self.milk, self.bar, 4)

        start, end = current_period()
        _, items = build_weekly_report(start, end)

        self.assertEqual(self.items_by_product(items)[self.milk.id].final_stock, Decimal("11.000"))

    def test_without_counts_final_stock_is_current_stock(self):
        record_stock_entry(product_id=self.milk.id, store_id=self.store.id, quantity="3", cost_price="1")
        set_level(self.milk, self.bar, 2)

        start, end = current_period()
        report, items = build_weekly_report(start, end)

        item = self.items_by_product(items)[self.milk.id]
        self.assertEqual(report.status, WeeklyReport.Status.OPEN)
        self.assertIsNone(report.created_at)
        self.assertEqual(item.final_stock, Decimal("5.000"))
        self.assertEqual(item.consumption_quantity, Decimal("-2.000"))

    def test_next_period_starts_from_previous_final_stock(self):
        record_stock_entry(product_id=self.milk.id, store_id=self.store.id, quantity="10", cost_price="2")
        first = close_weekly_report()
        record_stock_entry(product_id=self.milk.id, store_id=self.store.id, quantity="5", cost_price="2")

        second = close_weekly_report()

        item = second.items.get(product=self.milk)
        self.assertEqual(second.start_date, first.end_date)
        self.assertEqual(item.initial_stock, Decimal("10.000"))
        self.assertEqual(item.entries_quantity, Decimal("5.000"))
        self.assertEqual(item.final_stock, Decimal("15.000"))
        self.assertEqual(item.consumption_quantity, Decimal("0"))
        self.assertEqual([report.id for report in list_reports()], [second.id, first.id])

    def test_overlapping_and_inverted_periods_are_rejected(self):
        first = close_weekly_report()
        now = timezone.now()

        with self.assertRaises(PeriodOverlap):
            close_weekly_report(start=first.start_date, end=now)
        with self.assertRaises(InvalidPeriod):
            close_weekly_report(start=now + timedelta(days=1), end=now)
        self.assertEqual(WeeklyReport.objects.count(), 1)

    def test_inactive_products_are_left_out(self):
        Product.objects.create(name="Retired", category=self.dairy, is_active=False)

        start, end = current_period()
        _, items = build_weekly_report(start, end)

        self.assertEqual([item.product_name for item in items], ["Milk"])

    def test_get_report_unknown(self):
        with self.assertRaises(ReportNotFound):
            get_report("not-a-uuid")


class ShoppingListTests(ReportFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()
        self.flour = Product.objects.create(name="Flour", unit="KG", min_stock=Decimal("2"))

    def test_suggested_purchase(self):
        self.assertEqual(suggested_purchase(Decimal("5"), Decimal("3")), Decimal("5"))
        self.assertEqual(suggested_purchase(Decimal("2"), Decimal("3")), Decimal("0"))

    def test_low_stock_grouped_per_store_and_category(self):
        set_level(self.milk, self.store, 3)
        set_level(self.flour, self.store, 10)
        set_active(self.milk, self.bar, False)

        groups = {group["store_name"]: group for group in shopping_list()}

        main = groups["Main kitchen"]
        self.assertEqual([category["category"] for category in main["categories"]], ["Dairy"])
        milk_row = main["categories"][0]["products"][0]
        self.assertEqual(milk_row["suggested_quantity"], Decimal("5"))
        bar_products = [row["name"] for category in groups["Bar"]["categories"] for row in category["products"]]
        self.assertEqual(bar_products, ["Flour"])

    def test_store_and_search_filters(self):
        groups = shopping_list(store_id=self.store.id, search="dai")

        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0]["store_id"], str(self.store.id))
        self.assertEqual([row["name"] for row in groups[0]["categories"][0]["products"]], ["Milk"])


class DashboardTests(ReportFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()

    def test_counters(self):
        Product.objects.create(name="Stocked", min_stock=Decimal("1"))
        record_stock_entry(product_id=self.milk.id, store_id=self.store.id, quantity="10", cost_price="1")
        count = create_count(store_id=self.store.id)
        finalize_count(count)

        stats = dashboard_stats()

        self.assertEqual(stats["total_products"], 2)
        self.assertEqual(stats["low_stock"], 1)
        self.assertEqual(stats["pending_counts"], 1)
        self.assertIsNotNone(stats["last_entry_at"])


class ReportApiTests(ReportFixtureMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.make_fixtures()
        user_model = get_user_model()
        self.employee = user_model.objects.create_user(username="report-employee", password="pass1234", role="employee")
        self.admin = user_model.objects.create_user(username="report-admin", password="pass1234", role="admin")
        record_stock_entry(product_id=self.milk.id, store_id=self.store.id, quantity="4", cost_price="1.50")

    def test_admin_previews_and_closes_period(self):
        self.client.force_authenticate(user=self.admin)

        preview = self.client.get("/api/v1/reports/weekly/current/")
        closed = self.client.post("/api/v1/reports/weekly/close/", {}, format="json")
        listing = self.client.get("/api/v1/reports/weekly/")
        detail = self.client.get(f"/api/v1/reports/weekly/{closed.json()['id']}/")

        self.assertEqual(preview.status_code, 200)
        self.assertEqual(preview.json()["status"], "open")
        self.assertEqual(preview.json()["items"][0]["entries_quantity"], "4.000")
        self.assertEqual(closed.status_code, 201)
        self.assertEqual(closed.json()["status"], "closed")
        self.assertEqual(closed.json()["closed_by"], str(self.admin.id))
        self.assertEqual(listing.json()["count"], 1)
        self.assertEqual(len(detail.json()["items"]), 1)

    def test_overlapping_close_returns_conflict(self):
        self.client.force_authenticate(user=self.admin)
        first = close_weekly_report()

        response = self.client.post(
            "/api/v1/reports/weekly/close/",
            {"start_date": (first.end_date - timedelta(days=1)).isoformat()},
            format="json",
        )

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "period_overlap")

    def test_preview_accepts_naive_datetimes_and_rejects_garbage(self):
        self.client.force_authenticate(user=self.admin)

        naive = self.client.get("/api/v1/reports/weekly/current/?start_date=2000-01-01T00:00:00")
        garbage = self.client.get("/api/v1/reports/weekly/current/?end_date=soon")

        self.assertEqual(naive.status_code, 200)
        self.assertEqual(naive.json()["items"][0]["entries_quantity"], "4.000")
        self.assertEqual(garbage.status_code, 400)
        self.assertIn("end_date", garbage.json()["errors"])

    def test_shopping_list_rejects_malformed_store(self):
        self.client.force_authenticate(user=self.employee)

        response = self.client.get("/api/v1/reports/shopping-list/?store=abc")

        self.assertEqual(response.status_code, 400)
        self.assertIn("store", response.json()["errors"])

    def test_report_csv_export(self):
        report = close_weekly_report()
        self.client.force_authenticate(user=self.admin)

        response = self.client.get(f"/api/v1/reports/weekly/{report.id}/?export=csv")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response["Content-Type"], "text/csv")
        lines = response.content.decode().splitlines()
        self.assertTrue(lines[0].startswith("category_name,product_name"))
        self.assertIn("Milk", lines[1])

    def test_employee_cannot_view_reports_but_sees_shopping_list_and_dashboard(self):
        self.client.force_authenticate(user=self.employee)

        with self.assertLogs("security.authorization", level="WARNING"):
            reports = self.client.get("/api/v1/reports/weekly/current/")
        shopping = self.client.get("/api/v1/reports/shopping-list/")
        dashboard = self.client.get("/api/v1/dashboard/")

        self.assertEqual(reports.status_code, 403)
        self.assertEqual(shopping.status_code, 200)
        self.assertIn("results", shopping.json())
        self.assertEqual(dashboard.status_code, 200)
        self.assertEqual(dashboard.json()["total_products"], 1)
