from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase
from rest_framework.test import APIClient

from common.exceptions import EntryRecordingFailed, InvalidQuantity, MissingStore, ProductInUse, ProductNotFound, StoreNotFound
from inventory.models import Category, InventoryLevel, Product, StockEntry, Store
from inventory.services import (
    compute_average_cost,
    delete_product,
    get_level,
    levels_for,
    record_stock_entry,
    set_level,
    total_for,
)


class InventoryFixtureMixin:
    def make_fixtures(self):
        self.category = Category.objects.create(name="Dairy")
        self.store_a = Store.objects.create(name="Main kitchen", code="MK")
        self.store_b = Store.objects.create(name="Bar", code="BAR")
        self.product = Product.objects.create(name="Milk", category=self.category, unit="L", min_stock=Decimal("5"))


class InventoryLedgerTests(InventoryFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()

    def test_missing_level_reads_as_zero(self):
        self.assertEqual(get_level(self.product, self.store_a), Decimal("0"))
        self.assertEqual(total_for(self.product), Decimal("0"))

    def test_current_stock_tracks_sum_of_levels(self):
        set_level(self.product, self.store_a, "12")
        total = set_level(self.product, self.store_b, Decimal("3.5"))

        self.product.refresh_from_db()
        self.assertEqual(total, Decimal("15.500"))
        self.assertEqual(self.product.current_stock, Decimal("15.500"))
        self.assertEqual(levels_for(self.product), {str(self.store_a.id): Decimal("12.000"), str(self.store_b.id): Decimal("3.500")})

    def test_set_level_overwrites_instead_of_adding(self):
        set_level(self.product, self.store_a, 12)
        set_level(self.product, self.store_a, 7)

        self.product.refresh_from_db()
        self.assertEqual(get_level(self.product, self.store_a), Decimal("7.000"))
        self.assertEqual(self.product.current_stock, Decimal("7.000"))
        self.assertEqual(InventoryLevel.objects.filter(product=self.product).count(), 1)

    def test_set_level_rejects_negative_and_non_numeric(self):
        for bad in ("-1", "abc", None, "NaN"):
            with self.subTest(value=bad):
                with self.assertRaises(InvalidQuantity):
                    set_level(self.product, self.store_a, bad)
        self.assertFalse(InventoryLevel.objects.exists())


class AverageCostTests(TestCase):
    def test_weighted_average(self):
        self.assertEqual(compute_average_cost(Decimal("10"), Decimal("2.00"), Decimal("10"), Decimal("4.00")), Decimal("3.0000"))

    def test_same_cost_keeps_average(self):
        self.assertEqual(compute_average_cost(Decimal("7"), Decimal("2.5"), Decimal("3"), Decimal("2.5")), Decimal("2.5000"))

    def test_zero_stock_collapses_to_entry_cost(self):
        self.assertEqual(compute_average_cost(Decimal("0"), Decimal("9.99"), Decimal("4"), Decimal("1.25")), Decimal("1.2500"))
        self.assertEqual(compute_average_cost(None, None, Decimal("1"), Decimal("3")), Decimal("3.0000"))


class StockEntryServiceTests(InventoryFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()

    def test_two_entries_average_cost_and_stock(self):
        record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="10", cost_price="2.00")
        entry = record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="10", cost_price="4.00")

        self.product.refresh_from_db()
        self.assertEqual(self.product.average_cost, Decimal("3.0000"))
        self.assertEqual(self.product.last_cost, Decimal("4.0000"))
        self.assertEqual(self.product.current_stock, Decimal("20.000"))
        self.assertEqual(get_level(self.product, self.store_a), Decimal("20.000"))
        self.assertEqual(entry.total_cost, Decimal("40.0000000"))

    def test_average_uses_stock_across_all_stores(self):
        set_level(self.product, self.store_b, 10)
        Product.objects.filter(pk=self.product.pk).update(average_cost=Decimal("2.00"))

        record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity=10, cost_price=4)

        self.product.refresh_from_db()
        self.assertEqual(self.product.average_cost, Decimal("3.0000"))
        self.assertEqual(get_level(self.product, self.store_a), Decimal("10.000"))
        self.assertEqual(get_level(self.product, self.store_b), Decimal("10.000"))

    def test_zero_quantity_rejected_without_side_effects(self):
        with self.assertRaises(InvalidQuantity):
            record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="0", cost_price="1")

        self.assertFalse(StockEntry.objects.exists())
        self.product.refresh_from_db()
        self.assertEqual(self.product.current_stock, Decimal("0"))

    def test_negative_cost_rejected(self):
        with self.assertRaises(InvalidQuantity):
            record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="1", cost_price="-0.01")

    def test_oversized_quantity_and_cost_rejected(self):
        with self.assertRaises(InvalidQuantity) as cm:
            record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="1e30", cost_price="1")
        self.assertEqual(cm.exception.errors, {"quantity": "1e30"})
        with self.assertRaises(InvalidQuantity):
            record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="1", cost_price="1e10")

        self.assertFalse(StockEntry.objects.exists())

    def test_store_is_required(self):
        with self.assertRaises(MissingStore):
            record_stock_entry(product_id=self.product.id, store_id=None, quantity="1", cost_price="1")

    def test_unknown_product_and_store(self):
        with self.assertRaises(StoreNotFound):
            record_stock_entry(product_id=self.product.id, store_id="not-a-uuid", quantity="1", cost_price="1")
        with self.assertRaises(ProductNotFound):
            record_stock_entry(
                product_id="00000000-0000-0000-0000-000000000000",
                store_id=self.store_a.id,
                quantity="1",
                cost_price="1",
            )

    def test_database_failure_rolls_back_cost_update(self):
        with patch("inventory.services.StockEntry.objects.create", side_effect=DatabaseError("disk full")):
            with self.assertLogs("inventory.services", level="ERROR") as logs:
                with self.assertRaises(EntryRecordingFailed):
                    record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="5", cost_price="2")

        self.assertTrue(any("stock_entry_failed" in line for line in logs.output))
        self.product.refresh_from_db()
        self.assertEqual(self.product.average_cost, Decimal("0"))
        self.assertIsNone(self.product.last_cost)
        self.assertFalse(InventoryLevel.objects.exists())


class ProductDeletionTests(InventoryFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()

    def test_product_with_entries_cannot_be_deleted(self):
        record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="1", cost_price="1")

        with self.assertRaises(ProductInUse) as cm:
            delete_product(self.product)

        self.assertEqual(cm.exception.errors["references"], {"stockentry": 1})
        self.assertTrue(Product.objects.filter(pk=self.product.pk).exists())

    def test_unused_product_is_deleted_with_levels(self):
        set_level(self.product, self.store_a, 4)

        delete_product(self.product)

        self.assertFalse(Product.objects.exists())
        self.assertFalse(InventoryLevel.objects.exists())


class InventoryApiTests(InventoryFixtureMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.make_fixtures()
        user_model = get_user_model()
        self.employee = user_model.objects.create_user(username="inv-employee", password="pass1234", role="employee")
        self.admin = user_model.objects.create_user(username="inv-admin", password="pass1234", role="admin")

    def test_product_list_shows_per_store_inventory(self):
        set_level(self.product, self.store_a, 3)
        self.client.force_authenticate(user=self.employee)

        response = self.client.get("/api/v1/products/")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["count", "next", "previous", "results"])
        row = payload["results"][0]
        self.assertEqual(row["current_stock"], "3.000")
        self.assertEqual(row["inventory"], {str(self.store_a.id): "3.000"})
        self.assertEqual(row["active_status"], {str(self.store_a.id): True})
        self.assertEqual(row["category_name"], "Dairy")

    def test_inactive_products_hidden_from_list_by_default(self):
        Product.objects.create(name="Old cream", is_active=False)
        self.client.force_authenticate(user=self.employee)

        default = self.client.get("/api/v1/products/")
        everything = self.client.get("/api/v1/products/?include_inactive=true")

        self.assertEqual(default.json()["count"], 1)
        self.assertEqual(everything.json()["count"], 2)

    def test_employee_records_entry(self):
        self.client.force_authenticate(user=self.employee)

        response = self.client.post(
            "/api/v1/stock-entries/",
            {"product": str(self.product.id), "store": str(self.store_a.id), "quantity": "2.5", "cost_price": "1.20"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["total_cost"], "3.0000")
        entry = StockEntry.objects.get()
        self.assertEqual(entry.created_by, self.employee)

    def test_entry_errors_use_envelope(self):
        self.client.force_authenticate(user=self.employee)

        zero = self.client.post(
            "/api/v1/stock-entries/",
            {"product": str(self.product.id), "store": str(self.store_a.id), "quantity": "0", "cost_price": "1"},
            format="json",
        )
        no_store = self.client.post(
            "/api/v1/stock-entries/",
            {"product": str(self.product.id), "quantity": "1", "cost_price": "1"},
            format="json",
        )

        self.assertEqual(zero.status_code, 400)
        self.assertEqual(zero.json()["code"], "invalid_quantity")
        self.assertEqual(no_store.status_code, 400)
        self.assertEqual(no_store.json()["code"], "missing_store")

    def test_entry_history_filters_by_store(self):
        record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="1", cost_price="1")
        record_stock_entry(product_id=self.product.id, store_id=self.store_b.id, quantity="2", cost_price="1")
        self.client.force_authenticate(user=self.employee)

        response = self.client.get(f"/api/v1/stock-entries/?store={self.store_b.id}")

        self.assertEqual(response.status_code, 200)
        self.assertEqual([row["quantity"] for row in response.json()["results"]], ["2.000"])

    def test_oversized_entry_quantity_returns_bad_request(self):
        self.client.force_authenticate(user=self.employee)

        response = self.client.post(
            "/api/v1/stock-entries/",
            {"product": str(self.product.id), "store": str(self.store_a.id), "quantity": "1e30", "cost_price": "1"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_quantity")

    def test_malformed_id_filters_return_bad_request(self):
        self.client.force_authenticate(user=self.employee)

        entries = self.client.get("/api/v1/stock-entries/?product=abc")
        products = self.client.get("/api/v1/products/?category=abc")
        subcategories = self.client.get("/api/v1/subcategories/?category=abc")

        for response in (entries, products, subcategories):
            self.assertEqual(response.status_code, 400)
            self.assertEqual(response.json()["code"], "validation_error")
        self.assertIn("product", entries.json()["errors"])
        self.assertIn("category", products.json()["errors"])

    def test_entry_history_accepts_naive_datetimes(self):
        record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="1", cost_price="1")
        self.client.force_authenticate(user=self.employee)

        response = self.client.get("/api/v1/stock-entries/?start=2000-01-01T00:00:00")
        bad = self.client.get("/api/v1/stock-entries/?start=yesterday")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["count"], 1)
        self.assertEqual(bad.status_code, 400)
        self.assertIn("start", bad.json()["errors"])

    def test_stock_fields_are_read_only_through_admin_api(self):
        self.client.force_authenticate(user=self.admin)

        response = self.client.post(
            "/api/v1/admin/products/",
            {"name": "Butter", "category": str(self.category.id), "current_stock": "99", "average_cost": "5"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        created = Product.objects.get(id=response.json()["id"])
        self.assertEqual(created.current_stock, Decimal("0"))
        self.assertEqual(created.average_cost, Decimal("0"))

    def test_employee_cannot_manage_catalog_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.employee)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.post("/api/v1/admin/products/", {"name": "Sneaky"}, format="json")

        self.assertEqual(response.status_code, 403)
        self.assertTrue(any("catalog.manage" in message for message in cm.output))

    def test_delete_product_in_use_returns_conflict(self):
        record_stock_entry(product_id=self.product.id, store_id=self.store_a.id, quantity="1", cost_price="1")
        self.client.force_authenticate(user=self.admin)

        response = self.client.delete(f"/api/v1/admin/products/{self.product.id}/")

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["code"], "product_in_use")

    def test_activation_toggle_and_levels(self):
        self.client.force_authenticate(user=self.admin)

        toggle = self.client.post(
            f"/api/v1/products/{self.product.id}/activation/",
            {"store": str(self.store_b.id), "is_active": False},
            format="json",
        )
        levels = self.client.get(f"/api/v1/products/{self.product.id}/levels/")

        self.assertEqual(toggle.status_code, 200)
        self.assertFalse(toggle.json()["is_active"])
        self.assertEqual(levels.status_code, 200)
        self.assertEqual(levels.json()["levels"][0]["store"], str(self.store_b.id))
        self.assertEqual(levels.json()["levels"][0]["quantity"], "0.000")
