import uuid
from decimal import Decimal
from unittest.mock import patch

from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import TestCase, override_settings
from rest_framework.test import APIClient

from common.exceptions import (
    CannotDeleteApproved,
    DraftCountExists,
    IllegalTransition,
    InvalidQuantity,
    MissingStore,
    PersistenceFailure,
    UnknownProduct,
)
from counting.models import StockCount, StockCountItem
from counting.services import (
    approve_count,
    create_count,
    delete_count,
    finalize_count,
    reject_count,
    update_items,
)
from inventory.models import Category, Product, Store
from inventory.services import get_level, set_active, set_level


class CountFixtureMixin:
    def make_fixtures(self):
        self.dairy = Category.objects.create(name="Dairy")
        self.bakery = Category.objects.create(name="Bakery")
        self.store = Store.objects.create(name="Main kitchen", code="MK")
        self.other_store = Store.objects.create(name="Bar", code="BAR")
        self.milk = Product.objects.create(name="Milk", category=self.dairy, unit="L")
        self.bread = Product.objects.create(name="Bread", category=self.bakery)
        self.cheese = Product.objects.create(name="Cheese", category=self.dairy, unit="KG")

    def count_quantities(self, count):
        return {item.product_id: item.quantity_counted for item in count.items.all()}


class StockCountCreationTests(CountFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()

    def test_snapshot_covers_active_products_in_category_order(self):
        set_level(self.milk, self.store, 20)
        Product.objects.create(name="Retired", category=self.dairy, is_active=False)
        set_active(self.cheese, self.store, False)

        count = create_count(store_id=self.store.id)

        items = list(count.items.select_related("product").order_by("position"))
        self.assertEqual([item.product.name for item in items], ["Bread", "Milk"])
        self.assertEqual(count.status, StockCount.Status.DRAFT)
        milk_item = items[1]
        self.assertEqual(milk_item.quantity_system, Decimal("20.000"))
        self.assertEqual(milk_item.quantity_counted, Decimal("0"))

    def test_store_is_required(self):
        with self.assertRaises(MissingStore):
            create_count(store_id=None)

    def test_second_draft_in_same_week_is_refused_unless_forced(self):
        first = create_count(store_id=self.store.id)

        with self.assertRaises(DraftCountExists) as cm:
            create_count(store_id=self.store.id)
        self.assertEqual(cm.exception.errors["count_id"], str(first.id))

        forced = create_count(store_id=self.store.id, force=True)
        other_store = create_count(store_id=self.other_store.id)
        self.assertNotEqual(forced.id, first.id)
        self.assertEqual(other_store.store, self.other_store)

    @override_settings(STOCK_COUNT_DRAFT_GUARD=False)
    def test_draft_guard_can_be_disabled(self):
        create_count(store_id=self.store.id)
        create_count(store_id=self.store.id)

        self.assertEqual(StockCount.objects.filter(store=self.store).count(), 2)


class StockCountWorkflowTests(CountFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()
        self.approver = get_user_model().objects.create_user(username="approver", password="pass1234", role="admin")

    def test_count_approve_sets_counted_level(self):
        set_level(self.milk, self.store, 20)
        count = create_count(store_id=self.store.id)

        update_items(count, [{"product_id": self.milk.id, "quantity_counted": "18"}])
        count, _ = finalize_count(count)
        approve_count(count, user=self.approver)

        count.refresh_from_db()
        self.milk.refresh_from_db()
        self.assertEqual(count.status, StockCount.Status.APPROVED)
        self.assertEqual(count.approved_by, self.approver)
        self.assertIsNotNone(count.approved_at)
        self.assertEqual(get_level(self.milk, self.store), Decimal("18.000"))
        self.assertEqual(self.milk.current_stock, Decimal("18.000"))

    def test_approval_overwrites_level_instead_of_adding(self):
        set_level(self.milk, self.store, 12)
        count = create_count(store_id=self.store.id)
        finalize_count(count, items=[{"product_id": str(self.milk.id), "quantity_counted": 7}])

        approve_count(count)

        self.assertEqual(get_level(self.milk, self.store), Decimal("7.000"))

    def test_approval_touches_only_the_counted_store(self):
        set_level(self.milk, self.store, 5)
        set_level(self.milk, self.other_store, 9)
        count = create_count(store_id=self.store.id)
        finalize_count(count, items=[{"product_id": self.milk.id, "quantity_counted": "4"}])

        approve_count(count)

        self.milk.refresh_from_db()
        self.assertEqual(get_level(self.milk, self.other_store), Decimal("9.000"))
        self.assertEqual(self.milk.current_stock, Decimal("13.000"))

    def test_reject_returns_to_draft_and_keeps_quantities(self):
        set_level(self.milk, self.store, 20)
        count = create_count(store_id=self.store.id)
        finalize_count(count, items=[{"product_id": self.milk.id, "quantity_counted": "18"}])

        reject_count(count)

        count.refresh_from_db()
        self.assertEqual(count.status, StockCount.Status.DRAFT)
        self.assertIsNone(count.submitted_at)
        self.assertEqual(self.count_quantities(count)[self.milk.id], Decimal("18.000"))
        self.assertEqual(get_level(self.milk, self.store), Decimal("20.000"))

    def test_finalize_reports_uncounted_items_and_logs_warning(self):
        count = create_count(store_id=self.store.id)

        with self.assertLogs("counting.services", level="WARNING") as logs:
            count, uncounted = finalize_count(count, items=[{"product_id": self.milk.id, "quantity_counted": "1"}])

        self.assertEqual(count.status, StockCount.Status.PENDING_REVIEW)
        self.assertIsNotNone(count.submitted_at)
        self.assertEqual(set(uncounted), {str(self.bread.id), str(self.cheese.id)})
        self.assertTrue(any("stock_count_finalized_with_uncounted_items" in line for line in logs.output))

    def test_illegal_transitions(self):
        count = create_count(store_id=self.store.id)
        with self.assertRaises(IllegalTransition):
            approve_count(count)
        with self.assertRaises(IllegalTransition):
            reject_count(count)

        finalize_count(count)
        with self.assertRaises(IllegalTransition):
            finalize_count(count)
        with self.assertRaises(IllegalTransition):
            update_items(count, [])

        approve_count(count)
        for transition in (finalize_count, approve_count, reject_count):
            with self.subTest(transition=transition.__name__):
                with self.assertRaises(IllegalTransition):
                    transition(count)

    def test_legacy_rejected_count_is_read_only_but_deletable(self):
        count = StockCount.objects.create(store=self.store, status=StockCount.Status.REJECTED, period="2025-W01")

        for transition in (finalize_count, approve_count, reject_count):
            with self.assertRaises(IllegalTransition):
                transition(count)
        delete_count(count)

        self.assertFalse(StockCount.objects.filter(pk=count.pk).exists())

    def test_storeless_legacy_count_cannot_be_approved(self):
        count = StockCount.objects.create(store=None, status=StockCount.Status.PENDING_REVIEW, period="2025-W01")

        with self.assertRaises(MissingStore):
            approve_count(count)

        count.refresh_from_db()
        self.assertEqual(count.status, StockCount.Status.PENDING_REVIEW)

    def test_approved_count_cannot_be_deleted(self):
        count = create_count(store_id=self.store.id)
        finalize_count(count)
        approve_count(count)

        with self.assertRaises(CannotDeleteApproved):
            delete_count(count)

    def test_draft_count_can_be_deleted(self):
        count = create_count(store_id=self.store.id)

        delete_count(count)

        self.assertFalse(StockCount.objects.exists())
        self.assertFalse(StockCountItem.objects.exists())

    def test_approval_failure_rolls_back_every_level(self):
        set_level(self.milk, self.store, 10)
        set_level(self.bread, self.store, 10)
        count = create_count(store_id=self.store.id)
        finalize_count(
            count,
            items=[
                {"product_id": self.bread.id, "quantity_counted": "1"},
                {"product_id": self.milk.id, "quantity_counted": "2"},
            ],
        )

        real_set_level = set_level
        calls = []

        def failing_set_level(product, store, quantity):
            calls.append(product.pk)
            if len(calls) == 2:
                raise DatabaseError("connection lost")
            return real_set_level(product, store, quantity)

        with patch("counting.services.set_level", side_effect=failing_set_level):
            with self.assertLogs("counting.services", level="ERROR"):
                with self.assertRaises(PersistenceFailure) as cm:
                    approve_count(count)

        count.refresh_from_db()
        self.assertEqual(count.status, StockCount.Status.PENDING_REVIEW)
        self.assertEqual(get_level(self.bread, self.store), Decimal("10.000"))
        self.assertEqual(get_level(self.milk, self.store), Decimal("10.000"))
        self.assertEqual(cm.exception.errors["committed_items"], [])
        self.assertEqual(cm.exception.errors["failed_product_id"], str(calls[1]))
        self.assertEqual(cm.exception.errors["rolled_back_items"], [str(calls[0])])


class StockCountItemsTests(CountFixtureMixin, TestCase):
    def setUp(self):
        self.make_fixtures()
        set_level(self.milk, self.store, 20)
        self.count = create_count(store_id=self.store.id)

    def test_snapshot_is_never_rewritten(self):
        update_items(self.count, [{"product_id": self.milk.id, "quantity_counted": "5"}])
        set_level(self.milk, self.store, 99)
        update_items(self.count, [{"product_id": self.milk.id, "quantity_counted": "6"}])

        item = self.count.items.get(product=self.milk)
        self.assertEqual(item.quantity_system, Decimal("20.000"))
        self.assertEqual(item.quantity_counted, Decimal("6.000"))

    def test_unknown_product_rejects_whole_batch(self):
        stranger = uuid.uuid4()

        with self.assertRaises(UnknownProduct) as cm:
            update_items(
                self.count,
                [
                    {"product_id": self.milk.id, "quantity_counted": "3"},
                    {"product_id": stranger, "quantity_counted": "1"},
                ],
            )

        self.assertEqual(cm.exception.errors["product_ids"], [str(stranger)])
        self.assertEqual(self.count_quantities(self.count)[self.milk.id], Decimal("0"))

    def test_negative_quantity_rejects_whole_batch(self):
        with self.assertRaises(InvalidQuantity):
            update_items(
                self.count,
                [
                    {"product_id": self.milk.id, "quantity_counted": "3"},
                    {"product_id": self.bread.id, "quantity_counted": "-1"},
                ],
            )

        self.assertEqual(self.count_quantities(self.count)[self.milk.id], Decimal("0"))

    def test_oversized_quantity_rejects_whole_batch(self):
        with self.assertRaises(InvalidQuantity) as cm:
            update_items(
                self.count,
                [
                    {"product_id": self.milk.id, "quantity_counted": "3"},
                    {"product_id": self.bread.id, "quantity_counted": "1e30"},
                ],
            )

        self.assertEqual(cm.exception.errors["items"], {str(self.bread.id): "1e30"})
        self.assertEqual(self.count_quantities(self.count)[self.milk.id], Decimal("0"))

    def test_completed_categories_are_deduplicated(self):
        count = update_items(self.count, [], completed_categories=["Dairy", " Dairy ", "Bakery", ""])

        count.refresh_from_db()
        self.assertEqual(count.completed_categories, ["Dairy", "Bakery"])


class StockCountApiTests(CountFixtureMixin, TestCase):
    def setUp(self):
        self.client = APIClient()
        self.make_fixtures()
        user_model = get_user_model()
        self.employee = user_model.objects.create_user(username="count-employee", password="pass1234", role="employee")
        self.admin = user_model.objects.create_user(username="count-admin", password="pass1234", role="admin")
        set_level(self.milk, self.store, 20)

    def test_employee_counts_and_admin_approves(self):
        self.client.force_authenticate(user=self.employee)
        created = self.client.post("/api/v1/stock-counts/", {"store": str(self.store.id)}, format="json")
        self.assertEqual(created.status_code, 201)
        count_id = created.json()["id"]
        self.assertEqual(len(created.json()["items"]), 3)

        items = self.client.post(
            f"/api/v1/stock-counts/{count_id}/items/",
            {"items": [{"product_id": str(self.milk.id), "quantity_counted": "18"}], "completed_categories": ["Dairy"]},
            format="json",
        )
        self.assertEqual(items.status_code, 200)
        self.assertEqual(items.json()["completed_categories"], ["Dairy"])

        finalized = self.client.post(f"/api/v1/stock-counts/{count_id}/finalize/", {}, format="json")
        self.assertEqual(finalized.status_code, 200)
        self.assertEqual(finalized.json()["status"], "pending_review")
        self.assertEqual(len(finalized.json()["uncounted_items"]), 2)

        with self.assertLogs("security.authorization", level="WARNING"):
            denied = self.client.post(f"/api/v1/stock-counts/{count_id}/approve/")
        self.assertEqual(denied.status_code, 403)

        self.client.force_authenticate(user=self.admin)
        approved = self.client.post(f"/api/v1/stock-counts/{count_id}/approve/")
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["status"], "approved")
        milk_row = next(row for row in approved.json()["items"] if row["product"] == str(self.milk.id))
        self.assertEqual(milk_row["variance"], "-2.000")
        self.milk.refresh_from_db()
        self.assertEqual(self.milk.current_stock, Decimal("18.000"))

    def test_duplicate_draft_returns_conflict_with_existing_id(self):
        self.client.force_authenticate(user=self.employee)
        first = self.client.post("/api/v1/stock-counts/", {"store": str(self.store.id)}, format="json")
        second = self.client.post("/api/v1/stock-counts/", {"store": str(self.store.id)}, format="json")

        self.assertEqual(second.status_code, 409)
        self.assertEqual(second.json()["code"], "draft_count_exists")
        self.assertEqual(second.json()["errors"]["count_id"], first.json()["id"])

    def test_list_includes_progress_counters(self):
        count = create_count(store_id=self.store.id)
        update_items(count, [{"product_id": self.milk.id, "quantity_counted": "1"}])
        self.client.force_authenticate(user=self.employee)

        response = self.client.get("/api/v1/stock-counts/?status=draft")

        self.assertEqual(response.status_code, 200)
        row = response.json()["results"][0]
        self.assertEqual(row["item_count"], 3)
        self.assertEqual(row["counted_items"], 1)

    def test_unknown_count_and_illegal_transition_envelopes(self):
        self.client.force_authenticate(user=self.admin)
        missing = self.client.get(f"/api/v1/stock-counts/{uuid.uuid4()}/")
        count = create_count(store_id=self.store.id)
        illegal = self.client.post(f"/api/v1/stock-counts/{count.id}/approve/")

        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.json()["code"], "not_found")
        self.assertEqual(illegal.status_code, 409)
        self.assertEqual(illegal.json()["code"], "illegal_transition")
        self.assertEqual(illegal.json()["errors"]["status"], "draft")

    def test_unknown_product_returns_bad_request(self):
        count = create_count(store_id=self.store.id)
        self.client.force_authenticate(user=self.employee)

        response = self.client.post(
            f"/api/v1/stock-counts/{count.id}/items/",
            {"items": [{"product_id": str(uuid.uuid4()), "quantity_counted": "1"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "unknown_product")

    def test_oversized_counted_quantity_returns_bad_request(self):
        count = create_count(store_id=self.store.id)
        self.client.force_authenticate(user=self.employee)

        response = self.client.post(
            f"/api/v1/stock-counts/{count.id}/items/",
            {"items": [{"product_id": str(self.milk.id), "quantity_counted": "1e30"}]},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_quantity")

    def test_malformed_store_filter_returns_bad_request(self):
        create_count(store_id=self.store.id)
        self.client.force_authenticate(user=self.employee)

        malformed = self.client.get("/api/v1/stock-counts/?store=abc")
        filtered = self.client.get(f"/api/v1/stock-counts/?store={self.other_store.id}")

        self.assertEqual(malformed.status_code, 400)
        self.assertIn("store", malformed.json()["errors"])
        self.assertEqual(filtered.status_code, 200)
        self.assertEqual(filtered.json()["count"], 0)

    def test_delete_draft(self):
        count = create_count(store_id=self.store.id)
        self.client.force_authenticate(user=self.employee)

        response = self.client.delete(f"/api/v1/stock-counts/{count.id}/")

        self.assertEqual(response.status_code, 204)
        self.assertFalse(StockCount.objects.exists())
