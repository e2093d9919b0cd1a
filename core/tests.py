from decimal import Decimal
from io import StringIO

from django.contrib.auth import get_user_model
from django.core.management import call_command
from django.test import TestCase
from rest_framework.test import APIClient

from common.permissions import get_user_role, user_has_capability
from inventory.models import Product, StockEntry


class RolePermissionCoreTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.employee = self.user_model.objects.create_user(
            username="employee-core",
            password="pass1234",
            role="employee",
        )
        self.admin = self.user_model.objects.create_user(
            username="admin-core",
            password="pass1234",
            role="admin",
        )

    def test_capability_matrix(self):
        self.assertTrue(user_has_capability(self.employee, "counting.perform"))
        self.assertTrue(user_has_capability(self.employee, "stock.entry.create"))
        self.assertFalse(user_has_capability(self.employee, "counting.approve"))
        self.assertFalse(user_has_capability(self.employee, "reports.close"))
        self.assertTrue(user_has_capability(self.admin, "counting.approve"))
        self.assertFalse(user_has_capability(self.admin, "unknown.capability"))

    def test_superuser_is_treated_as_admin(self):
        root = self.user_model.objects.create_superuser(username="root", password="pass1234")
        self.assertEqual(get_user_role(root), "admin")
        self.assertTrue(user_has_capability(root, "user.manage"))

    def test_employee_cannot_manage_users_and_denial_is_logged(self):
        self.client.force_authenticate(user=self.employee)
        with self.assertLogs("security.authorization", level="WARNING") as cm:
            response = self.client.get("/api/v1/admin/users/")

        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "permission_denied")
        self.assertTrue(any("permission_denied" in message for message in cm.output))

    def test_anonymous_request_is_rejected_with_envelope(self):
        response = self.client.get("/api/v1/products/")

        self.assertEqual(response.status_code, 401)
        payload = response.json()
        self.assertEqual(sorted(payload.keys()), ["code", "errors", "message", "status"])
        self.assertEqual(payload["code"], "not_authenticated")


class AdminUserTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user_model = get_user_model()
        self.admin = self.user_model.objects.create_user(
            username="user-admin",
            email="admin@example.com",
            password="pass1234",
            role="admin",
        )
        self.client.force_authenticate(user=self.admin)

    def test_admin_creates_employee_with_hashed_password(self):
        response = self.client.post(
            "/api/v1/admin/users/",
            {
                "username": "new-employee",
                "email": "New.Employee@Example.com",
                "password": "a-safe-pass-123",
                "role": "employee",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        self.assertNotIn("password", response.json())
        created = self.user_model.objects.get(username="new-employee")
        self.assertEqual(created.email, "new.employee@example.com")
        self.assertTrue(created.check_password("a-safe-pass-123"))

    def test_create_requires_password(self):
        response = self.client.post(
            "/api/v1/admin/users/",
            {"username": "no-pass", "role": "employee"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertIn("password", response.json()["errors"])

    def test_rejects_case_insensitive_duplicate_email(self):
        response = self.client.post(
            "/api/v1/admin/users/",
            {
                "username": "dup-user",
                "email": "ADMIN@example.com",
                "password": "a-safe-pass-123",
            },
            format="json",
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["errors"], {"email": ["A user with this email already exists."]})

    def test_admin_cannot_demote_or_delete_self(self):
        demote = self.client.patch(f"/api/v1/admin/users/{self.admin.id}/", {"role": "employee"}, format="json")
        delete = self.client.delete(f"/api/v1/admin/users/{self.admin.id}/")

        self.assertEqual(demote.status_code, 400)
        self.assertEqual(delete.status_code, 400)
        self.admin.refresh_from_db()
        self.assertEqual(self.admin.role, "admin")


class TokenTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        get_user_model().objects.create_user(
            username="token-user",
            email="token@example.com",
            password="pass1234",
            role="admin",
        )

    def test_token_obtain_accepts_email_and_embeds_role(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "TOKEN@example.com", "password": "pass1234"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())
        self.assertIn("refresh", response.json())

    def test_token_obtain_rejects_bad_password(self):
        response = self.client.post(
            "/api/v1/token/",
            {"username": "token-user", "password": "wrong"},
            format="json",
        )

        self.assertEqual(response.status_code, 401)


class HealthTests(TestCase):
    def test_probes_are_public_and_echo_request_id(self):
        client = APIClient()

        health = client.get("/api/v1/healthz/", HTTP_X_REQUEST_ID="req-123")
        ready = client.get("/api/v1/readyz/")

        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json()["request_id"], "req-123")
        self.assertEqual(ready.status_code, 200)
        self.assertEqual(ready.json()["status"], "ready")


class SeedDemoDataTests(TestCase):
    def test_seed_is_idempotent(self):
        call_command("seed_demo_data", stdout=StringIO())
        call_command("seed_demo_data", stdout=StringIO())

        milk = Product.objects.get(name="Milk")
        self.assertEqual(StockEntry.objects.filter(product=milk).count(), 1)
        self.assertEqual(milk.current_stock, Decimal("20.000"))
        self.assertEqual(milk.average_cost, Decimal("4.2000"))
        self.assertTrue(get_user_model().objects.filter(username="employee", role="employee").exists())
