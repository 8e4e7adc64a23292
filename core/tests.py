from django.contrib.auth import get_user_model
from django.db import IntegrityError
from django.test import TestCase
from rest_framework.test import APIClient

from common.audit import create_audit_log
from core.models import AuditLog


class HealthCheckTests(TestCase):
    def test_healthz_is_public_and_echoes_request_id(self):
        response = APIClient().get("/api/v1/healthz/", HTTP_X_REQUEST_ID="req-123")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")
        self.assertEqual(response.json()["request_id"], "req-123")
        self.assertEqual(response["X-Request-ID"], "req-123")

    def test_readyz_checks_database(self):
        response = APIClient().get("/api/v1/readyz/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ready")


class UserTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(
            username="counter",
            password="pass1234",
            email="Counter@Example.com",
        )

    def test_email_is_normalized_and_unique_case_insensitively(self):
        self.assertEqual(self.user.email, "counter@example.com")

        with self.assertRaises(IntegrityError):
            get_user_model().objects.create_user(username="counter-2", password="pass1234", email="COUNTER@example.com")

    def test_me_returns_current_user(self):
        self.client.force_authenticate(user=self.user)

        response = self.client.get("/api/v1/me/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["username"], "counter")

    def test_token_obtain_pair(self):
        response = self.client.post(
            "/api/v1/token/", {"username": "counter", "password": "pass1234"}, format="json"
        )

        self.assertEqual(response.status_code, 200)
        self.assertIn("access", response.json())

        bearer = APIClient()
        bearer.credentials(HTTP_AUTHORIZATION=f"Bearer {response.json()['access']}")
        self.assertEqual(bearer.get("/api/v1/me/").status_code, 200)


class AuditLogApiTests(TestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = get_user_model().objects.create_user(username="auditor", password="pass1234")
        self.client.force_authenticate(user=self.user)

    def test_filters_by_action_and_entity(self):
        kept = create_audit_log(actor=self.user, action="receipt.create", entity="receipt", after_snapshot={"n": 1})
        create_audit_log(actor=self.user, action="delivery.delete", entity="delivery")

        response = self.client.get("/api/v1/audit-logs/", {"action": "receipt.create"})

        self.assertEqual(response.status_code, 200)
        rows = response.json()["results"]
        self.assertEqual([row["id"] for row in rows], [str(kept.id)])
        self.assertEqual(rows[0]["actor_username"], "auditor")
        self.assertEqual(rows[0]["after_snapshot"], {"n": 1})

    def test_audit_logs_are_read_only(self):
        response = self.client.post("/api/v1/audit-logs/", {"action": "x", "entity": "y"}, format="json")

        self.assertEqual(response.status_code, 405)
        self.assertEqual(response.json()["code"], "method_not_allowed")
        self.assertFalse(AuditLog.objects.exists())
