"""End-to-end tests for the user management HTTP API."""

from __future__ import annotations

import unittest
import uuid

from fastapi.testclient import TestClient

from usermanagement.config import Settings
from usermanagement.repository import InMemoryUserRepository
from usermanagement.service import create_app

API_KEY = "test-shared-secret"


class UserServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.repository = InMemoryUserRepository()
        app = create_app(
            settings=Settings(api_key=API_KEY, seed_users=False),
            repository=self.repository,
        )
        self.client = TestClient(app)
        self.client.__enter__()

    def tearDown(self) -> None:
        self.client.__exit__(None, None, None)

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {API_KEY}"}

    def _create(self, **overrides: str):
        payload = {"firstName": "Ann", "lastName": "Lee", "email": "ann@x.com", "role": "HR"}
        payload.update(overrides)
        return self.client.post("/api/users", json=payload, headers=self._headers())

    def test_user_lifecycle(self) -> None:
        created = self._create()
        self.assertEqual(created.status_code, 201, created.text)
        body = created.json()
        user_id = body["id"]
        uuid.UUID(user_id)
        self.assertIn("createdAt", body)
        self.assertEqual(body["email"], "ann@x.com")
        self.assertEqual(created.headers["location"], f"/api/users/{user_id}")

        duplicate = self._create(email="ANN@x.com", firstName="Other")
        self.assertEqual(duplicate.status_code, 409, duplicate.text)
        self.assertEqual(duplicate.json(), {"error": "Email already in use"})

        fetched = self.client.get(f"/api/users/{user_id}", headers=self._headers())
        self.assertEqual(fetched.status_code, 200, fetched.text)
        self.assertEqual(fetched.json(), body)

        deleted = self.client.delete(f"/api/users/{user_id}", headers=self._headers())
        self.assertEqual(deleted.status_code, 204, deleted.text)
        self.assertEqual(deleted.content, b"")

        missing = self.client.get(f"/api/users/{user_id}", headers=self._headers())
        self.assertEqual(missing.status_code, 404, missing.text)

        again = self.client.delete(f"/api/users/{user_id}", headers=self._headers())
        self.assertEqual(again.status_code, 404, again.text)

    def test_list_users(self) -> None:
        self._create()
        self._create(email="bob@x.com", firstName="Bob", role="it")

        listing = self.client.get("/api/users", headers=self._headers())
        self.assertEqual(listing.status_code, 200, listing.text)
        users = listing.json()
        self.assertEqual(len(users), 2)
        self.assertEqual({user["role"] for user in users}, {"HR", "IT"})

    def test_create_validation_failures_are_reported_per_field(self) -> None:
        response = self.client.post(
            "/api/users",
            json={"firstName": "", "email": "not-an-email", "role": "Chef"},
            headers=self._headers(),
        )
        self.assertEqual(response.status_code, 400, response.text)
        payload = response.json()
        self.assertEqual(payload["status"], 400)
        errors = payload["errors"]
        self.assertIn("firstName", errors)
        self.assertIn("lastName", errors)
        self.assertIn("email", errors)
        self.assertEqual(errors["role"], ["Invalid role. Allowed: HR, IT, Admin"])
        self.assertEqual(len(self.repository), 0)

    def test_overlong_names_are_rejected(self) -> None:
        response = self._create(lastName="L" * 101)
        self.assertEqual(response.status_code, 400, response.text)
        self.assertIn("lastName", response.json()["errors"])

    def test_malformed_id_is_a_validation_failure(self) -> None:
        response = self.client.get("/api/users/not-a-uuid", headers=self._headers())
        self.assertEqual(response.status_code, 400, response.text)

    def test_update_user(self) -> None:
        created = self._create().json()

        updated = self.client.put(
            f"/api/users/{created['id']}",
            json={"firstName": "Annie", "lastName": "Lee", "email": "annie@x.com", "role": "admin"},
            headers=self._headers(),
        )
        self.assertEqual(updated.status_code, 200, updated.text)
        body = updated.json()
        self.assertEqual(body["id"], created["id"])
        self.assertEqual(body["createdAt"], created["createdAt"])
        self.assertEqual(body["firstName"], "Annie")
        self.assertEqual(body["role"], "Admin")
        self.assertIsNone(self.repository.get_by_email("ann@x.com"))
        self.assertIsNotNone(self.repository.get_by_email("annie@x.com"))

    def test_update_conflict_leaves_both_users_unchanged(self) -> None:
        ann = self._create().json()
        bob = self._create(email="bob@x.com", firstName="Bob").json()

        response = self.client.put(
            f"/api/users/{ann['id']}",
            json={"firstName": "Ann", "lastName": "Lee", "email": "BOB@x.com", "role": "HR"},
            headers=self._headers(),
        )
        self.assertEqual(response.status_code, 409, response.text)

        self.assertEqual(self.client.get(f"/api/users/{ann['id']}", headers=self._headers()).json(), ann)
        self.assertEqual(self.client.get(f"/api/users/{bob['id']}", headers=self._headers()).json(), bob)

    def test_update_missing_user_returns_404(self) -> None:
        response = self.client.put(
            f"/api/users/{uuid.uuid4()}",
            json={"firstName": "Ghost", "lastName": "User", "email": "ghost@x.com", "role": "IT"},
            headers=self._headers(),
        )
        self.assertEqual(response.status_code, 404, response.text)
        self.assertEqual(len(self.repository), 0)

    def test_update_validation_failure(self) -> None:
        created = self._create().json()
        response = self.client.put(
            f"/api/users/{created['id']}",
            json={"firstName": "Ann", "lastName": "Lee", "email": "ann@x.com", "role": "Janitor"},
            headers=self._headers(),
        )
        self.assertEqual(response.status_code, 400, response.text)

    def test_every_response_carries_correlation_id(self) -> None:
        responses = [
            self._create(),
            self._create(),
            self.client.get("/api/users"),
            self.client.get(f"/api/users/{uuid.uuid4()}", headers=self._headers()),
            self.client.post("/api/users", json={}, headers=self._headers()),
            self.client.get("/healthz"),
        ]
        self.assertEqual([response.status_code for response in responses], [201, 409, 401, 404, 400, 200])
        for response in responses:
            self.assertTrue(response.headers.get("X-Correlation-ID"))

    def test_debug_route_is_not_registered_by_default(self) -> None:
        response = self.client.get("/api/debug/throw", headers=self._headers())
        self.assertEqual(response.status_code, 404, response.text)

    def test_repository_failure_is_contained(self) -> None:
        def broken_list_all():
            raise RuntimeError("storage exploded")

        self.repository.list_all = broken_list_all  # type: ignore[method-assign]

        response = self.client.get("/api/users", headers=self._headers())
        self.assertEqual(response.status_code, 500, response.text)
        self.assertEqual(response.json(), {"error": "Internal server error."})
        self.assertNotIn("exploded", response.text)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
