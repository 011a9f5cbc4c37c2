import unittest
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from fastapi.testclient import TestClient

from ledgerdesk.main import app, get_storage
from ledgerdesk.storage import Storage
from ledgerdesk.validation import MovementInput


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.storage = Storage("sqlite://")
        self.storage.create_all()
        app.dependency_overrides[get_storage] = lambda: self.storage
        self.client = TestClient(app)
        self.admin = self.storage.create_user(
            "admin@example.com", name="Admin User", role="ADMIN"
        )
        self.member = self.storage.create_user(
            "member@example.com", name="Member, Jr.", phone="+1-202-555-0100"
        )

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.storage.dispose()

    def as_admin(self) -> dict:
        return {"x-user-id": str(self.admin.id)}

    def as_member(self) -> dict:
        return {"x-user-id": str(self.member.id)}

    def add_movement(self, type, amount, concept, when, user=None):
        owner = user or self.admin
        return self.storage.create_movement(
            owner.id,
            MovementInput(type=type, amount=Decimal(amount), concept=concept, date=when),
            created_at=when,
        )


class HealthTests(ApiTestCase):
    def test_health(self) -> None:
        response = self.client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


class SessionTests(ApiTestCase):
    def test_missing_identity_is_unauthorized(self) -> None:
        response = self.client.get("/me")

        self.assertEqual(response.status_code, 401)

    def test_unknown_or_malformed_identity_is_unauthorized(self) -> None:
        for value in ("9999", "abc"):
            with self.subTest(value=value):
                response = self.client.get("/me", headers={"x-user-id": value})
                self.assertEqual(response.status_code, 401)

    def test_me_returns_user(self) -> None:
        response = self.client.get("/me", headers=self.as_member())

        self.assertEqual(response.status_code, 200)
        user = response.json()["user"]
        self.assertEqual(user["email"], "member@example.com")
        self.assertEqual(user["role"], "USER")

    def test_admin_routes_are_forbidden_for_users(self) -> None:
        for path in ("/users", "/reports/summary", "/reports/csv", "/reports/csv/preview"):
            with self.subTest(path=path):
                response = self.client.get(path, headers=self.as_member())
                self.assertEqual(response.status_code, 403)


class MovementsTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for index in range(1, 6):
            self.add_movement(
                "EXPENSE" if index % 2 == 0 else "INCOME",
                f"{index * 50}.00",
                f"Movement {index}",
                base + timedelta(days=index - 1),
            )

    def test_lists_with_default_meta(self) -> None:
        response = self.client.get("/movements", headers=self.as_member())

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["meta"], {"page": 1, "limit": 20, "total": 5, "totalPages": 1})
        self.assertEqual(
            [row["concept"] for row in payload["data"]],
            [f"Movement {index}" for index in range(5, 0, -1)],
        )
        self.assertEqual(payload["data"][0]["amount"], "250.00")
        self.assertEqual(payload["data"][0]["user"]["email"], "admin@example.com")

    def test_pages_through_results(self) -> None:
        response = self.client.get("/movements?page=2&limit=2", headers=self.as_member())

        payload = response.json()
        self.assertEqual(payload["meta"]["totalPages"], 3)
        self.assertEqual([row["concept"] for row in payload["data"]], ["Movement 3", "Movement 2"])

    def test_search_matches_concept_or_type(self) -> None:
        by_concept = self.client.get("/movements?search=movement%204", headers=self.as_member())
        by_type = self.client.get("/movements?search=expense", headers=self.as_member())

        self.assertEqual([row["concept"] for row in by_concept.json()["data"]], ["Movement 4"])
        self.assertEqual(by_type.json()["meta"]["total"], 2)

    def test_empty_result_has_zero_pages(self) -> None:
        response = self.client.get("/movements?search=nothing-here", headers=self.as_member())

        self.assertEqual(response.json()["meta"], {"page": 1, "limit": 20, "total": 0, "totalPages": 0})

    def test_rejects_invalid_pagination(self) -> None:
        page = self.client.get("/movements?page=0", headers=self.as_member())
        limit = self.client.get("/movements?limit=101", headers=self.as_member())

        self.assertEqual(page.status_code, 400)
        self.assertIn('"page" must be an integer', page.json()["detail"])
        self.assertEqual(limit.status_code, 400)
        self.assertIn('"limit" cannot be greater than 100', limit.json()["detail"])

    def test_rejects_page_past_largest_offset(self) -> None:
        for page in ("1e30", "99999999999999999999"):
            with self.subTest(page=page):
                response = self.client.get(f"/movements?page={page}", headers=self.as_member())
                self.assertEqual(response.status_code, 400)
                self.assertIn('"page" cannot be greater than', response.json()["detail"])

    def test_admin_creates_movement(self) -> None:
        response = self.client.post(
            "/movements",
            json={
                "type": "INCOME",
                "amount": "99.9",
                "concept": " Refund ",
                "date": "2024-02-01T10:00:00Z",
            },
            headers=self.as_admin(),
        )

        self.assertEqual(response.status_code, 201)
        data = response.json()["data"]
        self.assertEqual(data["amount"], "99.90")
        self.assertEqual(data["concept"], "Refund")
        self.assertEqual(data["date"], "2024-02-01T10:00:00.000Z")
        self.assertEqual(data["user"]["id"], self.admin.id)

    def test_create_rejects_invalid_body(self) -> None:
        response = self.client.post(
            "/movements",
            json={"type": "GIFT", "amount": "1", "concept": "x", "date": "2024-01-01"},
            headers=self.as_admin(),
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "type must be INCOME or EXPENSE")

    def test_create_rejects_amount_too_large_to_store(self) -> None:
        for amount in ("1e25", "10000000000.00"):
            with self.subTest(amount=amount):
                response = self.client.post(
                    "/movements",
                    json={"type": "INCOME", "amount": amount, "concept": "x", "date": "2024-01-01"},
                    headers=self.as_admin(),
                )
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()["detail"], "amount must be a positive number")

    def test_create_rejects_non_object_body(self) -> None:
        response = self.client.post("/movements", json=["INCOME"], headers=self.as_admin())

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Invalid body")

    def test_create_requires_admin(self) -> None:
        response = self.client.post(
            "/movements",
            json={"type": "INCOME", "amount": "1", "concept": "x", "date": "2024-01-01"},
            headers=self.as_member(),
        )

        self.assertEqual(response.status_code, 403)


class UsersTests(ApiTestCase):
    def test_lists_users_newest_first(self) -> None:
        response = self.client.get("/users?limit=1", headers=self.as_admin())

        payload = response.json()
        self.assertEqual(payload["meta"], {"page": 1, "limit": 1, "total": 2, "totalPages": 2})
        self.assertEqual(payload["data"][0]["email"], "member@example.com")

    def test_search_by_name_or_email(self) -> None:
        response = self.client.get("/users?search=ADMIN@", headers=self.as_admin())

        self.assertEqual([row["id"] for row in response.json()["data"]], [self.admin.id])

    def test_updates_role(self) -> None:
        response = self.client.patch(
            f"/users/{self.member.id}", json={"role": "ADMIN"}, headers=self.as_admin()
        )

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["data"]["role"], "ADMIN")
        self.assertEqual(self.storage.get_user(self.member.id).role, "ADMIN")

    def test_update_validation_and_missing_user(self) -> None:
        empty = self.client.patch(f"/users/{self.member.id}", json={}, headers=self.as_admin())
        missing = self.client.patch("/users/9999", json={"name": "Ghost"}, headers=self.as_admin())

        self.assertEqual(empty.status_code, 400)
        self.assertEqual(empty.json()["detail"], "At least one field must be provided")
        self.assertEqual(missing.status_code, 404)

    def test_update_rejects_non_object_payload(self) -> None:
        response = self.client.patch(f"/users/{self.member.id}", json=[1], headers=self.as_admin())

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], "Invalid payload")


class ReportsTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.add_movement("INCOME", "100", "Salary", datetime(2026, 1, 5, 9, tzinfo=timezone.utc))
        self.add_movement(
            "EXPENSE",
            "40",
            'SaaS, "pro" plan',
            datetime(2026, 1, 20, 18, tzinfo=timezone.utc),
            user=self.member,
        )
        self.add_movement("INCOME", "60", "Bonus", datetime(2026, 2, 10, 12, tzinfo=timezone.utc))
        self.add_movement("INCOME", "999", "Outside", datetime(2025, 12, 31, 23, tzinfo=timezone.utc))

    def test_month_summary(self) -> None:
        response = self.client.get(
            "/reports/summary?group=month&from=2026-01-01&to=2026-02-28",
            headers=self.as_admin(),
        )

        self.assertEqual(response.status_code, 200)
        data = response.json()["data"]
        self.assertEqual(data["totalIncome"], "160.00")
        self.assertEqual(data["totalExpense"], "40.00")
        self.assertEqual(data["balance"], "120.00")
        self.assertEqual(data["group"], "month")
        self.assertEqual(
            data["range"],
            {"from": "2026-01-01T00:00:00.000Z", "to": "2026-02-28T23:59:59.999Z"},
        )
        self.assertEqual(
            data["points"],
            [
                {"period": "2026-01", "income": "100.00", "expense": "40.00", "net": "60.00"},
                {"period": "2026-02", "income": "60.00", "expense": "0.00", "net": "60.00"},
            ],
        )

    def test_day_summary_defaults_group(self) -> None:
        response = self.client.get(
            "/reports/summary?from=2026-01-01&to=2026-01-31", headers=self.as_admin()
        )

        data = response.json()["data"]
        self.assertEqual(data["group"], "day")
        self.assertEqual([point["period"] for point in data["points"]], ["2026-01-05", "2026-01-20"])

    def test_summary_rejects_bad_query(self) -> None:
        for query in ("group=week", "from=2026-02-01&to=2026-01-01", "from=nope"):
            with self.subTest(query=query):
                response = self.client.get(f"/reports/summary?{query}", headers=self.as_admin())
                self.assertEqual(response.status_code, 400)

    def test_csv_export(self) -> None:
        response = self.client.get(
            "/reports/csv?from=2026-01-01&to=2026-01-31", headers=self.as_admin()
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("text/csv"))
        self.assertEqual(
            response.headers["content-disposition"], 'attachment; filename="report.csv"'
        )
        self.assertEqual(
            response.text.split("\n"),
            [
                "type,amount,concept,date,userName,userEmail",
                "INCOME,100.00,Salary,2026-01-05T09:00:00.000Z,Admin User,admin@example.com",
                'EXPENSE,40.00,"SaaS, ""pro"" plan",2026-01-20T18:00:00.000Z,"Member, Jr.",member@example.com',
            ],
        )

    def test_csv_rejects_inverted_range(self) -> None:
        response = self.client.get(
            "/reports/csv?from=2026-02-01&to=2026-01-01", headers=self.as_admin()
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"], '"from" cannot be after "to"')

    def test_csv_preview(self) -> None:
        response = self.client.get(
            "/reports/csv/preview?from=2026-01-01&to=2026-01-31", headers=self.as_admin()
        )

        data = response.json()["data"]
        self.assertEqual(data["headers"][0], "type")
        self.assertEqual(data["rows"][1][2], 'SaaS, "pro" plan')
        self.assertEqual(data["rows"][1][4], "Member, Jr.")


if __name__ == "__main__":
    unittest.main()
