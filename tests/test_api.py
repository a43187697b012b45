"""
API integration tests.

Exercise the HTTP surface end to end over ASGI against the test database.
"""
import json
from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest
from httpx import AsyncClient

from counsel_payments.core.landing import cases_url, login_url
from counsel_payments.database.models import (
    CaseStatus,
    Notification,
    Payment,
    PaymentStatus,
    PendingTransaction,
    UserRole,
)
from counsel_payments.integrations.paychangu import compute_signature


def callback_body(**overrides: Any) -> dict:
    body = {
        "tx_ref": "CASE-C1-1000",
        "status": "successful",
        "amount": "150.00",
        "meta": {"caseId": "C1"},
    }
    body.update(overrides)
    return body


@pytest.mark.integration
class TestCallback:
    @pytest.mark.asyncio
    async def test_success(
        self, client: AsyncClient, seeded: Any, fetch_payment: Any, count_rows: Any
    ) -> None:
        response = await client.post("/payments/callback", json=callback_body())

        assert response.status_code == 200
        assert response.json() == {"success": True}
        assert (await fetch_payment()).status == PaymentStatus.COMPLETED.value
        assert await count_rows(Notification) == 2

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(
        self, client: AsyncClient, seeded: Any, count_rows: Any
    ) -> None:
        for _ in range(3):
            response = await client.post("/payments/callback", json=callback_body())
            assert response.status_code == 200

        assert await count_rows(Payment) == 1
        assert await count_rows(Notification) == 2

    @pytest.mark.asyncio
    async def test_out_of_range_amount_falls_back(
        self, client: AsyncClient, seeded: Any, fetch_payment: Any
    ) -> None:
        response = await client.post(
            "/payments/callback", json=callback_body(amount="1" + "0" * 30)
        )

        assert response.status_code == 200
        payment = await fetch_payment()
        assert payment.status == PaymentStatus.COMPLETED.value
        assert payment.amount_cents == 20000

    @pytest.mark.asyncio
    async def test_missing_case_id(self, client: AsyncClient, seeded: Any) -> None:
        response = await client.post("/payments/callback", json=callback_body(meta={}))

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    @pytest.mark.asyncio
    async def test_missing_meta(self, client: AsyncClient, seeded: Any) -> None:
        body = callback_body()
        del body["meta"]
        response = await client.post("/payments/callback", json=body)

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_reference(self, client: AsyncClient, seeded: Any) -> None:
        response = await client.post("/payments/callback", json=callback_body(tx_ref=None))

        assert response.status_code == 400
        assert response.json() == {"error": "Missing required fields", "code": "validation_error"}

    @pytest.mark.asyncio
    async def test_unknown_case(self, client: AsyncClient, seeded: Any) -> None:
        response = await client.post(
            "/payments/callback",
            json=callback_body(tx_ref="CASE-nope-1000", meta={"caseId": "nope"}),
        )

        assert response.status_code == 404
        assert response.json() == {"error": "Case not found", "code": "not_found"}

    @pytest.mark.asyncio
    async def test_malformed_body(self, client: AsyncClient, seeded: Any) -> None:
        response = await client.post(
            "/payments/callback",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_valid_signature_accepted(
        self, client: AsyncClient, seeded: Any, webhook_secret: str
    ) -> None:
        payload = json.dumps(callback_body()).encode()

        response = await client.post(
            "/payments/callback",
            content=payload,
            headers={
                "Content-Type": "application/json",
                "Signature": compute_signature(payload, webhook_secret),
            },
        )

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_bad_signature_rejected(
        self, client: AsyncClient, seeded: Any, webhook_secret: str, count_rows: Any
    ) -> None:
        response = await client.post(
            "/payments/callback",
            json=callback_body(),
            headers={"Signature": "deadbeef"},
        )

        assert response.status_code == 400
        assert await count_rows(Payment) == 0


@pytest.mark.integration
class TestLandingRedirect:
    @pytest.mark.asyncio
    async def test_forwards_to_processing_page(self, client: AsyncClient, seeded: Any) -> None:
        response = await client.get(
            "/payments/callback",
            params={"status": "successful", "tx_ref": "CASE-C1-1000", "amount": "150"},
        )

        assert response.status_code == 303
        location = urlparse(response.headers["location"])
        assert location.path == "/payments/processing"
        assert parse_qs(location.query) == {
            "tx_ref": ["CASE-C1-1000"],
            "caseId": ["C1"],
            "status": ["successful"],
            "amount": ["150"],
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("params", [{}, {"tx_ref": "garbage"}, {"status": "successful"}])
    async def test_unusable_reference_goes_to_case_list(
        self, client: AsyncClient, seeded: Any, params: dict
    ) -> None:
        response = await client.get("/payments/callback", params=params)

        assert response.status_code == 303
        assert response.headers["location"] == "/dashboard/client/cases"

    @pytest.mark.asyncio
    async def test_cancelled(self, client: AsyncClient, seeded: Any) -> None:
        response = await client.get(
            "/payments/callback", params={"status": "cancelled", "tx_ref": "CASE-C1-1000"}
        )

        assert response.headers["location"] == "/dashboard/client/cases/C1/payment?payment=cancelled"

    @pytest.mark.asyncio
    async def test_already_settled_skips_processing(
        self, client: AsyncClient, seeded: Any, add_payment: Any
    ) -> None:
        await add_payment(transaction_id="CASE-C1-1000")

        response = await client.get(
            "/payments/callback", params={"status": "successful", "tx_ref": "CASE-C1-1000"}
        )

        assert response.headers["location"] == "/dashboard/client/cases?payment=success&caseId=C1"

    @pytest.mark.asyncio
    async def test_processing_page_renders(self, client: AsyncClient, seeded: Any) -> None:
        response = await client.get(
            "/payments/processing", params={"status": "successful", "tx_ref": "CASE-C1-1000"}
        )

        assert response.status_code == 200
        assert "text/html" in response.headers["content-type"]
        assert "/payments/process" in response.text
        assert "/payments/cases/C1" in response.text
        assert "payment=failed" in response.text

    @pytest.mark.asyncio
    async def test_processing_page_sends_errors_to_the_right_place(
        self, client: AsyncClient, seeded: Any
    ) -> None:
        response = await client.get(
            "/payments/processing", params={"status": "successful", "tx_ref": "CASE-C1-1000"}
        )

        page = response.text
        assert f"const loginUrl = {json.dumps(login_url())};" in page
        assert f"const casesUrl = {json.dumps(cases_url())};" in page
        assert "response.status === 401" in page
        assert "response.status >= 500" in page
        # The retry page is only reached through a FAILED payment status
        assert page.count("window.location.replace(failedUrl)") == 1

    @pytest.mark.asyncio
    async def test_processing_page_redirects_when_settled(
        self, client: AsyncClient, seeded: Any, add_payment: Any
    ) -> None:
        await add_payment(transaction_id="CASE-C1-1000")

        response = await client.get("/payments/processing", params={"tx_ref": "CASE-C1-1000"})

        assert response.status_code == 303
        assert "payment=success" in response.headers["location"]


@pytest.mark.integration
class TestProcess:
    @pytest.mark.asyncio
    async def test_requires_authentication(self, client: AsyncClient, seeded: Any) -> None:
        response = await client.post("/payments/process", json={"caseId": "C1"})

        assert response.status_code == 401
        assert response.json()["code"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_rejects_bad_token(self, client: AsyncClient, seeded: Any) -> None:
        response = await client.post(
            "/payments/process",
            json={"caseId": "C1"},
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_other_client_forbidden(
        self, client: AsyncClient, seeded: Any, auth_headers: Any, count_rows: Any
    ) -> None:
        response = await client.post(
            "/payments/process",
            json={"caseId": "C1", "tx_ref": "CASE-C1-1000"},
            headers=auth_headers("client-2"),
        )

        assert response.status_code == 403
        assert await count_rows(Payment) == 0

    @pytest.mark.asyncio
    async def test_lawyer_forbidden(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        response = await client.post(
            "/payments/process",
            json={"caseId": "C1", "tx_ref": "CASE-C1-1000"},
            headers=auth_headers("lawyer-1", UserRole.LAWYER.value),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_missing_case_id(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        response = await client.post(
            "/payments/process", json={"tx_ref": "CASE-C1-1000"}, headers=auth_headers()
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_client_completes_payment(
        self, client: AsyncClient, seeded: Any, auth_headers: Any, add_pending: Any
    ) -> None:
        await add_pending("CASE-C1-1000", 30000)

        response = await client.post(
            "/payments/process",
            json={"caseId": "C1", "tx_ref": "CASE-C1-1000", "amount": "1.00"},
            headers=auth_headers(),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["payment"]["status"] == "COMPLETED"
        assert body["payment"]["amount"] == 300.0
        assert body["payment"]["id"]

    @pytest.mark.asyncio
    async def test_session_cookie_accepted(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        token = auth_headers()["Authorization"].split(" ", 1)[1]

        response = await client.post(
            "/payments/process",
            json={"caseId": "C1", "tx_ref": "CASE-C1-1000", "status": "pending"},
            headers={"Cookie": f"session_token={token}"},
        )

        assert response.status_code == 200
        assert response.json()["payment"]["status"] == "PENDING"

    @pytest.mark.asyncio
    async def test_admin_allowed(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        response = await client.post(
            "/payments/process",
            json={"caseId": "C1"},
            headers=auth_headers("admin-1", UserRole.ADMIN.value),
        )

        assert response.status_code == 200
        assert response.json()["payment"]["amount"] == 200.0

    @pytest.mark.asyncio
    async def test_invalid_json_body(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        response = await client.post(
            "/payments/process",
            content=b"{",
            headers={**auth_headers(), "Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"


@pytest.mark.integration
class TestCheckout:
    @pytest.mark.asyncio
    async def test_defaults_to_hourly_rate(
        self, client: AsyncClient, seeded: Any, auth_headers: Any, count_rows: Any
    ) -> None:
        response = await client.post(
            "/payments/checkout", json={"caseId": "C1"}, headers=auth_headers()
        )

        assert response.status_code == 201
        body = response.json()
        config = body["checkout"]
        assert body["tx_ref"] == config["tx_ref"]
        assert config["tx_ref"].startswith("CASE-C1-")
        assert config["amount"] == 200.0
        assert config["currency"] == "MWK"
        assert config["public_key"] == "PUB-TEST-paychangu"
        assert config["callback_url"] == "http://test/payments/callback"
        assert config["return_url"] == (
            f"http://test/payments/callback?status=cancelled&tx_ref={config['tx_ref']}"
        )
        assert config["customer"] == {
            "email": "jane.doe@example.com",
            "first_name": "Jane",
            "last_name": "Doe",
        }
        assert config["customization"]["description"] == "Payment for case: Land Dispute"
        assert config["meta"] == {"caseId": "C1", "userId": "client-1"}
        assert await count_rows(PendingTransaction) == 1

    @pytest.mark.asyncio
    async def test_custom_amount(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        response = await client.post(
            "/payments/checkout", json={"caseId": "C1", "amount": 75.5}, headers=auth_headers()
        )

        assert response.json()["checkout"]["amount"] == 75.5

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, "-3", "abc"])
    async def test_rejects_bad_amount(
        self, client: AsyncClient, seeded: Any, auth_headers: Any, amount: Any
    ) -> None:
        response = await client.post(
            "/payments/checkout", json={"caseId": "C1", "amount": amount}, headers=auth_headers()
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_rejects_closed_case(
        self, client: AsyncClient, seeded: Any, add_case: Any, auth_headers: Any
    ) -> None:
        await add_case("C3", status=CaseStatus.CLOSED.value)

        response = await client.post(
            "/payments/checkout", json={"caseId": "C3"}, headers=auth_headers()
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_rejects_paid_case(
        self, client: AsyncClient, seeded: Any, add_payment: Any, auth_headers: Any
    ) -> None:
        await add_payment()

        response = await client.post(
            "/payments/checkout", json={"caseId": "C1"}, headers=auth_headers()
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_unknown_case(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        response = await client.post(
            "/payments/checkout", json={"caseId": "nope"}, headers=auth_headers()
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_other_client_forbidden(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        response = await client.post(
            "/payments/checkout", json={"caseId": "C1"}, headers=auth_headers("client-2")
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_checkout_amount_flows_into_reconciliation(
        self, client: AsyncClient, seeded: Any, auth_headers: Any, fetch_payment: Any
    ) -> None:
        started = await client.post(
            "/payments/checkout", json={"caseId": "C1", "amount": "120"}, headers=auth_headers()
        )
        tx_ref = started.json()["tx_ref"]

        response = await client.post(
            "/payments/callback",
            json=callback_body(tx_ref=tx_ref, amount=None),
        )

        assert response.status_code == 200
        assert (await fetch_payment()).amount_cents == 12000


@pytest.mark.integration
class TestPaymentStatus:
    @pytest.mark.asyncio
    async def test_no_payment_yet(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        response = await client.get("/payments/cases/C1", headers=auth_headers())

        assert response.status_code == 200
        assert response.json() == {"caseId": "C1", "caseStatus": "OPEN", "payment": None}

    @pytest.mark.asyncio
    async def test_lawyer_sees_payment(
        self, client: AsyncClient, seeded: Any, add_payment: Any, auth_headers: Any
    ) -> None:
        await add_payment(amount_cents=50000)

        response = await client.get(
            "/payments/cases/C1", headers=auth_headers("lawyer-1", UserRole.LAWYER.value)
        )

        payment = response.json()["payment"]
        assert payment["status"] == "COMPLETED"
        assert payment["amount"] == 500.0
        assert payment["transactionId"] == "CASE-C1-1000"
        assert payment["updatedAt"]

    @pytest.mark.asyncio
    async def test_stranger_forbidden(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        response = await client.get("/payments/cases/C1", headers=auth_headers("client-2"))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_case(
        self, client: AsyncClient, seeded: Any, auth_headers: Any
    ) -> None:
        response = await client.get(
            "/payments/cases/nope", headers=auth_headers("admin-1", UserRole.ADMIN.value)
        )

        assert response.status_code == 404


@pytest.mark.integration
class TestMonitoring:
    @pytest.mark.asyncio
    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["checks"]["database"]["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_liveness(self, client: AsyncClient) -> None:
        response = await client.get("/health/live")

        assert response.json()["status"] == "alive"

    @pytest.mark.asyncio
    async def test_readiness_unhealthy(self, client: AsyncClient, mocker: Any) -> None:
        from counsel_payments.api import routes

        mocker.patch.object(
            routes.health_check,
            "readiness",
            return_value={"status": "unhealthy", "checks": {}},
        )

        response = await client.get("/health/ready")

        assert response.status_code == 503

    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient, seeded: Any) -> None:
        await client.post("/payments/callback", json=callback_body())

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "reconciliation_requests_total" in response.text

    @pytest.mark.asyncio
    async def test_request_id_header(self, client: AsyncClient) -> None:
        response = await client.get("/", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert response.json()["currency"] == "MWK"
