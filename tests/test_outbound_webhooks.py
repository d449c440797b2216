"""
Tests for signed outbound webhooks and attribution forwarding.
"""
import hashlib
import hmac
import json
from typing import Any

import httpx
import pytest

from pix_orchestrator.config import Settings
from pix_orchestrator.core.api_keys import ApiKeyService
from pix_orchestrator.core.transaction_store import TransactionStore
from pix_orchestrator.database.models import DeliveryStatus, Transaction
from pix_orchestrator.integrations.attribution import AttributionForwarder
from pix_orchestrator.integrations.outbound_webhooks import (
    OutboundWebhookDispatcher,
    build_payload,
    public_status,
    serialize_payload,
    sign_payload,
    verify_signature,
)
from tests.conftest import RecordingTransport, seed_transaction

TXID = "H" * 26
SECRET = "whsec_test"


async def paid_transaction_for_client(
    db: Any, webhook_url: str = "https://merchant.test/hook"
) -> Any:
    client, _ = await ApiKeyService().create_client(
        db, "acct_1", "Loja", webhook_url=webhook_url, webhook_secret=SECRET
    )
    await seed_transaction(
        db,
        txid=TXID,
        attribution={
            "api_client_id": str(client.id),
            "external_reference": "order-77",
            "metadata": {"sku": "A1"},
        },
    )
    return (await TransactionStore().mark_paid(db, TXID)).transaction


class TestSignature:
    """Test suite for payload signing."""

    @pytest.mark.unit
    def test_signature_format(self) -> None:
        body = b'{"event":"payment.paid"}'
        expected = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()
        assert sign_payload(SECRET, body) == f"sha256={expected}"

    @pytest.mark.unit
    def test_verify(self) -> None:
        body = serialize_payload({"event": "payment.paid", "data": {"txid": TXID}})
        signature = sign_payload(SECRET, body)

        assert verify_signature(SECRET, body, signature)
        assert not verify_signature("other", body, signature)
        assert not verify_signature(SECRET, body + b" ", signature)
        assert not verify_signature(SECRET, body, None)

    @pytest.mark.unit
    def test_serialization_is_compact_utf8(self) -> None:
        assert serialize_payload({"a": "não", "b": 1}) == '{"a":"não","b":1}'.encode("utf-8")

    @pytest.mark.unit
    def test_public_status(self) -> None:
        assert public_status("generated") == "pending"
        assert public_status("paid") == "paid"
        assert public_status("expired") == "expired"


class TestOutboundWebhookDispatcher:
    """Test suite for OutboundWebhookDispatcher.dispatch."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_successful_delivery(self, test_db: Any, test_settings: Settings) -> None:
        """Test the receiver can verify the signature over the exact body received."""
        transaction = await paid_transaction_for_client(test_db)
        transport = RecordingTransport(lambda request: httpx.Response(200, text="ok"))
        dispatcher = OutboundWebhookDispatcher(test_settings, transport)

        delivery = await dispatcher.dispatch(test_db, transaction)

        assert delivery.status == DeliveryStatus.SUCCESS.value
        assert delivery.response_status == 200
        assert delivery.response_body == "ok"
        assert delivery.attempts == 1
        assert delivery.last_attempt_at is not None

        sent = transport.requests[0]
        assert str(sent.url) == "https://merchant.test/hook"
        assert sent.headers["X-Pix-Event"] == "payment.paid"
        assert verify_signature(SECRET, sent.content, sent.headers["X-Pix-Signature"])
        body = json.loads(sent.content)
        assert body["event"] == "payment.paid"
        assert body["data"]["txid"] == TXID
        assert body["data"]["status"] == "paid"
        assert body["data"]["external_reference"] == "order-77"
        assert body["data"]["metadata"] == {"sku": "A1"}
        assert body["data"]["amount"] == 10.0
        assert body["data"]["paid_at"] is not None

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_non_2xx_marks_failed_and_truncates(
        self, test_db: Any, test_settings: Settings
    ) -> None:
        transaction = await paid_transaction_for_client(test_db)
        transport = RecordingTransport(lambda request: httpx.Response(500, text="x" * 5000))

        delivery = await OutboundWebhookDispatcher(test_settings, transport).dispatch(
            test_db, transaction
        )

        assert delivery.status == DeliveryStatus.FAILED.value
        assert delivery.response_status == 500
        assert len(delivery.response_body) == test_settings.webhook_response_body_limit

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_transport_error_recorded(self, test_db: Any, test_settings: Settings) -> None:
        transaction = await paid_transaction_for_client(test_db)

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        delivery = await OutboundWebhookDispatcher(
            test_settings, httpx.MockTransport(handler)
        ).dispatch(test_db, transaction)

        assert delivery.status == DeliveryStatus.FAILED.value
        assert delivery.response_status is None
        assert delivery.response_body.startswith("ConnectError")

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_skipped_without_api_client(self, test_db: Any, test_settings: Settings) -> None:
        transaction = await seed_transaction(test_db, txid=TXID)
        transport = RecordingTransport(lambda request: httpx.Response(200))

        delivery = await OutboundWebhookDispatcher(test_settings, transport).dispatch(
            test_db, transaction
        )

        assert delivery is None
        assert transport.requests == []

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_skipped_without_webhook_url(self, test_db: Any, test_settings: Settings) -> None:
        client, _ = await ApiKeyService().create_client(test_db, "acct_1", "Loja")
        transaction = await seed_transaction(
            test_db, txid=TXID, attribution={"api_client_id": str(client.id)}
        )
        transport = RecordingTransport(lambda request: httpx.Response(200))

        delivery = await OutboundWebhookDispatcher(test_settings, transport).dispatch(
            test_db, transaction
        )

        assert delivery is None
        assert transport.requests == []

    @pytest.mark.unit
    def test_payload_for_pending_transaction(self, test_settings: Settings) -> None:
        transaction = Transaction(txid=TXID, status="generated", amount=10, attribution=None)
        payload = build_payload(transaction, "payment.created")

        assert payload["event"] == "payment.created"
        assert payload["data"]["status"] == "pending"
        assert payload["data"]["paid_at"] is None


class TestAttributionForwarder:
    """Test suite for AttributionForwarder."""

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_forwards_tracking_fields(self, test_db: Any) -> None:
        settings = Settings(
            database_url="sqlite+aiosqlite://",
            attribution_forward_url="https://analytics.test/orders",
            attribution_forward_token="tok",
        )
        await seed_transaction(
            test_db,
            txid=TXID,
            attribution={"utm_source": "ads", "api_client_id": "abc", "metadata": {"x": 1}},
        )
        transaction = (await TransactionStore().mark_paid(test_db, TXID)).transaction
        transport = RecordingTransport(lambda request: httpx.Response(202))

        assert await AttributionForwarder(settings, transport).forward(transaction) is True

        sent = transport.requests[0]
        assert sent.headers["x-api-token"] == "tok"
        order = json.loads(sent.content)
        assert order["order_id"] == TXID
        assert order["tracking"] == {"utm_source": "ads"}

    @pytest.mark.integration
    @pytest.mark.asyncio
    async def test_failure_is_reported_not_raised(self, test_db: Any) -> None:
        settings = Settings(
            database_url="sqlite+aiosqlite://",
            attribution_forward_url="https://analytics.test/orders",
        )
        transaction = await seed_transaction(test_db, txid=TXID)
        transport = RecordingTransport(lambda request: httpx.Response(503))

        assert await AttributionForwarder(settings, transport).forward(transaction) is False

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_disabled_without_url(self, test_settings: Settings) -> None:
        forwarder = AttributionForwarder(test_settings)
        assert not forwarder.enabled
        assert await forwarder.forward(object()) is False
