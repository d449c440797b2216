"""
Tests for the concrete acquirer adapters against mocked HTTP endpoints.
"""
import base64
import json
from decimal import Decimal
from typing import Any

import httpx
import pytest

from pix_orchestrator.config import Settings
from pix_orchestrator.integrations.acquirers import (
    AcquirerConfigurationError,
    AcquirerCredentials,
    AcquirerError,
    AcquirerErrorType,
    AtivusAdapter,
    ChargeRequest,
    EfiAdapter,
    InterAdapter,
    NormalizedStatus,
    PayerInfo,
    ResolvedAcquirer,
    SpedPayAdapter,
    ValorionAdapter,
)
from tests.conftest import RecordingTransport

TXID = "K7Q2M9X4T1B8N5V3C6Z0L2P4R8"


def charge_request(**kwargs: Any) -> ChargeRequest:
    fields = {
        "amount": Decimal("10.00"),
        "description": "Pedido 123",
        "callback_id": TXID,
        "postback_url": "https://pix.example.test/webhooks/ativus",
    }
    fields.update(kwargs)
    return ChargeRequest(**fields)


def json_response(status_code: int, payload: Any) -> httpx.Response:
    return httpx.Response(status_code, json=payload)


class TestAtivusAdapter:
    """Test suite for the Ativus Hub adapter."""

    @pytest.fixture
    def config(self) -> ResolvedAcquirer:
        return ResolvedAcquirer(name="ativus", credentials=AcquirerCredentials(api_key="user:pass"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_charge(self, test_settings: Settings, config: ResolvedAcquirer) -> None:
        """Test the payload carries reais, the txid reference and Basic auth."""
        transport = RecordingTransport(
            lambda request: json_response(
                200, {"idTransaction": "atv_991", "paymentCode": "00020126pix-atv"}
            )
        )
        adapter = AtivusAdapter(test_settings, transport)

        result = await adapter.create_charge(
            config, charge_request(payer=PayerInfo(name="Maria", email="maria@example.com"))
        )

        assert result.payment_code == "00020126pix-atv"
        assert result.provider_ref == "atv_991"
        sent = transport.requests[0]
        assert sent.method == "POST"
        assert sent.headers["Authorization"] == "Basic " + base64.b64encode(b"user:pass").decode()
        body = json.loads(sent.content)
        assert body["amount"] == 10.0
        assert body["customer"]["externaRef"] == TXID
        assert body["customer"]["name"] == "Maria"
        assert body["customer"]["email"] == "maria@example.com"
        assert "cpf" not in body["customer"]
        assert body["postbackUrl"] == "https://pix.example.test/webhooks/ativus"
        assert body["items"][0]["title"] == "Pedido 123"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_charge_without_payer_uses_placeholder_name(
        self, test_settings: Settings, config: ResolvedAcquirer
    ) -> None:
        transport = RecordingTransport(
            lambda request: json_response(200, {"pix_copia_e_cola": "00020126pix"})
        )
        result = await AtivusAdapter(test_settings, transport).create_charge(
            config, charge_request()
        )

        body = json.loads(transport.requests[0].content)
        assert body["customer"] == {"name": "Cliente", "externaRef": TXID}
        # No provider id in the response: our txid stands in
        assert result.provider_ref == TXID

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_charge_without_payment_code_fails(
        self, test_settings: Settings, config: ResolvedAcquirer
    ) -> None:
        transport = RecordingTransport(lambda request: json_response(200, {"id": "x"}))
        with pytest.raises(AcquirerError) as exc_info:
            await AtivusAdapter(test_settings, transport).create_charge(config, charge_request())
        assert exc_info.value.error_type == AcquirerErrorType.PERMANENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_server_error_is_transient(
        self, test_settings: Settings, config: ResolvedAcquirer
    ) -> None:
        transport = RecordingTransport(lambda request: httpx.Response(502, text="bad gateway"))
        with pytest.raises(AcquirerError) as exc_info:
            await AtivusAdapter(test_settings, transport).create_charge(config, charge_request())
        assert exc_info.value.is_transient
        assert exc_info.value.status_code == 502

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_client_error_is_permanent(
        self, test_settings: Settings, config: ResolvedAcquirer
    ) -> None:
        transport = RecordingTransport(lambda request: json_response(422, {"error": "invalid"}))
        with pytest.raises(AcquirerError) as exc_info:
            await AtivusAdapter(test_settings, transport).create_charge(config, charge_request())
        assert exc_info.value.error_type == AcquirerErrorType.PERMANENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unparsable_body(self, test_settings: Settings, config: ResolvedAcquirer) -> None:
        transport = RecordingTransport(lambda request: httpx.Response(200, text="<html>ok</html>"))
        with pytest.raises(AcquirerError, match="unparsable"):
            await AtivusAdapter(test_settings, transport).create_charge(config, charge_request())

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_network_failure_is_transient(
        self, test_settings: Settings, config: ResolvedAcquirer
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        with pytest.raises(AcquirerError) as exc_info:
            await AtivusAdapter(test_settings, httpx.MockTransport(handler)).create_charge(
                config, charge_request()
            )
        assert exc_info.value.is_transient

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_api_key(self, test_settings: Settings) -> None:
        """Test missing credentials fail before any HTTP call and name only the field."""
        transport = RecordingTransport(lambda request: json_response(200, {}))
        config = ResolvedAcquirer(name="ativus", credentials=AcquirerCredentials())

        with pytest.raises(AcquirerConfigurationError, match="api_key"):
            await AtivusAdapter(test_settings, transport).create_charge(config, charge_request())
        assert transport.requests == []

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_check_status_paid(self, test_settings: Settings, config: ResolvedAcquirer) -> None:
        transport = RecordingTransport(
            lambda request: json_response(
                200, {"situacao": "CONCLUIDO", "data_transacao": "2024-05-01T12:30:00"}
            )
        )
        result = await AtivusAdapter(test_settings, transport).check_status(config, "atv_991")

        assert result.is_paid
        assert result.raw_status == "CONCLUIDO"
        assert result.paid_at is not None
        assert transport.requests[0].url.params["id_transaction"] == "atv_991"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_check_status_waiting(
        self, test_settings: Settings, config: ResolvedAcquirer
    ) -> None:
        transport = RecordingTransport(
            lambda request: json_response(200, {"status": "AGUARDANDO_PAGAMENTO"})
        )
        result = await AtivusAdapter(test_settings, transport).check_status(config, "atv_991")
        assert result.status == NormalizedStatus.AWAITING_PAYMENT
        assert result.paid_at is None


class TestValorionAdapter:
    """Test suite for the Valorion adapter."""

    @pytest.fixture
    def config(self) -> ResolvedAcquirer:
        return ResolvedAcquirer(name="valorion", credentials=AcquirerCredentials(api_key="vk_123"))

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_charge_sends_cents_and_metadata(
        self, test_settings: Settings, config: ResolvedAcquirer
    ) -> None:
        transport = RecordingTransport(
            lambda request: json_response(
                201, {"id_transaction": "vlr_55", "pix_copia_e_cola": "00020126pix-vlr"}
            )
        )
        result = await ValorionAdapter(test_settings, transport).create_charge(
            config, charge_request(amount=Decimal("12.34"))
        )

        assert result.provider_ref == "vlr_55"
        sent = transport.requests[0]
        assert sent.headers["x-api-key"] == "vk_123"
        body = json.loads(sent.content)
        assert body["amount"] == 1234
        assert body["metadata"] == TXID

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_status_not_found_is_pending(
        self, test_settings: Settings, config: ResolvedAcquirer
    ) -> None:
        """Test a 404 means the charge is not visible yet, not an error."""
        transport = RecordingTransport(lambda request: httpx.Response(404, text="not found"))
        result = await ValorionAdapter(test_settings, transport).check_status(config, "vlr_55")
        assert result.status == NormalizedStatus.PENDING

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_status_paid_out(self, test_settings: Settings, config: ResolvedAcquirer) -> None:
        transport = RecordingTransport(lambda request: json_response(200, {"status": "PAID_OUT"}))
        result = await ValorionAdapter(test_settings, transport).check_status(config, "vlr_55")

        assert result.is_paid
        assert transport.requests[0].headers["Authorization"].startswith("Basic ")


class TestSpedPayAdapter:
    """Test suite for the SpedPay adapter."""

    @pytest.fixture
    def config(self) -> ResolvedAcquirer:
        return ResolvedAcquirer(
            name="spedpay", credentials=AcquirerCredentials(api_key=" sp_secret ")
        )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_create_charge(self, test_settings: Settings, config: ResolvedAcquirer) -> None:
        """Test the payload carries reais, the txid as external_id and the api-secret header."""
        transport = RecordingTransport(
            lambda request: json_response(
                200, {"id": "spd_tx_1", "pix": {"copia_e_cola": "00020126pix-spd"}}
            )
        )
        result = await SpedPayAdapter(test_settings, transport).create_charge(
            config,
            charge_request(
                amount=Decimal("12.34"), payer=PayerInfo(name="Ana", phone="(11) 98765-4321")
            ),
        )

        assert result.payment_code == "00020126pix-spd"
        assert result.provider_ref == "spd_tx_1"
        sent = transport.requests[0]
        assert str(sent.url) == "https://api.spedpay.space/v1/transactions"
        assert sent.headers["api-secret"] == "sp_secret"
        assert "Authorization" not in sent.headers
        body = json.loads(sent.content)
        assert body["external_id"] == TXID
        assert body["total_amount"] == 12.34
        assert body["payment_method"] == "PIX"
        assert body["webhook_url"] == "https://pix.example.test/webhooks/ativus"
        assert body["customer"] == {"name": "Ana", "phone": "11987654321"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_payment_code(
        self, test_settings: Settings, config: ResolvedAcquirer
    ) -> None:
        transport = RecordingTransport(lambda request: json_response(200, {"id": "spd_tx_1"}))
        with pytest.raises(AcquirerError) as exc_info:
            await SpedPayAdapter(test_settings, transport).create_charge(config, charge_request())
        assert exc_info.value.error_type == AcquirerErrorType.PERMANENT

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_status_authorized_is_paid(
        self, test_settings: Settings, config: ResolvedAcquirer
    ) -> None:
        transport = RecordingTransport(
            lambda request: json_response(
                200, {"id": "spd_tx_1", "status": "AUTHORIZED", "paid_at": "2024-05-01T12:00:00Z"}
            )
        )
        result = await SpedPayAdapter(test_settings, transport).check_status(config, "spd_tx_1")

        assert result.is_paid
        assert result.raw_status == "AUTHORIZED"
        assert result.paid_at is not None
        assert transport.requests[0].url.path == "/v1/transactions/spd_tx_1"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_api_key(self, test_settings: Settings) -> None:
        config = ResolvedAcquirer(name="spedpay", credentials=AcquirerCredentials())
        transport = RecordingTransport(lambda request: json_response(200, {}))
        with pytest.raises(AcquirerConfigurationError):
            await SpedPayAdapter(test_settings, transport).create_charge(config, charge_request())
        assert transport.requests == []


class TestBacenAdapters:
    """Test suite for the Inter and Efí cob flow."""

    @pytest.fixture(autouse=True)
    def no_client_certificate(self, mocker: Any) -> None:
        mocker.patch(
            "pix_orchestrator.integrations.acquirers.bacen.build_mtls_context",
            return_value=True,
        )

    @pytest.fixture
    def credentials(self) -> AcquirerCredentials:
        return AcquirerCredentials(
            client_id="cid",
            client_secret="csecret",
            certificate="cert",
            private_key="key",
            pix_key="pix@example.com",
        )

    @staticmethod
    def cob_handler(status: str = "ATIVA") -> Any:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return json_response(200, {"access_token": "tok-1", "expires_in": 3600})
            if request.method == "PUT":
                return json_response(
                    201, {"txid": TXID, "status": "ATIVA", "pixCopiaECola": "00020126pix-cob"}
                )
            return json_response(
                200,
                {
                    "txid": TXID,
                    "status": status,
                    "pix": [{"endToEndId": "E123", "horario": "2024-05-01T12:00:00Z"}],
                },
            )

        return handler

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_inter_create_charge(
        self, test_settings: Settings, credentials: AcquirerCredentials
    ) -> None:
        transport = RecordingTransport(self.cob_handler())
        adapter = InterAdapter(test_settings, transport)
        config = ResolvedAcquirer(name="inter", credentials=credentials)

        result = await adapter.create_charge(config, charge_request())

        assert result.payment_code == "00020126pix-cob"
        assert result.provider_ref == TXID
        token_call, cob_call = transport.requests
        assert token_call.url.path == "/oauth/v2/token"
        assert b"grant_type=client_credentials" in token_call.content
        assert cob_call.method == "PUT"
        assert cob_call.url.path == f"/pix/v2/cob/{TXID}"
        assert cob_call.headers["Authorization"] == "Bearer tok-1"
        body = json.loads(cob_call.content)
        assert body["valor"]["original"] == "10.00"
        assert body["chave"] == "pix@example.com"
        assert body["calendario"]["expiracao"] == test_settings.charge_expiry_minutes * 60

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_token_reused_across_calls(
        self, test_settings: Settings, credentials: AcquirerCredentials
    ) -> None:
        transport = RecordingTransport(self.cob_handler(status="CONCLUIDA"))
        adapter = EfiAdapter(test_settings, transport)
        config = ResolvedAcquirer(name="efi", credentials=credentials)

        await adapter.create_charge(config, charge_request())
        result = await adapter.check_status(config, TXID)

        assert result.is_paid
        assert result.paid_at is not None
        token_calls = [r for r in transport.requests if r.url.path == "/oauth/token"]
        assert len(token_calls) == 1
        assert token_calls[0].headers["Authorization"].startswith("Basic ")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unauthorized_invalidates_token(
        self, test_settings: Settings, credentials: AcquirerCredentials
    ) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.endswith("/token"):
                return json_response(200, {"access_token": "tok-1", "expires_in": 3600})
            return json_response(401, {"error": "invalid_token"})

        adapter = InterAdapter(test_settings, RecordingTransport(handler))
        config = ResolvedAcquirer(name="inter", credentials=credentials)

        with pytest.raises(AcquirerError) as exc_info:
            await adapter.check_status(config, TXID)

        assert exc_info.value.status_code == 401
        assert await adapter.token_cache.get("inter", "cid") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_devedor_sent_for_valid_cpf(
        self, test_settings: Settings, credentials: AcquirerCredentials
    ) -> None:
        transport = RecordingTransport(self.cob_handler())
        adapter = InterAdapter(test_settings, transport)
        config = ResolvedAcquirer(name="inter", credentials=credentials)

        await adapter.create_charge(
            config, charge_request(payer=PayerInfo(name="Maria", document="123.456.789-09"))
        )

        body = json.loads(transport.requests[-1].content)
        assert body["devedor"] == {"cpf": "12345678909", "nome": "Maria"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_missing_certificate(self, test_settings: Settings) -> None:
        transport = RecordingTransport(self.cob_handler())
        config = ResolvedAcquirer(
            name="inter", credentials=AcquirerCredentials(client_id="cid", client_secret="s")
        )

        with pytest.raises(AcquirerConfigurationError) as exc_info:
            await InterAdapter(test_settings, transport).create_charge(config, charge_request())

        assert "certificate" in str(exc_info.value)
        assert transport.requests == []
