"""
BACEN Pix "cob" API integrations (Banco Inter, Efí).

Both speak the Central Bank's standard immediate-charge API: OAuth2 client
credentials over mutual TLS, then ``PUT /cob/{txid}`` to issue and
``GET /cob/{txid}`` to query. They differ only in endpoints and in how the
token request authenticates.
"""
import re
from abc import abstractmethod
from typing import Any, Dict, Optional

import httpx
import structlog

from pix_orchestrator.config import Settings
from pix_orchestrator.integrations.acquirers.auth import (
    BasicSecretAuth,
    BearerAuth,
    OAuthTokenCache,
    build_mtls_context,
)
from pix_orchestrator.integrations.acquirers.base import (
    AcquirerAdapter,
    AcquirerError,
    AcquirerErrorType,
    ChargeRequest,
    ChargeResult,
    ResolvedAcquirer,
    StatusResult,
    lookup_path,
    parse_timestamp,
)
from pix_orchestrator.integrations.acquirers.status_tables import NormalizedStatus

logger = structlog.get_logger(__name__)

_DIGITS_RE = re.compile(r"\D")


class BacenPixAdapter(AcquirerAdapter):
    """Shared implementation of the BACEN cob flow."""

    token_path: str
    cob_path: str
    token_scope: Optional[str] = None
    required_credentials = ("client_id", "client_secret", "certificate", "private_key", "pix_key")

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        token_cache: Optional[OAuthTokenCache] = None,
    ) -> None:
        super().__init__(settings=settings, transport=transport)
        self.token_cache = token_cache or OAuthTokenCache()

    def _mtls_client(self, config: ResolvedAcquirer) -> httpx.AsyncClient:
        creds = config.credentials
        try:
            context = build_mtls_context(creds.certificate, creds.private_key)
        except (ValueError, OSError) as e:
            raise AcquirerError(
                f"{self.name} client certificate could not be loaded: {type(e).__name__}",
                self.name,
                AcquirerErrorType.CONFIGURATION,
            ) from e
        return self.http_client(verify=context, base_url=self.base_url(config))

    @abstractmethod
    async def _token_request(
        self, client: httpx.AsyncClient, config: ResolvedAcquirer
    ) -> Optional[Dict[str, Any]]:
        """Request an OAuth2 access token."""

    async def _access_token(self, client: httpx.AsyncClient, config: ResolvedAcquirer) -> str:
        client_id = config.credentials.client_id
        cached = await self.token_cache.get(self.name, client_id)
        if cached:
            return cached

        data = await self._token_request(client, config)
        token = (data or {}).get("access_token")
        if not token:
            raise AcquirerError(
                f"{self.name} token response has no access_token",
                self.name,
                AcquirerErrorType.PERMANENT,
            )
        await self.token_cache.set(self.name, client_id, token, int(data.get("expires_in", 3600)))
        logger.info("oauth_token_obtained", acquirer=self.name)
        return token

    async def _authorized_json(
        self,
        client: httpx.AsyncClient,
        config: ResolvedAcquirer,
        method: str,
        path: str,
        operation: str,
        **kwargs: Any,
    ) -> Optional[Dict[str, Any]]:
        token = await self._access_token(client, config)
        try:
            return await self._request_json(
                client, method, path, operation, auth=BearerAuth(token), **kwargs
            )
        except AcquirerError as e:
            if e.status_code == 401:
                # Token revoked or rotated early; next call fetches a new one
                await self.token_cache.invalidate(self.name, config.credentials.client_id)
            raise

    def _cob_payload(self, config: ResolvedAcquirer, request: ChargeRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "calendario": {"expiracao": self.settings.charge_expiry_minutes * 60},
            "valor": {"original": f"{request.amount:.2f}"},
            "chave": config.credentials.pix_key,
            "solicitacaoPagador": request.description[:140],
        }
        payer = request.payer
        if payer and payer.document and payer.name:
            document = _DIGITS_RE.sub("", payer.document)
            if len(document) == 11:
                payload["devedor"] = {"cpf": document, "nome": payer.name}
            elif len(document) == 14:
                payload["devedor"] = {"cnpj": document, "nome": payer.name}
        return payload

    async def create_charge(
        self, config: ResolvedAcquirer, request: ChargeRequest
    ) -> ChargeResult:
        self.validate_credentials(config)
        path = self.cob_path.format(txid=request.callback_id)
        async with self._mtls_client(config) as client:
            data = await self._authorized_json(
                client, config, "PUT", path, "create_charge", json=self._cob_payload(config, request)
            )

        payment_code = (data or {}).get("pixCopiaECola")
        if not payment_code:
            raise AcquirerError(
                f"{self.name} cob response has no pixCopiaECola",
                self.name,
                AcquirerErrorType.PERMANENT,
            )
        return ChargeResult(
            payment_code=payment_code,
            provider_ref=data.get("txid") or request.callback_id,
        )

    async def check_status(self, config: ResolvedAcquirer, provider_ref: str) -> StatusResult:
        self.validate_credentials(config)
        path = self.cob_path.format(txid=provider_ref)
        async with self._mtls_client(config) as client:
            data = await self._authorized_json(client, config, "GET", path, "check_status")

        raw_status = (data or {}).get("status")
        status = self.normalize(raw_status)
        paid_at = None
        if status == NormalizedStatus.PAID:
            paid_at = parse_timestamp(lookup_path(data, "pix.0.horario"))
        return StatusResult(status=status, raw_status=raw_status, paid_at=paid_at)


class InterAdapter(BacenPixAdapter):
    """Banco Inter PJ API; token request sends client credentials in the form body."""

    name = "inter"
    default_base_url = "https://cdpj.partners.bancointer.com.br"
    token_path = "/oauth/v2/token"
    cob_path = "/pix/v2/cob/{txid}"
    token_scope = "cob.write cob.read pix.read"

    async def _token_request(
        self, client: httpx.AsyncClient, config: ResolvedAcquirer
    ) -> Optional[Dict[str, Any]]:
        return await self._request_json(
            client,
            "POST",
            self.token_path,
            "oauth_token",
            data={
                "client_id": config.credentials.client_id,
                "client_secret": config.credentials.client_secret,
                "grant_type": "client_credentials",
                "scope": self.token_scope,
            },
        )


class EfiAdapter(BacenPixAdapter):
    """Efí Pay Pix API; token request authenticates with HTTP Basic."""

    name = "efi"
    default_base_url = "https://pix.api.efipay.com.br"
    token_path = "/oauth/token"
    cob_path = "/v2/cob/{txid}"

    async def _token_request(
        self, client: httpx.AsyncClient, config: ResolvedAcquirer
    ) -> Optional[Dict[str, Any]]:
        creds = config.credentials
        return await self._request_json(
            client,
            "POST",
            self.token_path,
            "oauth_token",
            json={"grant_type": "client_credentials"},
            auth=BasicSecretAuth(f"{creds.client_id}:{creds.client_secret}"),
        )
