"""API key issuance and authentication for the public API."""
import hashlib
import hmac
import secrets
from typing import Optional, Tuple

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pix_orchestrator.database.models import ApiClient, utcnow

logger = structlog.get_logger(__name__)

API_KEY_PREFIX = "pix_live_"


class ApiKeyError(Exception):
    """Authentication failure with a stable error code."""

    def __init__(self, message: str, error_code: str):
        super().__init__(message)
        self.error_code = error_code


def hash_api_key(api_key: str) -> str:
    """SHA-256 hex digest stored in place of the key."""
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def generate_api_key() -> Tuple[str, str, str]:
    """
    Create a new API key.

    Returns:
        Tuple of (plaintext key, display prefix, stored hash)
    """
    api_key = API_KEY_PREFIX + secrets.token_urlsafe(32)
    return api_key, api_key[: len(API_KEY_PREFIX) + 4], hash_api_key(api_key)


class ApiKeyService:
    """Issues API clients and authenticates bearer API keys."""

    async def create_client(
        self,
        db: AsyncSession,
        account_id: str,
        name: str,
        webhook_url: Optional[str] = None,
        webhook_secret: Optional[str] = None,
    ) -> Tuple[ApiClient, str]:
        """
        Register an API client.

        Returns:
            Tuple of (client, plaintext key); the key is not retrievable later
        """
        api_key, prefix, key_hash = generate_api_key()
        client = ApiClient(
            account_id=account_id,
            name=name,
            api_key_hash=key_hash,
            api_key_prefix=prefix,
            webhook_url=webhook_url,
            webhook_secret=webhook_secret,
        )
        db.add(client)
        await db.commit()
        logger.info("api_client_created", client_id=str(client.id), prefix=prefix)
        return client, api_key

    async def authenticate(self, db: AsyncSession, authorization: Optional[str]) -> ApiClient:
        """
        Resolve the active client for an ``Authorization: Bearer <key>`` header.

        Successful calls bump the client's usage counters.

        Raises:
            ApiKeyError: UNAUTHORIZED if the header is missing or malformed,
                INVALID_API_KEY if no active client holds the key
        """
        if not authorization or not authorization.startswith("Bearer "):
            raise ApiKeyError("Missing or invalid Authorization header", "UNAUTHORIZED")
        api_key = authorization[len("Bearer ") :].strip()
        if not api_key:
            raise ApiKeyError("Missing or invalid Authorization header", "UNAUTHORIZED")

        key_hash = hash_api_key(api_key)
        result = await db.execute(select(ApiClient).where(ApiClient.api_key_hash == key_hash))
        client = result.scalar_one_or_none()
        if (
            client is None
            or not client.is_active
            or not hmac.compare_digest(client.api_key_hash, key_hash)
        ):
            logger.warning("api_key_rejected", prefix=api_key[: len(API_KEY_PREFIX) + 4])
            raise ApiKeyError("Invalid or inactive API key", "INVALID_API_KEY")

        await db.execute(
            update(ApiClient)
            .where(ApiClient.id == client.id)
            .values(total_requests=ApiClient.total_requests + 1, last_request_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return client
