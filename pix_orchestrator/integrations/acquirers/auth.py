"""
Authentication strategies for acquirer HTTP calls.

Covers HTTP Basic with a base64 secret, static and OAuth2 bearer tokens, and
mutual TLS. Credentials only ever travel in headers or the TLS handshake.
"""
import base64
import json
import re
import ssl
import tempfile
import time
from collections.abc import Generator
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import httpx
import structlog

logger = structlog.get_logger(__name__)

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]+=*$")
_PEM_BLOCK_RE = re.compile(r"-----BEGIN ([A-Z ]+)-----(.*?)-----END \1-----", re.DOTALL)


def looks_base64_encoded(secret: str) -> bool:
    """
    Heuristic for secrets that were stored already base64-encoded.

    Long strings made only of the base64 alphabet are taken as encoded.
    """
    return len(secret) > 50 and bool(_BASE64_RE.match(secret))


def basic_credential(secret: str) -> str:
    """Return the base64 token for a Basic header, encoding only when needed."""
    if looks_base64_encoded(secret):
        return secret
    return base64.b64encode(secret.encode("utf-8")).decode("ascii")


class BasicSecretAuth(httpx.Auth):
    """HTTP Basic using a single opaque secret (``user:pass`` or pre-encoded)."""

    def __init__(self, secret: str) -> None:
        self._header = f"Basic {basic_credential(secret)}"

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = self._header
        yield request

    def __repr__(self) -> str:
        return "BasicSecretAuth(***)"


class BearerAuth(httpx.Auth):
    """Static bearer token."""

    def __init__(self, token: str) -> None:
        self._token = token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._token}"
        yield request

    def __repr__(self) -> str:
        return "BearerAuth(***)"


class ApiKeyHeaderAuth(httpx.Auth):
    """API key carried in a custom header (e.g. ``x-api-key``)."""

    def __init__(self, api_key: str, header: str = "x-api-key") -> None:
        self._api_key = api_key
        self._header = header

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers[self._header] = self._api_key
        yield request

    def __repr__(self) -> str:
        return f"ApiKeyHeaderAuth({self._header}=***)"


def normalize_pem(value: str) -> str:
    """
    Restore PEM material mangled by storage in env vars or text fields.

    Handles literal ``\\n`` sequences and bodies collapsed onto one line.
    """
    text = value.strip().replace("\\n", "\n").replace("\r\n", "\n")
    blocks = []
    for label, body in _PEM_BLOCK_RE.findall(text):
        compact = re.sub(r"\s+", "", body)
        lines = [compact[i : i + 64] for i in range(0, len(compact), 64)]
        blocks.append("\n".join([f"-----BEGIN {label}-----", *lines, f"-----END {label}-----"]))
    if not blocks:
        raise ValueError("value does not contain a PEM block")
    return "\n".join(blocks) + "\n"


def build_mtls_context(certificate: str, private_key: str) -> ssl.SSLContext:
    """
    Build an SSL context presenting a client certificate.

    ssl can only load key material from files, so the PEMs are written to
    private temporary files that are removed once loaded.
    """
    context = ssl.create_default_context()
    with tempfile.TemporaryDirectory(prefix="pix-mtls-") as tmp:
        cert_path = Path(tmp) / "client.crt"
        key_path = Path(tmp) / "client.key"
        cert_path.write_text(normalize_pem(certificate))
        key_path.write_text(normalize_pem(private_key))
        cert_path.chmod(0o600)
        key_path.chmod(0o600)
        context.load_cert_chain(certfile=str(cert_path), keyfile=str(key_path))
    return context


class OAuthTokenCache:
    """
    Caches OAuth2 access tokens until shortly before they expire.

    Uses Redis when a client is given so every worker shares one token,
    otherwise a per-process dict.
    """

    # Refresh this many seconds before the acquirer-reported expiry
    EXPIRY_MARGIN_SECONDS = 60

    def __init__(self, redis_client: Optional[Any] = None) -> None:
        self._redis = redis_client
        self._local: Dict[str, Tuple[str, float]] = {}

    @staticmethod
    def _key(acquirer: str, client_id: str) -> str:
        return f"pix:oauth:{acquirer}:{client_id}"

    async def get(self, acquirer: str, client_id: str) -> Optional[str]:
        key = self._key(acquirer, client_id)
        if self._redis is not None:
            raw = await self._redis.get(key)
            if raw is None:
                return None
            return json.loads(raw)["access_token"]

        cached = self._local.get(key)
        if cached is None or cached[1] <= time.time():
            return None
        return cached[0]

    async def set(self, acquirer: str, client_id: str, token: str, expires_in: int) -> None:
        ttl = max(int(expires_in) - self.EXPIRY_MARGIN_SECONDS, 1)
        key = self._key(acquirer, client_id)
        if self._redis is not None:
            await self._redis.set(key, json.dumps({"access_token": token}), ex=ttl)
        else:
            self._local[key] = (token, time.time() + ttl)
        logger.debug("oauth_token_cached", acquirer=acquirer, ttl_seconds=ttl)

    async def invalidate(self, acquirer: str, client_id: str) -> None:
        key = self._key(acquirer, client_id)
        if self._redis is not None:
            await self._redis.delete(key)
        self._local.pop(key, None)
