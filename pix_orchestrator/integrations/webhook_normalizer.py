"""
Inbound webhook normalization.

Each acquirer posts its own payload shape. WEBHOOK_SHAPES describes, per
acquirer, where the correlation id, status and payment time live; adding an
acquirer means adding one entry here plus its status table.
"""
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import parse_qsl

import structlog

from pix_orchestrator.integrations.acquirers.base import (
    first_value,
    lookup_path,
    parse_timestamp,
)
from pix_orchestrator.integrations.acquirers.status_tables import (
    NormalizedStatus,
    normalize_status,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WebhookShape:
    """Where to find the interesting fields in one acquirer's callback."""

    id_fields: Tuple[str, ...]
    status_fields: Tuple[str, ...] = ()
    paid_at_fields: Tuple[str, ...] = ()
    # Dotted path of a list of payment items; each item is one signal
    items_path: Optional[str] = None
    # Raw status implied when the payload carries none (BACEN only notifies receipts)
    implied_status: Optional[str] = None


WEBHOOK_SHAPES: Mapping[str, WebhookShape] = {
    "ativus": WebhookShape(
        id_fields=(
            "id_transaction",
            "idTransaction",
            "transactionId",
            "id",
            "externalRef",
            "externaRef",
            "data.id",
            "data.externalRef",
        ),
        status_fields=("situacao", "status", "data.status", "data.situacao"),
        paid_at_fields=("data_transacao", "paidAt", "data.paidAt"),
    ),
    "valorion": WebhookShape(
        id_fields=(
            "id_transaction",
            "idTransaction",
            "transaction_id",
            "id",
            "data.id_transaction",
            "data.id",
            # our txid, echoed back from the charge request
            "metadata",
            "data.metadata",
        ),
        status_fields=("situacao", "status", "data.status", "data.situacao"),
        paid_at_fields=("data_transacao", "paid_at", "paidAt", "data.paid_at"),
    ),
    "spedpay": WebhookShape(
        id_fields=("id", "transaction_id", "external_id", "data.id", "data.external_id"),
        status_fields=("status", "payment_status", "data.status"),
        paid_at_fields=("paid_at", "paidAt", "approved_at"),
    ),
    "inter": WebhookShape(
        id_fields=("txid",),
        status_fields=("status",),
        paid_at_fields=("horario",),
        items_path="pix",
        implied_status="CONCLUIDA",
    ),
    "efi": WebhookShape(
        id_fields=("txid",),
        status_fields=("status",),
        paid_at_fields=("horario",),
        items_path="pix",
        implied_status="CONCLUIDA",
    ),
}


@dataclass(frozen=True)
class InboundSignal:
    """One status report extracted from a webhook."""

    correlation_ids: Tuple[str, ...]
    raw_status: Optional[str]
    status: NormalizedStatus
    paid_at_hint: Optional[datetime] = None


def parse_body(body: bytes, content_type: Optional[str] = None) -> Dict[str, Any]:
    """
    Decode a webhook body into a dict.

    JSON and form-encoded bodies are decoded by content type; anything else
    is tried as JSON, then as a form, and finally kept as ``{"raw": text}``.
    Never raises.
    """
    text = body.decode("utf-8", errors="replace").strip()
    if not text:
        return {}
    content_type = (content_type or "").lower()

    def as_json() -> Optional[Dict[str, Any]]:
        try:
            decoded = json.loads(text)
        except ValueError:
            return None
        return decoded if isinstance(decoded, dict) else {"items": decoded}

    def as_form() -> Optional[Dict[str, Any]]:
        pairs = parse_qsl(text, keep_blank_values=True)
        return dict(pairs) if pairs else None

    if "application/x-www-form-urlencoded" in content_type:
        parsed = as_form()
    elif "json" in content_type:
        parsed = as_json()
    else:
        parsed = as_json() or (as_form() if "=" in text else None)

    if parsed is None:
        logger.warning("webhook_body_unparsed", content_type=content_type, size=len(body))
        return {"raw": text}
    return parsed


def _signal(shape: WebhookShape, acquirer: str, item: Mapping[str, Any]) -> InboundSignal:
    ids: List[str] = []
    for path in shape.id_fields:
        value = lookup_path(item, path)
        if value not in (None, "") and not isinstance(value, (dict, list)):
            if str(value) not in ids:
                ids.append(str(value))

    raw_status = first_value(item, shape.status_fields) or shape.implied_status
    return InboundSignal(
        correlation_ids=tuple(ids),
        raw_status=raw_status,
        status=normalize_status(acquirer, raw_status),
        paid_at_hint=parse_timestamp(first_value(item, shape.paid_at_fields)),
    )


def extract_signals(acquirer: str, payload: Mapping[str, Any]) -> List[InboundSignal]:
    """
    Extract every status report contained in a webhook payload.

    Args:
        acquirer: Acquirer the webhook was posted for
        payload: Parsed body

    Returns:
        List of signals (empty if the shape carries nothing usable)

    Raises:
        KeyError: For an acquirer with no registered shape
    """
    shape = WEBHOOK_SHAPES[acquirer]
    if shape.items_path:
        items = lookup_path(payload, shape.items_path)
        if not isinstance(items, list):
            return []
        return [_signal(shape, acquirer, item) for item in items if isinstance(item, dict)]
    return [_signal(shape, acquirer, payload)]
