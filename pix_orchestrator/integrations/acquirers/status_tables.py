"""
Per-acquirer status vocabularies.

Each acquirer's raw status strings are mapped explicitly into the closed
NormalizedStatus set. Lookups are exact after upper-casing and trimming; no
accent folding is applied, so every observed encoding variant of a status is
listed on its own. Anything not listed is PENDING.
"""
from enum import Enum
from typing import Dict, Mapping, Optional


class NormalizedStatus(str, Enum):
    """Provider-agnostic charge status."""

    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    PAID = "paid"
    EXPIRED = "expired"


PAID = NormalizedStatus.PAID
AWAITING = NormalizedStatus.AWAITING_PAYMENT
EXPIRED = NormalizedStatus.EXPIRED

# "CONCLUÍDA" as seen over the wire in UTF-8, Latin-1-misdecoded and Mac-Roman-misdecoded forms
CONCLUIDA_VARIANTS = ("CONCLUÍDA", "CONCLUÃDA", "CONCLUÃ\u008dDA", "CONCLU√çDA")


def _table(
    paid: tuple[str, ...] = (),
    awaiting: tuple[str, ...] = (),
    expired: tuple[str, ...] = (),
) -> Dict[str, NormalizedStatus]:
    table: Dict[str, NormalizedStatus] = {}
    for statuses, normalized in ((paid, PAID), (awaiting, AWAITING), (expired, EXPIRED)):
        for raw in statuses:
            table[raw.upper()] = normalized
    return table


STATUS_TABLES: Mapping[str, Mapping[str, NormalizedStatus]] = {
    "ativus": _table(
        paid=("CONCLUIDO", *CONCLUIDA_VARIANTS, "PAGO", "PAID", "APPROVED", "CONFIRMED", "COMPLETED"),
        awaiting=("AGUARDANDO_PAGAMENTO",),
        expired=("EXPIRADO", "EXPIRED", "CANCELADO"),
    ),
    "valorion": _table(
        paid=(
            "PAID_OUT",
            "CONCLUIDO",
            *CONCLUIDA_VARIANTS,
            "PAGO",
            "PAID",
            "APPROVED",
            "CONFIRMED",
            "COMPLETED",
        ),
        awaiting=("AGUARDANDO_PAGAMENTO", "WAITING", "PENDING"),
        expired=("EXPIRADO", "EXPIRED", "CANCELADO", "CANCELED"),
    ),
    # SpedPay reports a settled PIX as AUTHORIZED
    "spedpay": _table(paid=("AUTHORIZED", "APPROVED", "PAID", "COMPLETED")),
    # BACEN Pix cob API (Banco Inter, Efí)
    "inter": _table(
        paid=("CONCLUIDA",),
        awaiting=("ATIVA",),
        expired=("REMOVIDA_PELO_USUARIO_RECEBEDOR", "REMOVIDA_PELO_PSP"),
    ),
    "efi": _table(
        paid=("CONCLUIDA",),
        awaiting=("ATIVA",),
        expired=("REMOVIDA_PELO_USUARIO_RECEBEDOR", "REMOVIDA_PELO_PSP"),
    ),
}


def normalize_status(acquirer: str, raw_status: Optional[str]) -> NormalizedStatus:
    """
    Map an acquirer's raw status into the normalized vocabulary.

    Args:
        acquirer: Acquirer name
        raw_status: Status string exactly as the acquirer sent it

    Returns:
        NormalizedStatus: PENDING for unknown acquirers, empty or unlisted statuses
    """
    if not raw_status:
        return NormalizedStatus.PENDING
    table = STATUS_TABLES.get(acquirer, {})
    return table.get(raw_status.strip().upper(), NormalizedStatus.PENDING)
