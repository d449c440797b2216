"""
Acquirer routing and credential resolution.

Routing rows and credential values are resolved through the same ordered
chain: account-scoped override, then global override, then static default
from settings. The result is a ResolvedAcquirer handed to the adapter, so
adapters never look configuration up themselves.
"""
import dataclasses
from typing import Dict, List, Optional

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from pix_orchestrator.config import Settings, get_settings
from pix_orchestrator.database.models import AccountSetting, AcquirerConfig
from pix_orchestrator.integrations.acquirers import AcquirerCredentials, ResolvedAcquirer

logger = structlog.get_logger(__name__)

CREDENTIAL_FIELDS = tuple(f.name for f in dataclasses.fields(AcquirerCredentials))


def setting_key(acquirer: str, field: str) -> str:
    """AccountSetting key for one credential field, e.g. ``ativus_api_key``."""
    return f"{acquirer}_{field}"


class AcquirerConfigResolver:
    """Builds ResolvedAcquirer objects for an account."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    async def _rows(self, db: AsyncSession, account_id: str) -> Dict[str, AcquirerConfig]:
        """Effective AcquirerConfig per acquirer name (account row replaces global row)."""
        result = await db.execute(
            select(AcquirerConfig).where(
                or_(AcquirerConfig.account_id == account_id, AcquirerConfig.account_id.is_(None))
            )
        )
        effective: Dict[str, AcquirerConfig] = {}
        for row in result.scalars():
            current = effective.get(row.name)
            if current is None or (current.account_id is None and row.account_id is not None):
                effective[row.name] = row
        return effective

    async def _credentials(
        self, db: AsyncSession, account_id: str, acquirer: str
    ) -> AcquirerCredentials:
        values: Dict[str, str] = {
            k: v
            for k, v in self.settings.acquirer_credentials.get(acquirer, {}).items()
            if k in CREDENTIAL_FIELDS and v
        }

        keys = {setting_key(acquirer, f): f for f in CREDENTIAL_FIELDS}
        result = await db.execute(
            select(AccountSetting).where(
                AccountSetting.key.in_(keys),
                or_(AccountSetting.account_id == account_id, AccountSetting.account_id.is_(None)),
            )
        )
        rows = list(result.scalars())
        # Global layer first so account values overwrite it
        for row in sorted(rows, key=lambda r: r.account_id is not None):
            if row.value:
                values[keys[row.key]] = row.value

        return AcquirerCredentials(**values)

    def _resolved(
        self, row: Optional[AcquirerConfig], acquirer: str, credentials: AcquirerCredentials
    ) -> ResolvedAcquirer:
        return ResolvedAcquirer(
            name=acquirer,
            credentials=credentials,
            base_url=row.base_url if row else None,
            status_url=row.status_url if row else None,
            priority=row.priority if row else 100,
            force_failure=row.force_failure if row else False,
        )

    async def candidates(self, db: AsyncSession, account_id: str) -> List[ResolvedAcquirer]:
        """
        Ordered failover sequence for new charges.

        Args:
            db: Database session
            account_id: Owning account

        Returns:
            Enabled acquirers sorted by (priority, name); fault-injected ones included
        """
        rows = await self._rows(db, account_id)
        enabled = sorted(
            (row for row in rows.values() if row.enabled),
            key=lambda row: (row.priority, row.name),
        )
        resolved = []
        for row in enabled:
            credentials = await self._credentials(db, account_id, row.name)
            resolved.append(self._resolved(row, row.name, credentials))
        logger.debug(
            "acquirer_candidates_resolved",
            account_id=account_id,
            candidates=[r.name for r in resolved],
        )
        return resolved

    async def resolve(self, db: AsyncSession, account_id: str, acquirer: str) -> ResolvedAcquirer:
        """
        Configuration for one named acquirer, enabled or not.

        Used for status checks on existing charges, which must keep working
        after an acquirer is disabled for new traffic.
        """
        rows = await self._rows(db, account_id)
        credentials = await self._credentials(db, account_id, acquirer)
        return self._resolved(rows.get(acquirer), acquirer, credentials)
