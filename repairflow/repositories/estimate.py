"""SQL-backed estimate repository.

Rows keep the whole aggregate as a JSON document. Updates are a
compare-and-set on ``version`` so two processes sharing one database can
never both commit a change derived from the same snapshot.
"""

from __future__ import annotations

from typing import Any, Optional

from repairflow.db.models import EstimateRow
from repairflow.domain.estimate import Estimate
from repairflow.repositories.base import BaseRepository, to_db_datetime


class SqlEstimateRepository(BaseRepository[EstimateRow]):
    model = EstimateRow

    @staticmethod
    def _columns(estimate: Estimate) -> dict[str, Any]:
        return {
            "id": estimate.id,
            "requester_id": estimate.requester_id,
            "recipient_shop_id": estimate.recipient_shop_id,
            "status": estimate.status.value,
            "version": estimate.version,
            "expires_at": to_db_datetime(estimate.expires_at),
            "created_at": to_db_datetime(estimate.created_at),
            "updated_at": to_db_datetime(estimate.updated_at),
            "document": estimate.model_dump(mode="json"),
        }

    @staticmethod
    def _to_domain(row: EstimateRow) -> Estimate:
        return Estimate.model_validate(row.document)

    async def save(self, estimate: Estimate, *, expected_version: Optional[int] = None) -> bool:
        columns = self._columns(estimate)
        if expected_version is None:
            return await self.insert(EstimateRow(**columns))
        changed = await self.update_where(
            EstimateRow.id == estimate.id,
            EstimateRow.version == expected_version,
            **columns,
        )
        return changed > 0

    async def find_by_id(self, estimate_id: str) -> Optional[Estimate]:
        row = await self.get_by_id(estimate_id)
        return self._to_domain(row) if row is not None else None

    async def find_by_owner(self, requester_id: str) -> list[Estimate]:
        rows = await self.list_rows(filters={"requester_id": requester_id})
        return [self._to_domain(r) for r in rows]

    async def find_by_recipient(self, shop_id: str) -> list[Estimate]:
        rows = await self.list_rows(filters={"recipient_shop_id": shop_id})
        return [self._to_domain(r) for r in rows]
