"""Access to the business records workflows read and mutate."""

from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import NotFoundError
from db.models.business_record import BusinessRecord
from services.base import BaseService


class RecordService(BaseService[BusinessRecord]):
    """CRUD for BusinessRecord, scoped by organization and object type."""

    not_found_message = "Record not found"

    def __init__(self, db: AsyncSession):
        super().__init__(BusinessRecord, db)

    async def find(
        self,
        organization_id: str,
        object_type: str,
        record_id: str,
    ) -> Optional[BusinessRecord]:
        result = await self.db.execute(
            select(BusinessRecord).where(
                BusinessRecord.id == record_id,
                BusinessRecord.organization_id == organization_id,
                BusinessRecord.object_type == object_type,
                BusinessRecord.is_deleted == False,  # noqa: E712
            )
        )
        return result.scalar_one_or_none()

    async def get_record(self, organization_id: str, object_type: str, record_id: str) -> BusinessRecord:
        record = await self.find(organization_id, object_type, record_id)
        if record is None:
            raise NotFoundError(f"{object_type} record {record_id} not found")
        return record

    async def list_for_object_type(
        self,
        organization_id: str,
        object_type: str,
        limit: int = 100,
    ) -> Sequence[BusinessRecord]:
        """Records offered in the manual-trigger picker, newest first."""
        items, _ = await self.list(
            organization_id=organization_id,
            limit=limit,
            filters={"object_type": object_type},
        )
        return items

    async def create_record(
        self,
        organization_id: str,
        object_type: str,
        data: dict[str, Any],
        client_id: Optional[str] = None,
    ) -> BusinessRecord:
        return await self.create({
            "organization_id": organization_id,
            "object_type": object_type,
            "client_id": client_id,
            "data": dict(data),
        })

    async def set_field(self, record: BusinessRecord, field: str, value: Any) -> BusinessRecord:
        """Set one field; the JSON column is reassigned so the change is detected."""
        data = dict(record.data or {})
        data[field] = value
        record.data = data
        await self.db.flush()
        return record
