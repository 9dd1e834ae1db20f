"""
Plain property store - CRUD for groups, fields and values with no policy.

The access engine only ever touches storage through the PropertyStore
protocol. SqlPropertyStore is the SQLAlchemy implementation.

Write methods that take a list commit once at the end, so a batch is either
fully stored or not at all. Reads never commit: an engine call that reads
field policy and then writes keeps both inside one session transaction.
"""
import copy
import logging
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.database import (
    PropertyFieldRecord, PropertyGroupRecord, PropertyValueRecord, utcnow,
)
from ..models.schemas import (
    PropertyField, PropertyFieldSearchOpts, PropertyGroup,
    PropertyValue, PropertyValueSearchOpts,
)
from .errors import InvalidInputError, NotFoundError

logger = logging.getLogger("property-access.store")


class PropertyStore(Protocol):
    """Narrow CRUD interface consumed by the access engine."""

    async def register_group(self, name: str) -> PropertyGroup: ...

    async def get_group(self, name: str) -> PropertyGroup: ...

    async def create_field(self, field: PropertyField) -> PropertyField: ...

    async def get_field(self, group_id: str, field_id: str) -> PropertyField: ...

    async def get_fields(self, group_id: str, ids: Sequence[str]) -> List[PropertyField]: ...

    async def get_field_by_name(self, group_id: str, target_id: str, name: str) -> PropertyField: ...

    async def search_fields(self, group_id: str, opts: PropertyFieldSearchOpts) -> List[PropertyField]: ...

    async def update_fields(self, group_id: str, fields: Sequence[PropertyField]) -> List[PropertyField]: ...

    async def delete_field(self, group_id: str, field_id: str) -> None: ...

    async def count_fields_for_group(self, group_id: str, include_deleted: bool = False) -> int: ...

    async def count_fields_for_target(
        self, group_id: str, target_type: str, target_id: str, include_deleted: bool = False
    ) -> int: ...

    async def create_values(self, values: Sequence[PropertyValue]) -> List[PropertyValue]: ...

    async def get_value(self, group_id: str, value_id: str) -> PropertyValue: ...

    async def get_values(self, group_id: str, ids: Sequence[str]) -> List[PropertyValue]: ...

    async def search_values(self, group_id: str, opts: PropertyValueSearchOpts) -> List[PropertyValue]: ...

    async def update_values(self, group_id: str, values: Sequence[PropertyValue]) -> List[PropertyValue]: ...

    async def upsert_values(self, values: Sequence[PropertyValue]) -> List[PropertyValue]: ...

    async def delete_value(self, group_id: str, value_id: str) -> None: ...

    async def delete_values_for_target(self, group_id: str, target_type: str, target_id: str) -> None: ...

    async def delete_values_for_field(self, group_id: str, field_id: str) -> None: ...


def _to_field(record: PropertyFieldRecord) -> PropertyField:
    field = PropertyField.model_validate(record)
    # Detach the JSON bag from the ORM row
    return field.model_copy(update={"attrs": copy.deepcopy(record.attrs)})


def _to_value(record: PropertyValueRecord) -> PropertyValue:
    value = PropertyValue.model_validate(record)
    return value.model_copy(update={"value": copy.deepcopy(record.value)})


class SqlPropertyStore:
    """PropertyStore backed by an AsyncSession."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ==================== GROUPS ====================

    async def register_group(self, name: str) -> PropertyGroup:
        """Get the group with this name, creating it on first use."""
        result = await self.db.execute(
            select(PropertyGroupRecord).where(PropertyGroupRecord.name == name)
        )
        record = result.scalar_one_or_none()
        if record is None:
            record = PropertyGroupRecord(name=name)
            self.db.add(record)
            await self._flush()
            group = PropertyGroup.model_validate(record)
            await self._commit()
            logger.info(f"Registered property group '{name}'", extra={"group_id": group.id})
            return group
        return PropertyGroup.model_validate(record)

    async def get_group(self, name: str) -> PropertyGroup:
        result = await self.db.execute(
            select(PropertyGroupRecord).where(PropertyGroupRecord.name == name)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"property group '{name}' not found")
        return PropertyGroup.model_validate(record)

    # ==================== FIELDS ====================

    async def create_field(self, field: PropertyField) -> PropertyField:
        await self._ensure_group_exists(field.group_id)
        await self._ensure_field_name_free(field.group_id, field.target_id, field.name)

        now = utcnow()
        record = PropertyFieldRecord(
            group_id=field.group_id,
            name=field.name,
            type=field.type,
            target_type=field.target_type,
            target_id=field.target_id,
            attrs=copy.deepcopy(field.attrs),
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        await self._flush()
        created = _to_field(record)
        await self._commit()
        return created

    async def get_field(self, group_id: str, field_id: str) -> PropertyField:
        """Fetch a field, tombstoned or not."""
        record = await self._get_field_record(group_id, field_id)
        return _to_field(record)

    async def get_fields(self, group_id: str, ids: Sequence[str]) -> List[PropertyField]:
        if not ids:
            return []
        result = await self.db.execute(
            select(PropertyFieldRecord).where(
                PropertyFieldRecord.group_id == group_id,
                PropertyFieldRecord.id.in_(list(ids)),
            )
        )
        by_id = {record.id: record for record in result.scalars().all()}
        # Keep the caller's order
        return [_to_field(by_id[field_id]) for field_id in ids if field_id in by_id]

    async def get_field_by_name(self, group_id: str, target_id: str, name: str) -> PropertyField:
        result = await self.db.execute(
            select(PropertyFieldRecord).where(
                PropertyFieldRecord.group_id == group_id,
                PropertyFieldRecord.target_id == target_id,
                PropertyFieldRecord.name == name,
                PropertyFieldRecord.delete_at.is_(None),
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"property field '{name}' not found", group_id=group_id)
        return _to_field(record)

    async def search_fields(self, group_id: str, opts: PropertyFieldSearchOpts) -> List[PropertyField]:
        query = select(PropertyFieldRecord).where(PropertyFieldRecord.group_id == group_id)
        if opts.target_type is not None:
            query = query.where(PropertyFieldRecord.target_type == opts.target_type)
        if opts.target_ids:
            query = query.where(PropertyFieldRecord.target_id.in_(opts.target_ids))
        if not opts.include_deleted:
            query = query.where(PropertyFieldRecord.delete_at.is_(None))
        query = (
            query.order_by(PropertyFieldRecord.created_at, PropertyFieldRecord.id)
            .offset(opts.page * opts.per_page)
            .limit(opts.per_page)
        )
        result = await self.db.execute(query)
        return [_to_field(record) for record in result.scalars().all()]

    async def update_fields(self, group_id: str, fields: Sequence[PropertyField]) -> List[PropertyField]:
        records = []
        now = utcnow()
        try:
            for field in fields:
                record = await self._get_field_record(group_id, field.id)
                if record.delete_at is not None:
                    raise NotFoundError(f"property field {field.id} not found", field_id=field.id)
                if (record.name, record.target_id) != (field.name, field.target_id):
                    await self._ensure_field_name_free(group_id, field.target_id, field.name, exclude_id=field.id)
                record.name = field.name
                record.type = field.type
                record.target_type = field.target_type
                record.target_id = field.target_id
                # New dict so the JSON column is flagged dirty
                record.attrs = copy.deepcopy(field.attrs)
                record.updated_at = now
                records.append(record)
        except Exception:
            await self.db.rollback()
            raise
        await self._flush()
        updated = [_to_field(record) for record in records]
        await self._commit()
        return updated

    async def delete_field(self, group_id: str, field_id: str) -> None:
        """Tombstone a field together with its values."""
        record = await self._get_field_record(group_id, field_id)
        if record.delete_at is not None:
            raise NotFoundError(f"property field {field_id} not found", field_id=field_id)
        now = utcnow()
        record.delete_at = now
        await self.db.execute(
            update(PropertyValueRecord)
            .where(
                PropertyValueRecord.field_id == field_id,
                PropertyValueRecord.delete_at.is_(None),
            )
            .values(delete_at=now)
        )
        await self._commit()

    async def count_fields_for_group(self, group_id: str, include_deleted: bool = False) -> int:
        query = select(func.count(PropertyFieldRecord.id)).where(PropertyFieldRecord.group_id == group_id)
        if not include_deleted:
            query = query.where(PropertyFieldRecord.delete_at.is_(None))
        result = await self.db.execute(query)
        return result.scalar_one()

    async def count_fields_for_target(
        self, group_id: str, target_type: str, target_id: str, include_deleted: bool = False
    ) -> int:
        query = select(func.count(PropertyFieldRecord.id)).where(
            PropertyFieldRecord.group_id == group_id,
            PropertyFieldRecord.target_type == target_type,
            PropertyFieldRecord.target_id == target_id,
        )
        if not include_deleted:
            query = query.where(PropertyFieldRecord.delete_at.is_(None))
        result = await self.db.execute(query)
        return result.scalar_one()

    # ==================== VALUES ====================

    async def create_values(self, values: Sequence[PropertyValue]) -> List[PropertyValue]:
        now = utcnow()
        records = [
            PropertyValueRecord(
                group_id=value.group_id,
                field_id=value.field_id,
                target_type=value.target_type,
                target_id=value.target_id,
                value=copy.deepcopy(value.value),
                created_at=now,
                updated_at=now,
            )
            for value in values
        ]
        self.db.add_all(records)
        await self._flush()
        created = [_to_value(record) for record in records]
        await self._commit()
        return created

    async def get_value(self, group_id: str, value_id: str) -> PropertyValue:
        result = await self.db.execute(
            select(PropertyValueRecord).where(
                PropertyValueRecord.group_id == group_id,
                PropertyValueRecord.id == value_id,
                PropertyValueRecord.delete_at.is_(None),
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"property value {value_id} not found", value_id=value_id)
        return _to_value(record)

    async def get_values(self, group_id: str, ids: Sequence[str]) -> List[PropertyValue]:
        if not ids:
            return []
        result = await self.db.execute(
            select(PropertyValueRecord).where(
                PropertyValueRecord.group_id == group_id,
                PropertyValueRecord.id.in_(list(ids)),
                PropertyValueRecord.delete_at.is_(None),
            )
        )
        by_id = {record.id: record for record in result.scalars().all()}
        return [_to_value(by_id[value_id]) for value_id in ids if value_id in by_id]

    async def search_values(self, group_id: str, opts: PropertyValueSearchOpts) -> List[PropertyValue]:
        query = select(PropertyValueRecord).where(PropertyValueRecord.group_id == group_id)
        if opts.field_id is not None:
            query = query.where(PropertyValueRecord.field_id == opts.field_id)
        if opts.target_type is not None:
            query = query.where(PropertyValueRecord.target_type == opts.target_type)
        if opts.target_ids:
            query = query.where(PropertyValueRecord.target_id.in_(opts.target_ids))
        if not opts.include_deleted:
            query = query.where(PropertyValueRecord.delete_at.is_(None))
        query = (
            query.order_by(PropertyValueRecord.created_at, PropertyValueRecord.id)
            .offset(opts.page * opts.per_page)
            .limit(opts.per_page)
        )
        result = await self.db.execute(query)
        return [_to_value(record) for record in result.scalars().all()]

    async def update_values(self, group_id: str, values: Sequence[PropertyValue]) -> List[PropertyValue]:
        """Replace the payload of existing values. Field and target never move."""
        records = []
        now = utcnow()
        try:
            for value in values:
                record = await self._get_value_record(group_id, value.id)
                record.value = copy.deepcopy(value.value)
                record.updated_at = now
                records.append(record)
        except Exception:
            await self.db.rollback()
            raise
        await self._flush()
        updated = [_to_value(record) for record in records]
        await self._commit()
        return updated

    async def upsert_values(self, values: Sequence[PropertyValue]) -> List[PropertyValue]:
        """Create or replace the live value for each (group, target, field)."""
        records = []
        now = utcnow()
        try:
            for value in values:
                result = await self.db.execute(
                    select(PropertyValueRecord).where(
                        PropertyValueRecord.group_id == value.group_id,
                        PropertyValueRecord.target_id == value.target_id,
                        PropertyValueRecord.field_id == value.field_id,
                        PropertyValueRecord.delete_at.is_(None),
                    )
                )
                record = result.scalar_one_or_none()
                if record is None:
                    record = PropertyValueRecord(
                        group_id=value.group_id,
                        field_id=value.field_id,
                        target_type=value.target_type,
                        target_id=value.target_id,
                        created_at=now,
                    )
                    self.db.add(record)
                record.value = copy.deepcopy(value.value)
                record.updated_at = now
                records.append(record)
                # Later items in the same batch must see this row
                await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise InvalidInputError("property value could not be stored") from e
        except Exception:
            await self.db.rollback()
            raise
        upserted = [_to_value(record) for record in records]
        await self._commit()
        return upserted

    async def delete_value(self, group_id: str, value_id: str) -> None:
        record = await self._get_value_record(group_id, value_id)
        record.delete_at = utcnow()
        await self._commit()

    async def delete_values_for_target(self, group_id: str, target_type: str, target_id: str) -> None:
        await self.db.execute(
            update(PropertyValueRecord)
            .where(
                PropertyValueRecord.group_id == group_id,
                PropertyValueRecord.target_type == target_type,
                PropertyValueRecord.target_id == target_id,
                PropertyValueRecord.delete_at.is_(None),
            )
            .values(delete_at=utcnow())
        )
        await self._commit()

    async def delete_values_for_field(self, group_id: str, field_id: str) -> None:
        await self.db.execute(
            update(PropertyValueRecord)
            .where(
                PropertyValueRecord.group_id == group_id,
                PropertyValueRecord.field_id == field_id,
                PropertyValueRecord.delete_at.is_(None),
            )
            .values(delete_at=utcnow())
        )
        await self._commit()

    # ==================== HELPERS ====================

    async def _flush(self) -> None:
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Property write rejected by constraint: {e.orig}")
            raise InvalidInputError("property write violates a uniqueness constraint") from e

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            logger.warning(f"Property write rejected by constraint: {e.orig}")
            raise InvalidInputError("property write violates a uniqueness constraint") from e
        except Exception:
            await self.db.rollback()
            raise

    async def _ensure_group_exists(self, group_id: str) -> None:
        result = await self.db.execute(
            select(PropertyGroupRecord.id).where(PropertyGroupRecord.id == group_id)
        )
        if result.scalar_one_or_none() is None:
            raise NotFoundError(f"property group {group_id} not found", group_id=group_id)

    async def _ensure_field_name_free(
        self, group_id: str, target_id: str, name: str, exclude_id: Optional[str] = None
    ) -> None:
        query = select(PropertyFieldRecord.id).where(
            PropertyFieldRecord.group_id == group_id,
            PropertyFieldRecord.target_id == target_id,
            PropertyFieldRecord.name == name,
            PropertyFieldRecord.delete_at.is_(None),
        )
        if exclude_id:
            query = query.where(PropertyFieldRecord.id != exclude_id)
        result = await self.db.execute(query)
        if result.first() is not None:
            raise InvalidInputError(f"property field '{name}' already exists", group_id=group_id)

    async def _get_field_record(self, group_id: str, field_id: str) -> PropertyFieldRecord:
        result = await self.db.execute(
            select(PropertyFieldRecord).where(
                PropertyFieldRecord.group_id == group_id,
                PropertyFieldRecord.id == field_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"property field {field_id} not found", field_id=field_id)
        return record

    async def _get_value_record(self, group_id: str, value_id: str) -> PropertyValueRecord:
        result = await self.db.execute(
            select(PropertyValueRecord).where(
                PropertyValueRecord.group_id == group_id,
                PropertyValueRecord.id == value_id,
                PropertyValueRecord.delete_at.is_(None),
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundError(f"property value {value_id} not found", value_id=value_id)
        return record


async def fetch_all_values(
    store: PropertyStore, group_id: str, opts: PropertyValueSearchOpts
) -> List[PropertyValue]:
    """Walk every page of a value search."""
    values: List[PropertyValue] = []
    page = opts.page
    while True:
        batch = await store.search_values(group_id, opts.model_copy(update={"page": page}))
        values.extend(batch)
        if len(batch) < opts.per_page:
            return values
        page += 1


def distinct_field_refs(values: Iterable[PropertyValue]) -> List[tuple]:
    """(group_id, field_id) pairs in first-seen order."""
    seen: Dict[tuple, None] = {}
    for value in values:
        seen.setdefault((value.group_id, value.field_id), None)
    return list(seen)
