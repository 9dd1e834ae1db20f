"""
Property access service - the policy layer in front of the property store.

Every public method takes the resolved Caller first. Read denial degrades to
redacted options or None; write denial raises PermissionDeniedError before
anything is stored. Bulk writes are authorized as a whole by BatchCoordinator.
"""
from typing import List, Optional, Sequence
import logging

from ...models.schemas import (
    PropertyField, PropertyFieldSearchOpts, PropertyGroup,
    PropertyValue, PropertyValueSearchOpts,
)
from ...utils.logging import caller_context
from ..errors import NotFoundError
from ..store import PropertyStore
from .batch import BatchCoordinator
from .caller import Caller
from .read import ReadAccessEvaluator
from .write import PluginInstalledPredicate, WriteAccessEvaluator

logger = logging.getLogger("property-access.engine")


class PropertyAccessService:
    """
    Access-controlled property operations.

    Usage:
        service = PropertyAccessService(SqlPropertyStore(db), plugins.is_installed)
        field = await service.get_property_field(Caller.user(user_id), group_id, field_id)
    """

    def __init__(self, store: PropertyStore, is_plugin_installed: PluginInstalledPredicate):
        self.store = store
        self.reader = ReadAccessEvaluator(store)
        self.writer = WriteAccessEvaluator(is_plugin_installed)
        self.batch = BatchCoordinator(store, self.writer)

    # ==================== GROUPS ====================

    async def register_property_group(self, name: str) -> PropertyGroup:
        return await self.store.register_group(name)

    async def get_property_group(self, name: str) -> PropertyGroup:
        return await self.store.get_group(name)

    # ==================== FIELDS ====================

    async def create_property_field(self, caller: Caller, field: PropertyField) -> PropertyField:
        """Create a field with no ownership. protected and source_plugin_id are refused."""
        with caller_context(caller):
            self.writer.validate_new_field(field)
            created = await self.store.create_field(field)
            logger.info(
                f"Created property field '{created.name}'",
                extra={"field_id": created.id, "group_id": created.group_id}
            )
            return created

    async def create_property_field_for_plugin(self, plugin_id: str, field: PropertyField) -> PropertyField:
        """Create a field owned by plugin_id. Any supplied source_plugin_id is overwritten."""
        with caller_context(f"plugin:{plugin_id}"):
            prepared = self.writer.prepare_plugin_field(plugin_id, field)
            created = await self.store.create_field(prepared)
            logger.info(
                f"Created property field '{created.name}' for plugin '{plugin_id}'",
                extra={"field_id": created.id, "group_id": created.group_id, "protected": created.protected}
            )
            return created

    async def get_property_field(self, caller: Caller, group_id: str, field_id: str) -> PropertyField:
        with caller_context(caller):
            field = await self.store.get_field(group_id, field_id)
            if field.is_deleted:
                raise NotFoundError(f"property field {field_id} not found", field_id=field_id)
            return await self.reader.filter_field(caller, field)

    async def get_property_field_by_name(
        self, caller: Caller, group_id: str, target_id: str, name: str
    ) -> PropertyField:
        with caller_context(caller):
            field = await self.store.get_field_by_name(group_id, target_id, name)
            return await self.reader.filter_field(caller, field)

    async def get_property_fields(self, caller: Caller, group_id: str, ids: Sequence[str]) -> List[PropertyField]:
        with caller_context(caller):
            fields = [field for field in await self.store.get_fields(group_id, ids) if not field.is_deleted]
            return await self.reader.filter_fields(caller, fields)

    async def search_property_fields(
        self, caller: Caller, group_id: str, opts: Optional[PropertyFieldSearchOpts] = None
    ) -> List[PropertyField]:
        with caller_context(caller):
            fields = await self.store.search_fields(group_id, opts or PropertyFieldSearchOpts())
            return await self.reader.filter_fields(caller, fields)

    async def update_property_field(self, caller: Caller, group_id: str, field: PropertyField) -> PropertyField:
        updated = await self.update_property_fields(caller, group_id, [field])
        return updated[0]

    async def update_property_fields(
        self, caller: Caller, group_id: str, fields: Sequence[PropertyField]
    ) -> List[PropertyField]:
        """Update fields all-or-nothing. One denied field fails the whole batch."""
        if not fields:
            return []
        with caller_context(caller):
            prepared = await self.batch.authorize_field_updates(caller, group_id, fields)
            updated = await self.store.update_fields(group_id, prepared)
            logger.info(f"Updated {len(updated)} property fields", extra={"group_id": group_id})
            return await self.reader.filter_fields(caller, updated)

    async def delete_property_field(self, caller: Caller, group_id: str, field_id: str) -> None:
        with caller_context(caller):
            field = await self.store.get_field(group_id, field_id)
            if field.is_deleted:
                raise NotFoundError(f"property field {field_id} not found", field_id=field_id)
            self.writer.check_field_delete(caller, field)
            await self.store.delete_field(group_id, field_id)
            logger.info(f"Deleted property field {field_id}", extra={"group_id": group_id})

    async def count_property_fields_for_group(self, group_id: str, include_deleted: bool = False) -> int:
        return await self.store.count_fields_for_group(group_id, include_deleted)

    async def count_property_fields_for_target(
        self, group_id: str, target_type: str, target_id: str, include_deleted: bool = False
    ) -> int:
        return await self.store.count_fields_for_target(group_id, target_type, target_id, include_deleted)

    # ==================== VALUES ====================

    async def create_property_value(self, caller: Caller, value: PropertyValue) -> PropertyValue:
        created = await self.create_property_values(caller, [value])
        return created[0]

    async def create_property_values(self, caller: Caller, values: Sequence[PropertyValue]) -> List[PropertyValue]:
        """Create values, possibly across fields and groups, all-or-nothing."""
        if not values:
            return []
        with caller_context(caller):
            await self.batch.authorize_values(caller, values)
            created = await self.store.create_values(values)
            logger.info(f"Created {len(created)} property values")
            return created

    async def get_property_value(self, caller: Caller, group_id: str, value_id: str) -> Optional[PropertyValue]:
        """Return the value as the caller may see it. None means not visible."""
        with caller_context(caller):
            value = await self.store.get_value(group_id, value_id)
            fields = await self.store.get_fields(group_id, [value.field_id])
            if not fields:
                return None
            return await self.reader.filter_value(caller, fields[0], value)

    async def get_property_values(self, caller: Caller, group_id: str, ids: Sequence[str]) -> List[PropertyValue]:
        with caller_context(caller):
            values = await self.store.get_values(group_id, ids)
            return await self.reader.filter_values(caller, values)

    async def search_property_values(
        self, caller: Caller, group_id: str, opts: Optional[PropertyValueSearchOpts] = None
    ) -> List[PropertyValue]:
        with caller_context(caller):
            values = await self.store.search_values(group_id, opts or PropertyValueSearchOpts())
            return await self.reader.filter_values(caller, values)

    async def update_property_value(self, caller: Caller, group_id: str, value: PropertyValue) -> PropertyValue:
        updated = await self.update_property_values(caller, group_id, [value])
        return updated[0]

    async def update_property_values(
        self, caller: Caller, group_id: str, values: Sequence[PropertyValue]
    ) -> List[PropertyValue]:
        if not values:
            return []
        with caller_context(caller):
            await self.batch.authorize_value_updates(caller, group_id, values)
            updated = await self.store.update_values(group_id, values)
            logger.info(f"Updated {len(updated)} property values", extra={"group_id": group_id})
            return updated

    async def upsert_property_value(self, caller: Caller, value: PropertyValue) -> PropertyValue:
        upserted = await self.upsert_property_values(caller, [value])
        return upserted[0]

    async def upsert_property_values(self, caller: Caller, values: Sequence[PropertyValue]) -> List[PropertyValue]:
        if not values:
            return []
        with caller_context(caller):
            await self.batch.authorize_values(caller, values)
            upserted = await self.store.upsert_values(values)
            logger.info(f"Upserted {len(upserted)} property values")
            return upserted

    async def delete_property_value(self, caller: Caller, group_id: str, value_id: str) -> None:
        with caller_context(caller):
            value = await self.store.get_value(group_id, value_id)
            fields = await self.batch.resolve_fields([(group_id, value.field_id)], include_deleted=True)
            self.writer.check_value_write(caller, fields[(group_id, value.field_id)])
            await self.store.delete_value(group_id, value_id)

    async def delete_property_values_for_target(
        self, caller: Caller, group_id: str, target_type: str, target_id: str
    ) -> None:
        """Delete all of a target's values, provided caller may write every field involved."""
        with caller_context(caller):
            count = await self.batch.authorize_target_delete(caller, group_id, target_type, target_id)
            await self.store.delete_values_for_target(group_id, target_type, target_id)
            logger.info(
                f"Deleted {count} property values of {target_type} {target_id}",
                extra={"group_id": group_id}
            )

    async def delete_property_values_for_field(self, caller: Caller, group_id: str, field_id: str) -> None:
        with caller_context(caller):
            field = await self.store.get_field(group_id, field_id)
            self.writer.check_value_write(caller, field)
            await self.store.delete_values_for_field(group_id, field_id)
            logger.info(f"Deleted values of property field {field_id}", extra={"group_id": group_id})
