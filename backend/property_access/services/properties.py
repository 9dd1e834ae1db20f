"""
Application-layer router for property operations.

Only the controlled group goes through the access engine; every other group
talks to the store directly with no policy. The controlled group is resolved
once at startup and handed in, never looked up lazily.
"""
from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging

from ..models.schemas import (
    PropertyField, PropertyFieldSearchOpts, PropertyGroup,
    PropertyValue, PropertyValueSearchOpts,
)
from .access import Caller, PropertyAccessService
from .errors import InvalidInputError, NotFoundError
from .store import PropertyStore

logger = logging.getLogger("property-access.app")


@dataclass(frozen=True)
class ControlledGroup:
    """The property group subject to access control."""
    id: str
    name: str


async def resolve_controlled_group(store: PropertyStore, name: str) -> ControlledGroup:
    """Register (or fetch) the controlled group. Call once at startup."""
    group = await store.register_group(name)
    logger.info(f"Access control enabled for property group '{name}'", extra={"group_id": group.id})
    return ControlledGroup(id=group.id, name=group.name)


class PropertyApp:
    """Routes each call to the access engine or straight to the store."""

    def __init__(self, store: PropertyStore, access: PropertyAccessService, controlled: ControlledGroup):
        self.store = store
        self.access = access
        self.controlled = controlled

    def is_controlled(self, group_id: str) -> bool:
        return group_id == self.controlled.id

    def touches_controlled(self, values: Sequence[PropertyValue]) -> bool:
        """True when any value of a batch belongs to the controlled group."""
        return any(self.is_controlled(value.group_id) for value in values)

    # ==================== GROUPS ====================

    async def register_property_group(self, name: str) -> PropertyGroup:
        return await self.store.register_group(name)

    async def get_property_group(self, name: str) -> PropertyGroup:
        return await self.store.get_group(name)

    # ==================== FIELDS ====================

    async def create_property_field(self, caller: Caller, field: PropertyField) -> PropertyField:
        if not self.is_controlled(field.group_id):
            return await self.store.create_field(field)
        if caller.is_plugin:
            return await self.access.create_property_field_for_plugin(caller.id, field)
        return await self.access.create_property_field(caller, field)

    async def get_property_field(self, caller: Caller, group_id: str, field_id: str) -> PropertyField:
        if self.is_controlled(group_id):
            return await self.access.get_property_field(caller, group_id, field_id)
        field = await self.store.get_field(group_id, field_id)
        if field.is_deleted:
            raise NotFoundError(f"property field {field_id} not found", field_id=field_id)
        return field

    async def get_property_field_by_name(
        self, caller: Caller, group_id: str, target_id: str, name: str
    ) -> PropertyField:
        if self.is_controlled(group_id):
            return await self.access.get_property_field_by_name(caller, group_id, target_id, name)
        return await self.store.get_field_by_name(group_id, target_id, name)

    async def get_property_fields(self, caller: Caller, group_id: str, ids: Sequence[str]) -> List[PropertyField]:
        if self.is_controlled(group_id):
            return await self.access.get_property_fields(caller, group_id, ids)
        return [field for field in await self.store.get_fields(group_id, ids) if not field.is_deleted]

    async def search_property_fields(
        self, caller: Caller, group_id: str, opts: Optional[PropertyFieldSearchOpts] = None
    ) -> List[PropertyField]:
        if self.is_controlled(group_id):
            return await self.access.search_property_fields(caller, group_id, opts)
        return await self.store.search_fields(group_id, opts or PropertyFieldSearchOpts())

    async def update_property_field(self, caller: Caller, group_id: str, field: PropertyField) -> PropertyField:
        updated = await self.update_property_fields(caller, group_id, [field])
        return updated[0]

    async def update_property_fields(
        self, caller: Caller, group_id: str, fields: Sequence[PropertyField]
    ) -> List[PropertyField]:
        if not fields:
            raise InvalidInputError("no property fields to update")
        if self.is_controlled(group_id):
            return await self.access.update_property_fields(caller, group_id, fields)
        return await self.store.update_fields(group_id, fields)

    async def delete_property_field(self, caller: Caller, group_id: str, field_id: str) -> None:
        if self.is_controlled(group_id):
            await self.access.delete_property_field(caller, group_id, field_id)
        else:
            await self.store.delete_field(group_id, field_id)

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
        if not values:
            raise InvalidInputError("no property values to create")
        if self.touches_controlled(values):
            return await self.access.create_property_values(caller, values)
        return await self.store.create_values(values)

    async def get_property_value(self, caller: Caller, group_id: str, value_id: str) -> Optional[PropertyValue]:
        if self.is_controlled(group_id):
            return await self.access.get_property_value(caller, group_id, value_id)
        return await self.store.get_value(group_id, value_id)

    async def get_property_values(self, caller: Caller, group_id: str, ids: Sequence[str]) -> List[PropertyValue]:
        if self.is_controlled(group_id):
            return await self.access.get_property_values(caller, group_id, ids)
        return await self.store.get_values(group_id, ids)

    async def search_property_values(
        self, caller: Caller, group_id: str, opts: Optional[PropertyValueSearchOpts] = None
    ) -> List[PropertyValue]:
        if self.is_controlled(group_id):
            return await self.access.search_property_values(caller, group_id, opts)
        return await self.store.search_values(group_id, opts or PropertyValueSearchOpts())

    async def update_property_value(self, caller: Caller, group_id: str, value: PropertyValue) -> PropertyValue:
        updated = await self.update_property_values(caller, group_id, [value])
        return updated[0]

    async def update_property_values(
        self, caller: Caller, group_id: str, values: Sequence[PropertyValue]
    ) -> List[PropertyValue]:
        if not values:
            raise InvalidInputError("no property values to update")
        if self.is_controlled(group_id):
            return await self.access.update_property_values(caller, group_id, values)
        return await self.store.update_values(group_id, values)

    async def upsert_property_value(self, caller: Caller, value: PropertyValue) -> PropertyValue:
        upserted = await self.upsert_property_values(caller, [value])
        return upserted[0]

    async def upsert_property_values(self, caller: Caller, values: Sequence[PropertyValue]) -> List[PropertyValue]:
        if not values:
            raise InvalidInputError("no property values to upsert")
        if self.touches_controlled(values):
            return await self.access.upsert_property_values(caller, values)
        return await self.store.upsert_values(values)

    async def delete_property_value(self, caller: Caller, group_id: str, value_id: str) -> None:
        if self.is_controlled(group_id):
            await self.access.delete_property_value(caller, group_id, value_id)
        else:
            await self.store.delete_value(group_id, value_id)

    async def delete_property_values_for_target(
        self, caller: Caller, group_id: str, target_type: str, target_id: str
    ) -> None:
        if self.is_controlled(group_id):
            await self.access.delete_property_values_for_target(caller, group_id, target_type, target_id)
        else:
            await self.store.delete_values_for_target(group_id, target_type, target_id)

    async def delete_property_values_for_field(self, caller: Caller, group_id: str, field_id: str) -> None:
        if self.is_controlled(group_id):
            await self.access.delete_property_values_for_field(caller, group_id, field_id)
        else:
            await self.store.delete_values_for_field(group_id, field_id)
