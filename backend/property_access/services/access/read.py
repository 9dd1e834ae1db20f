"""Read-side access evaluation: option redaction and value visibility"""
from typing import Any, Dict, List, Optional, Set, Tuple
import logging

from ...constants import ATTR_OPTIONS, MAX_PAGE_SIZE
from ...models.database import PropertyFieldType
from ...models.schemas import (
    AccessMode, PropertyField, PropertyValue, PropertyValueSearchOpts,
)
from ..store import PropertyStore, fetch_all_values
from .caller import Caller

logger = logging.getLogger("property-access.read")

OwnValuesCache = Dict[Tuple[str, str], List[PropertyValue]]


def option_ids_of(payload: Any) -> Set[str]:
    """Option ids held by a select (str) or multiselect (list) payload."""
    if isinstance(payload, str):
        return {payload}
    if isinstance(payload, list):
        return {item for item in payload if isinstance(item, str)}
    return set()


def intersect_ordered(target: List[Any], allowed: Set[str]) -> List[str]:
    """Items of target that are in allowed, in target order, without repeats."""
    result: List[str] = []
    for item in target:
        if isinstance(item, str) and item in allowed and item not in result:
            result.append(item)
    return result


class ReadAccessEvaluator:
    """Applies access_mode to what a caller can see.

    Read denial is never an error:
    - fields stay visible but their options are redacted
    - values resolve to None and bulk reads drop them

    Usage:
        reader = ReadAccessEvaluator(store)
        field = await reader.filter_field(caller, field)
        value = await reader.filter_value(caller, field, value)
    """

    def __init__(self, store: PropertyStore):
        self.store = store

    # ==================== FIELDS ====================

    async def filter_field(
        self,
        caller: Caller,
        field: PropertyField,
        cache: Optional[OwnValuesCache] = None
    ) -> PropertyField:
        """Return a copy of field with options the caller may not see removed.

        Args:
            caller: Who is reading
            field: Field as stored
            cache: Per-call cache of the caller's own values, keyed by field

        Returns:
            The field itself when nothing is hidden, otherwise a redacted copy
        """
        attrs = field.access_attrs
        mode = attrs.access_mode
        if mode == AccessMode.public or not field.has_options():
            return field
        if caller.is_source_plugin(attrs.source_plugin_id):
            return field

        if mode == AccessMode.source_only:
            return field.with_attrs(**{ATTR_OPTIONS: []})

        # shared_only: only options the caller holds themselves
        own_ids = await self._own_option_ids(caller, field, cache)
        visible = [
            option.model_dump(exclude_none=True)
            for option in attrs.options or []
            if option.id in own_ids
        ]
        return field.with_attrs(**{ATTR_OPTIONS: visible})

    async def filter_fields(self, caller: Caller, fields: List[PropertyField]) -> List[PropertyField]:
        cache: OwnValuesCache = {}
        return [await self.filter_field(caller, field, cache) for field in fields]

    # ==================== VALUES ====================

    async def filter_value(
        self,
        caller: Caller,
        field: PropertyField,
        value: PropertyValue,
        cache: Optional[OwnValuesCache] = None
    ) -> Optional[PropertyValue]:
        """Return what the caller may see of value, or None.

        shared_only multiselect values are narrowed to the intersection of the
        caller's option ids and the target's; other shared_only values are
        visible only when the caller holds an equal value.
        """
        if field.is_deleted:
            return None

        attrs = field.access_attrs
        mode = attrs.access_mode
        if mode == AccessMode.public:
            return value
        if caller.is_source_plugin(attrs.source_plugin_id):
            return value
        if mode == AccessMode.source_only:
            return None

        own_values = await self._own_values(caller, field, cache)
        if not own_values:
            return None

        if field.type == PropertyFieldType.multiselect:
            if not isinstance(value.value, list):
                return None
            own_ids: Set[str] = set()
            for own in own_values:
                own_ids |= option_ids_of(own.value)
            shared = intersect_ordered(value.value, own_ids)
            if not shared:
                return None
            return value.model_copy(update={"value": shared})

        if any(own.value == value.value for own in own_values):
            return value
        return None

    async def filter_values(self, caller: Caller, values: List[PropertyValue]) -> List[PropertyValue]:
        """Filter a list of values, dropping the ones that resolve to None."""
        fields = await self._resolve_fields(values)
        cache: OwnValuesCache = {}
        visible: List[PropertyValue] = []
        for value in values:
            field = fields.get((value.group_id, value.field_id))
            if field is None:
                continue
            filtered = await self.filter_value(caller, field, value, cache)
            if filtered is not None:
                visible.append(filtered)

        hidden = len(values) - len(visible)
        if hidden:
            logger.debug(
                f"Hid {hidden} of {len(values)} property values",
                extra={"caller": str(caller)}
            )
        return visible

    # ==================== HELPERS ====================

    async def _resolve_fields(self, values: List[PropertyValue]) -> Dict[Tuple[str, str], PropertyField]:
        ids_by_group: Dict[str, List[str]] = {}
        for value in values:
            group_ids = ids_by_group.setdefault(value.group_id, [])
            if value.field_id not in group_ids:
                group_ids.append(value.field_id)

        fields: Dict[Tuple[str, str], PropertyField] = {}
        for group_id, field_ids in ids_by_group.items():
            for field in await self.store.get_fields(group_id, field_ids):
                fields[(group_id, field.id)] = field
        return fields

    async def _own_values(
        self,
        caller: Caller,
        field: PropertyField,
        cache: Optional[OwnValuesCache]
    ) -> List[PropertyValue]:
        """Values recorded for the caller itself on this field."""
        if caller.target_id is None:
            return []

        key = (field.group_id, field.id)
        if cache is not None and key in cache:
            return cache[key]

        own = await fetch_all_values(
            self.store,
            field.group_id,
            PropertyValueSearchOpts(
                field_id=field.id,
                target_ids=[caller.target_id],
                per_page=MAX_PAGE_SIZE,
            )
        )
        if cache is not None:
            cache[key] = own
        return own

    async def _own_option_ids(
        self,
        caller: Caller,
        field: PropertyField,
        cache: Optional[OwnValuesCache]
    ) -> Set[str]:
        own_ids: Set[str] = set()
        for own in await self._own_values(caller, field, cache):
            own_ids |= option_ids_of(own.value)
        return own_ids
