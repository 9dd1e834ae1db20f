"""
All-or-nothing authorization for bulk property writes.

Every distinct field a batch touches is resolved and checked before the store
is asked to write anything. One denied field fails the whole batch with that
field's error, and nothing is written.
"""
from typing import Dict, List, Sequence, Tuple
import logging

from ...constants import MAX_PAGE_SIZE
from ...models.schemas import PropertyField, PropertyValue, PropertyValueSearchOpts
from ..errors import NotFoundError
from ..store import PropertyStore, distinct_field_refs, fetch_all_values
from .caller import Caller
from .write import WriteAccessEvaluator

logger = logging.getLogger("property-access.batch")

FieldRef = Tuple[str, str]


class BatchCoordinator:
    """Resolves the fields behind a batch and authorizes all of them up front."""

    def __init__(self, store: PropertyStore, writer: WriteAccessEvaluator):
        self.store = store
        self.writer = writer

    async def resolve_fields(
        self,
        refs: Sequence[FieldRef],
        include_deleted: bool = False
    ) -> Dict[FieldRef, PropertyField]:
        """Load every (group_id, field_id) in refs.

        Raises:
            NotFoundError: a referenced field does not exist or is deleted
        """
        ids_by_group: Dict[str, List[str]] = {}
        for group_id, field_id in refs:
            ids_by_group.setdefault(group_id, []).append(field_id)

        fields: Dict[FieldRef, PropertyField] = {}
        for group_id, field_ids in ids_by_group.items():
            for field in await self.store.get_fields(group_id, field_ids):
                if field.is_deleted and not include_deleted:
                    continue
                fields[(group_id, field.id)] = field

        for ref in refs:
            if ref not in fields:
                raise NotFoundError(f"property field {ref[1]} not found", group_id=ref[0], field_id=ref[1])
        return fields

    async def authorize_values(self, caller: Caller, values: Sequence[PropertyValue]) -> Dict[FieldRef, PropertyField]:
        """Check write access for new or upserted values, possibly spanning groups."""
        refs = distinct_field_refs(values)
        fields = await self.resolve_fields(refs)
        for ref in refs:
            self.writer.check_value_write(caller, fields[ref])
        return fields

    async def authorize_value_updates(
        self,
        caller: Caller,
        group_id: str,
        values: Sequence[PropertyValue]
    ) -> List[PropertyValue]:
        """Check updates against the fields of the stored values.

        Returns the stored values, in the order of the update.
        """
        ids = [value.id for value in values]
        stored = {value.id: value for value in await self.store.get_values(group_id, ids)}
        for value_id in ids:
            if value_id not in stored:
                raise NotFoundError(f"property value {value_id} not found", value_id=value_id)

        ordered = [stored[value_id] for value_id in ids]
        await self.authorize_values(caller, ordered)
        return ordered

    async def authorize_field_updates(
        self,
        caller: Caller,
        group_id: str,
        fields: Sequence[PropertyField]
    ) -> List[PropertyField]:
        """Validate every field update and return the fields to store."""
        refs = [(group_id, field.id) for field in fields]
        existing = await self.resolve_fields(refs)
        return [
            self.writer.validate_field_update(caller, existing[(group_id, field.id)], field)
            for field in fields
        ]

    async def authorize_target_delete(
        self,
        caller: Caller,
        group_id: str,
        target_type: str,
        target_id: str
    ) -> int:
        """Check every field that has a value for the target. Returns the value count."""
        values = await fetch_all_values(
            self.store,
            group_id,
            PropertyValueSearchOpts(
                target_type=target_type,
                target_ids=[target_id],
                per_page=MAX_PAGE_SIZE,
            )
        )
        refs = distinct_field_refs(values)
        # Tombstoned fields still carry their protection
        fields = await self.resolve_fields(refs, include_deleted=True)
        for ref in refs:
            self.writer.check_value_write(caller, fields[ref])

        logger.debug(
            f"Authorized deletion of {len(values)} values across {len(refs)} fields",
            extra={"group_id": group_id, "target_id": target_id}
        )
        return len(values)
