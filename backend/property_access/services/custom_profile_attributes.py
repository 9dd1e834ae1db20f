"""
Custom profile attributes - user profile fields stored in the controlled
property group.

Fields are capped at a configurable limit, values are validated against their
field type before they are stored, and every change is announced through an
EventPublisher.
"""
from typing import Any, Dict, List, Optional, Protocol
import logging

from ..constants import (
    ATTR_LDAP, ATTR_SAML, ATTR_SORT_ORDER,
    CPA_FIELD_LIMIT, CPA_TARGET_TYPE,
    EVENT_CPA_FIELD_CREATED, EVENT_CPA_FIELD_DELETED,
    EVENT_CPA_FIELD_UPDATED, EVENT_CPA_VALUES_UPDATED,
)
from ..models.database import PropertyFieldType
from ..models.schemas import (
    PropertyField, PropertyFieldPatch, PropertyFieldSearchOpts,
    PropertyValue, PropertyValueSearchOpts,
)
from .access import Caller
from .errors import InvalidInputError, NotFoundError, PropertyAccessError
from .properties import PropertyApp

logger = logging.getLogger("property-access.cpa")

LIST_TYPES = (PropertyFieldType.multiselect, PropertyFieldType.multiuser)


class EventPublisher(Protocol):
    """Outbound notification sink. Delivery to clients happens elsewhere."""

    def publish(self, event: str, data: Dict[str, Any]) -> None: ...


class LoggingEventPublisher:
    """Default publisher: records each event in the log."""

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        logger.info(f"Event {event}", extra={"event": event, "data": data})


def is_synced(field: PropertyField) -> bool:
    """True when the field is fed from LDAP or SAML."""
    attrs = field.attrs or {}
    return bool(attrs.get(ATTR_LDAP) or attrs.get(ATTR_SAML))


def sort_order_of(field: PropertyField) -> float:
    raw = (field.attrs or {}).get(ATTR_SORT_ORDER, 0)
    try:
        return float(raw)
    except (TypeError, ValueError):
        return 0.0


def sanitize_value(field: PropertyField, raw: Any) -> Any:
    """
    Validate a raw value against the field type and return the value to store.

    Text-like values are stripped. Option-backed values must reference options
    of the field; list values are de-duplicated in order.

    Raises:
        InvalidInputError: the value does not fit the field
    """
    if field.type in LIST_TYPES:
        if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
            raise InvalidInputError(
                f"value of field '{field.name}' must be a list of strings", field_id=field.id
            )
        items: List[str] = []
        for item in (item.strip() for item in raw):
            if item and item not in items:
                items.append(item)
        if field.type == PropertyFieldType.multiselect:
            _ensure_options(field, items)
        return items

    if not isinstance(raw, str):
        raise InvalidInputError(f"value of field '{field.name}' must be a string", field_id=field.id)
    value = raw.strip()
    if field.type == PropertyFieldType.select and value:
        _ensure_options(field, [value])
    return value


def _ensure_options(field: PropertyField, option_ids: List[str]) -> None:
    known = set(field.access_attrs.option_ids())
    unknown = [option_id for option_id in option_ids if option_id not in known]
    if unknown:
        raise InvalidInputError(
            f"unknown option {unknown[0]!r} for field '{field.name}'",
            field_id=field.id,
            option_id=unknown[0],
        )


class CustomProfileAttributesService:
    """
    Custom profile attributes on top of the property router.

    Usage:
        cpa = CustomProfileAttributesService(app, publisher)
        field = await cpa.create_field(caller, PropertyField(group_id="", name="Department"))
        await cpa.patch_values(caller, user_id, {field.id: "Engineering"})
    """

    def __init__(
        self,
        app: PropertyApp,
        publisher: Optional[EventPublisher] = None,
        field_limit: int = CPA_FIELD_LIMIT
    ):
        self.app = app
        self.publisher = publisher or LoggingEventPublisher()
        self.field_limit = field_limit

    @property
    def group_id(self) -> str:
        return self.app.controlled.id

    # ==================== FIELDS ====================

    async def create_field(self, caller: Caller, field: PropertyField) -> PropertyField:
        count = await self.app.count_property_fields_for_group(self.group_id)
        if count >= self.field_limit:
            raise InvalidInputError(
                f"custom profile attribute limit of {self.field_limit} fields reached",
                limit=self.field_limit,
            )

        created = await self.app.create_property_field(
            caller, field.model_copy(update={"group_id": self.group_id})
        )
        self.publisher.publish(EVENT_CPA_FIELD_CREATED, {"field": created.model_dump(mode="json")})
        return created

    async def get_field(self, caller: Caller, field_id: str) -> PropertyField:
        return await self.app.get_property_field(caller, self.group_id, field_id)

    async def list_fields(self, caller: Caller) -> List[PropertyField]:
        """Live fields ordered by their sort_order attribute."""
        fields = await self.app.search_property_fields(
            caller, self.group_id, PropertyFieldSearchOpts(per_page=self.field_limit)
        )
        return sorted(fields, key=sort_order_of)

    async def patch_field(self, caller: Caller, field_id: str, patch: PropertyFieldPatch) -> PropertyField:
        """Apply a partial update. Changing the type drops the field's values."""
        existing = await self.get_field(caller, field_id)
        delete_values = patch.type is not None and patch.type != existing.type

        # Re-read without redaction so options the caller cannot see survive the patch
        stored = await self.app.store.get_field(self.group_id, field_id)
        patched = await self.app.update_property_field(caller, self.group_id, stored.apply_patch(patch))

        if delete_values:
            try:
                await self.app.delete_property_values_for_field(caller, self.group_id, field_id)
            except PropertyAccessError:
                logger.error(
                    f"Failed to delete values of field {field_id} after type change",
                    exc_info=True,
                    extra={"field_id": field_id}
                )

        self.publisher.publish(EVENT_CPA_FIELD_UPDATED, {
            "field": patched.model_dump(mode="json"),
            "delete_values": delete_values,
        })
        return patched

    async def delete_field(self, caller: Caller, field_id: str) -> None:
        await self.app.delete_property_field(caller, self.group_id, field_id)
        self.publisher.publish(EVENT_CPA_FIELD_DELETED, {"field_id": field_id})

    # ==================== VALUES ====================

    async def list_values(self, caller: Caller, user_id: str) -> List[PropertyValue]:
        return await self.app.search_property_values(
            caller,
            self.group_id,
            PropertyValueSearchOpts(target_ids=[user_id], per_page=self.field_limit),
        )

    async def get_value(self, caller: Caller, value_id: str) -> Optional[PropertyValue]:
        return await self.app.get_property_value(caller, self.group_id, value_id)

    async def patch_values(
        self,
        caller: Caller,
        user_id: str,
        values: Dict[str, Any],
        allow_synced: bool = False
    ) -> List[PropertyValue]:
        """
        Set several attribute values of one user at once.

        Args:
            caller: Who is writing
            user_id: User whose profile is changed
            values: Raw value per field id
            allow_synced: Permit writes to LDAP/SAML synced fields

        Returns:
            Stored values, all-or-nothing
        """
        if not values:
            raise InvalidInputError("no custom profile attribute values to patch")

        to_upsert: List[PropertyValue] = []
        for field_id, raw in values.items():
            field = await self.app.store.get_field(self.group_id, field_id)
            if field.is_deleted:
                raise NotFoundError(f"property field {field_id} not found", field_id=field_id)
            if not allow_synced and is_synced(field):
                raise InvalidInputError(
                    f"field '{field.name}' is synced and cannot be edited", field_id=field_id
                )
            to_upsert.append(PropertyValue(
                group_id=self.group_id,
                field_id=field_id,
                target_type=CPA_TARGET_TYPE,
                target_id=user_id,
                value=sanitize_value(field, raw),
            ))

        updated = await self.app.upsert_property_values(caller, to_upsert)
        self.publisher.publish(EVENT_CPA_VALUES_UPDATED, {
            "user_id": user_id,
            "values": {value.field_id: value.value for value in updated},
        })
        return updated

    async def patch_value(
        self,
        caller: Caller,
        user_id: str,
        field_id: str,
        value: Any,
        allow_synced: bool = False
    ) -> PropertyValue:
        updated = await self.patch_values(caller, user_id, {field_id: value}, allow_synced)
        return updated[0]

    async def delete_values(self, caller: Caller, user_id: str) -> None:
        await self.app.delete_property_values_for_target(caller, self.group_id, CPA_TARGET_TYPE, user_id)
        self.publisher.publish(EVENT_CPA_VALUES_UPDATED, {"user_id": user_id, "values": {}})
