"""Write-side access evaluation for fields and values"""
from typing import Callable, Optional
import logging

from ...constants import ATTR_SOURCE_PLUGIN_ID
from ...models.schemas import FieldAttrs, PropertyField
from ..errors import InvalidInputError, PermissionDeniedError
from .caller import Caller

logger = logging.getLogger("property-access.write")

PluginInstalledPredicate = Callable[[str], bool]


class WriteAccessEvaluator:
    """Decides whether a caller may create, change or remove fields and values.

    `protected` is the only write gate; access_mode plays no part here.
    A protected field can be changed only by its source plugin. The single
    exception is deletion of an orphaned field, i.e. one whose owning plugin
    is no longer installed according to is_plugin_installed.
    """

    def __init__(self, is_plugin_installed: PluginInstalledPredicate):
        self.is_plugin_installed = is_plugin_installed

    # ==================== FIELD CREATION ====================

    def validate_new_field(self, field: PropertyField) -> PropertyField:
        """Check a field created through the generic path.

        Ownership cannot be claimed here, whoever the caller is.
        """
        attrs = FieldAttrs.from_raw(field.attrs)
        if attrs.protected:
            raise PermissionDeniedError("protected can only be set by plugins", field_name=field.name)
        if attrs.source_plugin_id:
            raise PermissionDeniedError(
                "source_plugin_id cannot be set directly",
                field_name=field.name,
                source_plugin_id=attrs.source_plugin_id,
            )
        return field

    def prepare_plugin_field(self, plugin_id: str, field: PropertyField) -> PropertyField:
        """Stamp a field created by a plugin with that plugin as its owner."""
        if not plugin_id:
            raise InvalidInputError("plugin_id is required", field_name=field.name)
        prepared = field.with_attrs(**{ATTR_SOURCE_PLUGIN_ID: plugin_id})
        FieldAttrs.from_raw(prepared.attrs)
        return prepared

    # ==================== FIELD UPDATE / DELETE ====================

    def check_field_write(self, caller: Caller, field: PropertyField) -> None:
        """Raise PermissionDeniedError unless caller may modify field."""
        attrs = field.access_attrs
        if not attrs.protected:
            return
        source = attrs.source_plugin_id or ""
        if caller.is_source_plugin(source):
            return
        self._log_denial(caller, field, source, "modify")
        raise PermissionDeniedError(
            f"property field {field.id} is protected and can only be modified by plugin '{source}'",
            field_id=field.id,
            source_plugin_id=source,
        )

    def check_field_delete(self, caller: Caller, field: PropertyField) -> None:
        """Like check_field_write, but orphaned protected fields may be deleted by anyone."""
        attrs = field.access_attrs
        if not attrs.protected:
            return
        source = attrs.source_plugin_id or ""
        if caller.is_source_plugin(source):
            return
        if not source or not self.is_plugin_installed(source):
            logger.warning(
                f"Deleting orphaned protected field {field.id}, plugin '{source}' is not installed",
                extra={"caller": str(caller), "field_id": field.id, "source_plugin_id": source}
            )
            return
        self._log_denial(caller, field, source, "delete")
        raise PermissionDeniedError(
            f"property field {field.id} is protected and can only be deleted by plugin '{source}'",
            field_id=field.id,
            source_plugin_id=source,
        )

    def validate_field_update(
        self,
        caller: Caller,
        existing: PropertyField,
        updated: PropertyField
    ) -> PropertyField:
        """Check an update of existing to updated and return what should be stored.

        Order of checks:
        1. source_plugin_id must not change (omitting it keeps the stored one)
        2. caller must have write access to the stored field
        3. protected can only be switched on by the source plugin
        4. the new attribute bag must be valid
        """
        stored = existing.access_attrs
        stored_source = stored.source_plugin_id
        attrs = dict(updated.attrs or {})

        if ATTR_SOURCE_PLUGIN_ID in attrs:
            requested = attrs[ATTR_SOURCE_PLUGIN_ID] or None
            if requested != stored_source:
                raise InvalidInputError(
                    f"source_plugin_id of property field {existing.id} is immutable",
                    field_id=existing.id,
                    source_plugin_id=stored_source,
                )

        self.check_field_write(caller, existing)

        new_attrs = FieldAttrs.from_raw(attrs)
        if new_attrs.protected and not stored.protected and not caller.is_source_plugin(stored_source):
            self._log_denial(caller, existing, stored_source, "protect")
            raise PermissionDeniedError("protected can only be set by plugins", field_id=existing.id)

        if stored_source:
            attrs[ATTR_SOURCE_PLUGIN_ID] = stored_source
        else:
            attrs.pop(ATTR_SOURCE_PLUGIN_ID, None)

        return updated.model_copy(update={
            "id": existing.id,
            "group_id": existing.group_id,
            "attrs": attrs,
        })

    # ==================== VALUES ====================

    def check_value_write(self, caller: Caller, field: PropertyField) -> None:
        """Values inherit the protection of the field they belong to."""
        attrs = field.access_attrs
        if not attrs.protected:
            return
        source = attrs.source_plugin_id or ""
        if caller.is_source_plugin(source):
            return
        self._log_denial(caller, field, source, "write values of")
        raise PermissionDeniedError(
            f"values of property field {field.id} are protected and can only be written by plugin '{source}'",
            field_id=field.id,
            source_plugin_id=source,
        )

    def _log_denial(self, caller: Caller, field: PropertyField, source: Optional[str], action: str) -> None:
        logger.info(
            f"Denied {caller} to {action} protected field {field.id}",
            extra={
                "caller": str(caller),
                "field_id": field.id,
                "source_plugin_id": source,
            }
        )
