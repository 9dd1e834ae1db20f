"""
Shared test utilities for property access tests.
"""
from typing import Any, Dict, List, Optional, Sequence, Tuple

from property_access.models.database import PropertyFieldType
from property_access.models.schemas import PropertyField, PropertyValue
from property_access.services.access import Caller, PropertyAccessService


PLUGIN1 = Caller.plugin("plugin1")
PLUGIN2 = Caller.plugin("plugin2")
ANONYMOUS = Caller.anonymous()


def options(*ids: str) -> List[Dict[str, str]]:
    """Option list with value = upper-cased id."""
    return [{"id": option_id, "value": option_id.upper()} for option_id in ids]


def make_field(
    group_id: str,
    name: str = "Field",
    type: PropertyFieldType = PropertyFieldType.text,
    **attrs: Any
) -> PropertyField:
    """Build an unsaved field. Keyword arguments become attributes."""
    return PropertyField(group_id=group_id, name=name, type=type, attrs=attrs or None)


def make_value(field: PropertyField, target_id: str, value: Any, target_type: str = "user") -> PropertyValue:
    return PropertyValue(
        group_id=field.group_id,
        field_id=field.id,
        target_type=target_type,
        target_id=target_id,
        value=value,
    )


async def create_plugin_field(
    service: PropertyAccessService,
    plugin_id: str,
    group_id: str,
    name: str = "Plugin Field",
    type: PropertyFieldType = PropertyFieldType.text,
    **attrs: Any
) -> PropertyField:
    return await service.create_property_field_for_plugin(plugin_id, make_field(group_id, name, type, **attrs))


async def create_shared_multiselect(
    service: PropertyAccessService,
    group_id: str,
    option_ids: Sequence[str] = ("opt1", "opt2", "opt3"),
    name: str = "Shared Multi",
) -> PropertyField:
    return await service.create_property_field(
        Caller.anonymous(),
        make_field(
            group_id, name, PropertyFieldType.multiselect,
            access_mode="shared_only", options=options(*option_ids),
        )
    )


def option_ids(field: PropertyField) -> List[str]:
    return [option["id"] for option in (field.attrs or {}).get("options", [])]


class RecordingPublisher:
    """EventPublisher that keeps every published event."""

    def __init__(self):
        self.events: List[Tuple[str, Dict[str, Any]]] = []

    def publish(self, event: str, data: Dict[str, Any]) -> None:
        self.events.append((event, data))

    def last(self, event: Optional[str] = None) -> Tuple[str, Dict[str, Any]]:
        matching = [e for e in self.events if event is None or e[0] == event]
        assert matching, f"no event {event!r} published"
        return matching[-1]
