from datetime import datetime
from typing import Any, Dict, List, Optional
import enum

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..constants import (
    ATTR_ACCESS_MODE, ATTR_OPTIONS, ATTR_PROTECTED, ATTR_SOURCE_PLUGIN_ID,
    DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE,
)
from ..services.errors import InvalidInputError
from .database import PropertyFieldType


class AccessMode(str, enum.Enum):
    """Read-side visibility policy of a field"""
    public = "public"            # Everyone sees everything
    source_only = "source_only"  # Only the owning plugin sees options/values
    shared_only = "shared_only"  # Callers see what they have in common with the target


def parse_access_mode(raw: Any) -> AccessMode:
    """Parse an access mode; missing or empty means public."""
    if raw is None or raw == "":
        return AccessMode.public
    if isinstance(raw, AccessMode):
        return raw
    try:
        return AccessMode(raw)
    except ValueError:
        raise InvalidInputError(f"invalid access mode: {raw!r}", access_mode=raw)


class PropertyOption(BaseModel):
    """Choice of a select/multiselect field. Extra keys (color, ...) are kept."""
    model_config = ConfigDict(extra="allow")

    id: str
    value: Optional[str] = None


class FieldAttrs(BaseModel):
    """Typed view of the field attribute bag.

    Well-known keys are validated; anything else (sort_order, ldap, ...) is
    carried through untouched.
    """
    model_config = ConfigDict(extra="allow")

    access_mode: AccessMode = AccessMode.public
    protected: bool = False
    source_plugin_id: Optional[str] = None
    options: Optional[List[PropertyOption]] = None

    @field_validator("source_plugin_id", mode="before")
    @classmethod
    def empty_source_is_unset(cls, v: Any) -> Any:
        # API serialization sends "" for an unset owner
        return v or None

    @field_validator("protected", mode="before")
    @classmethod
    def null_protected_is_false(cls, v: Any) -> Any:
        return False if v is None else v

    @classmethod
    def from_raw(cls, attrs: Optional[Dict[str, Any]]) -> "FieldAttrs":
        """Validate a raw attribute bag, raising InvalidInputError on bad input."""
        data = dict(attrs or {})
        data[ATTR_ACCESS_MODE] = parse_access_mode(data.get(ATTR_ACCESS_MODE))
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise InvalidInputError(
                f"invalid field attribute {location}: {first['msg']}"
            ) from e

    @classmethod
    def from_stored(cls, attrs: Optional[Dict[str, Any]]) -> "FieldAttrs":
        """Parse an attribute bag that is already in storage. Never raises.

        A bag that no longer validates (legacy rows, rows written straight to
        the store) is read as source_only so that nothing is exposed.
        """
        try:
            return cls.from_raw(attrs)
        except InvalidInputError:
            raw = attrs or {}
            source = raw.get(ATTR_SOURCE_PLUGIN_ID)
            return cls.model_construct(
                access_mode=AccessMode.source_only,
                protected=bool(raw.get(ATTR_PROTECTED)),
                source_plugin_id=source if isinstance(source, str) and source else None,
                options=None,
            )

    def option_ids(self) -> List[str]:
        return [option.id for option in self.options or []]


class PropertyGroup(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    created_at: Optional[datetime] = None


class PropertyField(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = ""
    group_id: str
    name: str
    type: PropertyFieldType = PropertyFieldType.text
    target_type: str = ""
    target_id: str = ""
    attrs: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    delete_at: Optional[datetime] = None

    @property
    def is_deleted(self) -> bool:
        return self.delete_at is not None

    @property
    def access_attrs(self) -> FieldAttrs:
        return FieldAttrs.from_stored(self.attrs)

    @property
    def access_mode(self) -> AccessMode:
        return self.access_attrs.access_mode

    @property
    def protected(self) -> bool:
        return self.access_attrs.protected

    @property
    def source_plugin_id(self) -> Optional[str]:
        return self.access_attrs.source_plugin_id

    @property
    def options(self) -> List[PropertyOption]:
        return self.access_attrs.options or []

    def has_options(self) -> bool:
        return bool(self.attrs) and ATTR_OPTIONS in self.attrs

    def with_attrs(self, **updates: Any) -> "PropertyField":
        """Copy of the field with some attribute keys replaced."""
        attrs = dict(self.attrs or {})
        attrs.update(updates)
        return self.model_copy(update={"attrs": attrs})

    def apply_patch(self, patch: "PropertyFieldPatch") -> "PropertyField":
        update: Dict[str, Any] = {}
        if patch.name is not None:
            update["name"] = patch.name
        if patch.type is not None:
            update["type"] = patch.type
        if patch.target_type is not None:
            update["target_type"] = patch.target_type
        if patch.target_id is not None:
            update["target_id"] = patch.target_id
        if patch.attrs is not None:
            attrs = dict(self.attrs or {})
            attrs.update(patch.attrs)
            update["attrs"] = attrs
        return self.model_copy(update=update)


class PropertyFieldPatch(BaseModel):
    """Partial update of a field. Attrs are merged key by key."""
    name: Optional[str] = None
    type: Optional[PropertyFieldType] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    attrs: Optional[Dict[str, Any]] = None


class PropertyValue(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str = ""
    group_id: str
    field_id: str
    target_type: str = ""
    target_id: str
    value: Any = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    delete_at: Optional[datetime] = None


class PropertyFieldSearchOpts(BaseModel):
    target_type: Optional[str] = None
    target_ids: Optional[List[str]] = None
    include_deleted: bool = False
    page: int = Field(default=0, ge=0)
    per_page: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)


class PropertyValueSearchOpts(BaseModel):
    field_id: Optional[str] = None
    target_type: Optional[str] = None
    target_ids: Optional[List[str]] = None
    include_deleted: bool = False
    page: int = Field(default=0, ge=0)
    per_page: int = Field(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE)

