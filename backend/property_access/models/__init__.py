from .database import (
    Base, PropertyFieldType,
    PropertyGroupRecord, PropertyFieldRecord, PropertyValueRecord,
)
from .schemas import (
    AccessMode, FieldAttrs, PropertyOption,
    PropertyGroup, PropertyField, PropertyFieldPatch, PropertyValue,
    PropertyFieldSearchOpts, PropertyValueSearchOpts,
)

__all__ = [
    "Base", "PropertyFieldType",
    "PropertyGroupRecord", "PropertyFieldRecord", "PropertyValueRecord",
    "AccessMode", "FieldAttrs", "PropertyOption",
    "PropertyGroup", "PropertyField", "PropertyFieldPatch", "PropertyValue",
    "PropertyFieldSearchOpts", "PropertyValueSearchOpts",
]
