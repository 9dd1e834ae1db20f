import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column, DateTime, Enum as SQLEnum, ForeignKey, Index, String, JSON, text
)
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    # Naive UTC, matches what SQLite hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PropertyFieldType(str, enum.Enum):
    text = "text"
    select = "select"
    multiselect = "multiselect"
    date = "date"
    user = "user"
    multiuser = "multiuser"


class PropertyGroupRecord(Base):
    """Namespace of fields, e.g. custom profile attributes"""
    __tablename__ = "property_groups"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(128), unique=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)


class PropertyFieldRecord(Base):
    """Typed attribute definition inside a group"""
    __tablename__ = "property_fields"

    id = Column(String(32), primary_key=True, default=new_id)
    group_id = Column(String(32), ForeignKey("property_groups.id", ondelete="CASCADE"), nullable=False)
    name = Column(String(255), nullable=False)
    type = Column(SQLEnum(PropertyFieldType), nullable=False, default=PropertyFieldType.text)
    target_type = Column(String(255), nullable=False, default="")
    target_id = Column(String(255), nullable=False, default="")  # "" = group-wide field
    attrs = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    delete_at = Column(DateTime, nullable=True)  # Soft delete tombstone

    __table_args__ = (
        Index('ix_property_fields_group_id', 'group_id'),
        Index(
            'ux_property_fields_group_target_name',
            'group_id', 'target_id', 'name',
            unique=True,
            sqlite_where=text("delete_at IS NULL"),
            postgresql_where=text("delete_at IS NULL"),
        ),
    )


class PropertyValueRecord(Base):
    """Concrete value of a field for one target"""
    __tablename__ = "property_values"

    id = Column(String(32), primary_key=True, default=new_id)
    group_id = Column(String(32), ForeignKey("property_groups.id", ondelete="CASCADE"), nullable=False)
    field_id = Column(String(32), ForeignKey("property_fields.id", ondelete="CASCADE"), nullable=False)
    target_type = Column(String(255), nullable=False, default="")
    target_id = Column(String(255), nullable=False)
    value = Column(JSON, nullable=True)  # Opaque JSON payload
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    delete_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index('ix_property_values_field_id', 'field_id'),
        Index('ix_property_values_group_target', 'group_id', 'target_id'),
        Index(
            'ux_property_values_group_target_field',
            'group_id', 'target_id', 'field_id',
            unique=True,
            sqlite_where=text("delete_at IS NULL"),
            postgresql_where=text("delete_at IS NULL"),
        ),
    )
