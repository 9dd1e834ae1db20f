"""Caller identity for access decisions"""
from dataclasses import dataclass
from typing import Optional
import enum


class CallerKind(str, enum.Enum):
    anonymous = "anonymous"  # End user without a resolved identity
    user = "user"
    plugin = "plugin"


@dataclass(frozen=True)
class Caller:
    """Who is asking. Resolved upstream; no token parsing happens here."""

    kind: CallerKind
    id: str = ""

    def __post_init__(self):
        if self.kind == CallerKind.anonymous and self.id:
            raise ValueError("anonymous caller cannot carry an id")
        if self.kind != CallerKind.anonymous and not self.id:
            raise ValueError(f"{self.kind.value} caller requires an id")

    @classmethod
    def anonymous(cls) -> "Caller":
        return cls(CallerKind.anonymous)

    @classmethod
    def user(cls, user_id: str) -> "Caller":
        return cls(CallerKind.user, user_id)

    @classmethod
    def plugin(cls, plugin_id: str) -> "Caller":
        return cls(CallerKind.plugin, plugin_id)

    @property
    def is_anonymous(self) -> bool:
        return self.kind == CallerKind.anonymous

    @property
    def is_plugin(self) -> bool:
        return self.kind == CallerKind.plugin

    @property
    def plugin_id(self) -> Optional[str]:
        return self.id if self.is_plugin else None

    @property
    def target_id(self) -> Optional[str]:
        """Target id under which this caller's own values are recorded."""
        return None if self.is_anonymous else self.id

    def is_source_plugin(self, source_plugin_id: Optional[str]) -> bool:
        """True only for the plugin whose id is recorded as the field owner."""
        return bool(source_plugin_id) and self.plugin_id == source_plugin_id

    def __str__(self) -> str:
        if self.is_anonymous:
            return "anonymous"
        return f"{self.kind.value}:{self.id}"
