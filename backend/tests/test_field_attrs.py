"""
Tests for the typed field attribute bag and the domain models around it.
"""
import pytest

from property_access.models.database import PropertyFieldType
from property_access.models.schemas import (
    AccessMode, FieldAttrs, PropertyField, PropertyFieldPatch, PropertyFieldSearchOpts,
    parse_access_mode,
)
from property_access.services.errors import InvalidInputError

from helpers import options


class TestParseAccessMode:

    @pytest.mark.parametrize("raw", [None, ""])
    def test_missing_or_empty_is_public(self, raw):
        assert parse_access_mode(raw) == AccessMode.public

    @pytest.mark.parametrize("raw,expected", [
        ("public", AccessMode.public),
        ("source_only", AccessMode.source_only),
        ("shared_only", AccessMode.shared_only),
    ])
    def test_known_modes(self, raw, expected):
        assert parse_access_mode(raw) == expected

    def test_unknown_mode_rejected(self):
        with pytest.raises(InvalidInputError) as exc_info:
            parse_access_mode("private")
        assert "invalid access mode" in str(exc_info.value)


class TestFieldAttrs:

    def test_defaults(self):
        attrs = FieldAttrs.from_raw(None)
        assert attrs.access_mode == AccessMode.public
        assert attrs.protected is False
        assert attrs.source_plugin_id is None
        assert attrs.options is None

    def test_empty_source_plugin_id_is_unset(self):
        assert FieldAttrs.from_raw({"source_plugin_id": ""}).source_plugin_id is None

    def test_null_protected_is_false(self):
        assert FieldAttrs.from_raw({"protected": None}).protected is False

    def test_unknown_keys_are_kept(self):
        attrs = FieldAttrs.from_raw({"sort_order": 3, "ldap": "department"})
        dumped = attrs.model_dump()
        assert dumped["sort_order"] == 3
        assert dumped["ldap"] == "department"

    def test_options_are_typed(self):
        attrs = FieldAttrs.from_raw({"options": [{"id": "a", "value": "A", "color": "#fff"}]})
        assert attrs.option_ids() == ["a"]
        assert attrs.options[0].model_dump()["color"] == "#fff"

    def test_invalid_access_mode_rejected(self):
        with pytest.raises(InvalidInputError) as exc_info:
            FieldAttrs.from_raw({"access_mode": "everyone"})
        assert "invalid access mode" in exc_info.value.message

    def test_stored_bag_parsed_like_raw(self):
        attrs = FieldAttrs.from_stored({"access_mode": "shared_only", "options": options("a")})
        assert attrs.access_mode == AccessMode.shared_only
        assert attrs.option_ids() == ["a"]

    def test_unparseable_stored_bag_falls_back_to_source_only(self):
        attrs = FieldAttrs.from_stored({
            "access_mode": "everyone",
            "protected": True,
            "source_plugin_id": "plugin1",
            "options": options("a"),
        })
        assert attrs.access_mode == AccessMode.source_only
        assert attrs.protected is True
        assert attrs.source_plugin_id == "plugin1"
        assert attrs.options is None

    def test_malformed_options_rejected(self):
        with pytest.raises(InvalidInputError) as exc_info:
            FieldAttrs.from_raw({"options": [{"value": "missing id"}]})
        assert "options" in exc_info.value.message


class TestPropertyField:

    def test_accessors_read_attrs(self):
        field = PropertyField(
            group_id="g",
            name="F",
            type=PropertyFieldType.select,
            attrs={
                "access_mode": "source_only",
                "protected": True,
                "source_plugin_id": "plugin1",
                "options": options("opt1", "opt2"),
            },
        )
        assert field.access_mode == AccessMode.source_only
        assert field.protected is True
        assert field.source_plugin_id == "plugin1"
        assert [o.id for o in field.options] == ["opt1", "opt2"]
        assert field.has_options() is True

    def test_accessors_never_raise_on_stored_garbage(self):
        field = PropertyField(group_id="g", name="F", attrs={"access_mode": 42})
        assert field.access_mode == AccessMode.source_only
        assert field.protected is False
        assert field.options == []

    def test_field_without_attrs(self):
        field = PropertyField(group_id="g", name="F")
        assert field.access_mode == AccessMode.public
        assert field.options == []
        assert field.has_options() is False
        assert field.is_deleted is False

    def test_with_attrs_copies(self):
        field = PropertyField(group_id="g", name="F", attrs={"options": options("a")})
        redacted = field.with_attrs(options=[])
        assert redacted.attrs["options"] == []
        assert field.attrs["options"] == options("a")

    def test_apply_patch_merges_attrs(self):
        field = PropertyField(group_id="g", name="F", attrs={"sort_order": 1, "access_mode": "public"})
        patched = field.apply_patch(PropertyFieldPatch(name="G", attrs={"sort_order": 2}))
        assert patched.name == "G"
        assert patched.attrs == {"sort_order": 2, "access_mode": "public"}
        assert patched.type == field.type


class TestSearchOpts:

    def test_per_page_bounds(self):
        with pytest.raises(ValueError):
            PropertyFieldSearchOpts(per_page=0)
        with pytest.raises(ValueError):
            PropertyFieldSearchOpts(per_page=5000)
