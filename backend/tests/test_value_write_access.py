"""
Tests for write access on property values.

A value is writable iff its field is unprotected or the caller is the
field's source plugin. access_mode does not affect writes.
"""
import pytest
import pytest_asyncio

from property_access.models.database import PropertyFieldType
from property_access.models.schemas import PropertyValueSearchOpts
from property_access.services.access import Caller
from property_access.services.errors import NotFoundError, PermissionDeniedError

from helpers import ANONYMOUS, PLUGIN1, PLUGIN2, create_plugin_field, make_field, make_value, options


class TestCreateValue:

    @pytest.mark.asyncio
    async def test_allows_value_for_public_field(self, access_service, group):
        field = await access_service.create_property_field(ANONYMOUS, make_field(group.id, "Public"))

        value = await access_service.create_property_value(Caller.user("u1"), make_value(field, "u1", "hello"))
        assert value.id
        assert value.value == "hello"

    @pytest.mark.asyncio
    async def test_allows_source_plugin_value_for_source_only_field(self, access_service, group):
        field = await create_plugin_field(
            access_service, "plugin1", group.id, "Secret", PropertyFieldType.select,
            protected=True, access_mode="source_only", options=options("opt1"),
        )

        value = await access_service.create_property_value(PLUGIN1, make_value(field, "u1", "opt1"))
        assert value.value == "opt1"

    @pytest.mark.asyncio
    async def test_unprotected_source_only_field_is_writable_by_anyone(self, access_service, group):
        field = await create_plugin_field(access_service, "plugin1", group.id, access_mode="source_only")

        value = await access_service.create_property_value(PLUGIN2, make_value(field, "u1", "x"))
        assert value.value == "x"

    @pytest.mark.asyncio
    async def test_denies_non_source_value_for_protected_field(self, access_service, store, group):
        field = await create_plugin_field(
            access_service, "plugin1", group.id, "Locked", PropertyFieldType.select,
            protected=True, access_mode="source_only", options=options("opt1", "opt2"),
        )

        with pytest.raises(PermissionDeniedError) as exc_info:
            await access_service.create_property_value(PLUGIN2, make_value(field, "u1", "opt1"))
        assert "protected" in str(exc_info.value)
        assert "plugin1" in str(exc_info.value)

        assert await store.search_values(group.id, PropertyValueSearchOpts(field_id=field.id)) == []

    @pytest.mark.asyncio
    async def test_value_for_unknown_field_is_not_found(self, access_service, group):
        field = make_field(group.id).model_copy(update={"id": "missing"})

        with pytest.raises(NotFoundError):
            await access_service.create_property_value(ANONYMOUS, make_value(field, "u1", "x"))


class TestUpdateValue:

    @pytest_asyncio.fixture
    async def setup_values(self, access_service, group):
        locked = await create_plugin_field(access_service, "plugin1", group.id, "Locked", protected=True)
        plain = await access_service.create_property_field(ANONYMOUS, make_field(group.id, "Plain"))
        locked_value, plain_value = await access_service.create_property_values(PLUGIN1, [
            make_value(locked, "u1", "original"),
            make_value(plain, "u1", "original"),
        ])
        return {"locked": locked, "plain": plain, "locked_value": locked_value, "plain_value": plain_value}

    @pytest.mark.asyncio
    async def test_source_plugin_can_update(self, access_service, group, setup_values):
        value = setup_values["locked_value"].model_copy(update={"value": "changed"})

        updated = await access_service.update_property_value(PLUGIN1, group.id, value)
        assert updated.value == "changed"

    @pytest.mark.asyncio
    async def test_non_source_plugin_cannot_update(self, access_service, store, group, setup_values):
        value = setup_values["locked_value"].model_copy(update={"value": "changed"})

        with pytest.raises(PermissionDeniedError) as exc_info:
            await access_service.update_property_value(PLUGIN2, group.id, value)
        assert "protected" in str(exc_info.value)
        assert (await store.get_value(group.id, value.id)).value == "original"

    @pytest.mark.asyncio
    async def test_any_caller_can_update_unprotected(self, access_service, group, setup_values):
        value = setup_values["plain_value"].model_copy(update={"value": "changed"})

        updated = await access_service.update_property_value(ANONYMOUS, group.id, value)
        assert updated.value == "changed"

    @pytest.mark.asyncio
    async def test_authorized_against_stored_field(self, access_service, store, group, setup_values):
        # Pointing the update at an unprotected field does not bypass the check
        value = setup_values["locked_value"].model_copy(
            update={"value": "changed", "field_id": setup_values["plain"].id}
        )

        with pytest.raises(PermissionDeniedError):
            await access_service.update_property_value(PLUGIN2, group.id, value)
        assert (await store.get_value(group.id, value.id)).value == "original"

    @pytest.mark.asyncio
    async def test_update_of_unknown_value_is_not_found(self, access_service, group, setup_values):
        value = setup_values["plain_value"].model_copy(update={"id": "missing"})

        with pytest.raises(NotFoundError):
            await access_service.update_property_value(ANONYMOUS, group.id, value)


class TestUpsertValue:

    @pytest.mark.asyncio
    async def test_source_plugin_can_upsert(self, access_service, group):
        field = await create_plugin_field(access_service, "plugin1", group.id, protected=True)

        upserted = await access_service.upsert_property_value(PLUGIN1, make_value(field, "u1", "v1"))
        assert upserted.value == "v1"

    @pytest.mark.asyncio
    async def test_non_source_plugin_cannot_upsert(self, access_service, store, group):
        field = await create_plugin_field(access_service, "plugin1", group.id, protected=True)

        with pytest.raises(PermissionDeniedError) as exc_info:
            await access_service.upsert_property_value(PLUGIN2, make_value(field, "u1", "v1"))
        assert "protected" in str(exc_info.value)
        assert await store.search_values(group.id, PropertyValueSearchOpts(field_id=field.id)) == []

    @pytest.mark.asyncio
    async def test_upsert_twice_converges_to_one_value(self, access_service, store, group):
        field = await access_service.create_property_field(ANONYMOUS, make_field(group.id, "Status"))

        first = await access_service.upsert_property_value(ANONYMOUS, make_value(field, "u1", "busy"))
        second = await access_service.upsert_property_value(ANONYMOUS, make_value(field, "u1", "away"))

        assert second.id == first.id
        assert second.value == "away"
        stored = await store.search_values(group.id, PropertyValueSearchOpts(field_id=field.id))
        assert len(stored) == 1
        assert stored[0].value == "away"

    @pytest.mark.asyncio
    async def test_upsert_same_value_is_idempotent(self, access_service, store, group):
        field = await access_service.create_property_field(ANONYMOUS, make_field(group.id, "Status"))

        await access_service.upsert_property_value(ANONYMOUS, make_value(field, "u1", "busy"))
        again = await access_service.upsert_property_value(ANONYMOUS, make_value(field, "u1", "busy"))

        assert again.value == "busy"
        assert len(await store.search_values(group.id, PropertyValueSearchOpts(field_id=field.id))) == 1


class TestDeleteValue:

    @pytest.mark.asyncio
    async def test_allows_deleting_value_of_public_field(self, access_service, group):
        field = await access_service.create_property_field(ANONYMOUS, make_field(group.id, "Public"))
        value = await access_service.create_property_value(ANONYMOUS, make_value(field, "u1", "x"))

        await access_service.delete_property_value(PLUGIN2, group.id, value.id)

        with pytest.raises(NotFoundError):
            await access_service.get_property_value(ANONYMOUS, group.id, value.id)

    @pytest.mark.asyncio
    async def test_denies_non_source_deleting_protected_value(self, access_service, store, group):
        field = await create_plugin_field(access_service, "plugin1", group.id, protected=True)
        value = await access_service.create_property_value(PLUGIN1, make_value(field, "u1", "x"))

        with pytest.raises(PermissionDeniedError) as exc_info:
            await access_service.delete_property_value(PLUGIN2, group.id, value.id)
        assert "protected" in str(exc_info.value)
        assert (await store.get_value(group.id, value.id)).value == "x"


class TestDeleteValuesForField:

    @pytest.mark.asyncio
    async def test_source_plugin_can_delete_all_values(self, access_service, store, group):
        field = await create_plugin_field(access_service, "plugin1", group.id, protected=True)
        await access_service.create_property_values(PLUGIN1, [
            make_value(field, "u1", "a"), make_value(field, "u2", "b"),
        ])

        await access_service.delete_property_values_for_field(PLUGIN1, group.id, field.id)
        assert await store.search_values(group.id, PropertyValueSearchOpts(field_id=field.id)) == []

    @pytest.mark.asyncio
    async def test_non_source_plugin_cannot_delete_values(self, access_service, store, group):
        field = await create_plugin_field(access_service, "plugin1", group.id, protected=True)
        await access_service.create_property_value(PLUGIN1, make_value(field, "u1", "a"))

        with pytest.raises(PermissionDeniedError) as exc_info:
            await access_service.delete_property_values_for_field(PLUGIN2, group.id, field.id)
        assert "protected" in str(exc_info.value)
        assert len(await store.search_values(group.id, PropertyValueSearchOpts(field_id=field.id))) == 1

    @pytest.mark.asyncio
    async def test_any_caller_can_delete_values_of_unprotected_field(self, access_service, store, group):
        field = await access_service.create_property_field(ANONYMOUS, make_field(group.id, "Plain"))
        await access_service.create_property_value(ANONYMOUS, make_value(field, "u1", "a"))

        await access_service.delete_property_values_for_field(Caller.user("u9"), group.id, field.id)
        assert await store.search_values(group.id, PropertyValueSearchOpts(field_id=field.id)) == []
