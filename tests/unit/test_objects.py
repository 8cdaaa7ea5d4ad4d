"""Tests for sfaccess.objects."""

import pytest

from sfaccess.exceptions import (
    AmbiguousResultError,
    CreateFailedError,
    DeleteFailedError,
    NotFoundError,
    PreconditionFailedError,
    RemoteQueryError,
    UpdateFailedError,
)
from sfaccess.objects import ObjectStore, Record
from sfaccess.query import new_query


@pytest.fixture
def store(api):
    return ObjectStore(api, page_size=50)


class TestRecord:
    def test_from_payload_reads_type(self):
        record = Record.from_payload({"attributes": {"type": "User"}, "Id": "005A"}, "Fallback")
        assert record.table == "User"
        assert record.id == "005A"

    def test_from_payload_falls_back_to_table(self):
        assert Record.from_payload({"Id": "1"}, "UserRole").table == "UserRole"

    def test_string_field(self):
        record = Record("User", {"A": None, "B": True, "C": False, "D": 3, "E": "x"})
        assert record.string_field("A") == ""
        assert record.string_field("B") == "true"
        assert record.string_field("C") == "false"
        assert record.string_field("D") == "3"
        assert record.string_field("E") == "x"
        assert record.string_field("missing") == ""

    def test_related(self):
        record = Record(
            "PermissionSet",
            {"Profile": {"attributes": {"type": "Profile"}, "Name": "Admin"}, "Other": None},
        )
        assert record.related("Profile").string_field("Name") == "Admin"
        assert record.related("Profile").table == "Profile"
        assert record.related("Other") is None

    def test_external_id(self):
        record = Record("Account", {"Id": "1", "Ext__c": "E-1"}, external_id_field="Ext__c")
        assert record.external_id == "E-1"
        assert Record("Account", {"Id": "1"}).external_id == ""


class TestCopyForUpdate:
    def test_only_allowed_non_empty_fields(self):
        record = Record("User", {"Id": "005A", "Email": "a@x", "Alias": "", "Title": "CEO"})
        assert ObjectStore.copy_for_update(record, "Email", "Alias", "Email") == {
            "Id": "005A",
            "Email": "a@x",
        }

    def test_includes_external_id(self):
        record = Record("Account", {"Id": "1", "Ext__c": "E-1"}, external_id_field="Ext__c")
        assert ObjectStore.copy_for_update(record) == {"Id": "1", "Ext__c": "E-1"}


class TestReads:
    def test_query_wraps_request_errors(self, store, fake_sf):
        fake_sf.fail_next("GET", "/query", 400, [{"errorCode": "INVALID_FIELD", "message": "No such column"}])

        with pytest.raises(RemoteQueryError) as exc:
            store.query(new_query("UserRole"))

        assert "INVALID_FIELD: No such column" in str(exc.value)
        assert "FROM UserRole" in exc.value.query
        assert exc.value.rate_limit is not None

    def test_query_carries_rate_limit(self, store, fake_sf):
        fake_sf.limit_info = "api-usage=9/10"
        page = store.query(new_query("UserRole"))
        assert page.rate_limit.remaining == 9

    def test_get_single_object_none(self, store):
        with pytest.raises(NotFoundError):
            store.get_single_object(new_query("UserRole").where_eq("Name", "CEO"))

    def test_get_single_object_many_returns_first(self, store, fake_sf, caplog):
        fake_sf.add("UserRole", Name="Dup")
        fake_sf.add("UserRole", Name="Dup")

        record = store.get_single_object(new_query("UserRole").where_eq("Name", "Dup"))

        assert record.string_field("Name") == "Dup"
        assert "too many" in caplog.text

    def test_get_single_object_strict(self, store, fake_sf):
        fake_sf.add("UserRole", Name="Dup")
        fake_sf.add("UserRole", Name="Dup")

        with pytest.raises(AmbiguousResultError) as exc:
            store.get_single_object(new_query("UserRole").where_eq("Name", "Dup"), strict=True)

        assert exc.value.count == 2

    def test_get_one(self, store, fake_sf):
        role_id = fake_sf.add("UserRole", Name="CEO")
        assert store.get_one("UserRole", role_id).string_field("Name") == "CEO"

    def test_get_one_missing(self, store):
        with pytest.raises(NotFoundError):
            store.get_one("UserRole", "00E000000000999")


class TestWrites:
    def test_create(self, store, fake_sf):
        rl = store.create_object("UserRole", {"Name": "Ops"})
        assert [r["Name"] for r in fake_sf.rows("UserRole")] == ["Ops"]
        assert rl.limit == 15000

    def test_create_rejected(self, store, fake_sf):
        fake_sf.fail_next(
            "POST", "/sobjects/UserRole", 400, [{"errorCode": "DUPLICATE_VALUE", "message": "dup"}]
        )
        with pytest.raises(CreateFailedError, match="DUPLICATE_VALUE"):
            store.create_object("UserRole", {"Name": "Ops"})

    def test_create_without_success(self, store, fake_sf):
        fake_sf.fail_next(
            "POST",
            "/sobjects/UserRole",
            201,
            {"id": None, "success": False, "errors": [{"statusCode": "FIELD_INTEGRITY_EXCEPTION", "message": "bad"}]},
        )
        with pytest.raises(CreateFailedError, match="FIELD_INTEGRITY_EXCEPTION"):
            store.create_object("UserRole", {"Name": "Ops"})

    def test_update_drops_read_only_keys(self, store, fake_sf):
        role_id = fake_sf.add("UserRole", Name="Ops")

        store.update_object("UserRole", role_id, {"Id": role_id, "attributes": {}, "Name": "Ops 2"})

        patch = fake_sf.calls("PATCH")[-1]
        assert b'"Id"' not in patch.body
        assert fake_sf.get("UserRole", role_id)["Name"] == "Ops 2"

    def test_update_missing(self, store):
        with pytest.raises(UpdateFailedError):
            store.update_object("UserRole", "00E000000000999", {"Name": "x"})

    def test_delete(self, store, fake_sf):
        role_id = fake_sf.add("UserRole", Name="Ops")
        store.delete_object("UserRole", role_id)
        assert fake_sf.rows("UserRole") == []

    def test_delete_missing(self, store):
        with pytest.raises(NotFoundError):
            store.delete_object("UserRole", "00E000000000999")

    def test_delete_refused(self, store, fake_sf):
        role_id = fake_sf.add("UserRole", Name="Ops")
        fake_sf.fail_next(
            "DELETE", f"/sobjects/UserRole/{role_id}", 400, [{"errorCode": "DELETE_FAILED", "message": "in use"}]
        )
        with pytest.raises(DeleteFailedError, match="in use"):
            store.delete_object("UserRole", role_id)

    def test_set_field(self, store, fake_sf):
        user_id = fake_sf.add("User", Email="a@example.com", UserRoleId=None)
        store.set_field("User", user_id, "UserRoleId", "00E1")
        assert fake_sf.get("User", user_id)["UserRoleId"] == "00E1"

    def test_set_one_field_sends_minimal_body(self, store, fake_sf):
        user_id = fake_sf.add("User", Email="a@example.com", ProfileId="00eOLD", Title="CEO")

        store.set_one_field("User", user_id, "ProfileId", "00eNEW")

        assert fake_sf.calls("PATCH")[-1].body == b'{"ProfileId": "00eNEW"}'
        assert fake_sf.get("User", user_id)["ProfileId"] == "00eNEW"

    def test_clear_field(self, store, fake_sf):
        user_id = fake_sf.add("User", UserRoleId="00E1")
        store.clear_field("User", user_id, "UserRoleId", "00E1")
        assert fake_sf.get("User", user_id)["UserRoleId"] is None

    def test_clear_field_precondition(self, store, fake_sf):
        user_id = fake_sf.add("User", UserRoleId="00E2")

        with pytest.raises(PreconditionFailedError) as exc:
            store.clear_field("User", user_id, "UserRoleId", "00E1")

        assert exc.value.actual == "00E2"
        assert str(exc.value) == "missing UserRoleId: 00E1"
        assert fake_sf.calls("PATCH") == []

    def test_clear_one_field(self, store, fake_sf):
        user_id = fake_sf.add("User", UserRoleId="00E1")
        store.clear_one_field("User", user_id, "UserRoleId", "00E1")
        assert fake_sf.get("User", user_id)["UserRoleId"] is None
