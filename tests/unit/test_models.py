"""Tests for sfaccess.models."""

from datetime import datetime, timezone

import pytest

from sfaccess.exceptions import FieldTypeError, InvalidAccountRequestError, InvalidPrincipalError
from sfaccess.models import (
    ORGANIZATION_GROUP_NAME,
    Group,
    PermissionSet,
    PermissionSetAssignment,
    PrincipalKind,
    SalesforceUser,
    UserCreateRequest,
    classify_principal,
    get_bool_field,
    parse_salesforce_datetime,
    should_skip_user_type,
)
from sfaccess.objects import Record


class TestFieldHelpers:
    def test_parse_datetime(self):
        parsed = parse_salesforce_datetime("2024-01-31T11:15:00.000+0200")
        assert parsed == datetime(2024, 1, 31, 9, 15, tzinfo=timezone.utc)

    def test_parse_datetime_empty(self):
        assert parse_salesforce_datetime("") is None
        assert parse_salesforce_datetime(None) is None

    def test_parse_datetime_bad(self):
        with pytest.raises(FieldTypeError):
            parse_salesforce_datetime("31/01/2024")

    @pytest.mark.parametrize("value,expected", [(True, True), ("true", True), ("false", False), (1, True), (0, False)])
    def test_bool_field(self, value, expected):
        assert get_bool_field(Record("User", {"IsActive": value}), "IsActive") is expected

    def test_bool_field_bad_type(self):
        with pytest.raises(FieldTypeError):
            get_bool_field(Record("User", {"IsActive": None}), "IsActive")

    def test_skip_user_types(self):
        assert should_skip_user_type(Record("User", {"UserType": "Guest"}))
        assert should_skip_user_type(Record("User", {"UserType": "PowerCustomerSuccess"}))
        assert not should_skip_user_type(Record("User", {"UserType": "Standard"}))
        assert not should_skip_user_type(Record("User", {"UserType": "CsnOnlyPlus"}))

    def test_empty_user_type_skipped_and_logged(self, caplog):
        assert should_skip_user_type(Record("User", {"Id": "005X", "UserType": ""}))
        assert "User type is empty id=005X" in caplog.text


class TestPrincipals:
    def test_classify(self):
        assert classify_principal("005000000000001") is PrincipalKind.USER
        assert classify_principal("00G000000000001") is PrincipalKind.GROUP

    @pytest.mark.parametrize("principal_id", ["", "0PS000000000001", "00"])
    def test_invalid(self, principal_id):
        with pytest.raises(InvalidPrincipalError):
            classify_principal(principal_id)


class TestEntities:
    def test_user_from_record(self):
        user = SalesforceUser.from_record(
            Record(
                "User",
                {
                    "Id": "005A",
                    "FirstName": "Ada",
                    "LastName": "Lovelace",
                    "Email": "ada@example.com",
                    "Username": "ada@example.com.prod",
                    "IsActive": "true",
                    "UserType": "Standard",
                    "ProfileId": "00e1",
                    "UserRoleId": None,
                    "LastLoginDate": None,
                },
            )
        )
        assert user.is_active is True
        assert user.user_role_id == ""
        assert user.last_login_date is None
        assert user.full_name == "Ada Lovelace"

    @pytest.mark.parametrize(
        "group_type,related,name,expected",
        [
            ("Regular", None, "Engineering", "Engineering"),
            ("Role", {"Name": "Sales"}, "", "Sales (role)"),
            ("RoleAndSubordinates", {"Name": "Sales"}, "", "Sales (role and subordinates)"),
            ("Organization", None, "", ORGANIZATION_GROUP_NAME),
        ],
    )
    def test_group_display_name(self, group_type, related, name, expected):
        group = Group.from_record(
            Record("Group", {"Id": "00G1", "Name": name, "Type": group_type, "Related": related})
        )
        assert group.display_name == expected

    def test_permission_set_prefers_profile_name(self):
        ps = PermissionSet.from_record(
            Record(
                "PermissionSet",
                {"Id": "0PS1", "Name": "X00e_generated", "Type": "Profile", "Profile": {"Name": "System Administrator"}},
            )
        )
        assert ps.display_name == "Profile - System Administrator"

    def test_permission_set_own_name(self):
        ps = PermissionSet.from_record(
            Record("PermissionSet", {"Id": "0PS1", "Name": "API_Access", "Type": "Regular", "Profile": None})
        )
        assert ps.display_name == "Regular - API_Access"

    def test_assignment_reads_is_active(self):
        psa = PermissionSetAssignment.from_record(
            Record(
                "PermissionSetAssignment",
                {"Id": "0Pa1", "AssigneeId": "005A", "PermissionSetId": "0PS1", "IsActive": False},
            )
        )
        assert psa.is_active is False
        assert psa.user_id == "005A"


class TestUserCreateRequest:
    def test_valid(self):
        UserCreateRequest("new@example.com", "00e1", "Last", time_zone_sid="Europe/London").validate()

    @pytest.mark.parametrize("email", ["", "not-an-email", "Name <x@example.com>"])
    def test_bad_email(self, email):
        with pytest.raises(InvalidAccountRequestError, match="invalid user email"):
            UserCreateRequest(email, "00e1", "Last").validate()

    def test_bad_timezone(self):
        with pytest.raises(InvalidAccountRequestError, match="invalid timezone"):
            UserCreateRequest("new@example.com", "00e1", "Last", time_zone_sid="Mars/Olympus").validate()

    def test_fields(self):
        fields = UserCreateRequest("new@example.com", "00e1", "Last", alias="nl", first_name="New").to_fields()
        assert fields["Username"] == "new@example.com"
        assert fields["Email"] == "new@example.com"
        assert fields["TimeZoneSidKey"] == "America/New_York"
        assert fields["EmailEncodingKey"] == "UTF-8"
        assert fields["LocaleSidKey"] == "en_US"
        assert fields["LanguageLocaleKey"] == "en_US"
        assert fields["ContactId"] is None
