import pytest

from app.permissions import guards
from app.permissions.constants import Permission
from app.permissions.exceptions import ConstraintViolation, NotFound, PermissionDenied
from app.permissions.guards import AuthOutcome
from app.permissions.permission_set import PermissionSet
from app.permissions.snapshots import Channel, Group, GroupMember, Role

GROUP = Group(id=1, owner_id=100, name="team")
OTHER_GROUP = Group(id=2, owner_id=200, name="elsewhere")

ADMIN = Role(id=1, group_id=1, name="Admin", position=100, permissions=PermissionSet.all())
TECH = Role(id=2, group_id=1, name="Technical", position=30,
            permissions=PermissionSet({Permission.VIEW_CHANNELS, Permission.SEND_MESSAGES, Permission.USE_AI_FEATURES}))
EVERYONE = Role(id=3, group_id=1, name="Everyone", position=0,
                permissions=PermissionSet({Permission.VIEW_CHANNELS, Permission.SEND_MESSAGES}), is_default=True)

OWNER = GroupMember(id=1, group_id=1, user_id=100, role_ids=[])
TECHIE = GroupMember(id=2, group_id=1, user_id=101, role_ids=[2, 3])
PLAIN = GroupMember(id=3, group_id=1, user_id=102, role_ids=[3])

OPEN = Channel(id=1, group_id=1, name="general")
TECH_ONLY = Channel(id=2, group_id=1, name="dev", allowed_role_ids=[2])
FOREIGN = Channel(id=3, group_id=2, name="theirs")


def test_owner_with_no_roles_still_allowed():
    result = guards.require_permission(OWNER, [], Permission.MANAGE_GROUP, GROUP)
    assert result.ok
    assert result.outcome is AuthOutcome.OK


def test_missing_permission_is_denied_with_the_key():
    result = guards.require_permission(PLAIN, [EVERYONE], Permission.USE_AI_FEATURES, GROUP)
    assert not result
    assert result.outcome is AuthOutcome.PERMISSION_DENIED
    assert result.permission is Permission.USE_AI_FEATURES


def test_permission_accepts_string_keys():
    assert guards.require_permission(TECHIE, [TECH, EVERYONE], "USE_AI_FEATURES", GROUP)


def test_malformed_permission_key_raises():
    with pytest.raises(ValueError):
        guards.require_permission(TECHIE, [TECH], "USE_MAGIC", GROUP)


def test_channel_access_outcomes():
    assert guards.require_channel_access(PLAIN, [EVERYONE], OPEN, GROUP).ok
    assert guards.require_channel_access(TECHIE, [TECH, EVERYONE], TECH_ONLY, GROUP).ok

    denied = guards.require_channel_access(PLAIN, [EVERYONE], TECH_ONLY, GROUP)
    assert denied.outcome is AuthOutcome.PERMISSION_DENIED

    foreign = guards.require_channel_access(TECHIE, [TECH], FOREIGN, GROUP)
    assert foreign.outcome is AuthOutcome.NOT_FOUND


def test_owner_bypasses_allow_lists_only_in_own_group():
    assert guards.require_channel_access(OWNER, [], TECH_ONLY, GROUP).ok

    # Same user as a plain member of a group they do not own
    visitor = GroupMember(id=9, group_id=2, user_id=100, role_ids=[])
    restricted = Channel(id=4, group_id=2, name="private", allowed_role_ids=[77])
    assert not guards.require_channel_access(visitor, [], restricted, OTHER_GROUP)


def test_channel_permission_checks_access_first():
    result = guards.require_channel_permission(PLAIN, [EVERYONE], TECH_ONLY, Permission.SEND_MESSAGES, GROUP)
    assert result.outcome is AuthOutcome.PERMISSION_DENIED
    assert result.permission is None

    result = guards.require_channel_permission(PLAIN, [EVERYONE], OPEN, Permission.ATTACH_FILES, GROUP)
    assert result.permission is Permission.ATTACH_FILES


def test_channel_management():
    assert guards.require_channel_management(OWNER, [], TECH_ONLY, GROUP).ok
    assert guards.require_channel_management(TECHIE, [TECH, EVERYONE], TECH_ONLY, GROUP).outcome is (
        AuthOutcome.PERMISSION_DENIED
    )


def test_filter_visible_channels_is_lazy_and_ordered():
    seen = []

    def source():
        for ch in (TECH_ONLY, FOREIGN, OPEN):
            seen.append(ch.id)
            yield ch

    visible = guards.filter_visible_channels(source(), PLAIN, [EVERYONE], GROUP)
    assert seen == []
    assert next(visible) is OPEN
    assert list(visible) == []
    assert seen == [2, 3, 1]

    techie_view = list(guards.filter_visible_channels([OPEN, FOREIGN, TECH_ONLY], TECHIE, [TECH, EVERYONE], GROUP))
    assert techie_view == [OPEN, TECH_ONLY]


def test_filter_visible_channels_owner_sees_all_of_own_group():
    result = list(guards.filter_visible_channels([TECH_ONLY, FOREIGN, OPEN], OWNER, [], GROUP))
    assert result == [TECH_ONLY, OPEN]


def test_role_deletion_checks():
    foreign_role = Role(id=50, group_id=2, name="x", position=0)
    assert guards.check_role_deletion(OWNER, [], foreign_role, GROUP).outcome is AuthOutcome.NOT_FOUND
    assert guards.check_role_deletion(PLAIN, [EVERYONE], TECH, GROUP).outcome is AuthOutcome.PERMISSION_DENIED
    assert guards.check_role_deletion(OWNER, [], EVERYONE, GROUP).outcome is AuthOutcome.CONSTRAINT_VIOLATION
    assert guards.check_role_deletion(OWNER, [], TECH, GROUP).ok


def test_require_owner():
    assert guards.require_owner(OWNER, GROUP).ok
    assert guards.require_owner(TECHIE, GROUP).outcome is AuthOutcome.PERMISSION_DENIED


@pytest.mark.parametrize(
    "result, exc_type, status",
    [
        (guards.AuthResult(AuthOutcome.PERMISSION_DENIED), PermissionDenied, 403),
        (guards.AuthResult(AuthOutcome.NOT_FOUND), NotFound, 404),
        (guards.AuthResult(AuthOutcome.CONSTRAINT_VIOLATION, "nope"), ConstraintViolation, 409),
    ],
)
def test_raise_for_outcome(result, exc_type, status):
    with pytest.raises(exc_type) as excinfo:
        result.raise_for_outcome()
    assert excinfo.value.status_code == status
    assert set(excinfo.value.detail) == {"code", "message"}


def test_ok_does_not_raise():
    guards.OK.raise_for_outcome()
