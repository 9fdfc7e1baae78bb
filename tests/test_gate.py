import pytest

from app.core.database.engine import unit_of_work
from app.core.errors import Unauthorized
from app.features.members.models import MemberRole
from app.features.members.roles import RoleTransitionService
from app.features.permissions.administration import PermissionAdministration
from app.features.permissions.dependencies import is_allowed, require_permission, require_role
from app.features.permissions.store import GrantedPermissionStore


async def test_super_admin_bypasses_everything(db, make_member):
    super_admin = await make_member(MemberRole.SUPER_ADMIN)

    assert await is_allowed(db, super_admin.id, required_permission_key="finance")
    assert await is_allowed(db, super_admin.id, required_role=MemberRole.MEMBER)
    assert await is_allowed(db, super_admin.id)


async def test_capability_requires_active_grant(db, make_member):
    admin = await make_member(MemberRole.ADMIN)
    store = GrantedPermissionStore(db)

    assert not await is_allowed(db, admin.id, required_permission_key="finance")
    async with unit_of_work(db):
        await store.grant(admin.id, "finance", granted_by=None)
    assert await is_allowed(db, admin.id, required_permission_key="finance")
    assert not await is_allowed(db, admin.id, required_permission_key="events")


@pytest.mark.parametrize("role, required, expected", [
    (MemberRole.ADMIN, MemberRole.ADMIN, True),
    (MemberRole.ADMIN, [MemberRole.ADMIN, MemberRole.HONOURABLE], True),
    (MemberRole.HONOURABLE, [MemberRole.ADMIN, MemberRole.HONOURABLE], True),
    (MemberRole.MEMBER, [MemberRole.ADMIN, MemberRole.HONOURABLE], False),
    (MemberRole.HONOURABLE, MemberRole.ADMIN, False),
    (MemberRole.MEMBER, MemberRole.SUPER_ADMIN, False),
])
async def test_role_requirement(db, make_member, role, required, expected):
    member = await make_member(role)

    assert await is_allowed(db, member.id, required_role=required) is expected


async def test_no_requirement_admits_known_members(db, make_member):
    member = await make_member(MemberRole.MEMBER)

    assert await is_allowed(db, member.id)


async def test_unknown_actor_is_denied(db):
    assert not await is_allowed(db, "01UNKNOWNACTOR000000000000")
    assert not await is_allowed(db, "01UNKNOWNACTOR000000000000", required_permission_key="finance")


async def test_revoke_is_seen_on_next_check(db, make_member):
    super_admin = await make_member(MemberRole.SUPER_ADMIN)
    admin = await make_member(MemberRole.ADMIN)
    administration = PermissionAdministration(db)

    await administration.grant(admin.id, "announcement", super_admin.id)
    assert await is_allowed(db, admin.id, required_permission_key="announcement")

    await administration.revoke(admin.id, "announcement", super_admin.id)
    assert not await is_allowed(db, admin.id, required_permission_key="announcement")


async def test_demotion_is_seen_on_next_check(db, make_member):
    super_admin = await make_member(MemberRole.SUPER_ADMIN)
    admin = await make_member(MemberRole.ADMIN)
    assert await is_allowed(db, admin.id, required_role=MemberRole.ADMIN)

    await RoleTransitionService(db).set_roles([admin.id], MemberRole.MEMBER, super_admin.id)

    assert not await is_allowed(db, admin.id, required_role=MemberRole.ADMIN)


async def test_route_dependencies_raise_unauthorized(db, make_member):
    admin = await make_member(MemberRole.ADMIN)
    member = await make_member(MemberRole.MEMBER)
    needs_finance = require_permission("finance")
    needs_admin = require_role(MemberRole.ADMIN, MemberRole.SUPER_ADMIN)

    with pytest.raises(Unauthorized):
        await needs_finance(db=db, current_member=admin)
    async with unit_of_work(db):
        await GrantedPermissionStore(db).grant(admin.id, "finance", granted_by=None)
    assert await needs_finance(db=db, current_member=admin) is admin

    assert await needs_admin(db=db, current_member=admin) is admin
    with pytest.raises(Unauthorized):
        await needs_admin(db=db, current_member=member)
