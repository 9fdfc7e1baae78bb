import asyncio
import random

import pytest

from app.core.database.engine import AsyncSessionLocal
from app.core.errors import (
    GovernanceError,
    ImmutableRole,
    InvalidPromotionPath,
    LastSuperAdminProtected,
    NotFound,
    SuperAdminCapExceeded,
    Unauthorized,
)
from app.features.audit.service import list_audit_logs
from app.features.members.directory import MemberDirectory
from app.features.members.models import MemberRole, SUPER_ADMIN_LIMIT
from app.features.members.roles import RoleTransitionService
from app.features.notifications.models import NotificationType
from app.features.notifications.service import NotificationService


async def _roles(db, *members):
    directory = MemberDirectory(db)
    return [await directory.get_role(member.id) for member in members]


async def test_promote_admin_to_super_admin(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    admin = await make_member(MemberRole.ADMIN)

    updated = await RoleTransitionService(db).set_roles([admin.id], MemberRole.SUPER_ADMIN, caller.id)

    assert [m.role for m in updated] == [MemberRole.SUPER_ADMIN]
    assert await MemberDirectory(db).count_super_admins() == 2


async def test_third_super_admin_is_rejected(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    await make_member(MemberRole.SUPER_ADMIN)
    admin = await make_member(MemberRole.ADMIN)

    with pytest.raises(SuperAdminCapExceeded) as exc:
        await RoleTransitionService(db).set_roles([admin.id], MemberRole.SUPER_ADMIN, caller.id)

    assert exc.value.rule == "SuperAdminCapExceeded"
    assert await _roles(db, admin) == [MemberRole.ADMIN]
    assert await MemberDirectory(db).count_super_admins() == SUPER_ADMIN_LIMIT


async def test_batch_promotion_over_cap_changes_nobody(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    first = await make_member(MemberRole.ADMIN)
    second = await make_member(MemberRole.MEMBER)

    with pytest.raises(SuperAdminCapExceeded):
        await RoleTransitionService(db).set_roles([first.id, second.id], MemberRole.SUPER_ADMIN, caller.id)

    assert await _roles(db, first, second) == [MemberRole.ADMIN, MemberRole.MEMBER]


async def test_reassigning_existing_super_admin_does_not_count_twice(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    other = await make_member(MemberRole.SUPER_ADMIN)

    await RoleTransitionService(db).set_roles([other.id], MemberRole.SUPER_ADMIN, caller.id)

    assert await MemberDirectory(db).count_super_admins() == 2


async def test_sole_super_admin_cannot_demote_self(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)

    with pytest.raises(LastSuperAdminProtected) as exc:
        await RoleTransitionService(db).set_roles([caller.id], MemberRole.ADMIN, caller.id)

    assert exc.value.rule == "LastSuperAdminProtected"
    assert await _roles(db, caller) == [MemberRole.SUPER_ADMIN]


async def test_super_admin_can_step_down_when_another_remains(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    other = await make_member(MemberRole.SUPER_ADMIN)

    await RoleTransitionService(db).set_roles([caller.id], MemberRole.ADMIN, caller.id)

    assert await _roles(db, caller, other) == [MemberRole.ADMIN, MemberRole.SUPER_ADMIN]


async def test_demoting_every_super_admin_at_once_is_rejected(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    other = await make_member(MemberRole.SUPER_ADMIN)

    with pytest.raises(LastSuperAdminProtected):
        await RoleTransitionService(db).set_roles([caller.id, other.id], MemberRole.MEMBER, caller.id)

    assert await MemberDirectory(db).count_super_admins() == 2


@pytest.mark.parametrize("new_role", [MemberRole.MEMBER, MemberRole.ADMIN, MemberRole.SUPER_ADMIN])
async def test_honourable_is_terminal(db, make_member, new_role):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    honourable = await make_member(MemberRole.HONOURABLE)

    with pytest.raises(ImmutableRole):
        await RoleTransitionService(db).set_roles([honourable.id], new_role, caller.id)

    assert await _roles(db, honourable) == [MemberRole.HONOURABLE]


async def test_immutable_member_in_batch_blocks_whole_batch(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    member = await make_member(MemberRole.MEMBER)
    honourable = await make_member(MemberRole.HONOURABLE)

    with pytest.raises(ImmutableRole):
        await RoleTransitionService(db).set_roles([member.id, honourable.id], MemberRole.ADMIN, caller.id)

    assert await _roles(db, member, honourable) == [MemberRole.MEMBER, MemberRole.HONOURABLE]


@pytest.mark.parametrize("role", [MemberRole.MEMBER, MemberRole.SUPER_ADMIN])
async def test_only_admins_become_honourable(db, make_member, role):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    await make_member(MemberRole.SUPER_ADMIN)
    target = await make_member(role) if role != MemberRole.SUPER_ADMIN else caller

    with pytest.raises(InvalidPromotionPath) as exc:
        await RoleTransitionService(db).set_roles([target.id], MemberRole.HONOURABLE, caller.id)

    assert exc.value.rule == "InvalidPromotionPath"
    assert await _roles(db, target) == [role]


async def test_honourable_promotion_notifies_super_admins(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    other = await make_member(MemberRole.SUPER_ADMIN)
    first = await make_member(MemberRole.ADMIN, full_name="Grace Hopper")
    second = await make_member(MemberRole.ADMIN, full_name="Alan Turing")

    await RoleTransitionService(db).set_roles([first.id, second.id], MemberRole.HONOURABLE, caller.id)

    assert await _roles(db, first, second) == [MemberRole.HONOURABLE, MemberRole.HONOURABLE]
    notifications = NotificationService(db)
    for super_admin in (caller, other):
        received = await notifications.list_for_actor(super_admin.id)
        assert len(received) == 1
        assert received[0].type == NotificationType.INFO
        assert received[0].title == "Members Promoted to Honourable"
        assert "Grace Hopper" in received[0].message
        assert "Alan Turing" in received[0].message
    assert await notifications.list_for_actor(first.id) == []


async def test_other_transitions_do_not_notify(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    member = await make_member(MemberRole.MEMBER)

    await RoleTransitionService(db).set_roles([member.id], MemberRole.ADMIN, caller.id)

    assert await NotificationService(db).list_for_actor(caller.id) == []


@pytest.mark.parametrize("role", [MemberRole.MEMBER, MemberRole.HONOURABLE, MemberRole.ADMIN])
async def test_only_super_admins_change_roles(db, make_member, role):
    caller = await make_member(role)
    target = await make_member(MemberRole.MEMBER)

    with pytest.raises(Unauthorized):
        await RoleTransitionService(db).set_roles([target.id], MemberRole.ADMIN, caller.id)

    assert await _roles(db, target) == [MemberRole.MEMBER]


async def test_unknown_caller_is_unauthorized(db, make_member):
    target = await make_member(MemberRole.MEMBER)

    with pytest.raises(Unauthorized):
        await RoleTransitionService(db).set_roles([target.id], MemberRole.ADMIN, "01UNKNOWNCALLER00000000000")


async def test_unknown_target_is_not_found(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    target = await make_member(MemberRole.MEMBER)

    with pytest.raises(NotFound):
        await RoleTransitionService(db).set_roles([target.id, "01UNKNOWNTARGET00000000000"], MemberRole.ADMIN, caller.id)

    assert await _roles(db, target) == [MemberRole.MEMBER]


async def test_empty_batch_is_a_no_op(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)

    assert await RoleTransitionService(db).set_roles([], MemberRole.ADMIN, caller.id) == []


async def test_role_changes_are_audited(db, make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    member = await make_member(MemberRole.MEMBER)

    await RoleTransitionService(db).set_roles([member.id], MemberRole.ADMIN, caller.id)

    entries = await list_audit_logs(db, action="set_roles")
    assert len(entries) == 1
    assert entries[0].details == {"member_ids": [member.id], "new_role": "admin"}


async def test_concurrent_promotions_never_exceed_cap(make_member):
    caller = await make_member(MemberRole.SUPER_ADMIN)
    admins = [await make_member(MemberRole.ADMIN) for _ in range(4)]

    async def promote(admin):
        async with AsyncSessionLocal() as session:
            return await RoleTransitionService(session).set_roles([admin.id], MemberRole.SUPER_ADMIN, caller.id)

    results = await asyncio.gather(*(promote(admin) for admin in admins), return_exceptions=True)

    succeeded = [r for r in results if not isinstance(r, BaseException)]
    assert len(succeeded) == 1
    assert all(isinstance(r, SuperAdminCapExceeded) for r in results if isinstance(r, BaseException))
    async with AsyncSessionLocal() as session:
        assert await MemberDirectory(session).count_super_admins() == SUPER_ADMIN_LIMIT


async def test_random_concurrent_batches_keep_super_admin_count_in_bounds(make_member):
    rng = random.Random(20240611)
    founders = [await make_member(MemberRole.SUPER_ADMIN) for _ in range(2)]
    others = [await make_member(rng.choice([MemberRole.MEMBER, MemberRole.ADMIN])) for _ in range(6)]
    everyone = founders + others
    honourable_before = set()

    async def change(caller, targets, new_role):
        async with AsyncSessionLocal() as session:
            return await RoleTransitionService(session).set_roles(
                [t.id for t in targets], new_role, caller.id
            )

    for _ in range(8):
        calls = [
            change(
                rng.choice(everyone),
                rng.sample(everyone, rng.randint(1, 3)),
                rng.choice(list(MemberRole)),
            )
            for _ in range(4)
        ]
        results = await asyncio.gather(*calls, return_exceptions=True)
        assert all(not isinstance(r, BaseException) or isinstance(r, GovernanceError) for r in results)

        async with AsyncSessionLocal() as session:
            directory = MemberDirectory(session)
            assert 1 <= await directory.count_super_admins() <= SUPER_ADMIN_LIMIT
            honourable_now = {
                m.id for m in await directory.list_members(role=MemberRole.HONOURABLE)
            }
        assert honourable_before <= honourable_now
        honourable_before = honourable_now
