import asyncio

import pytest
from sqlalchemy import select, func

from app.core.database.engine import AsyncSessionLocal, unit_of_work
from app.core.database.locks import SUPER_ADMIN_COUNT_LOCK, invariant_lock
from app.core.errors import LastSuperAdminProtected, NotFound, Unauthorized
from app.features.audit.models import AuditLog
from app.features.members.directory import MemberDirectory
from app.features.members.models import Member, MemberRole
from app.features.notifications.models import Notification
from app.features.permissions.administration import PermissionAdministration
from app.features.permissions.models import GrantedPermission, PermissionRequest
from app.features.permissions.workflow import PermissionRequestWorkflow


async def _count(model, *criteria):
    async with AsyncSessionLocal() as session:
        result = await session.execute(select(func.count()).select_from(model).where(*criteria))
        return result.scalar_one()


async def test_first_member_bootstraps_as_super_admin(db):
    directory = MemberDirectory(db)

    founder = await directory.create_member("Founder", external_identity="appwrite-1")
    await directory.set_signups_open(True, founder.id)
    second = await directory.create_member("Second", external_identity="appwrite-2", email="second@example.org")

    assert founder.role == MemberRole.SUPER_ADMIN
    assert second.role == MemberRole.MEMBER
    assert second.email == "second@example.org"
    assert (await directory.get_by_external_identity("appwrite-2")).id == second.id
    assert await directory.get_by_external_identity("appwrite-3") is None


async def test_get_and_role_lookup(db, make_member):
    member = await make_member(MemberRole.HONOURABLE)
    directory = MemberDirectory(db)

    assert (await directory.get(member.id)).full_name == member.full_name
    assert await directory.get_role(member.id) == MemberRole.HONOURABLE
    assert await directory.find_role("01UNKNOWNMEMBER00000000000") is None
    with pytest.raises(NotFound):
        await directory.get("01UNKNOWNMEMBER00000000000")
    with pytest.raises(NotFound):
        await directory.get_role("01UNKNOWNMEMBER00000000000")


async def test_list_members_by_role(db, make_member):
    await make_member(MemberRole.ADMIN, full_name="Beta")
    await make_member(MemberRole.ADMIN, full_name="Alpha")
    await make_member(MemberRole.MEMBER, full_name="Gamma")
    directory = MemberDirectory(db)

    admins = await directory.list_members(role=MemberRole.ADMIN)

    assert [m.full_name for m in admins] == ["Alpha", "Beta"]
    assert len(await directory.list_members()) == 3
    assert len(await directory.list_members(limit=1)) == 1


async def test_update_designation(db, make_member):
    admin = await make_member(MemberRole.ADMIN)
    member = await make_member(MemberRole.MEMBER)
    directory = MemberDirectory(db)

    updated = await directory.update_designation(member.id, "Treasurer", admin.id)
    assert updated.designation == "Treasurer"

    with pytest.raises(Unauthorized):
        await directory.update_designation(admin.id, "Chair", member.id)


async def test_delete_members_removes_dependents(db, make_member):
    super_admin = await make_member(MemberRole.SUPER_ADMIN)
    admin = await make_member(MemberRole.ADMIN)
    await PermissionRequestWorkflow(db).submit(admin.id, "finance", "")
    await PermissionAdministration(db).grant(admin.id, "events", super_admin.id)

    deleted = await MemberDirectory(db).delete_members([admin.id], super_admin.id)

    assert deleted == [admin.id]
    assert await _count(Member, Member.id == admin.id) == 0
    assert await _count(PermissionRequest, PermissionRequest.actor_id == admin.id) == 0
    assert await _count(GrantedPermission, GrantedPermission.actor_id == admin.id) == 0
    assert await _count(Notification, Notification.actor_id == admin.id) == 0


async def test_admins_only_delete_plain_members(db, make_member):
    await make_member(MemberRole.SUPER_ADMIN)
    admin = await make_member(MemberRole.ADMIN)
    member = await make_member(MemberRole.MEMBER)
    other_admin = await make_member(MemberRole.ADMIN)
    directory = MemberDirectory(db)

    with pytest.raises(Unauthorized):
        await directory.delete_members([member.id, other_admin.id], admin.id)
    assert await _count(Member, Member.id == member.id) == 1

    assert await directory.delete_members([member.id], admin.id) == [member.id]


async def test_members_cannot_delete(db, make_member):
    caller = await make_member(MemberRole.MEMBER)
    target = await make_member(MemberRole.MEMBER)

    with pytest.raises(Unauthorized):
        await MemberDirectory(db).delete_members([target.id], caller.id)


async def test_last_super_admin_cannot_be_deleted(db, make_member):
    super_admin = await make_member(MemberRole.SUPER_ADMIN)

    with pytest.raises(LastSuperAdminProtected):
        await MemberDirectory(db).delete_members([super_admin.id], super_admin.id)

    assert await _count(Member, Member.id == super_admin.id) == 1


async def test_delete_unknown_member_is_not_found(db, make_member):
    super_admin = await make_member(MemberRole.SUPER_ADMIN)
    member = await make_member(MemberRole.MEMBER)

    with pytest.raises(NotFound):
        await MemberDirectory(db).delete_members([member.id, "01UNKNOWNMEMBER00000000000"], super_admin.id)

    assert await _count(Member, Member.id == member.id) == 1


async def test_signups_are_closed_after_the_founder(db):
    directory = MemberDirectory(db)
    founder_id = (await directory.create_member("Founder", external_identity="appwrite-1")).id

    with pytest.raises(Unauthorized):
        await directory.create_member("Stranger", external_identity="appwrite-2")

    assert not await directory.signups_open()
    assert await _count(Member) == 1
    assert (await directory.create_member("Founder", external_identity="appwrite-1")).id == founder_id


async def test_only_super_admins_toggle_signups(db, make_member):
    super_admin = await make_member(MemberRole.SUPER_ADMIN)
    admin = await make_member(MemberRole.ADMIN)
    directory = MemberDirectory(db)

    with pytest.raises(Unauthorized):
        await directory.set_signups_open(True, admin.id)
    assert not await directory.signups_open()

    await directory.set_signups_open(True, super_admin.id)
    newcomer = await directory.create_member("Newcomer", external_identity="appwrite-new")
    await directory.set_signups_open(False, super_admin.id)

    assert newcomer.role == MemberRole.MEMBER
    assert not await directory.signups_open()
    with pytest.raises(Unauthorized):
        await directory.create_member("Late", external_identity="appwrite-late")
    assert await _count(AuditLog, AuditLog.action == "enable_signup") == 1
    assert await _count(AuditLog, AuditLog.action == "disable_signup") == 1


async def test_concurrent_first_sign_ins_share_one_member():
    async def sign_up():
        async with AsyncSessionLocal() as session:
            return await MemberDirectory(session).create_member("Same Person", external_identity="appwrite-1")

    first, second = await asyncio.gather(sign_up(), sign_up())

    assert first.id == second.id
    assert first.role == MemberRole.SUPER_ADMIN
    assert await _count(Member, Member.external_identity == "appwrite-1") == 1


async def test_delete_sees_a_demotion_that_held_the_lock(db, make_member):
    await make_member(MemberRole.SUPER_ADMIN)
    admin = await make_member(MemberRole.ADMIN)
    target = await make_member(MemberRole.MEMBER)
    holding = asyncio.Event()
    release = asyncio.Event()

    async def demote():
        async with AsyncSessionLocal() as session:
            async with invariant_lock(session, SUPER_ADMIN_COUNT_LOCK):
                holding.set()
                await release.wait()
                async with unit_of_work(session):
                    await MemberDirectory(session).set_role(admin.id, MemberRole.MEMBER)

    demotion = asyncio.create_task(demote())
    await holding.wait()
    deletion = asyncio.create_task(MemberDirectory(db).delete_members([target.id], admin.id))
    await asyncio.sleep(0.01)
    release.set()
    await demotion

    with pytest.raises(Unauthorized):
        await deletion
    assert await _count(Member, Member.id == target.id) == 1
