from typing import Annotated

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.members.auth import verify_identity
from app.features.members.directory import MemberDirectory
from app.features.members.models import Member


bearer = HTTPBearer()


async def get_current_member(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> Member:
    """
    Resolve the Appwrite-verified caller to a directory member.

    An identity seen for the first time is signed up, subject to the
    directory's signup rules.
    """
    profile = await verify_identity(credentials.credentials)
    directory = MemberDirectory(db)

    member = await directory.get_by_external_identity(profile.external_identity)
    if member is not None:
        return member

    return await directory.create_member(
        full_name=profile.full_name,
        external_identity=profile.external_identity,
        email=profile.email,
    )
