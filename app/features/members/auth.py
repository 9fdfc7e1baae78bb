"""
Appwrite identity: who is making the call.

Appwrite owns login and sessions. Every request's bearer JWT is handed back
to Appwrite, which answers with the account it was issued for; the token's
own claims are never trusted on their own.
"""
from dataclasses import dataclass
from typing import Optional

import jwt
from appwrite.client import Client
from appwrite.exception import AppwriteException
from appwrite.services.account import Account
from fastapi import HTTPException, status
from fastapi.concurrency import run_in_threadpool

from app.core import config
from app.utils import get_logger


log = get_logger(__name__)

IDENTITY_CLAIM = "userId"


@dataclass(frozen=True)
class IdentityProfile:
    external_identity: str
    full_name: str
    email: Optional[str] = None


def _unauthenticated(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def read_claimed_identity(token: str) -> str:
    """
    Return the Appwrite user id a JWT claims to carry.

    Only rejects expired or malformed tokens early, before Appwrite is asked.
    The claim is not proof of anything until `verify_identity` confirms it.

    Raises:
        HTTPException: 401 if the token is expired, malformed or has no user id
    """
    try:
        payload = jwt.decode(token, options={"verify_signature": False, "verify_exp": True})
    except jwt.ExpiredSignatureError:
        raise _unauthenticated("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthenticated(f"Invalid token: {e}")

    claimed = payload.get(IDENTITY_CLAIM)
    if not claimed:
        raise _unauthenticated("Invalid token payload")
    return claimed


def account_for(token: str) -> Account:
    """Appwrite account service acting as the token's owner."""
    client = Client()
    client.set_endpoint(config.APPWRITE_ENDPOINT)
    client.set_project(config.APPWRITE_PROJECT_ID)
    client.set_jwt(token)
    return Account(client)


async def verify_identity(token: str) -> IdentityProfile:
    """
    Have Appwrite validate the JWT and return the account it belongs to.

    Raises:
        HTTPException: 401 if Appwrite rejects the token or it names someone else
    """
    claimed = read_claimed_identity(token)
    try:
        # The SDK is blocking
        account = await run_in_threadpool(account_for(token).get)
    except AppwriteException as e:
        log.info("Appwrite rejected token claiming %s: %s", claimed, e)
        raise _unauthenticated(f"Failed to verify user: {e}")

    external_identity = account.get("$id")
    if external_identity != claimed:
        log.warning("Token claims %s but Appwrite issued it to %s", claimed, external_identity)
        raise _unauthenticated("Token does not match its account")

    return IdentityProfile(
        external_identity=external_identity,
        full_name=account.get("name") or "Unknown",
        email=account.get("email") or None,
    )
