"""
Bearer-token identity. Tokens are issued and verified by the identity
provider, which mirrors live sessions into the ``session`` collection; this
module only maps a token to the provider's user id.
"""

from typing import Optional

from fastapi import Depends, Header
from pymongo.database import Database

from database import get_database, utcnow
from errors import Forbidden, Unauthorized


def current_identity(
    authorization: Optional[str] = Header(None),
    db: Database = Depends(get_database),
) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise Unauthorized()
    token = authorization[7:].strip()
    if not token:
        raise Unauthorized()

    session = db["session"].find_one({"token": token})
    if not session:
        raise Unauthorized()
    expires_at = session.get("expires_at")
    if expires_at is not None and expires_at < utcnow():
        raise Unauthorized()
    return session["user_id"]


def require_admin(
    identity: str = Depends(current_identity),
    db: Database = Depends(get_database),
) -> str:
    user = db["user"].find_one({"clerk_id": identity}, {"role": 1})
    if not user or user.get("role") != "admin":
        raise Forbidden("Admin access required")
    return identity
