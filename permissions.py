"""
Capability table for the role gate.

Every protected route names a (resource, action) pair. The table maps the
pair to the roles allowed to perform it. OWNER in a set means the caller
may also act on documents they own; that half of the check can only run
once the handler has loaded the document, so `require` lets such routes
through and the handler finishes the job with `authorize`.

The role in the bearer token is only a hint: `require` re-reads it from the
user document so a demotion takes effect on the next request.
"""
from typing import Dict, FrozenSet, Optional, Tuple

from fastapi import Depends, HTTPException
from pymongo.database import Database

from auth import Identity, get_identity
from database import get_db, to_object_id

OWNER = "owner"
ADMINS = frozenset({"admin", "superadmin"})

CAPABILITIES: Dict[Tuple[str, str], FrozenSet[str]] = {
    ("user", "list"): ADMINS,
    ("user", "set_role"): frozenset({"superadmin"}),
    ("product", "create"): ADMINS,
    ("product", "update"): ADMINS,
    ("product", "delete"): ADMINS,
    ("review", "update"): ADMINS | {OWNER},
    ("review", "delete"): ADMINS | {OWNER},
    ("order", "list_all"): ADMINS,
    ("order", "read"): ADMINS | {OWNER},
    ("order", "update_status"): ADMINS,
    ("order", "cancel"): ADMINS | {OWNER},
    # owners may only confirm a payment with a gateway transaction id
    ("order", "confirm_payment"): ADMINS | {OWNER},
    ("order", "update_payment"): ADMINS,
}


def can(identity: Identity, resource: str, action: str, owner_id: Optional[str] = None) -> bool:
    allowed = CAPABILITIES.get((resource, action), frozenset())
    if identity.role in allowed:
        return True
    return OWNER in allowed and owner_id is not None and str(owner_id) == identity.user_id


def authorize(identity: Identity, resource: str, action: str, owner_id: Optional[str] = None) -> None:
    if not can(identity, resource, action, owner_id):
        raise HTTPException(status_code=403, detail=f"Not authorized to {action.replace('_', ' ')} this {resource}")


def current_identity(db: Database, identity: Identity) -> Identity:
    """Replace the token's role with the one stored on the user."""
    oid = to_object_id(identity.user_id)
    user = db["user"].find_one({"_id": oid}, {"role": 1}) if oid else None
    if not user:
        raise HTTPException(status_code=401, detail="User no longer exists")
    role = user.get("role", "user")
    if role == identity.role:
        return identity
    return Identity(user_id=identity.user_id, role=role)


def require(resource: str, action: str):
    """Route dependency: authenticate, then check the stored role against the table."""
    if (resource, action) not in CAPABILITIES:
        raise KeyError(f"Unknown capability {resource}:{action}")

    def dependency(identity: Identity = Depends(get_identity), db: Database = Depends(get_db)) -> Identity:
        identity = current_identity(db, identity)
        allowed = CAPABILITIES[(resource, action)]
        if identity.role not in allowed and OWNER not in allowed:
            raise HTTPException(status_code=403, detail="Access denied")
        return identity

    return dependency
