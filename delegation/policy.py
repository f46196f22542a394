"""
Access policy engine.

Decides, per record type and operation, whether a caller may proceed.
The caller's admin flag is always resolved from the caller's own profile at
decision time, never taken from request input.

Rules:
  Profile       read: self or admin   create: self (bootstrap)
                update: self or admin  delete: never
  Country       read: anyone          create/update/delete: never (allocator only)
  Document      read: owner or admin  create/update/delete: owner
  Message       read: sender, recipient or admin
                create: sender with non-blank content   update/delete: never
  Notification  read: anyone          create: admin     update/delete: never

`read_filter` returns the SQL criterion equivalent to the single-row read
rule so list endpoints and single-row checks always agree.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict

from loguru import logger
from sqlalchemy import false, or_, true
from sqlalchemy.orm import Session

from delegation.errors import NotAuthorized
from delegation.models import Country, Document, Message, Notification, Profile


class Operation(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


@dataclass(frozen=True)
class Caller:
    """Server-resolved caller: identity plus role looked up from its profile"""
    user_id: str
    is_admin: bool = False


def resolve_caller(db: Session, user_id: str) -> Caller:
    """Look up the caller's role from their own profile (no profile = participant)"""
    profile = db.get(Profile, user_id)
    return Caller(user_id=user_id, is_admin=bool(profile is not None and profile.is_admin))


# ==================== PER-RECORD RULES ====================

def _profile_rule(caller: Caller, operation: Operation, record: Profile) -> bool:
    is_self = record.user_id == caller.user_id
    if operation is Operation.READ:
        return is_self or caller.is_admin
    if operation is Operation.CREATE:
        return is_self
    if operation is Operation.UPDATE:
        return is_self or caller.is_admin
    return False


def _country_rule(caller: Caller, operation: Operation, record: Country) -> bool:
    return operation is Operation.READ


def _document_rule(caller: Caller, operation: Operation, record: Document) -> bool:
    is_owner = record.user_id == caller.user_id
    if operation is Operation.READ:
        return is_owner or caller.is_admin
    return is_owner


def _message_rule(caller: Caller, operation: Operation, record: Message) -> bool:
    if operation is Operation.READ:
        return caller.user_id in (record.sender_user_id, record.recipient_user_id) or caller.is_admin
    if operation is Operation.CREATE:
        return record.sender_user_id == caller.user_id and bool((record.content or "").strip())
    return False


def _notification_rule(caller: Caller, operation: Operation, record: Notification) -> bool:
    if operation is Operation.READ:
        return True
    if operation is Operation.CREATE:
        return caller.is_admin
    return False


RULES: Dict[type, Callable[[Caller, Operation, object], bool]] = {
    Profile: _profile_rule,
    Country: _country_rule,
    Document: _document_rule,
    Message: _message_rule,
    Notification: _notification_rule,
}


# ==================== ENGINE ====================

def decide(caller: Caller, operation: Operation, record) -> Decision:
    """
    Evaluate the policy for one record.

    Unknown record types are denied.
    """
    rule = RULES.get(type(record))
    if rule is None:
        logger.warning(f"[POLICY] No rule for {type(record).__name__}; denying")
        return Decision.DENY
    return Decision.ALLOW if rule(caller, Operation(operation), record) else Decision.DENY


def enforce(caller: Caller, operation: Operation, record) -> None:
    """Raise NotAuthorized unless `decide` allows the operation"""
    if decide(caller, operation, record) is Decision.DENY:
        logger.warning(
            f"[POLICY] Denied {Operation(operation).value} on {type(record).__name__} "
            f"for {caller.user_id} (admin={caller.is_admin})"
        )
        raise NotAuthorized()


def read_filter(caller: Caller, model: type):
    """
    SQL criterion selecting exactly the rows `decide(caller, READ, row)` allows.
    """
    if model is Profile:
        return true() if caller.is_admin else Profile.user_id == caller.user_id
    if model is Document:
        return true() if caller.is_admin else Document.user_id == caller.user_id
    if model is Message:
        if caller.is_admin:
            return true()
        return or_(Message.sender_user_id == caller.user_id, Message.recipient_user_id == caller.user_id)
    if model in (Country, Notification):
        return true()
    return false()
