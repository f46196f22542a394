"""
Business logic for the delegate platform.

The service layer sits between API endpoints and repositories.
It handles:
- Resolving the caller's role from their own profile
- Running every access through the policy engine
- Validating business rules
- Formatting responses

Every operation takes the caller identity from the identity context (the
routes pass the verified token subject), never from request payloads.
"""

from typing import Any, Dict, List, Optional

from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from delegation.allocator import CountryAllocator
from delegation.errors import NotAuthorized, RecordNotFound, ValidationError
from delegation.models import Document, Message, Notification, Profile
from delegation.policy import Operation, enforce, read_filter, resolve_caller
from delegation.repository import (
    CountryRepository,
    DocumentRepository,
    MessageRepository,
    NotificationRepository,
    ProfileRepository,
)

# Fields a participant may change on their own profile
SELF_EDITABLE_FIELDS = {"name", "surname", "phone_number"}
# Fields an admin may change on someone else's profile
ADMIN_EDITABLE_FIELDS = {"is_admin"}
# Fields that accept an explicit null
CLEARABLE_FIELDS = {"phone_number"}

_default_allocator: Optional[CountryAllocator] = None


def get_allocator() -> CountryAllocator:
    """Process-wide allocator built from environment settings"""
    global _default_allocator
    if _default_allocator is None:
        _default_allocator = CountryAllocator()
    return _default_allocator


def _require_text(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise ValidationError(f"{field} must not be blank")
    return value.strip()


class ProfileService:
    """
    Profile bootstrap, reads and self/admin edits.
    """

    @staticmethod
    def bootstrap_profile(
        db: Session,
        user_id: str,
        name: str,
        surname: str,
        phone_number: Optional[str] = None,
        allocator: Optional[CountryAllocator] = None,
    ) -> Dict[str, Any]:
        """
        Create or refresh the caller's profile, then give them a country if
        they have none.

        Repeated calls update name/surname/phone and never allocate a second
        country. The profile is committed before allocation, so a
        PoolExhausted error leaves a profile without a country that an admin
        can assign later.

        Example:
            ProfileService.bootstrap_profile(db, user_id, "Ada", "Lovelace")
            # {'user_id': '...', 'assigned_country': 'Japan', ...}
        """
        name = _require_text(name, "name")
        surname = _require_text(surname, "surname")
        phone_number = phone_number.strip() or None if phone_number else None
        allocator = allocator or get_allocator()

        profile = ProfileService._upsert(db, user_id, name, surname, phone_number)

        if profile.assigned_country is None:
            allocator.allocate_random(db, user_id)
            db.refresh(profile)

        logger.info(f"[BOOTSTRAP] {user_id} -> {profile.assigned_country}")
        return profile.to_dict()

    @staticmethod
    def _upsert(db: Session, user_id: str, name: str, surname: str, phone_number: Optional[str]) -> Profile:
        fields = {"name": name, "surname": surname, "phone_number": phone_number}

        profile = ProfileRepository.get(db, user_id)
        if profile is not None:
            ProfileRepository.update(db, profile, **fields)
            db.commit()
            return profile

        enforce(resolve_caller(db, user_id), Operation.CREATE, Profile(user_id=user_id))
        try:
            profile = ProfileRepository.create(db, user_id, **fields)
            db.commit()
            return profile
        except IntegrityError:
            # A retried bootstrap inserted the row first
            db.rollback()
            logger.info(f"[BOOTSTRAP] Concurrent bootstrap for {user_id}; updating instead")
            profile = ProfileRepository.get(db, user_id)
            ProfileRepository.update(db, profile, **fields)
            db.commit()
            return profile

    @staticmethod
    def get_profile(db: Session, caller_id: str, user_id: str) -> Dict[str, Any]:
        profile = ProfileRepository.get(db, user_id)
        if profile is None:
            raise RecordNotFound(f"Profile {user_id} not found")

        enforce(resolve_caller(db, caller_id), Operation.READ, profile)
        return profile.to_dict()

    @staticmethod
    def list_profiles(db: Session, caller_id: str, skip: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        """Admins see everyone, participants see themselves."""
        caller = resolve_caller(db, caller_id)
        profiles = ProfileRepository.list(db, read_filter(caller, Profile), skip=skip, limit=min(limit, 500))
        return [p.to_dict() for p in profiles]

    @staticmethod
    def update_profile(db: Session, caller_id: str, user_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        """
        Edit profile fields.

        Participants may change their own name, surname and phone (an
        explicit null clears the phone). On other participants' profiles
        admins may change only the role flag. Countries only move through
        the allocator.
        """
        caller = resolve_caller(db, caller_id)
        profile = ProfileRepository.get(db, user_id)
        if profile is None:
            raise RecordNotFound(f"Profile {user_id} not found")

        enforce(caller, Operation.UPDATE, profile)

        updates = {k: v for k, v in updates.items() if v is not None or k in CLEARABLE_FIELDS}
        if "assigned_country" in updates:
            raise ValidationError("Countries are changed through admin reassignment")

        if user_id == caller_id:
            allowed = SELF_EDITABLE_FIELDS | (ADMIN_EDITABLE_FIELDS if caller.is_admin else set())
        else:
            allowed = ADMIN_EDITABLE_FIELDS if caller.is_admin else set()
        forbidden = set(updates) - allowed
        if forbidden:
            logger.warning(f"[PROFILE] {caller_id} may not edit {sorted(forbidden)} on {user_id}")
            raise NotAuthorized(f"Cannot edit fields: {', '.join(sorted(forbidden))}")

        for field in ("name", "surname"):
            if field in updates:
                updates[field] = _require_text(updates[field], field)
        if "phone_number" in updates:
            updates["phone_number"] = (updates["phone_number"] or "").strip() or None

        try:
            ProfileRepository.update(db, profile, **updates)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"[PROFILE] {caller_id} updated {user_id}: {sorted(updates)}")
        return profile.to_dict()

    @staticmethod
    def remove_identity(db: Session, user_id: str) -> bool:
        """
        Internal: the identity provider removed `user_id`.

        Deletes the profile together with the documents and messages it owns;
        the delete hook frees the held country in the same transaction.

        Returns:
            True if a profile was removed
        """
        try:
            profile = ProfileRepository.get(db, user_id)
            documents = DocumentRepository.delete_by_owner(db, user_id)
            messages = MessageRepository.delete_by_participant(db, user_id)
            if profile is not None:
                ProfileRepository.delete(db, profile)
            db.commit()
        except Exception:
            db.rollback()
            raise

        logger.info(f"[REMOVE] {user_id}: profile={profile is not None} documents={documents} messages={messages}")
        return profile is not None


class CountryService:
    """Pool reads and admin-driven reassignment."""

    @staticmethod
    def list_countries(db: Session) -> List[Dict[str, Any]]:
        return [c.to_dict() for c in CountryRepository.list(db)]

    @staticmethod
    def admin_reassign(
        db: Session,
        caller_id: str,
        user_id: str,
        country: Optional[str],
        allocator: Optional[CountryAllocator] = None,
    ) -> Dict[str, Any]:
        allocator = allocator or get_allocator()
        caller = resolve_caller(db, caller_id)
        country = country.strip() or None if country else None

        assigned = allocator.reassign(db, user_id, country, caller)
        return {'user_id': user_id, 'assigned_country': assigned}

    @staticmethod
    def admin_reconcile(
        db: Session,
        caller_id: str,
        allocator: Optional[CountryAllocator] = None,
    ) -> Dict[str, List[str]]:
        caller = resolve_caller(db, caller_id)
        if not caller.is_admin:
            logger.warning(f"[RECONCILE] Non-admin {caller_id} denied")
            raise NotAuthorized()
        return (allocator or get_allocator()).reconcile(db)


class DocumentService:
    """Owner-managed documents; admins may read all of them."""

    @staticmethod
    def create_document(db: Session, caller_id: str, file_name: str, file_url: str) -> Dict[str, Any]:
        file_name = _require_text(file_name, "file_name")
        file_url = _require_text(file_url, "file_url")

        enforce(resolve_caller(db, caller_id), Operation.CREATE, Document(user_id=caller_id))
        return DocumentRepository.create(db, caller_id, file_name, file_url).to_dict()

    @staticmethod
    def delete_document(db: Session, caller_id: str, document_id: str) -> bool:
        """
        Delete a document the caller owns.

        Documents the caller cannot see are reported as missing; admins can
        see but not delete other participants' documents.
        """
        caller = resolve_caller(db, caller_id)
        document = DocumentRepository.get_by_id(db, document_id)
        if document is None:
            raise RecordNotFound(f"Document {document_id} not found")

        try:
            enforce(caller, Operation.READ, document)
        except NotAuthorized:
            raise RecordNotFound(f"Document {document_id} not found")
        enforce(caller, Operation.DELETE, document)

        DocumentRepository.delete(db, document)
        return True

    @staticmethod
    def list_documents(db: Session, caller_id: str, skip: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        """
        List visible documents. Admin listings carry the owner's name and
        country.
        """
        caller = resolve_caller(db, caller_id)
        criterion = read_filter(caller, Document)
        limit = min(limit, 500)

        if not caller.is_admin:
            return [d.to_dict() for d in DocumentRepository.list(db, criterion, skip=skip, limit=limit)]

        rows = DocumentRepository.list_with_owners(db, criterion, skip=skip, limit=limit)
        results = []
        for document, owner in rows:
            data = document.to_dict()
            data.update({
                'user_name': owner.name if owner else None,
                'user_surname': owner.surname if owner else None,
                'assigned_country': owner.assigned_country if owner else None,
            })
            results.append(data)
        return results


class MessageService:
    """Private participant-to-participant messages."""

    @staticmethod
    def send_message(db: Session, caller_id: str, recipient_user_id: str, content: str) -> Dict[str, Any]:
        """
        Send a message as the caller. The sender's and recipient's current
        countries are recorded on the message.
        """
        if content is None or not content.strip():
            raise ValidationError("Message content must not be blank")

        recipient = ProfileRepository.get(db, recipient_user_id)
        if recipient is None:
            raise RecordNotFound(f"Recipient {recipient_user_id} not found")

        caller = resolve_caller(db, caller_id)
        enforce(caller, Operation.CREATE, Message(sender_user_id=caller_id, content=content))

        sender = ProfileRepository.get(db, caller_id)
        message = MessageRepository.create(
            db,
            sender_user_id=caller_id,
            recipient_user_id=recipient_user_id,
            content=content,
            sender_country=sender.assigned_country if sender else None,
            recipient_country=recipient.assigned_country,
        )
        return message.to_dict()

    @staticmethod
    def list_messages(db: Session, caller_id: str, skip: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        caller = resolve_caller(db, caller_id)
        messages = MessageRepository.list(db, read_filter(caller, Message), skip=skip, limit=min(limit, 500))
        return [m.to_dict() for m in messages]


class NotificationService:
    """Admin announcements."""

    @staticmethod
    def admin_send_notification(db: Session, caller_id: str, content: str) -> Dict[str, Any]:
        enforce(resolve_caller(db, caller_id), Operation.CREATE, Notification(content=content))
        content = _require_text(content, "content")
        return NotificationRepository.create(db, content).to_dict()

    @staticmethod
    def list_notifications(db: Session, skip: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        return [n.to_dict() for n in NotificationRepository.list(db, skip=skip, limit=min(limit, 500))]
