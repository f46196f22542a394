"""
Data access layer for the delegation core.

The repository pattern isolates database operations from business logic.

Repositories:
- Profile: get, upsert, update, delete, list
- Country: list, free names, conditional claim, release
- Document / Message / Notification: create, get, list, delete

Methods that touch the profile/country link only flush; the allocator owns
the transaction boundary so claim and stamp commit together.
"""

from sqlalchemy.orm import Session
from sqlalchemy import delete, desc, or_, select, update
from typing import List, Optional, Dict, Tuple
import logging

from delegation.models import Country, Document, Message, Notification, Profile, utcnow

logger = logging.getLogger(__name__)


class ProfileRepository:
    """Repository for Profile database operations."""

    @staticmethod
    def get(db: Session, user_id: str) -> Optional[Profile]:
        return db.get(Profile, user_id)

    @staticmethod
    def get_for_update(db: Session, user_id: str) -> Optional[Profile]:
        """
        Load a profile with a row lock where the backend supports it
        (SQLite ignores FOR UPDATE and serializes writers instead).
        """
        return db.execute(
            select(Profile).where(Profile.user_id == user_id).with_for_update()
        ).scalar_one_or_none()

    @staticmethod
    def create(
        db: Session,
        user_id: str,
        name: str,
        surname: str,
        phone_number: Optional[str] = None,
    ) -> Profile:
        profile = Profile(
            user_id=user_id,
            name=name,
            surname=surname,
            phone_number=phone_number,
        )
        db.add(profile)
        db.flush()
        logger.info(f"Created profile for user {user_id}")
        return profile

    @staticmethod
    def update(db: Session, profile: Profile, **updates) -> Profile:
        """
        Update plain profile fields.

        The country link is not updatable here; use the allocator.
        """
        if "assigned_country" in updates:
            raise ValueError("assigned_country is managed by the allocator")

        for key, value in updates.items():
            if hasattr(profile, key):
                setattr(profile, key, value)

        db.flush()
        return profile

    @staticmethod
    def set_country(db: Session, user_id: str, country: Optional[str]) -> int:
        result = db.execute(
            update(Profile)
            .where(Profile.user_id == user_id)
            .values(assigned_country=country, updated_at=utcnow())
        )
        return result.rowcount

    @staticmethod
    def list(db: Session, criterion=None, skip: int = 0, limit: int = 100) -> List[Profile]:
        query = select(Profile)
        if criterion is not None:
            query = query.where(criterion)
        query = query.order_by(Profile.surname, Profile.name).offset(skip).limit(limit)
        return list(db.scalars(query).all())

    @staticmethod
    def list_all(db: Session) -> List[Profile]:
        return list(db.scalars(select(Profile)).all())

    @staticmethod
    def delete(db: Session, profile: Profile) -> None:
        db.delete(profile)
        db.flush()
        logger.warning(f"Deleted profile {profile.user_id}")


class CountryRepository:
    """
    Repository for the country pool.

    `claim` is the only write that marks a country held, and it is a single
    conditional UPDATE so concurrent claims on the same row cannot both win.
    """

    @staticmethod
    def get(db: Session, name: str) -> Optional[Country]:
        return db.get(Country, name)

    @staticmethod
    def list(db: Session) -> List[Country]:
        return list(db.scalars(select(Country).order_by(Country.name)).all())

    @staticmethod
    def free_names(db: Session) -> List[str]:
        return list(db.scalars(
            select(Country.name).where(Country.assigned_user.is_(None)).order_by(Country.name)
        ).all())

    @staticmethod
    def held_by(db: Session, user_id: str) -> Optional[str]:
        return db.scalars(
            select(Country.name).where(Country.assigned_user == user_id)
        ).first()

    @staticmethod
    def claim(db: Session, name: str, user_id: str) -> bool:
        """
        Mark `name` as held by `user_id` only if it is currently free.

        Returns:
            True if this call claimed the country
        """
        result = db.execute(
            update(Country)
            .where(Country.name == name, Country.assigned_user.is_(None))
            .values(assigned_user=user_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def release(executor, user_id: str) -> int:
        """
        Free every country held by `user_id`.

        `executor` is either a Session or a Connection, so the delete hook can
        run this on the flush connection.
        """
        result = executor.execute(
            update(Country.__table__)
            .where(Country.__table__.c.assigned_user == user_id)
            .values(assigned_user=None)
        )
        return result.rowcount

    @staticmethod
    def holdings(db: Session) -> Dict[str, str]:
        """Map holder identity -> country name for every held country"""
        rows = db.execute(
            select(Country.assigned_user, Country.name).where(Country.assigned_user.is_not(None))
        ).all()
        return {user_id: name for user_id, name in rows}


class DocumentRepository:
    """Repository for Document database operations."""

    @staticmethod
    def create(db: Session, user_id: str, file_name: str, file_url: str) -> Document:
        document = Document(user_id=user_id, file_name=file_name, file_url=file_url)
        db.add(document)
        db.commit()
        db.refresh(document)

        logger.info(f"Created document {document.id} for user {user_id}")
        return document

    @staticmethod
    def get_by_id(db: Session, document_id: str) -> Optional[Document]:
        return db.get(Document, document_id)

    @staticmethod
    def list(db: Session, criterion=None, skip: int = 0, limit: int = 100) -> List[Document]:
        query = select(Document)
        if criterion is not None:
            query = query.where(criterion)
        query = query.order_by(desc(Document.created_at)).offset(skip).limit(limit)
        return list(db.scalars(query).all())

    @staticmethod
    def list_with_owners(
        db: Session,
        criterion=None,
        skip: int = 0,
        limit: int = 100
    ) -> List[Tuple[Document, Optional[Profile]]]:
        """Documents joined with their owner's profile (admin listing)"""
        query = (
            select(Document, Profile)
            .join(Profile, Profile.user_id == Document.user_id, isouter=True)
        )
        if criterion is not None:
            query = query.where(criterion)
        query = query.order_by(desc(Document.created_at)).offset(skip).limit(limit)
        return [(document, profile) for document, profile in db.execute(query).all()]

    @staticmethod
    def delete(db: Session, document: Document) -> None:
        db.delete(document)
        db.commit()
        logger.warning(f"Deleted document {document.id}")

    @staticmethod
    def delete_by_owner(db: Session, user_id: str) -> int:
        return db.execute(delete(Document).where(Document.user_id == user_id)).rowcount


class MessageRepository:
    """Repository for Message database operations. Messages are never updated."""

    @staticmethod
    def create(
        db: Session,
        sender_user_id: str,
        recipient_user_id: str,
        content: str,
        sender_country: Optional[str] = None,
        recipient_country: Optional[str] = None,
    ) -> Message:
        message = Message(
            sender_user_id=sender_user_id,
            recipient_user_id=recipient_user_id,
            sender_country=sender_country,
            recipient_country=recipient_country,
            content=content,
        )
        db.add(message)
        db.commit()
        db.refresh(message)

        logger.info(f"Created message {message.id} from {sender_user_id} to {recipient_user_id}")
        return message

    @staticmethod
    def list(db: Session, criterion=None, skip: int = 0, limit: int = 100) -> List[Message]:
        query = select(Message)
        if criterion is not None:
            query = query.where(criterion)
        query = query.order_by(desc(Message.created_at)).offset(skip).limit(limit)
        return list(db.scalars(query).all())

    @staticmethod
    def delete_by_participant(db: Session, user_id: str) -> int:
        return db.execute(
            delete(Message).where(
                or_(Message.sender_user_id == user_id, Message.recipient_user_id == user_id)
            )
        ).rowcount


class NotificationRepository:
    """Repository for Notification database operations."""

    @staticmethod
    def create(db: Session, content: str) -> Notification:
        notification = Notification(content=content)
        db.add(notification)
        db.commit()
        db.refresh(notification)

        logger.info(f"Created notification {notification.id}")
        return notification

    @staticmethod
    def list(db: Session, skip: int = 0, limit: int = 100) -> List[Notification]:
        return list(db.scalars(
            select(Notification).order_by(desc(Notification.created_at)).offset(skip).limit(limit)
        ).all())
