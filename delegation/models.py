"""
Database models for the delegate platform.

This module defines the SQLAlchemy ORM models backing the platform. The
profile/country pair is the heart of the system: each participant holds at
most one country and each country is held by at most one participant.

Models:
- Profile: Per-participant record (name, role flag, held country)
- Country: Allocatable resource pool entry
- Document: File reference uploaded by a participant
- Message: Private message between two participants
- Notification: Global announcement posted by an admin
"""

from sqlalchemy import (
    CheckConstraint, Column, String, DateTime, Text, Boolean, Index, desc
)
from sqlalchemy.orm import declarative_base
import uuid
from datetime import datetime, timezone

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    """
    A participant's profile, keyed by the identity issued by the identity
    provider.

    Attributes:
        user_id: Stable identity (issued externally)
        name: Given name
        surname: Family name
        phone_number: Optional contact number
        is_admin: Role flag
        assigned_country: Name of the held country (denormalized from countries)
        created_at: First bootstrap time
        updated_at: Last modification time (stamped by hook)
    """

    __tablename__ = "profiles"

    user_id = Column(
        String(36),
        primary_key=True,
        doc="Identity issued by the identity provider"
    )

    name = Column(String(255), nullable=False)
    surname = Column(String(255), nullable=False)
    phone_number = Column(String(64), nullable=True)

    is_admin = Column(
        Boolean,
        default=False,
        nullable=False,
        doc="Admins may read everything, reassign countries and notify"
    )

    # Only the allocator and the delete hook write this column
    assigned_country = Column(
        String(128),
        unique=True,
        nullable=True,
        doc="Country currently held (mirrors countries.assigned_user)"
    )

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    def __repr__(self):
        return f"<Profile(user_id={self.user_id}, country='{self.assigned_country}')>"

    def to_dict(self):
        return {
            'user_id': self.user_id,
            'name': self.name,
            'surname': self.surname,
            'phone_number': self.phone_number,
            'is_admin': self.is_admin,
            'assigned_country': self.assigned_country,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


class Country(Base):
    """
    Resource pool entry. Pre-seeded; never created or deleted by normal
    operation.
    """

    __tablename__ = "countries"

    name = Column(String(128), primary_key=True)

    assigned_user = Column(
        String(36),
        unique=True,
        nullable=True,
        index=True,
        doc="Holder identity, NULL when free"
    )

    def __repr__(self):
        return f"<Country(name='{self.name}', assigned_user={self.assigned_user})>"

    def to_dict(self):
        return {
            'name': self.name,
            'assigned_user': self.assigned_user,
            'is_free': self.assigned_user is None,
        }


class Document(Base):
    """
    A document uploaded by a participant. The file itself lives in the blob
    store; only its opaque URL is kept here.
    """

    __tablename__ = "documents"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=False, index=True, doc="Owner identity")
    file_name = Column(String(512), nullable=False)
    file_url = Column(Text, nullable=False, doc="Opaque URL returned by the blob store")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    __table_args__ = (
        Index('idx_documents_owner_time', user_id, desc(created_at)),
    )

    def __repr__(self):
        return f"<Document(id={self.id}, user_id={self.user_id}, file_name='{self.file_name}')>"

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'file_name': self.file_name,
            'file_url': self.file_url,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Message(Base):
    """
    Private message between two participants. Immutable once created.

    The sender/recipient countries are captured at send time so the message
    keeps its diplomatic context after a reassignment.
    """

    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_new_id)
    sender_user_id = Column(String(36), nullable=False, index=True)
    recipient_user_id = Column(String(36), nullable=False, index=True)
    sender_country = Column(String(128), nullable=True)
    recipient_country = Column(String(128), nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("length(trim(content)) > 0", name="ck_messages_content_not_blank"),
        Index('idx_messages_recipient_time', recipient_user_id, desc(created_at)),
    )

    def __repr__(self):
        content_preview = self.content[:50] + "..." if len(self.content) > 50 else self.content
        return f"<Message(id={self.id}, sender={self.sender_user_id}, content='{content_preview}')>"

    def to_dict(self):
        return {
            'id': self.id,
            'sender_user_id': self.sender_user_id,
            'recipient_user_id': self.recipient_user_id,
            'sender_country': self.sender_country,
            'recipient_country': self.recipient_country,
            'content': self.content,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Notification(Base):
    """Global announcement, readable by everyone."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_new_id)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'content': self.content,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
