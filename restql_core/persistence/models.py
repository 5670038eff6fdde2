"""
RestQL demo database models

These models are served by default when no other declarative base
is passed to the application factory. They cover all association
kinds, composite unique keys and both flavours of soft-delete markers.
"""

import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean, DateTime, Integer, String,
    Column, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import Mapped, relationship
from sqlalchemy.sql import func

from .database import Base


NOT_DELETED = datetime.datetime(1970, 1, 1)
"""Sentinel value of temporal deleted_at columns marking live rows"""


class User(Base):
    """
    Model representing one user, uniquely identified by the email address
    """

    __tablename__ = "users"

    id: Mapped[int] = Column(Integer, nullable=False, primary_key=True, autoincrement=True)
    email: Mapped[str] = Column(String(255), nullable=False, unique=True)
    name: Mapped[Optional[str]] = Column(String(255), nullable=True)
    active: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    created: Mapped[datetime.datetime] = Column(DateTime, server_default=func.now())
    deleted_at: Mapped[Optional[datetime.datetime]] = Column(DateTime, nullable=True, default=None)
    """Soft-delete marker, ``NULL`` for live rows"""

    tags: Mapped[List["Tag"]] = relationship("Tag", secondary="user_tags", back_populates="users")

    __table_args__ = {"info": {"paranoid": True, "deleted_at": "deleted_at"}}

    def __repr__(self) -> str:
        return f"User(id={self.id}, email={self.email})"


class Tag(Base):
    """
    Model representing a label that can be attached to many users
    """

    __tablename__ = "tags"

    id: Mapped[int] = Column(Integer, nullable=False, primary_key=True, autoincrement=True)
    name: Mapped[str] = Column(String(255), nullable=False, unique=True)
    color: Mapped[Optional[str]] = Column(String(31), nullable=True)
    deleted_at: Mapped[datetime.datetime] = Column(DateTime, nullable=False, default=NOT_DELETED)
    """Soft-delete marker, ``NOT_DELETED`` for live rows"""

    users: Mapped[List[User]] = relationship("User", secondary="user_tags", back_populates="tags")

    __table_args__ = {"info": {"paranoid": True, "deleted_at": "deleted_at"}}

    def __repr__(self) -> str:
        return f"Tag(id={self.id}, name={self.name})"


class UserTag(Base):
    """
    Model representing the join rows between users and tags
    """

    __tablename__ = "user_tags"

    id: Mapped[int] = Column(Integer, nullable=False, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    tag_id: Mapped[int] = Column(Integer, ForeignKey("tags.id", ondelete="CASCADE"), nullable=False)
    note: Mapped[Optional[str]] = Column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "tag_id", name="single_tag_per_user"),
    )

    def __repr__(self) -> str:
        return f"UserTag(id={self.id}, user_id={self.user_id}, tag_id={self.tag_id})"


class House(Base):
    """
    Model representing a noble house with its seat and its characters
    """

    __tablename__ = "houses"

    id: Mapped[int] = Column(Integer, nullable=False, primary_key=True, autoincrement=True)
    name: Mapped[str] = Column(String(255), nullable=False, unique=True)
    words: Mapped[Optional[str]] = Column(String(255), nullable=True, index=True)

    seat: Mapped[Optional["Seat"]] = relationship("Seat", uselist=False, back_populates="house")
    characters: Mapped[List["Character"]] = relationship("Character", back_populates="house")
    lords: Mapped[List["Character"]] = relationship(
        "Character",
        primaryjoin="and_(House.id == Character.house_id, Character.title == 'Lord')",
        viewonly=True,
        info={"scope": {"title": "Lord"}}
    )

    def __repr__(self) -> str:
        return f"House(id={self.id}, name={self.name})"


class Seat(Base):
    """
    Model representing the castle of at most one house
    """

    __tablename__ = "seats"

    id: Mapped[int] = Column(Integer, nullable=False, primary_key=True, autoincrement=True)
    name: Mapped[str] = Column(String(255), nullable=False, unique=True)
    house_id: Mapped[Optional[int]] = Column(Integer, ForeignKey("houses.id"), nullable=True, unique=True)

    house: Mapped[Optional[House]] = relationship("House", back_populates="seat")

    def __repr__(self) -> str:
        return f"Seat(id={self.id}, name={self.name})"


class Character(Base):
    """
    Model representing a member of a house, whose name is unique within the house
    """

    __tablename__ = "characters"

    id: Mapped[int] = Column(Integer, nullable=False, primary_key=True, autoincrement=True)
    name: Mapped[str] = Column(String(255), nullable=False)
    title: Mapped[Optional[str]] = Column(String(255), nullable=True)
    alive: Mapped[bool] = Column(Boolean, nullable=False, default=True)
    house_id: Mapped[Optional[int]] = Column(Integer, ForeignKey("houses.id"), nullable=True)

    house: Mapped[Optional[House]] = relationship("House", back_populates="characters")

    __table_args__ = (
        UniqueConstraint("house_id", "name", name="single_name_per_house"),
    )

    def __repr__(self) -> str:
        return f"Character(id={self.id}, name={self.name}, house_id={self.house_id})"
