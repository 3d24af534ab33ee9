from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


# ======================================================================
# UTILS
# ======================================================================

def gen_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ======================================================================
# USERS
# ======================================================================

class User(Base):
    __tablename__ = "user"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(100))
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    profile_image: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    # soft delete: account_deletion_date
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    plants: Mapped[List["Plant"]] = relationship(
        back_populates="owner",
        lazy="selectin",
    )

    refresh_tokens: Mapped[List["RefreshToken"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# ======================================================================
# PLANTS
# ======================================================================

plant_category = Table(
    "plant_category",
    Base.metadata,
    Column(
        "plant_id",
        String(36),
        ForeignKey("plant.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    ),
    Column(
        "category_id",
        Integer,
        ForeignKey("category.id", ondelete="CASCADE", onupdate="CASCADE"),
        primary_key=True,
    ),
)


class Category(Base):
    __tablename__ = "category"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    label: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[Optional[str]] = mapped_column(String(20))
    icon: Mapped[Optional[str]] = mapped_column(String(100))


class Plant(Base):
    __tablename__ = "plant"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("user.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    common_name: Mapped[str] = mapped_column(String(255), nullable=False)
    scientific_name: Mapped[Optional[str]] = mapped_column(String(255))
    toxicity: Mapped[Optional[str]] = mapped_column(String(255))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_plant_user_deleted", "user_id", "deleted_at"),
    )

    owner: Mapped["User"] = relationship(back_populates="plants")

    images: Mapped[List["PlantImage"]] = relationship(
        back_populates="plant",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PlantImage.order_index.asc()",
        lazy="selectin",
    )

    categories: Mapped[List["Category"]] = relationship(
        secondary=plant_category,
        lazy="selectin",
        order_by="Category.id.asc()",
    )

    care_log: Mapped[List["CareLogEntry"]] = relationship(
        back_populates="plant",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class PlantImage(Base):
    __tablename__ = "plant_image"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    plant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("plant.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    plant: Mapped["Plant"] = relationship(back_populates="images")


# ======================================================================
# CARE LOG
# ======================================================================

class CareLogEntry(Base):
    __tablename__ = "plant_care_log"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    plant_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("plant.id", ondelete="CASCADE", onupdate="CASCADE"),
        nullable=False,
        index=True,
    )
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    was_watered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    was_fertilized: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_care_plant_date", "plant_id", "date"),
    )

    plant: Mapped["Plant"] = relationship(back_populates="care_log")


# ==============================
# Refresh token (user session)
# ==============================

class RefreshToken(Base):
    __tablename__ = "refresh_token"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("user.id", ondelete="CASCADE", onupdate="CASCADE"),
        index=True,
        nullable=False,
    )
    token: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    last_used_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    user: Mapped["User"] = relationship(back_populates="refresh_tokens")
