from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy import func, select, text
from sqlalchemy.exc import IntegrityError

from models.entities import (
    CareLogEntry,
    Category,
    Plant,
    PlantImage,
    RefreshToken,
    User,
    utcnow,
)
from services.errors import DuplicateKeyError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


# =======================
# Serialization
# =======================

def _iso(v: Optional[datetime]) -> Optional[str]:
    return v.isoformat() if v is not None else None


def user_to_dict(u: User, plant_count: int = 0) -> Dict:
    return {
        "id": u.id,
        "email": u.email,
        "username": u.username,
        "name": u.name,
        "image_url": u.profile_image,
        "plant_count": plant_count,
        "created_at": _iso(u.created_at),
    }


def category_to_dict(c: Category) -> Dict:
    return {"id": c.id, "label": c.label, "color": c.color, "icon": c.icon}


def plant_to_dict(p: Plant) -> Dict:
    return {
        "id": p.id,
        "user_id": p.user_id,
        "common_name": p.common_name,
        "scientific_name": p.scientific_name,
        "toxicity": p.toxicity,
        "images": [img.url for img in p.images],
        "categories": [category_to_dict(c) for c in p.categories],
        "created_at": _iso(p.created_at),
        "updated_at": _iso(p.updated_at),
    }


def care_entry_to_dict(e: CareLogEntry) -> Dict:
    return {
        "id": e.id,
        "plant_id": e.plant_id,
        "notes": e.notes or "",
        "was_watered": bool(e.was_watered),
        "was_fertilized": bool(e.was_fertilized),
        "date": _iso(e.date),
    }


class RepositoryService:
    """
    Store layer: every public method opens its own session and runs in its
    own transaction. Failures roll back and propagate to the caller.
    """

    PLANT_FIELDS = ("common_name", "scientific_name", "toxicity")
    USER_FIELDS = ("name", "username", "email", "profile_image")
    CARE_FIELDS = ("notes", "was_watered", "was_fertilized")

    def __init__(self, session_factory):
        self.Session = session_factory

    @contextmanager
    def _session(self):
        s = self.Session()
        try:
            yield s
            s.commit()
        except IntegrityError as exc:
            s.rollback()
            raise DuplicateKeyError(f"Conflict: {exc.orig}") from exc
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    # =======================
    # Health
    # =======================
    def ping(self) -> None:
        with self.Session() as s:
            s.execute(text("SELECT 1"))

    # =======================
    # Users
    # =======================
    @staticmethod
    def _live_user(s, user_id: str) -> User:
        u = s.get(User, user_id)
        if u is None or u.deleted_at is not None:
            raise NotFoundError("user", user_id)
        return u

    @staticmethod
    def _plant_count(s, user_id: str) -> int:
        return (
            s.query(func.count(Plant.id))
            .filter(Plant.user_id == user_id, Plant.deleted_at.is_(None))
            .scalar()
        ) or 0

    def add_user(self, data: Dict) -> Dict:
        with self._session() as s:
            u = User(**data)
            s.add(u)
            s.flush()
            return user_to_dict(u)

    def get_user(self, user_id: str) -> Dict:
        with self._session() as s:
            u = self._live_user(s, user_id)
            return user_to_dict(u, self._plant_count(s, user_id))

    def get_credentials_by_email(self, email: str) -> Optional[Dict]:
        with self.Session() as s:
            u = (
                s.query(User)
                .filter(func.lower(User.email) == email.strip().lower(), User.deleted_at.is_(None))
                .first()
            )
            if u is None:
                return None
            return {"id": u.id, "name": u.name, "email": u.email, "password_hash": u.password_hash}

    def update_user(self, user_id: str, data: Dict) -> Dict:
        with self._session() as s:
            u = self._live_user(s, user_id)
            for k, v in data.items():
                if k in self.USER_FIELDS:
                    setattr(u, k, v)
            u.updated_at = utcnow()
            s.flush()
            return user_to_dict(u, self._plant_count(s, user_id))

    def update_user_profile_image(self, user_id: str, uri: str) -> str:
        with self._session() as s:
            u = self._live_user(s, user_id)
            u.profile_image = uri
            u.updated_at = utcnow()
            return uri

    def delete_user(self, user_id: str) -> None:
        with self._session() as s:
            u = self._live_user(s, user_id)
            u.deleted_at = utcnow()
            s.query(RefreshToken).filter(RefreshToken.user_id == user_id).delete()

    def check_if_username_is_taken(self, username: str) -> bool:
        with self.Session() as s:
            found = s.execute(
                select(User.id).where(User.username == username).limit(1)
            ).first()
            return found is not None

    # =======================
    # Categories
    # =======================
    def list_categories(self) -> List[Dict]:
        with self.Session() as s:
            rows = s.query(Category).order_by(Category.id.asc()).all()
            return [category_to_dict(c) for c in rows]

    def add_category(self, label: str, color: Optional[str] = None, icon: Optional[str] = None) -> Dict:
        with self._session() as s:
            c = Category(label=label, color=color, icon=icon)
            s.add(c)
            s.flush()
            return category_to_dict(c)

    @staticmethod
    def _load_categories(s, category_ids: Iterable[int]) -> List[Category]:
        ids = list(dict.fromkeys(category_ids))
        if not ids:
            return []
        rows = s.query(Category).filter(Category.id.in_(ids)).all()
        missing = set(ids) - {c.id for c in rows}
        if missing:
            raise ValidationError(f"unknown category ids: {sorted(missing)}")
        return rows

    # =======================
    # Plants
    # =======================
    @staticmethod
    def _live_plant(s, plant_id: str) -> Plant:
        p = s.get(Plant, plant_id)
        if p is None or p.deleted_at is not None or p.owner.deleted_at is not None:
            raise NotFoundError("plant", plant_id)
        return p

    def check_plant_refs(self, user_id: str, category_ids: Sequence[int] = ()) -> None:
        """Raises unless the owner is live and every category exists."""
        with self.Session() as s:
            self._live_user(s, user_id)
            self._load_categories(s, category_ids)

    def add_plant(
            self,
            data: Dict,
            image_urls: Sequence[str] = (),
            category_ids: Sequence[int] = (),
    ) -> Dict:
        """Plant row, its image rows and its category links go in one transaction."""
        with self._session() as s:
            self._live_user(s, data["user_id"])
            p = Plant(**{k: v for k, v in data.items() if k in self.PLANT_FIELDS or k == "user_id"})
            p.categories = self._load_categories(s, category_ids)
            s.add(p)
            s.flush()
            for index, url in enumerate(image_urls):
                s.add(PlantImage(plant_id=p.id, url=url, order_index=index))
            s.flush()
            s.refresh(p)
            return plant_to_dict(p)

    def add_plant_images(self, plant_id: str, image_urls: Sequence[str]) -> Dict:
        with self._session() as s:
            p = self._live_plant(s, plant_id)
            start = (
                s.query(func.count(PlantImage.id))
                .filter(PlantImage.plant_id == plant_id)
                .scalar()
            ) or 0
            for offset, url in enumerate(image_urls):
                s.add(PlantImage(plant_id=plant_id, url=url, order_index=start + offset))
            s.flush()
            s.refresh(p)
            return plant_to_dict(p)

    def get_plant(self, plant_id: str) -> Dict:
        with self.Session() as s:
            return plant_to_dict(self._live_plant(s, plant_id))

    def get_plants_by_user_id(self, user_id: str) -> List[Dict]:
        with self.Session() as s:
            rows = (
                s.query(Plant)
                .join(User, User.id == Plant.user_id)
                .filter(Plant.user_id == user_id, Plant.deleted_at.is_(None), User.deleted_at.is_(None))
                .order_by(Plant.created_at.asc(), Plant.common_name.asc())
                .all()
            )
            return [plant_to_dict(p) for p in rows]

    def update_plant(self, plant_id: str, data: Dict, category_ids: Optional[Sequence[int]] = None) -> Dict:
        with self._session() as s:
            p = self._live_plant(s, plant_id)
            for k, v in data.items():
                if k in self.PLANT_FIELDS:
                    setattr(p, k, v)
            if category_ids is not None:
                p.categories = self._load_categories(s, category_ids)
            p.updated_at = utcnow()
            s.flush()
            return plant_to_dict(p)

    def delete_plant(self, plant_id: str) -> None:
        with self._session() as s:
            p = self._live_plant(s, plant_id)
            p.deleted_at = utcnow()

    # =======================
    # Care log
    # =======================
    def get_care_log_entries(self, plant_id: str) -> List[Dict]:
        with self.Session() as s:
            rows = (
                s.query(CareLogEntry)
                .filter(CareLogEntry.plant_id == plant_id)
                .order_by(CareLogEntry.date.asc())
                .all()
            )
            return [care_entry_to_dict(e) for e in rows]

    def get_care_log_entry(self, entry_id: str) -> Dict:
        with self.Session() as s:
            e = s.get(CareLogEntry, entry_id)
            if e is None:
                raise NotFoundError("care log entry", entry_id)
            return care_entry_to_dict(e)

    def get_care_logs_for_user(self, user_id: str) -> List[Dict]:
        with self.Session() as s:
            rows = (
                s.query(CareLogEntry)
                .join(Plant, Plant.id == CareLogEntry.plant_id)
                .filter(Plant.user_id == user_id, Plant.deleted_at.is_(None))
                .order_by(CareLogEntry.date.asc())
                .all()
            )
            return [care_entry_to_dict(e) for e in rows]

    def add_care_log_entry(self, data: Dict) -> Dict:
        with self._session() as s:
            self._live_plant(s, data["plant_id"])
            e = CareLogEntry(
                plant_id=data["plant_id"],
                notes=data.get("notes") or "",
                was_watered=bool(data.get("was_watered")),
                was_fertilized=bool(data.get("was_fertilized")),
                date=data.get("date") or utcnow(),
            )
            s.add(e)
            s.flush()
            return care_entry_to_dict(e)

    def update_care_log_entry(self, entry_id: str, data: Dict) -> Dict:
        with self._session() as s:
            e = s.get(CareLogEntry, entry_id)
            if e is None:
                raise NotFoundError("care log entry", entry_id)
            for k, v in data.items():
                if k in self.CARE_FIELDS:
                    setattr(e, k, v)
            s.flush()
            return care_entry_to_dict(e)

    def delete_care_log_entry(self, entry_id: str) -> None:
        with self._session() as s:
            e = s.get(CareLogEntry, entry_id)
            if e is None:
                raise NotFoundError("care log entry", entry_id)
            s.delete(e)

    # =======================
    # Refresh tokens
    # =======================
    def add_refresh_token(self, user_id: str, token: str, expires_at: datetime) -> None:
        with self._session() as s:
            s.add(RefreshToken(user_id=user_id, token=token, expires_at=expires_at))

    def touch_refresh_token(self, token: str, now: datetime, expires_at: datetime) -> Optional[str]:
        """Slides the expiry of a live refresh token, returns its user id (None if invalid)."""
        with self._session() as s:
            rt = (
                s.query(RefreshToken)
                .join(User, User.id == RefreshToken.user_id)
                .filter(RefreshToken.token == token, User.deleted_at.is_(None))
                .first()
            )
            if rt is None or rt.expires_at < now:
                return None
            rt.last_used_at = now
            rt.expires_at = expires_at
            return rt.user_id

    def delete_refresh_token(self, token: str) -> None:
        with self._session() as s:
            s.query(RefreshToken).filter(RefreshToken.token == token).delete()
