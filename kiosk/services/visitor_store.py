# kiosk/services/visitor_store.py
"""
Visitor record store: the only persistence layer of the kiosk.

Routers receive a VisitorStore through the get_visitor_store dependency,
so tests can swap the session (or the whole store) for a fake.
Every read goes straight to the database; there is no cache.
"""

import uuid
from datetime import datetime
from typing import Optional

from fastapi import Depends
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from kiosk.config import settings
from kiosk.database import get_db
from kiosk.errors import DuplicateRefError, MissingFieldError, StoreError, VisitorNotFound
from kiosk.models.visitor import Visitor
from kiosk.utils.logger import get_logger

logger = get_logger(__name__)

REQUIRED_FIELDS = ("ref", "name", "last_name", "company", "position", "email", "phone")
PROFILE_FIELDS = REQUIRED_FIELDS + ("event_id",)


class VisitorStore:
    def __init__(self, db: Session):
        self.db = db

    # ── Writes ────────────────────────────────────────────────────────────
    def create(self, fields: dict) -> Visitor:
        """
        Insert a new visitor. Required fields are checked in order and the
        first missing one is reported; nothing is written on failure.
        """
        for field in REQUIRED_FIELDS:
            if not fields.get(field):
                raise MissingFieldError(field)

        now = datetime.utcnow()
        visitor = Visitor(
            id=fields.get("id") or str(uuid.uuid4()),
            event_id=fields.get("event_id") or settings.DEFAULT_EVENT_ID,
            registered=bool(fields.get("registered", False)),
            photo_url=fields.get("photo_url"),
            qr_url=fields.get("qr_url"),
            created_at=now,
            updated_at=now,
            **{f: fields[f] for f in REQUIRED_FIELDS},
        )
        self.db.add(visitor)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(f"[STORE] Duplicate ref on create: {fields['ref']}")
            raise DuplicateRefError(fields["ref"])
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[STORE] Failed to create visitor {fields['ref']}: {e}")
            raise StoreError("Failed to create visitor")
        self.db.refresh(visitor)
        logger.info(f"[STORE] Created visitor {visitor.ref} ({visitor.name} {visitor.last_name})")
        return visitor

    def update_registration(self, ref: str, photo_url: str, badge_url: Optional[str] = None,
                            card_url: Optional[str] = None, print_url: Optional[str] = None) -> Visitor:
        """Mark the visitor registered. Optional asset URLs are only written when given."""
        changes = {"registered": True, "photo_url": photo_url}
        if badge_url:
            changes["badge_url"] = badge_url
        if card_url:
            changes["card_url"] = card_url
        if print_url:
            changes["print_url"] = print_url
        return self._update(ref, changes)

    def update_qr_url(self, ref: str, qr_url: str) -> Visitor:
        return self._update(ref, {"qr_url": qr_url})

    def _update(self, ref: str, changes: dict) -> Visitor:
        visitor = self.get_by_ref(ref)
        for key, value in changes.items():
            setattr(visitor, key, value)
        visitor.updated_at = datetime.utcnow()
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"[STORE] Update failed for {ref}: {e}")
            raise StoreError("Failed to update visitor")
        self.db.refresh(visitor)
        logger.info(f"[STORE] Updated {ref}: {sorted(changes)}")
        return visitor

    # ── Reads ─────────────────────────────────────────────────────────────
    def get_by_ref(self, ref: str) -> Visitor:
        visitor = self.db.query(Visitor).filter(Visitor.ref == ref).first()
        if visitor is None:
            raise VisitorNotFound(ref)
        return visitor

    def get_by_event(self, event_id: str) -> list:
        """All visitors of an event, most recently updated first."""
        return (
            self.db.query(Visitor)
            .filter(Visitor.event_id == event_id)
            .order_by(Visitor.updated_at.desc())
            .all()
        )

    def search(self, event_id: str, query: Optional[str] = None, page: int = 1, page_size: int = 20):
        """
        Paginated visitor list for the management view.
        `query` matches name, last name, company or email, case-insensitively.
        Returns (visitors, total).
        """
        q = self.db.query(Visitor).filter(Visitor.event_id == event_id)
        if query and query.strip():
            pattern = f"%{query.strip().lower()}%"
            q = q.filter(or_(
                Visitor.name.ilike(pattern),
                Visitor.last_name.ilike(pattern),
                Visitor.company.ilike(pattern),
                Visitor.email.ilike(pattern),
            ))
        total = q.count()
        items = (
            q.order_by(Visitor.updated_at.desc())
            .offset((max(page, 1) - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return items, total


def get_visitor_store(db: Session = Depends(get_db)) -> VisitorStore:
    """FastAPI dependency: one store per request, bound to the request session."""
    return VisitorStore(db)
