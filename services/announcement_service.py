"""
Announcements / notices broadcast by management.
"""
import asyncio
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.errors import AuthorizationError, NotFoundError, ValidationError
from core.logger import logger
from database.connection import Database
from database.models import Announcement
from services.status_machine import is_management, normalize_priority
from storage.image_store import ImageStore, ImageUpload


def serialize_announcement(row: Announcement) -> Dict[str, Any]:
    return {
        "id": row.id,
        "title": row.title,
        "body": row.body,
        "content": row.body,
        "author_id": row.author_id,
        "hostel": row.hostel,
        "priority": row.priority.value if hasattr(row.priority, "value") else row.priority,
        "published": bool(row.published),
        "archived": bool(row.archived),
        "view_count": row.view_count or 0,
        "attachment_url": row.attachment_url,
        "created_at": row.created_at.isoformat() if row.created_at else None,
        "updated_at": row.updated_at.isoformat() if row.updated_at else None,
    }


class AnnouncementService:
    """Management-written, everyone-readable notices."""

    def __init__(self, db: Session, image_store: Optional[ImageStore] = None):
        self.db = db
        self.image_store = image_store

    @staticmethod
    def _require_management(actor: Optional[Dict[str, Any]]) -> None:
        if actor is None or not is_management(actor):
            raise AuthorizationError("Only management can manage announcements")

    def _get_row(self, announcement_id: str) -> Announcement:
        row = self.db.query(Announcement).filter(Announcement.id == announcement_id).first()
        if row is None:
            raise NotFoundError("Announcement not found")
        return row

    async def create(
        self,
        actor: Dict[str, Any],
        fields: Dict[str, Any],
        attachment: Optional[ImageUpload] = None,
    ) -> Dict[str, Any]:
        """Publish an announcement; the optional attachment is stored best-effort."""
        self._require_management(actor)
        title = (fields.get("title") or "").strip()
        body = (fields.get("body") or "").strip()
        if not title or not body:
            raise ValidationError("Title and content are required")

        row = Announcement(
            id=str(uuid.uuid4()),
            title=title,
            body=body,
            author_id=actor["id"],
            hostel=fields.get("hostel") or None,
            priority=normalize_priority(fields.get("priority")),
            published=fields.get("published", True) is not False,
            view_count=0,
        )
        self.db.add(row)
        self.db.commit()
        logger.info(f"Announcement created: {row.id} by {actor['id']}")

        if attachment is not None and self.image_store is not None:
            try:
                url = await asyncio.to_thread(self.image_store.save, "announcements", row.id, 0, attachment)
                row.attachment_url = url
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.warning(f"Attachment for announcement {row.id} was not stored: {e}")

        return serialize_announcement(self._get_row(row.id))

    def list(
        self,
        viewer: Optional[Dict[str, Any]] = None,
        hostel: Optional[str] = None,
        priority: Optional[str] = None,
        include_archived: bool = False,
    ) -> List[Dict[str, Any]]:
        query = self.db.query(Announcement)
        manager = viewer is not None and is_management(viewer)
        if not (manager and include_archived):
            query = query.filter(Announcement.archived == False)
        if not manager:
            query = query.filter(Announcement.published == True)
        if hostel and hostel != "all":
            # Announcements without a hostel go to everyone
            query = query.filter(or_(Announcement.hostel == hostel, Announcement.hostel.is_(None)))
        if priority and priority != "all":
            query = query.filter(Announcement.priority == normalize_priority(priority))
        rows = query.order_by(Announcement.created_at.desc()).all()
        return [serialize_announcement(row) for row in rows]

    def get(self, viewer: Optional[Dict[str, Any]], announcement_id: str) -> Dict[str, Any]:
        """Fetch one announcement and count the view."""
        row = self._get_row(announcement_id)
        manager = viewer is not None and is_management(viewer)
        if not manager and (row.archived or not row.published):
            raise NotFoundError("Announcement not found")

        # Increment in SQL so concurrent reads are not lost
        self.db.query(Announcement).filter(Announcement.id == announcement_id).update(
            {Announcement.view_count: Announcement.view_count + 1}, synchronize_session=False
        )
        self.db.commit()
        self.db.refresh(row)
        return serialize_announcement(row)

    def update(self, actor: Dict[str, Any], announcement_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        self._require_management(actor)
        row = self._get_row(announcement_id)
        if fields.get("title") is not None:
            if not fields["title"].strip():
                raise ValidationError("Title cannot be empty")
            row.title = fields["title"].strip()
        if fields.get("body") is not None:
            if not fields["body"].strip():
                raise ValidationError("Content cannot be empty")
            row.body = fields["body"].strip()
        if "hostel" in fields:
            row.hostel = fields["hostel"] or None
        if fields.get("priority") is not None:
            row.priority = normalize_priority(fields["priority"])
        if fields.get("published") is not None:
            row.published = bool(fields["published"])
        row.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(row)
        logger.info(f"Announcement updated: {announcement_id} by {actor['id']}")
        return serialize_announcement(row)

    def delete(self, actor: Dict[str, Any], announcement_id: str) -> Dict[str, Any]:
        """Archive an announcement; it disappears from public reads."""
        self._require_management(actor)
        row = self._get_row(announcement_id)
        row.archived = True
        row.updated_at = datetime.utcnow()
        self.db.commit()
        self.db.refresh(row)
        logger.info(f"Announcement archived: {announcement_id} by {actor['id']}")
        return serialize_announcement(row)

    @staticmethod
    def snapshot_loader(db: Database) -> Callable[[], List[Dict[str, Any]]]:
        def load() -> List[Dict[str, Any]]:
            with db.get_session() as session:
                rows = (
                    session.query(Announcement)
                    .filter(Announcement.archived == False, Announcement.published == True)
                    .order_by(Announcement.created_at.desc())
                    .all()
                )
                return [serialize_announcement(row) for row in rows]

        return load
