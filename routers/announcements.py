"""
Announcements / notices APIs.

The same routes are served under /api/announcements and /api/notices.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from auth.dependencies import get_current_user, get_db_session, require_management, resolve_actor
from core.payloads import read_payload, validate_model
from core.validators import parse_bool
from services.announcement_service import AnnouncementService
from services.audit_service import AuditService
from services.change_notifier import snapshot_events
import config

COLLECTION = "announcements"


class AnnouncementPayload(BaseModel):
    """Create / update announcement request."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    title: Optional[str] = None
    body: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("body", "content", "message", "description")
    )
    hostel: Optional[str] = Field(default=None, validation_alias=AliasChoices("hostel", "audience"))
    priority: Optional[str] = None
    published: Optional[Any] = Field(default=None, validation_alias=AliasChoices("published", "isPublished"))
    user_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("user_id", "userId", "authorId", "managementId")
    )

    def to_fields(self, partial: bool = False) -> Dict[str, Any]:
        fields = self.model_dump(exclude={"user_id"}, exclude_unset=partial)
        if self.published is not None:
            fields["published"] = parse_bool(self.published)
        elif partial:
            fields.pop("published", None)
        return fields


def build_announcement_router(prefix: str, tag: str) -> APIRouter:
    router = APIRouter(prefix=prefix, tags=[tag])

    def service(request: Request, db: Session) -> AnnouncementService:
        return AnnouncementService(db, image_store=request.app.state.image_store)

    def changed(request: Request, event: Dict[str, Any]) -> None:
        request.app.state.notifier.notify_soon(COLLECTION, event)

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_announcement(
        request: Request,
        current_user: Dict[str, Any] = Depends(require_management),
        db: Session = Depends(get_db_session),
    ):
        """Publish an announcement (management only); an attachment file is optional."""
        fields, uploads = await read_payload(request, max_files=1)
        payload = validate_model(AnnouncementPayload, fields)
        actor = resolve_actor(current_user, payload.user_id)

        announcement = await service(request, db).create(
            actor, payload.to_fields(), uploads[0] if uploads else None
        )
        changed(request, {"type": "created", "id": announcement["id"]})
        AuditService.log_from_request(
            db=db, request=request, action="announcement_create", user_id=actor["id"],
            resource_type="announcement", resource_id=announcement["id"],
        )
        return {"success": True, "message": "Announcement published", "announcement": announcement}

    @router.get("")
    async def list_announcements(
        request: Request,
        hostel: Optional[str] = Query(None),
        priority: Optional[str] = Query(None),
        include_archived: bool = Query(False),
        current_user: Dict[str, Any] = Depends(get_current_user),
        db: Session = Depends(get_db_session),
    ):
        """Announcements for everyone, newest first."""
        announcements = service(request, db).list(
            current_user, hostel=hostel, priority=priority, include_archived=include_archived
        )
        return {"success": True, "announcements": announcements, "total": len(announcements)}

    @router.get("/stream")
    async def stream_announcements(
        request: Request,
        current_user: Dict[str, Any] = Depends(get_current_user),
    ):
        """Server-Sent Events with the published announcements after every change."""
        def wrap(announcements: List[Dict[str, Any]]) -> Dict[str, Any]:
            return {"announcements": announcements}

        return StreamingResponse(
            snapshot_events(
                request, request.app.state.notifier, COLLECTION, wrap,
                keepalive_seconds=config.CHANGE_STREAM_KEEPALIVE_SECONDS,
            ),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
        )

    @router.get("/{announcement_id}")
    async def get_announcement(
        announcement_id: str,
        request: Request,
        current_user: Dict[str, Any] = Depends(get_current_user),
        db: Session = Depends(get_db_session),
    ):
        announcement = service(request, db).get(current_user, announcement_id)
        return {"success": True, "announcement": announcement}

    @router.put("/{announcement_id}")
    async def update_announcement(
        announcement_id: str,
        request: Request,
        current_user: Dict[str, Any] = Depends(require_management),
        db: Session = Depends(get_db_session),
    ):
        """Edit an announcement (management only)."""
        fields, _ = await read_payload(request)
        payload = validate_model(AnnouncementPayload, fields)
        actor = resolve_actor(current_user, payload.user_id)

        announcement = service(request, db).update(actor, announcement_id, payload.to_fields(partial=True))
        changed(request, {"type": "updated", "id": announcement_id})
        return {"success": True, "message": "Announcement updated", "announcement": announcement}

    @router.delete("/{announcement_id}")
    async def delete_announcement(
        announcement_id: str,
        request: Request,
        current_user: Dict[str, Any] = Depends(require_management),
        db: Session = Depends(get_db_session),
    ):
        """Archive an announcement (management only)."""
        service(request, db).delete(current_user, announcement_id)
        changed(request, {"type": "archived", "id": announcement_id})
        AuditService.log_from_request(
            db=db, request=request, action="announcement_archive", user_id=current_user["id"],
            resource_type="announcement", resource_id=announcement_id,
        )
        return {"success": True, "message": "Announcement archived"}

    return router


announcements_router = build_announcement_router("/api/announcements", "announcements")
notices_router = build_announcement_router("/api/notices", "notices")
