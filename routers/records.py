"""
Issue and Lost & Found APIs.

Both collections share the same routes; build_record_router() mounts them
under their own prefix and response keys.
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from auth.dependencies import get_current_user, get_db_session, resolve_actor
from core.payloads import read_payload, validate_model
from core.validators import parse_bool, parse_gps
from database.models import RecordKind
from services.audit_service import AuditService
from services.change_notifier import snapshot_events
from services.record_service import RecordService, can_view
import config


# Request Models
class RecordCreate(BaseModel):
    """Create issue / lost & found item. Accepts camelCase or snake_case."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    title: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("title", "itemName", "item_name", "name")
    )
    description: Optional[str] = Field(default=None, validation_alias=AliasChoices("description", "details"))
    category: Optional[str] = None
    priority: Optional[str] = None
    location: Optional[str] = None
    hostel: Optional[str] = None
    block: Optional[str] = None
    room_no: Optional[str] = Field(default=None, validation_alias=AliasChoices("room_no", "roomNo", "roomNumber"))
    gps_coordinates: Optional[Any] = Field(
        default=None, validation_alias=AliasChoices("gps_coordinates", "gpsCoordinates", "gps")
    )
    is_public: Optional[Any] = Field(default=None, validation_alias=AliasChoices("is_public", "isPublic"))
    item_type: Optional[str] = Field(default=None, validation_alias=AliasChoices("item_type", "itemType", "type"))
    user_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("user_id", "userId", "reporterId", "reporter_id")
    )

    def to_fields(self) -> Dict[str, Any]:
        fields = self.model_dump(exclude={"user_id"})
        fields["gps_coordinates"] = parse_gps(self.gps_coordinates)
        fields["is_public"] = None if self.is_public in (None, "") else parse_bool(self.is_public)
        return fields


class StatusUpdate(BaseModel):
    """Change status request."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    status: Optional[str] = None
    remark: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("remark", "remarks", "comment", "note")
    )
    caretaker_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("caretaker_id", "caretakerId", "assignedTo", "assigned_to_id")
    )
    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))


class AssignRequest(BaseModel):
    """Assign to caretaker request."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    caretaker_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("caretaker_id", "caretakerId", "assignedTo", "assigned_to_id")
    )
    management_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("management_id", "managementId", "userId", "user_id")
    )
    remark: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("remark", "remarks", "comment", "note")
    )


class DeleteRequest(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("user_id", "userId"))


class ClaimRequest(BaseModel):
    """Claim a lost & found item."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    proof_text: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("proof_text", "proofText", "proof", "message", "description")
    )
    user_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("user_id", "userId", "claimed_by", "claimedBy")
    )


def build_record_router(kind: RecordKind, prefix: str, singular: str, plural: str, tag: str) -> APIRouter:
    """
    Routes for one record collection.

    Args:
        kind: Collection served by the router
        prefix: Mount path, e.g. /api/issues
        singular: Response key for one record ("issue")
        plural: Response key for a list ("issues")
        tag: OpenAPI tag
    """
    router = APIRouter(prefix=prefix, tags=[tag])

    def service(request: Request, db: Session) -> RecordService:
        return RecordService(
            kind,
            db,
            image_store=request.app.state.image_store,
            credentials=request.app.state.credentials,
        )

    def changed(request: Request, event: Dict[str, Any]) -> None:
        request.app.state.notifier.notify_soon(kind.value, event)

    @router.post("", status_code=status.HTTP_201_CREATED)
    async def create_record(
        request: Request,
        current_user: Dict[str, Any] = Depends(get_current_user),
        db: Session = Depends(get_db_session),
    ):
        """
        Create a record from JSON or multipart (fields + image/images files).

        Returns 201 even when some or all images fail to upload.
        """
        fields, uploads = await read_payload(request, max_files=config.MAX_IMAGES_PER_RECORD)
        payload = validate_model(RecordCreate, fields)
        actor = resolve_actor(current_user, payload.user_id)

        record = await service(request, db).create(actor, payload.to_fields(), uploads)
        changed(request, {"type": "created", "id": record["id"]})
        AuditService.log_from_request(
            db=db, request=request, action=f"{kind.value}_create", user_id=actor["id"],
            resource_type=kind.value, resource_id=record["id"],
            details={"images": len(record["images"]), "attempted": len(uploads)},
        )
        return {"success": True, "message": f"{singular.capitalize()} created", singular: record}

    @router.get("")
    async def list_records(
        request: Request,
        status_filter: Optional[str] = Query(None, alias="status"),
        hostel: Optional[str] = Query(None),
        category: Optional[str] = Query(None),
        priority: Optional[str] = Query(None),
        item_type: Optional[str] = Query(None),
        mine: bool = Query(False),
        assigned_to_me: bool = Query(False),
        sort: Optional[str] = Query(None, description="newest (default) | priority"),
        current_user: Dict[str, Any] = Depends(get_current_user),
        db: Session = Depends(get_db_session),
    ):
        """List records visible to the caller."""
        records = service(request, db).list(
            current_user,
            status=status_filter,
            hostel=hostel,
            category=category,
            priority=priority,
            item_type=item_type,
            mine=mine,
            assigned_to_me=assigned_to_me,
            sort=sort,
        )
        return {"success": True, plural: records, "total": len(records)}

    @router.get("/stream")
    async def stream_records(
        request: Request,
        current_user: Dict[str, Any] = Depends(get_current_user),
    ):
        """
        Server-Sent Events: the full visible collection on connect and after
        every change. Pass the session token as ?token= from EventSource.
        """
        def visible(records: List[Dict[str, Any]]) -> Dict[str, Any]:
            return {plural: [r for r in records if can_view(current_user, r)]}

        headers = {
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
        return StreamingResponse(
            snapshot_events(
                request, request.app.state.notifier, kind.value, visible,
                keepalive_seconds=config.CHANGE_STREAM_KEEPALIVE_SECONDS,
            ),
            media_type="text/event-stream",
            headers=headers,
        )

    @router.get("/{record_id}")
    async def get_record(
        record_id: str,
        request: Request,
        current_user: Dict[str, Any] = Depends(get_current_user),
        db: Session = Depends(get_db_session),
    ):
        """Get one record with its status timeline."""
        record = service(request, db).get(current_user, record_id)
        return {"success": True, singular: record}

    @router.put("/{record_id}/assign")
    async def assign_record(
        record_id: str,
        request: Request,
        current_user: Dict[str, Any] = Depends(get_current_user),
        db: Session = Depends(get_db_session),
    ):
        """Assign to a caretaker (management only)."""
        fields, _ = await read_payload(request)
        payload = validate_model(AssignRequest, fields)
        actor = resolve_actor(current_user, payload.management_id)

        record = service(request, db).assign(actor, record_id, payload.caretaker_id, payload.remark)
        changed(request, {"type": "assigned", "id": record_id})
        AuditService.log_from_request(
            db=db, request=request, action=f"{kind.value}_assign", user_id=actor["id"],
            resource_type=kind.value, resource_id=record_id, details={"caretaker_id": payload.caretaker_id},
        )
        return {"success": True, "message": f"{singular.capitalize()} assigned", singular: record}

    @router.put("/{record_id}/status")
    async def update_record_status(
        record_id: str,
        request: Request,
        current_user: Dict[str, Any] = Depends(get_current_user),
        db: Session = Depends(get_db_session),
    ):
        """Move a record along its lifecycle. A remark is required."""
        fields, _ = await read_payload(request)
        payload = validate_model(StatusUpdate, fields)
        actor = resolve_actor(current_user, payload.user_id)

        record = service(request, db).transition(
            actor, record_id, payload.status, payload.remark, payload.caretaker_id
        )
        changed(request, {"type": "status", "id": record_id, "status": record["status"]})
        AuditService.log_from_request(
            db=db, request=request, action=f"{kind.value}_status", user_id=actor["id"],
            resource_type=kind.value, resource_id=record_id, details={"status": record["status"]},
        )
        return {"success": True, "message": "Status updated", singular: record}

    @router.delete("/{record_id}")
    async def delete_record(
        record_id: str,
        request: Request,
        current_user: Dict[str, Any] = Depends(get_current_user),
        db: Session = Depends(get_db_session),
    ):
        """Delete a record and its images (reporter or management)."""
        fields, _ = await read_payload(request)
        payload = validate_model(DeleteRequest, fields)
        actor = resolve_actor(current_user, payload.user_id)

        await service(request, db).delete(actor, record_id)
        changed(request, {"type": "deleted", "id": record_id})
        AuditService.log_from_request(
            db=db, request=request, action=f"{kind.value}_delete", user_id=actor["id"],
            resource_type=kind.value, resource_id=record_id,
        )
        return {"success": True, "message": f"{singular.capitalize()} deleted"}

    if kind == RecordKind.LOST_FOUND:
        @router.post("/{record_id}/claims", status_code=status.HTTP_201_CREATED)
        async def claim_record(
            record_id: str,
            request: Request,
            current_user: Dict[str, Any] = Depends(get_current_user),
            db: Session = Depends(get_db_session),
        ):
            """Claim an item with proof of ownership; the item moves to Resolved."""
            fields, _ = await read_payload(request)
            payload = validate_model(ClaimRequest, fields)
            actor = resolve_actor(current_user, payload.user_id)

            result = service(request, db).claim(actor, record_id, payload.proof_text)
            changed(request, {"type": "claimed", "id": record_id})
            AuditService.log_from_request(
                db=db, request=request, action=f"{kind.value}_claim", user_id=actor["id"],
                resource_type=kind.value, resource_id=record_id, details={"claim_id": result["claim"]["id"]},
            )
            return {"success": True, "message": "Claim submitted", "claim": result["claim"], singular: result["item"]}

        @router.get("/{record_id}/claims")
        async def list_record_claims(
            record_id: str,
            request: Request,
            current_user: Dict[str, Any] = Depends(get_current_user),
            db: Session = Depends(get_db_session),
        ):
            """Claims on an item: all of them for the reporter and staff, otherwise the caller's own."""
            claims = service(request, db).list_claims(current_user, record_id)
            return {"success": True, "claims": claims, "total": len(claims)}

    return router


issues_router = build_record_router(RecordKind.ISSUE, "/api/issues", "issue", "issues", "issues")
lost_found_router = build_record_router(
    RecordKind.LOST_FOUND, "/api/lost-found", "item", "items", "lost-found"
)
