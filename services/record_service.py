"""
Record store for issues and lost & found items.

Both collections share one lifecycle (services/status_machine.py), one
visibility rule, and the two-phase create: the row is inserted first with no
images, the images are uploaded concurrently, and the images column is then
patched with whatever uploads succeeded.
"""
import asyncio
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from core.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from core.image_list import parse_images, serialize_images
from core.logger import logger
from database.connection import Database
from database.models import (
    Claim, Issue, LostFoundItem, LostFoundKind, Priority, RecordActivity, RecordKind, RecordStatus, UserRole
)
from services.credential_store import CredentialStore
from services.status_machine import (
    PRIORITY_RANK, check_transition, effective_role, is_management, is_staff,
    normalize_priority, normalize_status
)
from storage.image_store import ImageStore, ImageUpload
import config

MODELS = {
    RecordKind.ISSUE: Issue,
    RecordKind.LOST_FOUND: LostFoundItem,
}

# Lost & found boards are meant to be browsed by everyone
DEFAULT_PUBLIC = {
    RecordKind.ISSUE: False,
    RecordKind.LOST_FOUND: True,
}

SYSTEM_ACTOR = "system"

# A claim settles the item, so only items still open can be claimed
CLAIMABLE_STATUSES = {RecordStatus.REPORTED.value, RecordStatus.ASSIGNED.value, RecordStatus.IN_PROGRESS.value}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def status_value(status: Any) -> Optional[str]:
    """Canonical status text for a stored value; unknown legacy text is passed through."""
    if status is None:
        return None
    try:
        return normalize_status(status).value
    except ValidationError:
        return str(status)


def priority_value(priority: Any) -> Optional[str]:
    if priority is None:
        return None
    try:
        return normalize_priority(priority).value
    except ValidationError:
        return str(priority)


def priority_rank(priority: Any) -> int:
    """Severity rank for sorting; legacy text that maps to no priority ranks below Low."""
    try:
        return PRIORITY_RANK[normalize_priority(priority)]
    except ValidationError:
        return -1


def serialize_activity(activity: RecordActivity) -> Dict[str, Any]:
    return {
        "id": activity.id,
        "from_status": activity.from_status,
        "to_status": activity.to_status,
        "actor_id": activity.actor_id,
        "remark": activity.remark,
        "created_at": _iso(activity.created_at),
    }


def serialize_claim(claim: Claim, claimer: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    data = {
        "id": claim.id,
        "item_id": claim.item_id,
        "claimed_by": claim.claimed_by,
        "proof_text": claim.proof_text,
        "created_at": _iso(claim.created_at),
        "claimer": None,
    }
    if claimer:
        data["claimer"] = {key: claimer.get(key) for key in ("id", "name", "email", "role")}
    return data


def serialize_record(row, kind: RecordKind, timeline: Optional[List[RecordActivity]] = None) -> Dict[str, Any]:
    """API representation of a record; images are always a parsed list."""
    images = parse_images(row.images)
    data = {
        "id": row.id,
        "title": row.title,
        "description": row.description,
        "category": row.category,
        "priority": priority_value(row.priority),
        "status": status_value(row.status),
        "location": row.location,
        "hostel": row.hostel,
        "block": row.block,
        "room_no": row.room_no,
        "gps_coordinates": row.gps_coordinates,
        "reporter_id": row.reporter_id,
        "user_id": row.reporter_id,
        "assigned_to_id": row.assigned_to_id,
        "assigned_by_id": row.assigned_by_id,
        "images": images,
        "image_url": images[0] if images else None,
        "is_public": bool(row.is_public),
        "created_at": _iso(row.created_at),
        "updated_at": _iso(row.updated_at),
        "assigned_at": _iso(row.assigned_at),
        "resolved_at": _iso(row.resolved_at),
        "closed_at": _iso(row.closed_at),
    }
    if kind == RecordKind.LOST_FOUND:
        item_type = row.item_type
        data["item_type"] = item_type.value if isinstance(item_type, LostFoundKind) else item_type
        data["item_name"] = row.title
    if timeline is not None:
        data["timeline"] = [serialize_activity(a) for a in timeline]
    return data


def can_view(viewer: Optional[Dict[str, Any]], record: Dict[str, Any]) -> bool:
    """Reporter always, everyone when public, staff always."""
    if record.get("is_public"):
        return True
    if viewer is None:
        return False
    return record.get("reporter_id") == viewer.get("id") or is_staff(viewer)


def validate_remark(remark: Optional[str]) -> str:
    text = (remark or "").strip()
    if not text:
        raise ValidationError("A remark is required when changing status")
    if len(text) > config.MAX_REMARK_LENGTH:
        raise ValidationError(f"Remark cannot be longer than {config.MAX_REMARK_LENGTH} characters")
    return text


class RecordService:
    """Operations on one record collection, bound to a request's database session."""

    def __init__(
        self,
        kind: RecordKind,
        db: Session,
        image_store: Optional[ImageStore] = None,
        credentials: Optional[CredentialStore] = None,
    ):
        self.kind = kind
        self.model = MODELS[kind]
        self.db = db
        self.image_store = image_store
        self.credentials = credentials

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_row(self, record_id: str):
        row = self.db.query(self.model).filter(self.model.id == record_id).first()
        if row is None:
            raise NotFoundError(f"{self.label} not found")
        return row

    @property
    def label(self) -> str:
        return "Issue" if self.kind == RecordKind.ISSUE else "Item"

    def timeline(self, record_id: str) -> List[RecordActivity]:
        return (
            self.db.query(RecordActivity)
            .filter(RecordActivity.record_kind == self.kind, RecordActivity.record_id == record_id)
            .order_by(RecordActivity.created_at.asc(), RecordActivity.id.asc())
            .all()
        )

    def get(self, viewer: Dict[str, Any], record_id: str) -> Dict[str, Any]:
        """
        Fetch one record with its status timeline.

        Records the viewer may not see are reported as missing.
        """
        row = self.get_row(record_id)
        data = serialize_record(row, self.kind, timeline=self.timeline(record_id))
        if not can_view(viewer, data):
            raise NotFoundError(f"{self.label} not found")
        if self.kind == RecordKind.LOST_FOUND:
            data["claims"] = self.claims_for(viewer, data)
        return data

    def list(
        self,
        viewer: Dict[str, Any],
        status: Optional[str] = None,
        hostel: Optional[str] = None,
        category: Optional[str] = None,
        priority: Optional[str] = None,
        item_type: Optional[str] = None,
        mine: bool = False,
        assigned_to_me: bool = False,
        sort: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Records visible to the viewer, newest first (or most severe first with sort=priority).
        """
        query = self.db.query(self.model)
        if status and status != "all":
            query = query.filter(self.model.status == normalize_status(status))
        if hostel and hostel != "all":
            query = query.filter(self.model.hostel == hostel)
        if category and category != "all":
            query = query.filter(self.model.category == category)
        if priority and priority != "all":
            query = query.filter(self.model.priority == normalize_priority(priority))
        if item_type and item_type != "all" and self.kind == RecordKind.LOST_FOUND:
            query = query.filter(self.model.item_type == self._item_type(item_type))
        if mine:
            query = query.filter(self.model.reporter_id == viewer["id"])
        if assigned_to_me:
            query = query.filter(self.model.assigned_to_id == viewer["id"])
        if not is_staff(viewer):
            query = query.filter(or_(self.model.reporter_id == viewer["id"], self.model.is_public == True))

        rows = query.order_by(self.model.created_at.desc()).all()
        records = [serialize_record(row, self.kind) for row in rows]
        if sort == "priority":
            # Stable sort keeps newest-first inside each priority
            records.sort(key=lambda r: priority_rank(r["priority"]), reverse=True)
        return records

    @staticmethod
    def snapshot_loader(db: Database, kind: RecordKind) -> Callable[[], List[Dict[str, Any]]]:
        """Blocking loader of a whole collection, for the change notifier."""
        model = MODELS[kind]

        def load() -> List[Dict[str, Any]]:
            with db.get_session() as session:
                rows = session.query(model).order_by(model.created_at.desc()).all()
                return [serialize_record(row, kind) for row in rows]

        return load

    # ------------------------------------------------------------------
    # Create (two-phase)
    # ------------------------------------------------------------------

    @staticmethod
    def _item_type(value: Any) -> LostFoundKind:
        text = str(value or "").strip().lower()
        for kind in LostFoundKind:
            if kind.value.lower() == text:
                return kind
        raise ValidationError("item_type must be Lost or Found")

    def _build_row(self, actor: Dict[str, Any], fields: Dict[str, Any]):
        title = (fields.get("title") or "").strip()
        if not title:
            raise ValidationError("Item name is required" if self.kind == RecordKind.LOST_FOUND else "Title is required")
        if self.kind == RecordKind.ISSUE and not (fields.get("category") or "").strip():
            raise ValidationError("Category is required")

        is_public = fields.get("is_public")
        row = self.model(
            id=str(uuid.uuid4()),
            title=title,
            description=fields.get("description"),
            category=(fields.get("category") or "").strip() or None,
            priority=normalize_priority(fields.get("priority")),
            status=RecordStatus.REPORTED,
            location=fields.get("location"),
            hostel=fields.get("hostel") or actor.get("hostel"),
            block=fields.get("block") or actor.get("block"),
            room_no=fields.get("room_no") or actor.get("room_no"),
            gps_coordinates=fields.get("gps_coordinates"),
            reporter_id=actor["id"],
            images=None,
            is_public=DEFAULT_PUBLIC[self.kind] if is_public is None else bool(is_public),
        )
        if self.kind == RecordKind.LOST_FOUND:
            row.item_type = self._item_type(fields.get("item_type"))
        return row

    async def upload_images(self, record_id: str, uploads: List[ImageUpload]) -> List[str]:
        """
        Upload images concurrently.

        Each failure is logged and skipped; successful URLs keep the order of
        the input list.
        """
        if not uploads or self.image_store is None:
            return []
        results = await asyncio.gather(
            *[
                asyncio.to_thread(self.image_store.save, self.kind.value, record_id, index, upload)
                for index, upload in enumerate(uploads)
            ],
            return_exceptions=True,
        )
        urls = []
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                logger.warning(
                    f"Image {index} ({uploads[index].filename}) for {self.kind.value}/{record_id} "
                    f"was not stored: {result}"
                )
                continue
            urls.append(result)
        logger.info(f"Stored {len(urls)}/{len(uploads)} image(s) for {self.kind.value}/{record_id}")
        return urls

    async def create(
        self,
        actor: Dict[str, Any],
        fields: Dict[str, Any],
        uploads: Optional[List[ImageUpload]] = None,
    ) -> Dict[str, Any]:
        """
        Insert a record, then attach its images.

        The insert is the only step that can fail the call. Upload failures and
        a failed images patch leave the record without (some of) its images.

        Returns:
            The re-fetched record
        """
        row = self._build_row(actor, fields)
        self.db.add(row)
        self.db.commit()
        record_id = row.id
        logger.info(f"{self.label} created: {record_id} by {actor['id']}")

        urls = await self.upload_images(record_id, uploads or [])
        if urls:
            try:
                row.images = serialize_images(urls)
                self.db.commit()
            except Exception as e:
                self.db.rollback()
                logger.error(f"Failed to attach images to {self.kind.value}/{record_id}: {e}", exc_info=True)

        self.db.expire_all()
        return serialize_record(self.get_row(record_id), self.kind)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _require_caretaker(self, caretaker_id: str) -> Dict[str, Any]:
        caretaker = self.credentials.find_by_id(caretaker_id) if self.credentials else None
        if caretaker is None or effective_role(caretaker.get("role")) != UserRole.CARETAKER:
            raise NotFoundError("Caretaker not found")
        return caretaker

    def _apply(self, row, target: RecordStatus, actor_id: str, remark: str,
               caretaker_id: Optional[str] = None) -> None:
        now = datetime.utcnow()
        previous = status_value(row.status)
        if target == RecordStatus.ASSIGNED:
            row.assigned_to_id = caretaker_id
            row.assigned_by_id = actor_id
            row.assigned_at = now
        elif target == RecordStatus.RESOLVED:
            row.resolved_at = now
        elif target == RecordStatus.CLOSED:
            row.closed_at = now
        row.status = target
        row.updated_at = now
        self.db.add(RecordActivity(
            record_kind=self.kind,
            record_id=row.id,
            from_status=previous,
            to_status=target.value,
            actor_id=actor_id,
            remark=remark,
            created_at=now,
        ))

    def transition(
        self,
        actor: Dict[str, Any],
        record_id: str,
        status: Any,
        remark: Optional[str],
        caretaker_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Move a record to a new status.

        Raises:
            NotFoundError: Unknown record, or unknown caretaker for Assigned
            AuthorizationError: Role not allowed to make this change
            ValidationError: Illegal edge, bad status text, or missing remark
        """
        if not is_staff(actor):
            raise AuthorizationError("Students cannot change record status")
        row = self.get_row(record_id)
        target = normalize_status(status)
        check_transition(actor, row.status, target, row.assigned_to_id, caretaker_id)
        text = validate_remark(remark)
        if target == RecordStatus.ASSIGNED:
            self._require_caretaker(caretaker_id)

        self._apply(row, target, actor["id"], text, caretaker_id)
        self.db.commit()
        logger.info(f"{self.label} {record_id} -> {target.value} by {actor['id']}")
        return self.get(actor, record_id)

    def assign(self, actor: Dict[str, Any], record_id: str, caretaker_id: Optional[str],
               remark: Optional[str]) -> Dict[str, Any]:
        """Assign (or reassign) a record to a caretaker."""
        return self.transition(actor, record_id, RecordStatus.ASSIGNED, remark, caretaker_id)

    def auto_assign(self, caretaker_id: str, limit: int, actor_id: Optional[str] = None) -> List[str]:
        """
        Hand the oldest unassigned Reported records to a caretaker.

        Returns:
            Ids of the records that were assigned
        """
        rows = (
            self.db.query(self.model)
            .filter(self.model.status == RecordStatus.REPORTED, self.model.assigned_to_id.is_(None))
            .order_by(self.model.created_at.asc())
            .limit(limit)
            .all()
        )
        for row in rows:
            self._apply(row, RecordStatus.ASSIGNED, actor_id or SYSTEM_ACTOR,
                        "Auto-assigned to caretaker", caretaker_id)
        self.db.commit()
        ids = [row.id for row in rows]
        if ids:
            logger.info(f"Auto-assigned {len(ids)} {self.kind.value} to caretaker {caretaker_id}")
        return ids

    # ------------------------------------------------------------------
    # Claims (lost & found)
    # ------------------------------------------------------------------

    def _serialize_claims(self, claims: List[Claim]) -> List[Dict[str, Any]]:
        claimers: Dict[str, Optional[Dict[str, Any]]] = {}
        for claim in claims:
            if claim.claimed_by not in claimers:
                claimers[claim.claimed_by] = (
                    self.credentials.find_by_id(claim.claimed_by) if self.credentials else None
                )
        return [serialize_claim(claim, claimers[claim.claimed_by]) for claim in claims]

    def claims_for(self, viewer: Dict[str, Any], record: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        Claims on an item, oldest first.

        The reporter and staff see every claim; anyone else only their own.
        """
        query = self.db.query(Claim).filter(Claim.item_id == record["id"])
        if record.get("reporter_id") != viewer["id"] and not is_staff(viewer):
            query = query.filter(Claim.claimed_by == viewer["id"])
        return self._serialize_claims(query.order_by(Claim.created_at.asc(), Claim.id.asc()).all())

    def list_claims(self, viewer: Dict[str, Any], record_id: str) -> List[Dict[str, Any]]:
        return self.get(viewer, record_id)["claims"]

    def claim(self, actor: Dict[str, Any], record_id: str, proof_text: Optional[str]) -> Dict[str, Any]:
        """
        Claim an item and settle it as Resolved, with the claim in its timeline.

        Raises:
            NotFoundError: Unknown item, or one the claimant cannot see
            ValidationError: Missing proof, or the reporter claiming their own item
            ConflictError: The item is already resolved or closed

        Returns:
            The stored claim (with claimer) and the updated item
        """
        row = self.get_row(record_id)
        if not can_view(actor, serialize_record(row, self.kind)):
            raise NotFoundError(f"{self.label} not found")
        if row.reporter_id == actor["id"]:
            raise ValidationError("You cannot claim an item you reported")
        if status_value(row.status) not in CLAIMABLE_STATUSES:
            raise ConflictError("This item has already been claimed or closed")
        proof = (proof_text or "").strip()
        if not proof:
            raise ValidationError("Proof of ownership is required")
        if len(proof) > config.MAX_REMARK_LENGTH:
            raise ValidationError(f"Proof cannot be longer than {config.MAX_REMARK_LENGTH} characters")

        claim = Claim(id=str(uuid.uuid4()), item_id=record_id, claimed_by=actor["id"], proof_text=proof)
        self.db.add(claim)
        self._apply(row, RecordStatus.RESOLVED, actor["id"], f"Claimed: {proof}")
        self.db.commit()
        logger.info(f"{self.label} {record_id} claimed by {actor['id']}")
        return {
            "claim": self._serialize_claims([claim])[0],
            "item": self.get(actor, record_id),
        }

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete(self, actor: Dict[str, Any], record_id: str) -> Dict[str, Any]:
        """
        Delete a record (reporter or management only), then its stored images.

        Image deletion is best-effort.
        """
        row = self.get_row(record_id)
        if row.reporter_id != actor["id"] and not is_management(actor):
            raise AuthorizationError(f"Only the reporter or management can delete this {self.label.lower()}")

        data = serialize_record(row, self.kind)
        self.db.query(RecordActivity).filter(
            RecordActivity.record_kind == self.kind, RecordActivity.record_id == record_id
        ).delete(synchronize_session=False)
        if self.kind == RecordKind.LOST_FOUND:
            self.db.query(Claim).filter(Claim.item_id == record_id).delete(synchronize_session=False)
        self.db.delete(row)
        self.db.commit()
        logger.info(f"{self.label} deleted: {record_id} by {actor['id']}")

        if self.image_store is not None:
            for url in data["images"]:
                try:
                    await asyncio.to_thread(self.image_store.delete, url)
                except Exception as e:
                    logger.warning(f"Could not delete image {url} of {record_id}: {e}")
        return data

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def stats(self) -> Dict[str, Any]:
        """Counts by status and priority for dashboards."""
        rows = self.db.query(self.model.status, self.model.priority).all()
        by_status = {s.value: 0 for s in RecordStatus}
        by_priority = {p.value: 0 for p in Priority}
        for status, priority in rows:
            by_status[status_value(status)] = by_status.get(status_value(status), 0) + 1
            by_priority[priority_value(priority)] = by_priority.get(priority_value(priority), 0) + 1
        return {"total": len(rows), "by_status": by_status, "by_priority": by_priority}
