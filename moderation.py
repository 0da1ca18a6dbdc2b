"""Moderation of submitted priorities.

Allowed transitions::

    pending  --approve--> approved
    pending  --reject---> rejected
    approved --reject---> rejected
    rejected --approve--> approved
    any      --delete---> (document removed)

Every other (status, action) pair is refused. Each transition is one
single-document update filtered on the status the moderator acted on, so
if two admins race on the same document the second one fails instead of
silently overwriting the first. Audit fields from earlier transitions are
never cleared.
"""

from enum import Enum
from typing import Dict, List, Optional, Tuple

import structlog

from auth import Session
from database import PRIORITIES, guarded, serialize, to_object_id, utcnow
from errors import InvalidTransition, NotFound
from feed import ADDED, REMOVED, PriorityFeed
from schemas import Status

logger = structlog.get_logger(__name__)

DEFAULT_REJECTION_REASON = "No reason provided"


class Action(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    DELETE = "delete"


# None marks deletion
TRANSITIONS: Dict[Tuple[Status, Action], Optional[Status]] = {
    (Status.PENDING, Action.APPROVE): Status.APPROVED,
    (Status.PENDING, Action.REJECT): Status.REJECTED,
    (Status.APPROVED, Action.REJECT): Status.REJECTED,
    (Status.REJECTED, Action.APPROVE): Status.APPROVED,
    (Status.PENDING, Action.DELETE): None,
    (Status.APPROVED, Action.DELETE): None,
    (Status.REJECTED, Action.DELETE): None,
}


def next_status(current: Status, action: Action) -> Optional[Status]:
    key = (Status(current), Action(action))
    if key not in TRANSITIONS:
        raise InvalidTransition(f"Cannot {key[1].value} a {key[0].value} priority")
    return TRANSITIONS[key]


def available_actions(status: Status) -> List[Action]:
    return [action for action in Action if (Status(status), action) in TRANSITIONS]


def list_by_status(store, status: Status) -> List[dict]:
    """All priorities in a status, newest first. An empty list is a normal result."""
    with guarded("list_by_status"):
        cursor = store[PRIORITIES].find({"status": Status(status).value}).sort([("createdAt", -1)])
        return [serialize(d) for d in cursor]


def _load(store, priority_id: str) -> dict:
    with guarded("load_priority"):
        doc = store[PRIORITIES].find_one({"_id": to_object_id(priority_id)})
    if not doc:
        raise NotFound("Priority not found")
    return doc


def _transition(store, admin: Session, priority_id: str, action: Action, fields: dict,
                feed: Optional[PriorityFeed]) -> dict:
    doc = _load(store, priority_id)
    current = Status(doc["status"])
    target = next_status(current, action)

    update = {"status": target.value, **fields}
    with guarded(action.value):
        result = store[PRIORITIES].update_one(
            {"_id": doc["_id"], "status": current.value},
            {"$set": update},
        )
    if result.matched_count == 0:
        _load(store, priority_id)  # NotFound if it was deleted meanwhile
        raise InvalidTransition("Priority was moderated by someone else; reload and try again")

    logger.info(
        "priority_moderated",
        priority_id=priority_id,
        action=action.value,
        from_status=current.value,
        to_status=target.value,
        admin=admin.identity.email,
    )
    if feed is not None:
        if target is Status.APPROVED:
            feed.publish(ADDED, priority_id)
        elif current is Status.APPROVED:
            feed.publish(REMOVED, priority_id)

    doc.update(update)
    return serialize(doc)


def approve(store, admin: Session, priority_id: str, feed: Optional[PriorityFeed] = None) -> dict:
    fields = {"approvedAt": utcnow(), "approvedBy": admin.identity.email}
    return _transition(store, admin, priority_id, Action.APPROVE, fields, feed)


def reject(store, admin: Session, priority_id: str, reason: Optional[str] = None,
           feed: Optional[PriorityFeed] = None) -> dict:
    fields = {
        "rejectedAt": utcnow(),
        "rejectedBy": admin.identity.email,
        "rejectionReason": (reason or "").strip() or DEFAULT_REJECTION_REASON,
    }
    return _transition(store, admin, priority_id, Action.REJECT, fields, feed)


def delete(store, admin: Session, priority_id: str, feed: Optional[PriorityFeed] = None) -> None:
    """Remove the priority for good. Its vote documents stay where they are."""
    doc = _load(store, priority_id)
    current = Status(doc["status"])
    next_status(current, Action.DELETE)
    with guarded("delete"):
        result = store[PRIORITIES].delete_one({"_id": doc["_id"]})
    if result.deleted_count == 0:
        raise NotFound("Priority not found")
    logger.info("priority_deleted", priority_id=priority_id, status=current.value,
                admin=admin.identity.email)
    if feed is not None and current is Status.APPROVED:
        feed.publish(REMOVED, priority_id)
