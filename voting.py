"""Submitting priorities and casting votes.

A vote is one document in ``votes`` plus a +1 on the priority's ``votes``
counter, written together by ``Store.record_vote``. The vote document id is
derived from (user, priority), so a second vote for the same pair collides
in the store even when the session cache missed it.
"""

import hashlib
from typing import Iterator, Optional

import structlog

from auth import Session
from database import PRIORITIES, VOTES, guarded, serialize, to_object_id, utcnow
from errors import AlreadyVoted, NotSignedIn, StoreUnavailable, ValidationFailed
from feed import MODIFIED, PriorityFeed
from schemas import Priority, PriorityCreate, Status, Vote

logger = structlog.get_logger(__name__)


def vote_id(user_id: str, priority_id: str) -> str:
    return hashlib.sha256(f"{user_id}:{priority_id}".encode("utf-8")).hexdigest()


def load_user_votes(store, user_id: str) -> Iterator[str]:
    """Yield the priority id of every vote cast by user_id."""
    with guarded("load_user_votes"):
        for doc in store[VOTES].find({"userId": user_id}):
            yield doc["priorityId"]


def submit_priority(store, session: Optional[Session], payload: PriorityCreate) -> dict:
    if session is None:
        raise NotSignedIn("Please sign in first")
    title = payload.title.strip()
    description = payload.description.strip()
    category = payload.category.strip()
    if not title or not description or not category:
        raise ValidationFailed("Please fill in all fields")

    identity = session.identity
    doc = Priority(
        title=title,
        description=description,
        category=category,
        status=Status.PENDING,
        votes=0,
        submittedBy=identity.uid,
        submittedByEmail=identity.email,
        submittedByName=identity.display_name,
        createdAt=utcnow(),
    ).model_dump()
    doc["status"] = Status.PENDING.value

    with guarded("submit_priority"):
        inserted_id = store[PRIORITIES].insert_one(doc).inserted_id
        created = store[PRIORITIES].find_one({"_id": inserted_id})
    logger.info("priority_submitted", priority_id=str(inserted_id), uid=identity.uid)
    return serialize(created)


def cast_vote(
    store,
    session: Optional[Session],
    priority_id: str,
    feed: Optional[PriorityFeed] = None,
) -> Optional[dict]:
    """
    Record one vote by the session's identity for an approved priority.

    Returns the updated priority, or None when the vote was recorded but the
    priority could not be read back. Raises NotSignedIn, AlreadyVoted,
    NotFound or StoreUnavailable; on any of them the store and the session
    cache are left as they were.
    """
    if session is None:
        raise NotSignedIn("Please sign in to vote")

    oid = to_object_id(priority_id)
    # hex ids parse case-insensitively; key everything on the canonical form
    priority_id = str(oid)
    if priority_id in session.voted:
        logger.info("vote_rejected", reason="cached", uid=session.uid, priority_id=priority_id)
        raise AlreadyVoted("You have already voted for this priority!")

    now = utcnow()
    vote = Vote(userId=session.uid, priorityId=priority_id, votedAt=now).model_dump()
    vote["_id"] = vote_id(session.uid, priority_id)

    try:
        with guarded("cast_vote"):
            store.record_vote(vote, {"_id": oid, "status": Status.APPROVED.value}, now)
    except AlreadyVoted:
        # another device got there first; the store is the source of truth
        session.voted.add(priority_id)
        logger.info("vote_rejected", reason="duplicate", uid=session.uid, priority_id=priority_id)
        raise

    session.voted.add(priority_id)
    logger.info("vote_cast", uid=session.uid, priority_id=priority_id)
    if feed is not None:
        feed.publish(MODIFIED, priority_id)

    # the vote is committed from here on
    try:
        with guarded("cast_vote_reload"):
            updated = store[PRIORITIES].find_one({"_id": oid})
    except StoreUnavailable:
        logger.warning("vote_reload_failed", uid=session.uid, priority_id=priority_id)
        return None
    return serialize(updated)
