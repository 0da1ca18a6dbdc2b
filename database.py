"""
Database Helper Functions

MongoDB access with graceful fallback.
- Primary: real MongoDB via DATABASE_URL + DATABASE_NAME
- Fallback: Mongita (embedded MongoDB-compatible) so the app fully works without external DB

Multi-document transactions need a replica set or a sharded cluster. On a
standalone server and on Mongita the vote write falls back to an ordered
write with a compensating delete.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from mongita.errors import DuplicateKeyError as MongitaDuplicateKeyError
from mongita.errors import MongitaError
from pymongo import MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from errors import AlreadyVoted, NotFound, StoreUnavailable

logger = structlog.get_logger(__name__)

PRIORITIES = "priorities"
VOTES = "votes"
USERS = "users"

STORE_ERRORS = (PyMongoError, MongitaError)
DUPLICATE_KEY_ERRORS = (DuplicateKeyError, MongitaDuplicateKeyError)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_object_id(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise NotFound("Priority not found")


def serialize(doc: dict):
    if not doc:
        return doc
    doc["id"] = str(doc.pop("_id"))
    # Convert datetimes to isoformat
    for k, v in list(doc.items()):
        if hasattr(v, "isoformat"):
            doc[k] = v.isoformat()
    return doc


@contextmanager
def guarded(operation: str):
    """Translate driver failures into StoreUnavailable."""
    try:
        yield
    except STORE_ERRORS as exc:
        logger.error("store_failure", operation=operation, error=str(exc))
        raise StoreUnavailable(f"Document store unavailable ({operation})") from exc


class Store:
    """A database handle plus the one write that must be atomic."""

    def __init__(self, db, client=None, transactional: bool = False):
        self.db = db
        self.client = client
        self.transactional = transactional

    def __getitem__(self, collection_name: str):
        return self.db[collection_name]

    @property
    def name(self) -> Optional[str]:
        return getattr(self.db, "name", None)

    @property
    def backend(self) -> str:
        return "mongodb" if isinstance(self.client, MongoClient) else "mongita"

    def ensure_indexes(self) -> None:
        if not isinstance(self.client, MongoClient):
            return
        self.db[PRIORITIES].create_index([("status", 1), ("votes", -1)])
        self.db[PRIORITIES].create_index([("status", 1), ("createdAt", -1)])
        self.db[VOTES].create_index([("userId", 1), ("priorityId", 1)], unique=True)

    def record_vote(self, vote: dict, counter_filter: dict, now: datetime) -> None:
        """
        Create the vote document and bump the counter of the matching priority,
        both or neither.

        Raises AlreadyVoted when the vote id exists and NotFound when
        counter_filter matches no priority.
        """
        if self.transactional:
            with self.client.start_session() as session:
                session.with_transaction(
                    lambda s: self._write_vote(vote, counter_filter, now, s)
                )
        else:
            self._write_vote_compensating(vote, counter_filter, now)

    def _write_vote(self, vote, counter_filter, now, session):
        try:
            self.db[VOTES].insert_one(vote, session=session)
        except DuplicateKeyError:
            raise AlreadyVoted("You have already voted for this priority")
        result = self._bump_counter(counter_filter, now, session=session)
        if result.matched_count == 0:
            raise NotFound("Priority not found or not open for voting")

    def _write_vote_compensating(self, vote, counter_filter, now):
        votes = self.db[VOTES]
        if votes.find_one({"_id": vote["_id"]}) is not None:
            raise AlreadyVoted("You have already voted for this priority")
        if self.db[PRIORITIES].count_documents(counter_filter) == 0:
            raise NotFound("Priority not found or not open for voting")
        try:
            votes.insert_one(vote)
        except DUPLICATE_KEY_ERRORS:
            raise AlreadyVoted("You have already voted for this priority")
        try:
            result = self._bump_counter(counter_filter, now)
        except STORE_ERRORS:
            votes.delete_one({"_id": vote["_id"]})
            raise
        if result.matched_count == 0:
            # moderated away between the check and the increment
            votes.delete_one({"_id": vote["_id"]})
            raise NotFound("Priority not found or not open for voting")

    def _bump_counter(self, counter_filter, now, session=None):
        kwargs = {"session": session} if session is not None else {}
        return self.db[PRIORITIES].update_one(
            counter_filter,
            {"$inc": {"votes": 1}, "$set": {"lastVoteAt": now}},
            **kwargs,
        )


def _supports_transactions(client: MongoClient) -> bool:
    hello = client.admin.command("hello")
    return bool(hello.get("setName")) or hello.get("msg") == "isdbgrid"


def connect(database_url: Optional[str], database_name: str) -> Store:
    """Open the real MongoDB when configured and reachable, Mongita otherwise."""
    if database_url:
        try:
            client = MongoClient(database_url, serverSelectionTimeoutMS=2000)
            client.admin.command("ping")  # ensure reachable now
            transactional = _supports_transactions(client)
            logger.info(
                "store_connected",
                backend="mongodb",
                database=database_name,
                transactional=transactional,
            )
            return Store(client[database_name], client=client, transactional=transactional)
        except PyMongoError as exc:
            logger.warning("store_unreachable", error=str(exc))

    from mongita import MongitaClientDisk

    client = MongitaClientDisk()
    logger.info("store_connected", backend="mongita", database=database_name)
    return Store(client[database_name], client=client)
