"""Public ranking of approved priorities.

The ranking is never maintained incrementally: every read is a full query
ordered by vote count, and callers re-run it after anything that could
change the order. Equal vote counts keep whatever order the store returns.
"""

from typing import List, Tuple

from database import PRIORITIES, guarded, serialize
from schemas import Status

TRENDING_LIMIT = 10
NEWEST_LIMIT = 5


def list_approved(store) -> List[dict]:
    with guarded("list_approved"):
        cursor = store[PRIORITIES].find({"status": Status.APPROVED.value}).sort([("votes", -1)])
        return [serialize(d) for d in cursor]


def rank(priorities: List[dict]) -> List[Tuple[int, dict]]:
    return list(enumerate(priorities, start=1))


def select(ranked: List[Tuple[int, dict]], view: str = "all") -> List[Tuple[int, dict]]:
    """Narrow a ranking for the list filters; ranks are kept as assigned."""
    if view == "trending":
        return ranked[:TRENDING_LIMIT]
    if view == "new":
        # isoformat strings sort chronologically
        newest = sorted(ranked, key=lambda item: item[1].get("createdAt") or "", reverse=True)
        return newest[:NEWEST_LIMIT]
    return ranked
