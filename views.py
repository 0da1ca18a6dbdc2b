"""
View descriptions

Pure functions from read-model state to the JSON the pages render. Nothing
here touches the store.
"""

from typing import Iterable, List, Optional, Set, Tuple

from moderation import available_actions
from schemas import Status

MEDALS = {1: "🥇", 2: "🥈", 3: "🥉"}
EXCERPT_LENGTH = 100
EMPTY_RANKING = "No priorities yet! Be the first to suggest a global priority."


def rank_display(rank: int) -> str:
    return MEDALS.get(rank, f"#{rank}")


def excerpt(text: Optional[str], length: int = EXCERPT_LENGTH) -> str:
    if not text:
        return ""
    return text[:length] + "..."


def priority_card(priority: dict, rank: int, voted: Set[str]) -> dict:
    has_voted = priority["id"] in voted
    return {
        "id": priority["id"],
        "rank": rank,
        "rankDisplay": rank_display(rank),
        "title": priority.get("title", ""),
        "category": priority.get("category") or "Other",
        "excerpt": excerpt(priority.get("description")),
        "votes": priority.get("votes") or 0,
        "hasVoted": has_voted,
        "canVote": not has_voted,
        "hint": "You already voted" if has_voted else "Click to vote",
    }


def ranking_view(ranked: Iterable[Tuple[int, dict]], voted: Optional[Set[str]] = None) -> dict:
    voted = voted or set()
    items = [priority_card(p, r, voted) for r, p in ranked]
    return {
        "items": items,
        "total": len(items),
        "empty": EMPTY_RANKING if not items else None,
    }


def submission_card(priority: dict) -> dict:
    status = Status(priority["status"])
    return {
        "id": priority["id"],
        "title": priority.get("title", ""),
        "category": priority.get("category"),
        "description": priority.get("description", ""),
        "submittedAt": priority.get("createdAt") or "Unknown",
        "submittedBy": priority.get("submittedByName") or priority.get("submittedBy"),
        "status": status.value,
        "statusLabel": status.value.upper(),
        "votes": priority.get("votes"),
        "rejectionReason": priority.get("rejectionReason"),
        "actions": [a.value for a in available_actions(status)],
    }


def submission_list(status: Status, priorities: List[dict]) -> dict:
    status = Status(status)
    return {
        "status": status.value,
        "count": len(priorities),
        "items": [submission_card(p) for p in priorities],
        "empty": f"No {status.value} submissions" if not priorities else None,
    }
