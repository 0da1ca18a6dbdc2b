"""Headline numbers for the public page and the admin dashboard."""

from database import PRIORITIES, USERS, VOTES, guarded
from schemas import Status

# there are only so many countries to be represented
MAX_COUNTRIES = 195


def public_stats(store) -> dict:
    with guarded("public_stats"):
        total_votes = store[VOTES].count_documents({})
        approved = store[PRIORITIES].count_documents({"status": Status.APPROVED.value})
        users = list(store[USERS].find({}))
    domains = {(u.get("email") or "").partition("@")[2] for u in users}
    return {
        "totalVotes": total_votes,
        "totalPriorities": approved,
        "activeUsers": len(users),
        "countriesRepresented": min(len(domains), MAX_COUNTRIES),
    }


def admin_stats(store) -> dict:
    with guarded("admin_stats"):
        pending = store[PRIORITIES].count_documents({"status": Status.PENDING.value})
        approved = list(store[PRIORITIES].find({"status": Status.APPROVED.value}))
        users = store[USERS].count_documents({})
    return {
        "pending": pending,
        "approved": len(approved),
        "users": users,
        "votes": sum(d.get("votes") or 0 for d in approved),
    }
