"""
Database Schemas for World Priorities

Each stored model corresponds to a collection named in database.py.
Field names match the stored documents.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PHOTO_URL = "https://www.gravatar.com/avatar/?d=mp"


class Status(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class Priority(BaseModel):
    """
    Proposals submitted by users
    Collection: "priorities"
    """
    title: str = Field(..., min_length=1, max_length=140)
    description: str = Field(..., min_length=1, max_length=2000)
    category: str = Field(..., min_length=1, max_length=60)
    status: Status = Status.PENDING
    votes: int = Field(0, ge=0, description="Maintained by the vote write, never recomputed")
    submittedBy: str
    submittedByEmail: Optional[str] = None
    submittedByName: Optional[str] = None
    createdAt: datetime


class Vote(BaseModel):
    """
    One identity voted for one priority. Never updated or deleted.
    Collection: "votes" (_id derived from userId and priorityId)
    """
    userId: str
    priorityId: str
    votedAt: datetime


class User(BaseModel):
    """
    Profile cache refreshed on every sign-in
    Collection: "users" (_id is the provider uid)
    """
    email: Optional[str] = None
    displayName: Optional[str] = None
    photoURL: Optional[str] = None
    lastLogin: datetime


class Identity(BaseModel):
    """Identity asserted by the external authentication provider."""
    uid: str = Field(..., min_length=1)
    email: Optional[str] = None
    displayName: Optional[str] = None
    photoURL: Optional[str] = None

    @property
    def display_name(self) -> str:
        if self.displayName:
            return self.displayName
        return (self.email or self.uid).split("@")[0]

    @property
    def photo(self) -> str:
        return self.photoURL or DEFAULT_PHOTO_URL


# Schemas for requests

class PriorityCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=140)
    description: str = Field(..., min_length=1, max_length=2000)
    category: str = Field(..., min_length=1, max_length=60)


class RejectRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    reason: Optional[str] = Field(None, max_length=500)
