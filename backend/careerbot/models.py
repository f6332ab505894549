"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Chat messages and quiz attempts are owned by exactly one `User`;
per-question quiz outcomes and message metadata are stored as JSON
columns because they are written once and never queried individually.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Sender(str, Enum):
    USER = "user"
    AI = "ai"


class ResourceCategory(str, Enum):
    COURSE = "Course"
    ARTICLE = "Article"
    VIDEO = "Video"
    BOOK = "Book"
    TOOL = "Tool"
    TUTORIAL = "Tutorial"
    OTHER = "Other"


class Difficulty(str, Enum):
    BEGINNER = "Beginner"
    INTERMEDIATE = "Intermediate"
    ADVANCED = "Advanced"


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `email`: unique login name, stored lower-cased
    - `password_hash`: hashed password string (never store plaintext)
    - `is_admin`: grants access to the `/admin` routes
    - `is_active`: deactivated users cannot log in
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    name: Optional[str] = None
    phone: Optional[str] = None
    is_admin: bool = False
    is_active: bool = True
    last_login: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)


class ChatMessage(SQLModel, table=True):
    """A single chat line, either typed by the user or replied by the assistant."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    sender: Sender
    message: str
    timestamp: datetime = Field(default_factory=utcnow, index=True)
    meta: Dict[str, str] = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))


class QuizAttempt(SQLModel, table=True):
    """A completed quiz with its per-question outcomes.

    `questions` holds the serialized `QuizQuestionIn` payloads exactly as
    the client submitted them. Attempts are immutable once stored.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    topic: str = Field(index=True)
    questions: List[dict] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    score: int = 0
    total_questions: int
    correct_answers: int = 0
    time_taken: int = 0
    completed_at: datetime = Field(default_factory=utcnow, index=True)


class Resource(SQLModel, table=True):
    """A learning resource shown in the catalog.

    Inactive resources stay visible to admins but are hidden from (and
    forbidden to) regular users.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: str
    category: ResourceCategory = Field(index=True)
    url: str
    image_url: str = ''
    tags: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    difficulty: Difficulty = Difficulty.BEGINNER
    duration: str = ''
    is_premium: bool = False
    is_active: bool = Field(default=True, index=True)
    view_count: int = 0
    rating: float = 0
    created_by: Optional[int] = Field(default=None, foreign_key='user.id')
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
