"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Field names are snake_case in Python and
camelCase on the wire (`totalQuestions`, `isActive`, ...); inputs accept
either spelling.
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .models import Difficulty, ResourceCategory, Sender


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive values; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


def envelope(data: Any = None, message: Optional[str] = None) -> dict:
    """Wrap a successful payload in the `{success, message, data}` envelope."""
    out: Dict[str, Any] = {'success': True}
    if message is not None:
        out['message'] = message
    if data is not None:
        out['data'] = data
    return out


def dump(schema, obj, **kwargs) -> dict:
    """Serialize an ORM object (or dict) through `schema` to wire JSON."""
    return schema.model_validate(obj).model_dump(by_alias=True, mode='json', **kwargs)


# --- auth -----------------------------------------------------------------

class AuthIn(BaseModel):
    """Payload for signup/login endpoints."""
    email: str
    password: str


class UserOut(CamelModel):
    id: int
    email: str
    name: Optional[str] = None
    phone: Optional[str] = None
    is_admin: bool = False
    is_active: bool = True
    last_login: Optional[UtcDatetime] = None
    created_at: UtcDatetime


class UserUpdateIn(CamelModel):
    """Partial user update sent by the admin dashboard."""
    email: Optional[str] = None
    name: Optional[str] = None
    phone: Optional[str] = None
    is_active: Optional[bool] = None


# --- chat -----------------------------------------------------------------

class MessageIn(BaseModel):
    """Request body for storing one chat line."""
    sender: str
    message: str = ''
    meta: Optional[Dict[str, str]] = None


class ChatMessageOut(CamelModel):
    id: int
    user_id: int
    sender: Sender
    message: str
    timestamp: UtcDatetime
    meta: Dict[str, str] = Field(default_factory=dict)


# --- quiz -----------------------------------------------------------------

class QuizQuestionIn(CamelModel):
    """One multiple-choice question together with the user's answer."""
    question: str
    options: List[str] = Field(min_length=4, max_length=4)
    correct_answer: int = Field(ge=0, le=3)
    explanation: str = ''
    user_answer: int = Field(default=-1, ge=-1, le=3)
    is_correct: bool = False


class QuizAttemptIn(CamelModel):
    """Request body for `/quiz/save-attempt`.

    `score` and `correct_answers` are client-computed and only range
    checked by `QuizService.save`.
    """
    topic: str = ''
    questions: List[QuizQuestionIn] = Field(default_factory=list)
    score: int = 0
    total_questions: Optional[int] = None
    correct_answers: int = 0
    time_taken: int = 0


class QuizAttemptOut(CamelModel):
    id: int
    user_id: int
    topic: str
    questions: List[QuizQuestionIn]
    score: int
    total_questions: int
    correct_answers: int
    time_taken: int
    completed_at: UtcDatetime


class TopicStats(CamelModel):
    attempts: int = 0
    total_score: int = 0
    average_score: int = 0


class QuizStatistics(CamelModel):
    total_attempts: int = 0
    total_questions_answered: int = 0
    total_correct_answers: int = 0
    average_score: int = 0
    topic_stats: Dict[str, TopicStats] = Field(default_factory=dict)


# --- resources --------------------------------------------------------------

class ResourceIn(CamelModel):
    """Admin payload for creating a resource."""
    title: str = ''
    description: str = ''
    category: Optional[ResourceCategory] = None
    url: str = ''
    image_url: str = ''
    tags: List[str] = Field(default_factory=list)
    difficulty: Difficulty = Difficulty.BEGINNER
    duration: str = ''
    is_premium: bool = False
    rating: float = Field(default=0, ge=0, le=5)


class ResourceUpdateIn(CamelModel):
    """Admin payload for a partial resource update; unset fields are kept."""
    title: Optional[str] = None
    description: Optional[str] = None
    category: Optional[ResourceCategory] = None
    url: Optional[str] = None
    image_url: Optional[str] = None
    tags: Optional[List[str]] = None
    difficulty: Optional[Difficulty] = None
    duration: Optional[str] = None
    is_premium: Optional[bool] = None
    is_active: Optional[bool] = None
    rating: Optional[float] = Field(default=None, ge=0, le=5)

    @model_validator(mode='after')
    def _no_explicit_nulls(self):
        # every resource column is NOT NULL; omit a field to keep its value
        for name in sorted(self.model_fields_set):
            if getattr(self, name) is None:
                raise ValueError(f'{to_camel(name)} cannot be null')
        return self


class ResourceOut(CamelModel):
    id: int
    title: str
    description: str
    category: ResourceCategory
    url: str
    image_url: str = ''
    tags: List[str] = Field(default_factory=list)
    difficulty: Difficulty
    duration: str = ''
    is_premium: bool = False
    is_active: bool = True
    view_count: int = 0
    rating: float = 0
    created_by: Optional[int] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime
