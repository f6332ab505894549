"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and domain rules. Services are intentionally thin: they perform
validation and ownership checks, execute domain logic and persist
aggregates via repositories. Failures are raised as `careerbot.errors`
exceptions so controllers never have to translate them by hand.
"""

import logging
import math
import re
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional, Tuple

import jwt
from passlib.context import CryptContext
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .errors import Forbidden, NotFound, Unauthenticated, ValidationError
from .schemas import QuizAttemptIn, QuizStatistics, ResourceIn, ResourceUpdateIn, TopicStats, UserUpdateIn

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
MIN_PASSWORD_LENGTH = 6
MAX_PAGE_SIZE = 100

logger = logging.getLogger("careerbot.services")


def round_half_up(value: float) -> int:
    """Round a non-negative average the way the dashboards expect (80.5 -> 81)."""
    return int(math.floor(value + 0.5))


def compute_score(correct_answers: int, total_questions: int) -> int:
    """Percentage score for a quiz, rounded half-up."""
    if total_questions <= 0:
        raise ValidationError('A quiz needs at least one question')
    if not 0 <= correct_answers <= total_questions:
        raise ValidationError('correctAnswers must be between 0 and totalQuestions')
    return round_half_up(100 * correct_answers / total_questions)


def pagination(page: int, limit: int, total: int, total_key: str) -> dict:
    return {
        'currentPage': page,
        'totalPages': math.ceil(total / limit) if limit else 0,
        total_key: total,
        'limit': limit,
    }


def clamp_page(page: Optional[int], limit: Optional[int], default_limit: int) -> Tuple[int, int]:
    """Normalize 1-based paging input; missing or non-positive values use defaults."""
    page = page if page and page > 0 else 1
    limit = limit if limit and limit > 0 else default_limit
    return page, min(limit, MAX_PAGE_SIZE)


class AuthService:
    """Authentication related operations (signup, login and token resolution)."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    @staticmethod
    def normalize_email(email: str) -> str:
        return (email or '').strip().lower()

    def issue_token(self, user: models.User) -> str:
        """Return a signed JWT embedding `userId` and `email`."""
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"userId": user.id, "email": user.email, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def signup(self, email: str, password: str) -> Tuple[str, models.User]:
        """Create a new user with a hashed password and return `(token, user)`."""
        email = self.normalize_email(email)
        if not EMAIL_RE.match(email):
            raise ValidationError('Please provide a valid email')
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long')
        if self.user_repo.get_by_email(email):
            raise ValidationError('User with this email already exists')
        user = self.user_repo.create(models.User(email=email, password_hash=PWD_CTX.hash(password)))
        logger.info("user signed up id=%s", user.id)
        return self.issue_token(user), user

    def ensure_admin(self, email: str, password: str, name: str = 'Admin User') -> Tuple[models.User, bool]:
        """Create an admin account, or promote and reactivate an existing one.

        Returns `(user, created)`. The password of an existing account is
        left unchanged.
        """
        email = self.normalize_email(email)
        if not EMAIL_RE.match(email):
            raise ValidationError('Please provide a valid email')
        user = self.user_repo.get_by_email(email)
        if user:
            user.is_admin = True
            user.is_active = True
            user.name = user.name or name
            return self.user_repo.save(user), False
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters long')
        user = models.User(email=email, password_hash=PWD_CTX.hash(password), name=name, is_admin=True)
        return self.user_repo.create(user), True

    def login(self, email: str, password: str) -> Tuple[str, models.User]:
        """Verify credentials and return `(token, user)`.

        Unknown emails and wrong passwords fail identically so callers
        cannot probe which accounts exist.
        """
        user = self.user_repo.get_by_email(self.normalize_email(email))
        if not user or not PWD_CTX.verify(password or '', user.password_hash):
            raise Unauthenticated('Invalid email or password')
        if not user.is_active:
            raise Forbidden('Account is deactivated')
        user.last_login = datetime.now(timezone.utc)
        user = self.user_repo.save(user)
        return self.issue_token(user), user

    def resolve(self, token: Optional[str]) -> models.User:
        """Verify a bearer token and return the user it names."""
        if not token:
            raise Unauthenticated('No authentication token, access denied')
        try:
            payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        except jwt.ExpiredSignatureError:
            raise Unauthenticated('Token expired')
        except jwt.InvalidTokenError:
            raise Unauthenticated('Invalid token')
        user_id = payload.get('userId')
        if not isinstance(user_id, int):
            raise Unauthenticated('Invalid token payload')
        user = self.user_repo.get(user_id)
        if not user:
            raise Unauthenticated('User not found')
        if not user.is_active:
            raise Forbidden('Account is deactivated')
        return user

    def require_admin(self, token: Optional[str]) -> models.User:
        """Like `resolve`, but also requires the stored user to still be an admin."""
        user = self.resolve(token)
        if not user.is_admin:
            raise Forbidden('Access denied. Admin privileges required.')
        return user


class ChatService:
    """Per-user message log capped at `max_history` entries (oldest evicted first)."""
    def __init__(self, session: Session, max_history: Optional[int] = None):
        self.session = session
        self.max_history = max_history or settings.MAX_HISTORY
        self.repo = repositories.ChatMessageRepository(session)

    def append(self, user_id: int, sender: str, text: str, meta: Optional[dict] = None) -> models.ChatMessage:
        """Store one message and enforce the retention cap for its owner."""
        try:
            sender = models.Sender(sender)
        except ValueError:
            raise ValidationError('Sender must be either "user" or "ai"')
        text = (text or '').strip()
        if not text:
            raise ValidationError('Message cannot be empty')
        msg = models.ChatMessage(user_id=user_id, sender=sender, message=text, meta=dict(meta or {}))
        msg, evicted = self.repo.add_with_retention(msg, self.max_history)
        if evicted:
            logger.debug("evicted %d old messages for user %s", evicted, user_id)
        return msg

    def list(self, user_id: int, limit: Optional[int] = None) -> List[models.ChatMessage]:
        if not limit or limit < 1:
            limit = self.max_history
        return self.repo.list_for_user(user_id, limit)

    def delete_one(self, user_id: int, message_id: int) -> bool:
        return self.repo.delete_for_user(user_id, message_id)

    def clear_all(self, user_id: int) -> int:
        return self.repo.delete_all_for_user(user_id)


def compute_statistics(attempts: Iterable[models.QuizAttempt]) -> QuizStatistics:
    """Aggregate a user's attempts into overall and per-topic numbers.

    Topics are grouped by exact (case-sensitive) match; each average is
    rounded independently. An empty input yields all zeros.
    """
    attempts = list(attempts)
    topics: "OrderedDict[str, TopicStats]" = OrderedDict()
    for a in attempts:
        ts = topics.setdefault(a.topic, TopicStats())
        ts.attempts += 1
        ts.total_score += a.score
    for ts in topics.values():
        ts.average_score = round_half_up(ts.total_score / ts.attempts)
    total = len(attempts)
    return QuizStatistics(
        total_attempts=total,
        total_questions_answered=sum(a.total_questions for a in attempts),
        total_correct_answers=sum(a.correct_answers for a in attempts),
        average_score=round_half_up(sum(a.score for a in attempts) / total) if total else 0,
        topic_stats=topics,
    )


class QuizService:
    """Store immutable quiz attempts and report on them."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.QuizAttemptRepository(session)

    def save(self, user_id: int, payload: QuizAttemptIn) -> models.QuizAttempt:
        """Validate and persist one completed quiz.

        The client-reported `score` is stored as-is after a range check;
        it is not recomputed from `questions`.
        """
        topic = (payload.topic or '').strip()
        if not topic:
            raise ValidationError('Invalid quiz data: topic is required')
        if not payload.questions:
            raise ValidationError('Invalid quiz data: questions must be a non-empty list')
        total = len(payload.questions)
        if payload.total_questions is not None and payload.total_questions != total:
            raise ValidationError('Invalid quiz data: totalQuestions must equal the number of questions')
        if not 0 <= payload.correct_answers <= total:
            raise ValidationError('Invalid quiz data: correctAnswers must be between 0 and totalQuestions')
        if not 0 <= payload.score <= 100:
            raise ValidationError('Invalid quiz data: score must be between 0 and 100')
        if payload.time_taken < 0:
            raise ValidationError('Invalid quiz data: timeTaken cannot be negative')
        attempt = models.QuizAttempt(
            user_id=user_id,
            topic=topic,
            questions=[q.model_dump() for q in payload.questions],
            score=payload.score,
            total_questions=total,
            correct_answers=payload.correct_answers,
            time_taken=payload.time_taken,
        )
        return self.repo.create(attempt)

    def list(self, user_id: int) -> List[models.QuizAttempt]:
        return self.repo.list_for_user(user_id)

    def get_one(self, user_id: int, attempt_id: int) -> models.QuizAttempt:
        attempt = self.repo.get_for_user(user_id, attempt_id)
        if not attempt:
            raise NotFound('Quiz attempt not found')
        return attempt

    def statistics(self, user_id: int) -> QuizStatistics:
        return compute_statistics(self.repo.list_for_user(user_id))


class ResourceService:
    """Resource catalog for regular users plus admin CRUD."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ResourceRepository(session)

    def list(
        self,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        search: str = '',
        category: Optional[models.ResourceCategory] = None,
        difficulty: Optional[models.Difficulty] = None,
        is_admin: bool = False,
        active_only: Optional[bool] = None,
    ) -> Tuple[List[models.Resource], dict]:
        """Return `(resources, pagination)`.

        Regular users always get active resources only; admins see every
        resource unless they pass `active_only=True`.
        """
        page, limit = clamp_page(page, limit, 10 if is_admin else 20)
        active_only = True if not is_admin else bool(active_only)
        items, total = self.repo.search(
            page, limit, search=(search or '').strip(), category=category,
            difficulty=difficulty, active_only=active_only
        )
        return items, pagination(page, limit, total, 'totalResources')

    def categories(self) -> List[str]:
        return sorted(c.value for c in self.repo.active_categories())

    def view(self, resource_id: int) -> models.Resource:
        """Fetch a resource for a regular user and count the view."""
        resource = self.repo.get(resource_id)
        if not resource:
            raise NotFound('Resource not found')
        if not resource.is_active:
            raise Forbidden('This resource is not available')
        return self.repo.increment_views(resource)

    def create(self, payload: ResourceIn, created_by: int) -> models.Resource:
        if not (payload.title.strip() and payload.description.strip() and payload.category and payload.url.strip()):
            raise ValidationError('Please provide title, description, category, and URL')
        resource = models.Resource(
            title=payload.title.strip(),
            description=payload.description,
            category=payload.category,
            url=payload.url.strip(),
            image_url=payload.image_url,
            tags=list(payload.tags),
            difficulty=payload.difficulty,
            duration=payload.duration,
            is_premium=payload.is_premium,
            rating=payload.rating,
            created_by=created_by,
        )
        resource = self.repo.save(resource)
        logger.info("resource created id=%s by user %s", resource.id, created_by)
        return resource

    def update(self, resource_id: int, payload: ResourceUpdateIn) -> models.Resource:
        """Apply only the fields present in `payload`."""
        resource = self.repo.get(resource_id)
        if not resource:
            raise NotFound('Resource not found')
        changes = payload.model_dump(exclude_unset=True)
        for field in ('title', 'description', 'url'):
            if field in changes and not changes[field].strip():
                raise ValidationError(f'{field} cannot be empty')
        for field, value in changes.items():
            setattr(resource, field, value)
        resource.updated_at = datetime.now(timezone.utc)
        return self.repo.save(resource)

    def delete(self, resource_id: int) -> None:
        resource = self.repo.get(resource_id)
        if not resource:
            raise NotFound('Resource not found')
        self.repo.delete(resource)
        logger.info("resource deleted id=%s", resource_id)


class AdminService:
    """Dashboard aggregates and user management for administrators."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)
        self.quiz_repo = repositories.QuizAttemptRepository(session)
        self.resource_repo = repositories.ResourceRepository(session)

    def dashboard_stats(self, now: Optional[datetime] = None) -> dict:
        """Headline numbers for the admin dashboard (all day boundaries in UTC)."""
        now = now or datetime.now(timezone.utc)
        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        month_start = today.replace(day=1)
        week_start = today - timedelta(days=6)
        per_day = OrderedDict(((week_start + timedelta(days=i)).date().isoformat(), 0) for i in range(7))
        for created in self.user_repo.signup_dates_since(week_start):
            key = created.date().isoformat()
            if key in per_day:
                per_day[key] += 1
        avg = self.quiz_repo.average_score()
        return {
            'users': {
                'total': self.user_repo.count_non_admins(),
                'active': self.user_repo.count_non_admins(is_active=True),
                'newThisMonth': self.user_repo.count_non_admins(created_since=month_start),
            },
            'quizzes': {
                'totalAttempts': self.quiz_repo.count(),
                'attemptsToday': self.quiz_repo.count(since=today),
                'averageScore': round_half_up(avg) if avg is not None else 0,
            },
            'resources': {
                'total': self.resource_repo.count(),
                'active': self.resource_repo.count(active_only=True),
            },
            'userGrowth': [{'date': d, 'count': c} for d, c in per_day.items()],
        }

    def list_users(self, page: Optional[int] = None, limit: Optional[int] = None, search: str = '', is_active: Optional[bool] = None):
        """Return `(rows, pagination)` where each row is `(user, attempts, average score)`."""
        page, limit = clamp_page(page, limit, 10)
        users, total = self.user_repo.list_non_admins(page, limit, search=(search or '').strip(), is_active=is_active)
        rows = []
        for u in users:
            attempts, avg, _, _ = self.quiz_repo.user_summary(u.id)
            rows.append((u, attempts, round_half_up(avg) if avg is not None else 0))
        return rows, pagination(page, limit, total, 'totalUsers')

    def get_user(self, user_id: int) -> models.User:
        user = self.user_repo.get(user_id)
        if not user:
            raise NotFound('User not found')
        return user

    def user_detail(self, user_id: int) -> Tuple[models.User, List[models.QuizAttempt], dict]:
        user = self.get_user(user_id)
        attempts, avg, questions, correct = self.quiz_repo.user_summary(user.id)
        stats = {
            'totalAttempts': attempts,
            'averageScore': round_half_up(avg) if avg is not None else 0,
            'totalQuestions': questions,
            'totalCorrect': correct,
            'accuracy': round_half_up(100 * correct / questions) if questions else 0,
        }
        return user, self.quiz_repo.list_for_user(user.id, limit=10), stats

    def update_user(self, user_id: int, payload: UserUpdateIn) -> models.User:
        user = self.get_user(user_id)
        changes = payload.model_dump(exclude_unset=True)
        if changes.get('email') is not None:
            email = AuthService.normalize_email(changes['email'])
            if not EMAIL_RE.match(email):
                raise ValidationError('Please provide a valid email')
            other = self.user_repo.get_by_email(email)
            if other and other.id != user.id:
                raise ValidationError('User with this email already exists')
            user.email = email
        for field in ('name', 'phone'):
            if field in changes:
                setattr(user, field, changes[field])
        if changes.get('is_active') is not None:
            user.is_active = changes['is_active']
        user = self.user_repo.save(user)
        logger.info("admin updated user id=%s fields=%s", user.id, sorted(changes))
        return user

    def delete_user(self, user_id: int) -> None:
        """Delete a regular user and cascade to their messages and attempts."""
        user = self.get_user(user_id)
        if user.is_admin:
            raise Forbidden('Cannot delete admin user')
        self.user_repo.delete_with_children(user)
        logger.info("admin deleted user id=%s", user_id)

    def quiz_performance(self, limit: int = 10) -> dict:
        top = []
        for user_id, avg, attempts, correct in self.quiz_repo.top_users_by_average(limit):
            user = self.user_repo.get(user_id)
            top.append({
                'user': {'id': user.id, 'email': user.email, 'name': user.name} if user else None,
                'averageScore': round_half_up(avg or 0),
                'totalAttempts': attempts,
                'totalCorrect': correct or 0,
            })
        topics = [
            {
                'topic': topic,
                'averageScore': round_half_up(avg or 0),
                'totalAttempts': attempts,
                'totalStudents': students,
            }
            for topic, avg, attempts, students in self.quiz_repo.topic_performance(limit)
        ]
        return {'topStudents': top, 'topicPerformance': topics}
