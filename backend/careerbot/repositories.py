"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users, chat
messages, quiz attempts, resources). Repositories return SQLModel
objects and perform commits/refreshes where appropriate; ownership and
input validation live one layer up in `careerbot.services`.
"""

from datetime import datetime
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import String, cast, delete, exists, func, or_, update
from sqlmodel import Session, select

from . import models


def _page(stmt, page: int, limit: int):
    return stmt.offset((page - 1) * limit).limit(limit)


def _icontains(column, term: str):
    return func.lower(column).contains(term.lower(), autoescape=True)


# set-returning functions that unpack a JSON array of strings, per dialect
_JSON_ELEMENTS = {
    "sqlite": func.json_each,
    "postgresql": func.json_array_elements_text,
}


class UserRepository:
    """CRUD operations for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def save(self, user: models.User) -> models.User:
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email or `None` if not found."""
        stmt = select(models.User).where(models.User.email == email)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def _non_admin_conditions(self, search: str = '', is_active: Optional[bool] = None) -> list:
        conds = [models.User.is_admin == False]  # noqa: E712
        if search:
            conds.append(or_(_icontains(models.User.email, search), _icontains(models.User.name, search)))
        if is_active is not None:
            conds.append(models.User.is_active == is_active)
        return conds

    def list_non_admins(self, page: int, limit: int, search: str = '', is_active: Optional[bool] = None) -> Tuple[List[models.User], int]:
        """Return one page of regular users, newest first, plus the total match count."""
        conds = self._non_admin_conditions(search, is_active)
        total = self.session.exec(select(func.count()).select_from(models.User).where(*conds)).one()
        stmt = select(models.User).where(*conds).order_by(models.User.created_at.desc(), models.User.id.desc())
        return list(self.session.exec(_page(stmt, page, limit)).all()), total

    def count_non_admins(self, is_active: Optional[bool] = None, created_since: Optional[datetime] = None) -> int:
        conds = self._non_admin_conditions(is_active=is_active)
        if created_since is not None:
            conds.append(models.User.created_at >= created_since)
        return self.session.exec(select(func.count()).select_from(models.User).where(*conds)).one()

    def signup_dates_since(self, since: datetime) -> List[datetime]:
        """Creation timestamps of regular users registered at or after `since`."""
        stmt = select(models.User.created_at).where(*self._non_admin_conditions(), models.User.created_at >= since)
        return list(self.session.exec(stmt).all())

    def delete_with_children(self, user: models.User) -> None:
        """Delete `user` together with the chat messages and quiz attempts it owns.

        Resources the user created are kept and detached (`created_by` is
        cleared). Everything happens in a single commit.
        """
        uid = user.id
        self.session.execute(delete(models.ChatMessage).where(models.ChatMessage.user_id == uid))
        self.session.execute(delete(models.QuizAttempt).where(models.QuizAttempt.user_id == uid))
        self.session.execute(
            update(models.Resource).where(models.Resource.created_by == uid).values(created_by=None)
        )
        self.session.delete(user)
        self.session.commit()


class ChatMessageRepository:
    """Persistence for per-user chat logs with bounded retention."""
    def __init__(self, session: Session):
        self.session = session

    def count_for_user(self, user_id: int) -> int:
        stmt = select(func.count()).select_from(models.ChatMessage).where(models.ChatMessage.user_id == user_id)
        return self.session.exec(stmt).one()

    def oldest_for_user(self, user_id: int, n: int) -> List[models.ChatMessage]:
        """Return the `n` oldest messages of a user (timestamp, then id ascending)."""
        stmt = (
            select(models.ChatMessage)
            .where(models.ChatMessage.user_id == user_id)
            .order_by(models.ChatMessage.timestamp, models.ChatMessage.id)
            .limit(n)
        )
        return list(self.session.exec(stmt).all())

    def add_with_retention(self, message: models.ChatMessage, max_history: int) -> Tuple[models.ChatMessage, int]:
        """Insert `message` and prune its owner's log down to `max_history` rows.

        The insert and the eviction share one transaction. Returns the
        stored message and the number of evicted rows.
        """
        self.session.add(message)
        self.session.flush()
        evicted = 0
        excess = self.count_for_user(message.user_id) - max_history
        if excess > 0:
            for old in self.oldest_for_user(message.user_id, excess):
                self.session.delete(old)
                evicted += 1
        self.session.commit()
        self.session.refresh(message)
        return message, evicted

    def list_for_user(self, user_id: int, limit: int) -> List[models.ChatMessage]:
        """Messages of `user_id` in display order, at most `limit` of them."""
        return self.oldest_for_user(user_id, limit)

    def delete_for_user(self, user_id: int, message_id: int) -> bool:
        """Delete one message if (and only if) it belongs to `user_id`."""
        stmt = select(models.ChatMessage).where(
            models.ChatMessage.id == message_id,
            models.ChatMessage.user_id == user_id
        )
        msg = self.session.exec(stmt).first()
        if not msg:
            return False
        self.session.delete(msg)
        self.session.commit()
        return True

    def delete_all_for_user(self, user_id: int) -> int:
        """Delete every message of `user_id` and return how many were removed."""
        result = self.session.execute(delete(models.ChatMessage).where(models.ChatMessage.user_id == user_id))
        self.session.commit()
        return result.rowcount or 0


class QuizAttemptRepository:
    """Persist quiz attempts and compute aggregates over them."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, attempt: models.QuizAttempt) -> models.QuizAttempt:
        self.session.add(attempt)
        self.session.commit()
        self.session.refresh(attempt)
        return attempt

    def list_for_user(self, user_id: int, limit: Optional[int] = None) -> List[models.QuizAttempt]:
        """Attempts of `user_id`, most recent first."""
        stmt = (
            select(models.QuizAttempt)
            .where(models.QuizAttempt.user_id == user_id)
            .order_by(models.QuizAttempt.completed_at.desc(), models.QuizAttempt.id.desc())
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.exec(stmt).all())

    def get_for_user(self, user_id: int, attempt_id: int) -> Optional[models.QuizAttempt]:
        stmt = select(models.QuizAttempt).where(
            models.QuizAttempt.id == attempt_id,
            models.QuizAttempt.user_id == user_id
        )
        return self.session.exec(stmt).first()

    def count(self, since: Optional[datetime] = None) -> int:
        stmt = select(func.count()).select_from(models.QuizAttempt)
        if since is not None:
            stmt = stmt.where(models.QuizAttempt.completed_at >= since)
        return self.session.exec(stmt).one()

    def average_score(self, user_id: Optional[int] = None) -> Optional[float]:
        """Mean stored score across all attempts (or one user's); `None` if there are none."""
        stmt = select(func.avg(models.QuizAttempt.score))
        if user_id is not None:
            stmt = stmt.where(models.QuizAttempt.user_id == user_id)
        return self.session.exec(stmt).one()

    def user_summary(self, user_id: int) -> Tuple[int, Optional[float], int, int]:
        """Return `(attempts, avg score, total questions, total correct)` for one user."""
        stmt = select(
            func.count(models.QuizAttempt.id),
            func.avg(models.QuizAttempt.score),
            func.coalesce(func.sum(models.QuizAttempt.total_questions), 0),
            func.coalesce(func.sum(models.QuizAttempt.correct_answers), 0),
        ).where(models.QuizAttempt.user_id == user_id)
        return tuple(self.session.exec(stmt).one())

    def top_users_by_average(self, limit: int = 10) -> Sequence[tuple]:
        """Rows of `(user_id, avg score, attempts, total correct)`, best average first."""
        avg = func.avg(models.QuizAttempt.score)
        stmt = (
            select(
                models.QuizAttempt.user_id,
                avg,
                func.count(models.QuizAttempt.id),
                func.sum(models.QuizAttempt.correct_answers),
            )
            .group_by(models.QuizAttempt.user_id)
            .order_by(avg.desc())
            .limit(limit)
        )
        return self.session.exec(stmt).all()

    def topic_performance(self, limit: int = 10) -> Sequence[tuple]:
        """Rows of `(topic, avg score, attempts, distinct users)`, busiest topic first."""
        attempts = func.count(models.QuizAttempt.id)
        stmt = (
            select(
                models.QuizAttempt.topic,
                func.avg(models.QuizAttempt.score),
                attempts,
                func.count(func.distinct(models.QuizAttempt.user_id)),
            )
            .group_by(models.QuizAttempt.topic)
            .order_by(attempts.desc())
            .limit(limit)
        )
        return self.session.exec(stmt).all()


class ResourceRepository:
    """Catalog queries and admin CRUD for `Resource` rows."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, resource_id: int) -> Optional[models.Resource]:
        return self.session.get(models.Resource, resource_id)

    def save(self, resource: models.Resource) -> models.Resource:
        self.session.add(resource)
        self.session.commit()
        self.session.refresh(resource)
        return resource

    def delete(self, resource: models.Resource) -> None:
        self.session.delete(resource)
        self.session.commit()

    def search(
        self,
        page: int,
        limit: int,
        search: str = '',
        category: Optional[models.ResourceCategory] = None,
        difficulty: Optional[models.Difficulty] = None,
        active_only: bool = True,
    ) -> Tuple[List[models.Resource], int]:
        """Return one page of matching resources, newest first, plus the total match count.

        `search` is a case-insensitive substring match over title,
        description and tags.
        """
        conds = []
        if active_only:
            conds.append(models.Resource.is_active == True)  # noqa: E712
        if search:
            conds.append(or_(
                _icontains(models.Resource.title, search),
                _icontains(models.Resource.description, search),
                self._tag_matches(search),
            ))
        if category is not None:
            conds.append(models.Resource.category == category)
        if difficulty is not None:
            conds.append(models.Resource.difficulty == difficulty)
        total = self.session.exec(select(func.count()).select_from(models.Resource).where(*conds)).one()
        stmt = select(models.Resource).where(*conds).order_by(models.Resource.created_at.desc(), models.Resource.id.desc())
        return list(self.session.exec(_page(stmt, page, limit)).all()), total

    def _tag_matches(self, term: str):
        """Condition: some element of `Resource.tags` contains `term` (case-insensitive)."""
        unpack = _JSON_ELEMENTS.get(self.session.get_bind().dialect.name)
        if unpack is None:
            return _icontains(cast(models.Resource.tags, String), term)
        elements = unpack(models.Resource.tags).table_valued("value", joins_implicitly=True)
        return exists(select(elements.c.value).where(_icontains(elements.c.value, term)))

    def active_categories(self) -> List[models.ResourceCategory]:
        stmt = select(models.Resource.category).where(models.Resource.is_active == True).distinct()  # noqa: E712
        return list(self.session.exec(stmt).all())

    def count(self, active_only: bool = False) -> int:
        stmt = select(func.count()).select_from(models.Resource)
        if active_only:
            stmt = stmt.where(models.Resource.is_active == True)  # noqa: E712
        return self.session.exec(stmt).one()

    def increment_views(self, resource: models.Resource) -> models.Resource:
        """Bump `view_count` by one with a single SQL UPDATE and reload the row."""
        self.session.execute(
            update(models.Resource)
            .where(models.Resource.id == resource.id)
            .values(view_count=models.Resource.view_count + 1)
        )
        self.session.commit()
        self.session.refresh(resource)
        return resource
