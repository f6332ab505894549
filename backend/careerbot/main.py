"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints used by the CareerBot mobile
client and admin dashboard. Controllers are intentionally thin: they
accept requests, delegate to services, and wrap results in the
`{success, message, data}` envelope. Every route is mounted under
`settings.API_PREFIX` (default `/api`).

Endpoints implemented:
- POST /auth/signup, POST /auth/login
- POST|GET|DELETE /chat/messages, DELETE /chat/messages/{id}
- POST /quiz/save-attempt, GET /quiz/attempts, GET /quiz/attempts/{id}
- GET /quiz/statistics
- GET /resources, GET /resources/categories/list, GET /resources/{id}
- GET /admin/dashboard/stats, GET /admin/quiz/performance
- GET /admin/users, GET|PUT|DELETE /admin/users/{id}
- GET|POST /admin/resources, PUT|DELETE /admin/resources/{id}
- GET /health
"""

import json
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import models, services
from .auth import get_current_admin, get_current_user
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import AppError, NotFound, StorageError, ValidationError
from .schemas import (
    AuthIn, ChatMessageOut, MessageIn, QuizAttemptIn, QuizAttemptOut, ResourceIn,
    ResourceOut, ResourceUpdateIn, UserOut, UserUpdateIn, dump, envelope,
)

app = FastAPI(title="CareerBot API")
logger = logging.getLogger("careerbot.api")
if not logging.getLogger().handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

# Wide-open CORS keeps the admin dashboard and emulator builds working in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


def _failure(status_code: int, message: str, error: Optional[str] = None, headers=None) -> JSONResponse:
    body = {'success': False, 'message': message}
    if error is not None:
        body['error'] = error
    return JSONResponse(status_code=status_code, content=body, headers=headers)


def _request_log(request: Request, req_id: str, started: float, **extra) -> str:
    return json.dumps(
        {
            "request_id": req_id,
            "path": request.url.path,
            "method": request.method,
            "duration_ms": round((time.perf_counter() - started) * 1000.0, 2),
            "client": request.client.host if request.client else "unknown",
            **extra,
        },
        ensure_ascii=True,
    )


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception as exc:
        # last line of defence: log everything, leak details only in dev
        logger.exception("request_failed %s", _request_log(request, req_id, started))
        response = _failure(
            500, 'Internal server error',
            error=str(exc) if settings.is_dev else None,
        )
    response.headers["X-Request-ID"] = req_id
    logger.info("request_done %s", _request_log(request, req_id, started, status_code=response.status_code))
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error("app_error %s: %s", type(exc).__name__, exc.message)
    return _failure(exc.status_code, exc.message)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
    msg = first.get("msg", "Invalid request")
    return _failure(400, f"{loc}: {msg}" if loc else msg)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    message = 'Endpoint not found' if exc.status_code == 404 and exc.detail == 'Not Found' else str(exc.detail)
    return _failure(exc.status_code, message, headers=getattr(exc, "headers", None))


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("storage_error path=%s", request.url.path)
    err = StorageError('Database error')
    return _failure(err.status_code, err.message, error=str(exc) if settings.is_dev else None)


def _enum_param(enum_cls, value: Optional[str], label: str):
    """Parse an optional enum query parameter; blank means "no filter"."""
    if value is None or not value.strip():
        return None
    try:
        return enum_cls(value.strip())
    except ValueError:
        allowed = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f'{label} must be one of: {allowed}')


def _bool_param(value: Optional[str]) -> Optional[bool]:
    if value is None or value == '':
        return None
    return value.lower() == 'true'


def _auth_payload(token: str, user: models.User) -> dict:
    return {
        'token': token,
        'user': {
            'id': user.id,
            'email': user.email,
            'createdAt': dump(UserOut, user)['createdAt'],
        },
    }


def _public_resource(resource: models.Resource) -> dict:
    return dump(ResourceOut, resource, exclude={'created_by'})


router = APIRouter(prefix=settings.API_PREFIX)


@router.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {
        'status': 'OK',
        'message': 'CareerBot Backend is running',
        'timestamp': datetime.now(timezone.utc).isoformat(),
    }


# --- auth -------------------------------------------------------------------

@router.post('/auth/signup', status_code=201)
def signup(payload: AuthIn, db: Session = Depends(get_session)):
    """Register a new user and return a token so the client is logged in at once."""
    token, user = services.AuthService(db).signup(payload.email, payload.password)
    return envelope(_auth_payload(token, user), 'User registered successfully')


@router.post('/auth/login')
def login(payload: AuthIn, db: Session = Depends(get_session)):
    """Authenticate a user and return a signed JWT token.

    The token embeds `userId` and `email` and expires after
    `JWT_EXPIRE_HOURS`.
    """
    token, user = services.AuthService(db).login(payload.email, payload.password)
    return envelope(_auth_payload(token, user), 'Login successful')


# --- chat -------------------------------------------------------------------

@router.post('/chat/messages', status_code=201)
def save_message(payload: MessageIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Store one chat line; the oldest lines beyond `MAX_HISTORY` are evicted."""
    svc = services.ChatService(db, max_history=settings.MAX_HISTORY)
    msg = svc.append(user.id, payload.sender, payload.message, payload.meta)
    return envelope(dump(ChatMessageOut, msg), 'Message saved successfully')


@router.get('/chat/messages')
def list_messages(limit: Optional[int] = None, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return the caller's messages oldest first, at most `limit` (default `MAX_HISTORY`)."""
    svc = services.ChatService(db, max_history=settings.MAX_HISTORY)
    messages = svc.list(user.id, limit)
    return envelope([dump(ChatMessageOut, m) for m in messages], 'Messages retrieved successfully')


@router.delete('/chat/messages')
def clear_messages(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    deleted = services.ChatService(db).clear_all(user.id)
    return envelope({'deletedCount': deleted}, 'All messages cleared successfully')


@router.delete('/chat/messages/{message_id}')
def delete_message(message_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    if not services.ChatService(db).delete_one(user.id, message_id):
        raise NotFound('Message not found')
    return envelope(message='Message deleted successfully')


# --- quiz -------------------------------------------------------------------

@router.post('/quiz/save-attempt', status_code=201)
def save_attempt(payload: QuizAttemptIn, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Persist a completed quiz exactly once; attempts cannot be edited later."""
    attempt = services.QuizService(db).save(user.id, payload)
    return envelope(dump(QuizAttemptOut, attempt), 'Quiz attempt saved successfully')


@router.get('/quiz/attempts')
def list_attempts(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    attempts = services.QuizService(db).list(user.id)
    return envelope([dump(QuizAttemptOut, a) for a in attempts])


@router.get('/quiz/attempts/{attempt_id}')
def get_attempt(attempt_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    attempt = services.QuizService(db).get_one(user.id, attempt_id)
    return envelope(dump(QuizAttemptOut, attempt))


@router.get('/quiz/statistics')
def quiz_statistics(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Overall and per-topic averages, computed on demand from stored attempts."""
    stats = services.QuizService(db).statistics(user.id)
    return envelope(stats.model_dump(by_alias=True, mode='json'))


# --- resources ----------------------------------------------------------------

@router.get('/resources')
def list_resources(
    page: Optional[int] = None,
    limit: Optional[int] = None,
    search: str = '',
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    db: Session = Depends(get_session),
    user: models.User = Depends(get_current_user),
):
    """Active resources only, newest first, with page metadata."""
    items, pages = services.ResourceService(db).list(
        page, limit, search=search,
        category=_enum_param(models.ResourceCategory, category, 'category'),
        difficulty=_enum_param(models.Difficulty, difficulty, 'difficulty'),
    )
    return envelope({'resources': [_public_resource(r) for r in items], 'pagination': pages})


@router.get('/resources/categories/list')
def list_categories(db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    return envelope(services.ResourceService(db).categories())


@router.get('/resources/{resource_id}')
def get_resource(resource_id: int, db: Session = Depends(get_session), user: models.User = Depends(get_current_user)):
    """Return one active resource and count the view."""
    resource = services.ResourceService(db).view(resource_id)
    return envelope(_public_resource(resource))


# --- admin ------------------------------------------------------------------

@router.get('/admin/dashboard/stats')
def dashboard_stats(db: Session = Depends(get_session), admin: models.User = Depends(get_current_admin)):
    return envelope(services.AdminService(db).dashboard_stats())


@router.get('/admin/users')
def admin_list_users(
    page: Optional[int] = None,
    limit: Optional[int] = None,
    search: str = '',
    is_active: Optional[str] = Query(default=None, alias='isActive'),
    db: Session = Depends(get_session),
    admin: models.User = Depends(get_current_admin),
):
    """Regular users (admins excluded) with their quiz counts and averages."""
    rows, pages = services.AdminService(db).list_users(page, limit, search=search, is_active=_bool_param(is_active))
    users = [
        {**dump(UserOut, u), 'quizStats': {'totalAttempts': attempts, 'averageScore': avg}}
        for u, attempts, avg in rows
    ]
    return envelope({'users': users, 'pagination': pages})


@router.get('/admin/users/{user_id}')
def admin_user_detail(user_id: int, db: Session = Depends(get_session), admin: models.User = Depends(get_current_admin)):
    user, attempts, stats = services.AdminService(db).user_detail(user_id)
    return envelope({
        'user': dump(UserOut, user),
        'quizAttempts': [dump(QuizAttemptOut, a) for a in attempts],
        'statistics': stats,
    })


@router.put('/admin/users/{user_id}')
def admin_update_user(user_id: int, payload: UserUpdateIn, db: Session = Depends(get_session), admin: models.User = Depends(get_current_admin)):
    user = services.AdminService(db).update_user(user_id, payload)
    return envelope(dump(UserOut, user), 'User updated successfully')


@router.delete('/admin/users/{user_id}')
def admin_delete_user(user_id: int, db: Session = Depends(get_session), admin: models.User = Depends(get_current_admin)):
    """Delete a regular user together with their chat history and quiz attempts."""
    services.AdminService(db).delete_user(user_id)
    return envelope(message='User deleted successfully')


@router.get('/admin/resources')
def admin_list_resources(
    page: Optional[int] = None,
    limit: Optional[int] = None,
    search: str = '',
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    active_only: bool = Query(default=False, alias='activeOnly'),
    db: Session = Depends(get_session),
    admin: models.User = Depends(get_current_admin),
):
    """Every resource, inactive ones included unless `activeOnly=true`."""
    items, pages = services.ResourceService(db).list(
        page, limit, search=search,
        category=_enum_param(models.ResourceCategory, category, 'category'),
        difficulty=_enum_param(models.Difficulty, difficulty, 'difficulty'),
        is_admin=True, active_only=active_only,
    )
    return envelope({'resources': [dump(ResourceOut, r) for r in items], 'pagination': pages})


@router.post('/admin/resources', status_code=201)
def admin_create_resource(payload: ResourceIn, db: Session = Depends(get_session), admin: models.User = Depends(get_current_admin)):
    resource = services.ResourceService(db).create(payload, created_by=admin.id)
    return envelope(dump(ResourceOut, resource), 'Resource created successfully')


@router.put('/admin/resources/{resource_id}')
def admin_update_resource(resource_id: int, payload: ResourceUpdateIn, db: Session = Depends(get_session), admin: models.User = Depends(get_current_admin)):
    """Partial update: only the fields present in the body change."""
    resource = services.ResourceService(db).update(resource_id, payload)
    return envelope(dump(ResourceOut, resource), 'Resource updated successfully')


@router.delete('/admin/resources/{resource_id}')
def admin_delete_resource(resource_id: int, db: Session = Depends(get_session), admin: models.User = Depends(get_current_admin)):
    services.ResourceService(db).delete(resource_id)
    return envelope(message='Resource deleted successfully')


@router.get('/admin/quiz/performance')
def quiz_performance(db: Session = Depends(get_session), admin: models.User = Depends(get_current_admin)):
    return envelope(services.AdminService(db).quiz_performance())


app.include_router(router)
