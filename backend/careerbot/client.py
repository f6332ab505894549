"""Small synchronous client for the CareerBot API.

The client holds no global state: the bearer token lives in a
`TokenStore` passed in by the caller, so several sessions can coexist in
one process (tests, scripts, a CLI). `http` may be any `httpx.Client`,
including FastAPI's `TestClient`.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Union

import httpx

from .schemas import QuizAttemptIn

DEFAULT_TIMEOUT = 30.0


class ApiError(Exception):
    """Raised when the API answers with `success: false` or a non-2xx status."""
    def __init__(self, status_code: int, message: str):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message


class TokenStore(Protocol):
    def get_token(self) -> Optional[str]: ...

    def save_token(self, token: str) -> None: ...

    def clear(self) -> None: ...


class MemoryTokenStore:
    """Keeps the token for the lifetime of the object only."""
    def __init__(self, token: Optional[str] = None):
        self._token = token

    def get_token(self) -> Optional[str]:
        return self._token

    def save_token(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class FileTokenStore:
    """Persists the token in a small JSON file readable only by its owner."""
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path).expanduser()

    def _read_store(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return {}

    def get_token(self) -> Optional[str]:
        return self._read_store().get("token")

    def save_token(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps({"token": token}), encoding="utf-8")
        os.chmod(self.path, 0o600)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


class CareerBotClient:
    """Thin wrapper that unwraps the `{success, message, data}` envelope."""

    def __init__(self, base_url: str = "http://localhost:3000/api", token_store: Optional[TokenStore] = None, http: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self.tokens = token_store or MemoryTokenStore()
        self.http = http or httpx.Client(timeout=DEFAULT_TIMEOUT)

    def _request(self, method: str, path: str, *, auth: bool = True, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if auth:
            token = self.tokens.get_token()
            if not token:
                raise ApiError(401, "not logged in")
            headers["Authorization"] = f"Bearer {token}"
        resp = self.http.request(method, f"{self.base_url}{path}", headers=headers, **kwargs)
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if resp.is_error or not body.get("success", False):
            raise ApiError(resp.status_code, body.get("message") or resp.reason_phrase)
        return body.get("data")

    # auth

    def signup(self, email: str, password: str) -> Dict:
        data = self._request("POST", "/auth/signup", auth=False, json={"email": email, "password": password})
        self.tokens.save_token(data["token"])
        return data["user"]

    def login(self, email: str, password: str) -> Dict:
        data = self._request("POST", "/auth/login", auth=False, json={"email": email, "password": password})
        self.tokens.save_token(data["token"])
        return data["user"]

    def logout(self) -> None:
        self.tokens.clear()

    @property
    def is_logged_in(self) -> bool:
        return self.tokens.get_token() is not None

    # chat

    def send_message(self, sender: str, message: str, meta: Optional[Dict[str, str]] = None) -> Dict:
        body = {"sender": sender, "message": message}
        if meta:
            body["meta"] = meta
        return self._request("POST", "/chat/messages", json=body)

    def get_messages(self, limit: Optional[int] = None) -> List[Dict]:
        params = {"limit": limit} if limit else None
        return self._request("GET", "/chat/messages", params=params)

    def clear_messages(self) -> int:
        return self._request("DELETE", "/chat/messages")["deletedCount"]

    def delete_message(self, message_id: int) -> None:
        self._request("DELETE", f"/chat/messages/{message_id}")

    # quiz

    def save_quiz_attempt(self, attempt: QuizAttemptIn) -> Dict:
        return self._request("POST", "/quiz/save-attempt", json=attempt.model_dump(by_alias=True))

    def get_quiz_attempts(self) -> List[Dict]:
        return self._request("GET", "/quiz/attempts")

    def get_quiz_attempt(self, attempt_id: int) -> Dict:
        return self._request("GET", f"/quiz/attempts/{attempt_id}")

    def get_quiz_statistics(self) -> Dict:
        return self._request("GET", "/quiz/statistics")

    # resources

    def get_resources(self, page: int = 1, limit: int = 20, search: str = "", category: Optional[str] = None, difficulty: Optional[str] = None) -> Dict:
        params = {"page": page, "limit": limit}
        if search:
            params["search"] = search
        if category:
            params["category"] = category
        if difficulty:
            params["difficulty"] = difficulty
        return self._request("GET", "/resources", params=params)

    def get_resource(self, resource_id: int) -> Dict:
        return self._request("GET", f"/resources/{resource_id}")

    def get_categories(self) -> List[str]:
        return self._request("GET", "/resources/categories/list")
