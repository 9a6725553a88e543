import logging
from typing import Any, Dict, Optional

import requests
from fastapi import Header

from app.config.settings import get_settings

logger = logging.getLogger(__name__)


class BackendError(Exception):
    """The tuition center backend refused or failed a request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class BackendClient:
    """Thin JSON client for the tuition center REST API.

    The caller's bearer token is forwarded unchanged; the backend does all
    authorization.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def request(
        self,
        method: str,
        path: str,
        action: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning(f"Backend {method} {path} failed: {exc}")
            raise BackendError(f"An unexpected error occurred while {action}") from exc

        if not response.ok:
            raise BackendError(self._error_message(response), status_code=response.status_code)

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise BackendError(f"An unexpected error occurred while {action}") from exc

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        if response.status_code == 401:
            return "Session expired. Please login again."
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("error"):
            return str(data["error"])
        return f"HTTP error! status: {response.status_code}"

    def get(self, path: str, action: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, action, params=params)

    def put(self, path: str, action: str, json: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("PUT", path, action, json=json)

    def close(self) -> None:
        self.session.close()


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


def get_backend(authorization: Optional[str] = Header(None)):
    settings = get_settings()
    client = BackendClient(
        settings.backend_api_url,
        token=bearer_token(authorization),
        timeout=settings.backend_timeout_seconds,
    )
    try:
        yield client
    finally:
        client.close()
