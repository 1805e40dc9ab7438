import requests
from typing import Any, Dict, Optional
import os
import logging

logger = logging.getLogger("automation_engine")


class BackendError(Exception):
    """Non-2xx response or transport failure from the business backend."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_transient(self) -> bool:
        # No status means the request never got an answer (timeout, refused)
        if self.status_code is None:
            return True
        return self.status_code == 429 or self.status_code >= 500


class BaseClient:
    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None, timeout: float = 30):
        self.base_url = base_url or os.getenv("ENGINE_BACKEND_URL", "http://localhost:8000/api")
        self.timeout = timeout
        self.session = requests.Session()
        api_key = api_key or os.getenv("ENGINE_BACKEND_API_KEY")
        if api_key:
            self.session.headers.update({"X-API-Key": api_key})

    def _request(self, method: str, endpoint: str, json: Dict = None, params: Dict = None) -> Optional[Any]:
        url = f"{self.base_url}{endpoint}"
        try:
            resp = self.session.request(method, url, json=json, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"{method} {endpoint} failed: {e}")
            raise BackendError(f"{method} {endpoint} failed: {e}") from e

        if resp.status_code >= 400:
            logger.error(f"{method} {endpoint} returned {resp.status_code}: {resp.text[:500]}")
            raise BackendError(f"{method} {endpoint} returned {resp.status_code}", status_code=resp.status_code)

        if not resp.content:
            return None
        return resp.json()

    def _get(self, endpoint: str, params: Dict = None) -> Optional[Any]:
        try:
            return self._request("GET", endpoint, params=params)
        except BackendError as e:
            if e.status_code == 404:
                return None
            raise

    def _post(self, endpoint: str, json: Dict = None) -> Optional[Any]:
        return self._request("POST", endpoint, json=json)

    def _put(self, endpoint: str, json: Dict = None) -> Optional[Any]:
        return self._request("PUT", endpoint, json=json)

    def _delete(self, endpoint: str) -> Optional[Any]:
        return self._request("DELETE", endpoint)
