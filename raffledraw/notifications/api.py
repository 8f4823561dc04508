import os
from urllib.parse import urljoin
from typing import Any, Mapping, Optional

import requests
from dotenv import load_dotenv


class NotificationClient:
    """HTTP dispatcher posting winner notifications to the messaging service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        load_dotenv()
        url = base_url or os.getenv("NOTIFY_BASE_URL")
        if not url:
            raise ValueError("Environment variable 'NOTIFY_BASE_URL' is not set")

        self.base_url = url.rstrip("/")
        self.api_token = api_token or os.getenv("NOTIFY_API_TOKEN")
        self.timeout = (
            timeout if timeout is not None else float(os.getenv("NOTIFY_TIMEOUT", "10"))
        )
        self.session = session or requests.Session()

    # -------- headers --------
    @property
    def headers(self) -> Mapping[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return headers

    # -------- core request --------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
    ) -> Any:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        r = self.session.request(
            method=method.upper(),
            url=url,
            headers=self.headers,
            params=params,
            json=json,
            timeout=self.timeout,
        )
        r.raise_for_status()
        return r.json() if r.content else None

    # -------- API callers --------
    def notify(self, user_id: int, winner_id: int, message: str) -> Any:
        return self._request(
            "POST",
            "/api/v1/notifications",
            json={"user_id": user_id, "winner_id": winner_id, "message": message},
        )
