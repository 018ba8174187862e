"""HR API client implementing the EmployeeSource protocol."""

import logging
from typing import Optional
from urllib.parse import quote

import httpx

from ....core.exceptions import EmployeeSourceError
from ..entities import EmployeeRecord

logger = logging.getLogger(__name__)


class HttpEmployeeSource:
    """Fetches employee records from the HR API over HTTP.

    The API is called at ``{base_url}{employee_path}`` with the username
    substituted and the shared secret sent as a bearer token. A 404 means
    the HR system has no such employee.
    """

    def __init__(
        self,
        base_url: str,
        secret: Optional[str] = None,
        timeout: float = 30.0,
        employee_path: str = "/employee/{username}",
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.employee_path = employee_path
        headers = {"Accept": "application/json", "User-Agent": "ad-rbac"}
        if secret:
            headers["Authorization"] = f"Bearer {secret}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    def url_for(self, username: str) -> str:
        return self.base_url + self.employee_path.format(username=quote(username, safe=""))

    async def fetch(self, username: str) -> Optional[EmployeeRecord]:
        url = self.url_for(username)
        try:
            response = await self._client.get(url, headers=self._headers)
        except httpx.HTTPError as e:
            logger.error(f"HR API request for {username} failed: {e}")
            raise EmployeeSourceError(f"HR API request failed: {e}")

        if response.status_code == 404:
            logger.info(f"HR API has no record for {username}")
            return None
        if response.is_error:
            logger.error(f"HR API returned {response.status_code} for {username}")
            raise EmployeeSourceError(
                f"HR API returned status {response.status_code}",
                details={"status_code": response.status_code, "username": username},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise EmployeeSourceError(f"HR API returned invalid JSON for {username}: {e}")
        if not isinstance(payload, dict):
            raise EmployeeSourceError(f"HR API returned an unexpected payload for {username}")
        return EmployeeRecord.from_payload(username, payload)

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
