"""HTTP client for the submission ingestion API."""

import logging
import time
from typing import Any

import httpx

from .models import DeliveryResult, RapidSolveFlag, Submission

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0
JSON_HEADERS = {"Content-Type": "application/json"}


def now_ms() -> int:
    """Milliseconds since the epoch."""
    return int(time.time() * 1000)


def _server_id(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    for key in ("id", "submissionId", "_id"):
        value = body.get(key)
        if value is not None:
            return str(value)
    return None


class SubmissionIngestionClient:
    """Posts relayed submissions to the ingestion API.

    Every call makes exactly one request and reports the outcome as a
    DeliveryResult; transport and protocol failures are never raised.
    """

    def __init__(
        self,
        api_base: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize ingestion client.

        Args:
            api_base: Root of the ingestion API (e.g. 'http://localhost:5003/api/v1')
            timeout: Per-request timeout in seconds
            client: Optional preconfigured HTTP client
        """
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def health_check(self) -> bool:
        """Check if the ingestion API is responding.

        Returns:
            True if the API answered with a success status
        """
        try:
            response = await self.client.get(f"{self.api_base}/health")
            return response.is_success
        except httpx.HTTPError:
            return False

    async def send(self, submission: Submission, user_id: str) -> DeliveryResult:
        """Post one submission on behalf of a user.

        Args:
            submission: Validated submission from the observer layer
            user_id: Owner attached to the payload

        Returns:
            DeliveryResult; ok only for a 2xx response with a JSON body
        """
        return await self._post("/submissions", submission.payload(user_id, now_ms()))

    async def send_flag(self, flag: RapidSolveFlag, user_id: str) -> DeliveryResult:
        """Post a rapid-solve flag on behalf of a user."""
        current = flag.current
        body = {
            "userId": user_id,
            "platform": current.platform,
            "questionId": current.problem_id,
            "title": current.problem_title,
            "difficulty": current.difficulty,
            "codePrev": flag.previous.code,
            "codeCurr": current.code,
            **flag.to_dict(),
        }
        return await self._post("/flags", body)

    async def _post(self, path: str, body: dict[str, Any]) -> DeliveryResult:
        url = f"{self.api_base}{path}"
        try:
            response = await self.client.post(url, json=body, headers=JSON_HEADERS)
        except httpx.TimeoutException:
            return DeliveryResult(ok=False, reason=f"Timed out after {self.timeout}s")
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return DeliveryResult(ok=False, reason=f"Network error: {e}")

        logger.debug("POST %s -> %s", url, response.status_code)
        if not response.is_success:
            return DeliveryResult(
                ok=False,
                status_code=response.status_code,
                reason=f"HTTP error! status: {response.status_code}",
            )

        try:
            data = response.json()
        except ValueError as e:
            return DeliveryResult(
                ok=False,
                status_code=response.status_code,
                reason=f"Invalid JSON response: {e}",
            )

        return DeliveryResult(ok=True, status_code=response.status_code, server_id=_server_id(data))
