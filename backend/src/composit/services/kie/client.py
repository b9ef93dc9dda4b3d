"""Kie AI client for submitting and polling image generation tasks."""

import json
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from composit.services.exceptions import (
    KieAuthError,
    KieNetworkError,
    KieRateLimitError,
    KieRequestError,
)

logger = structlog.get_logger(__name__)

TERMINAL_STATES = ("success", "fail")


@dataclass(frozen=True)
class TaskRecord:
    """Provider view of one task (recordInfo payload / callback data)."""

    task_id: str
    state: str
    result_json: str | None = None
    fail_code: str | None = None
    fail_msg: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "TaskRecord":
        """Build a record from the provider's camelCase task data.

        Raises:
            KieRequestError: If taskId or state is missing
        """
        task_id = data.get("taskId")
        state = data.get("state")
        if not task_id or not state:
            raise KieRequestError(f"Task record missing taskId/state: {data!r}"[:500])
        result_json = data.get("resultJson")
        if isinstance(result_json, dict):
            result_json = json.dumps(result_json)
        return cls(
            task_id=str(task_id),
            state=str(state),
            result_json=result_json,
            fail_code=data.get("failCode"),
            fail_msg=data.get("failMsg"),
        )


def parse_result_urls(result_json: str | None) -> list[str]:
    """Extract output URLs from a task's resultJson.

    Malformed or empty payloads yield an empty list rather than an error.

    Args:
        result_json: JSON string like '{"resultUrls": ["https://..."]}'

    Returns:
        List of output image URLs (possibly empty)
    """
    if not result_json:
        return []
    try:
        parsed = json.loads(result_json)
    except (TypeError, ValueError):
        return []
    if not isinstance(parsed, dict):
        return []
    urls = parsed.get("resultUrls") or []
    if not isinstance(urls, list):
        return []
    return [url for url in urls if isinstance(url, str) and url]


def _classify_response(response: httpx.Response, operation: str) -> None:
    """Raise the matching service error for a non-2xx HTTP response."""
    if response.status_code == 429:
        raise KieRateLimitError(f"{operation}: rate limit exceeded: {response.text[:500]}")
    if response.status_code >= 500:
        raise KieNetworkError(
            f"{operation}: service unavailable ({response.status_code}): {response.text[:500]}"
        )
    if response.status_code in (401, 403):
        raise KieAuthError(
            f"{operation}: unauthorized ({response.status_code}). Check KIE_AI_API_KEY."
        )
    if response.status_code >= 400:
        raise KieRequestError(
            f"{operation}: bad request ({response.status_code}): {response.text[:500]}"
        )


class KieClient:
    """Task client for the Kie AI jobs API.

    Holds one pooled httpx client for the process; call `acquire()` at
    startup and `shutdown()` on exit (methods acquire lazily if needed).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.kie.ai",
        model: str = "nano-banana-pro",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Kie AI client.

        Args:
            api_key: Kie AI API key (from KIE_AI_API_KEY env var)
            base_url: API base URL
            model: Provider model identifier
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.headers = {"Authorization": f"Bearer {api_key}"}
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def acquire(self) -> "KieClient":
        if self._client is None:
            self._client = httpx.AsyncClient(transport=self._transport)
        return self

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _http(self) -> httpx.AsyncClient:
        await self.acquire()
        assert self._client is not None
        return self._client

    @staticmethod
    def _unwrap(response: httpx.Response, operation: str) -> dict[str, Any]:
        """Validate the {code, msg, data} envelope and return data."""
        _classify_response(response, operation)
        try:
            body = response.json()
        except ValueError as e:
            raise KieRequestError(f"{operation}: invalid JSON response") from e

        code = body.get("code") if isinstance(body, dict) else None
        if code != 200:
            msg = body.get("msg") if isinstance(body, dict) else None
            if code == 429:
                raise KieRateLimitError(f"Kie AI {operation} error {code}: {msg}")
            if code in (401, 403):
                raise KieAuthError(f"Kie AI {operation} error {code}: {msg}")
            if isinstance(code, int) and code >= 500:
                raise KieNetworkError(f"Kie AI {operation} error {code}: {msg}")
            raise KieRequestError(f"Kie AI {operation} error {code}: {msg}")

        data = body.get("data")
        if not isinstance(data, dict):
            raise KieRequestError(f"Kie AI {operation}: response has no data")
        return data

    async def create_task(
        self,
        prompt: str,
        image_urls: list[str],
        aspect_ratio: str = "2:3",
        resolution: str = "4K",
        output_format: str = "png",
        callback_url: str | None = None,
    ) -> str:
        """Submit a single generation task.

        Args:
            prompt: Styling prompt
            image_urls: Signed URLs the provider fetches input images from
            aspect_ratio: Provider aspect ratio, e.g. "2:3"
            resolution: Provider resolution tier ("1K", "2K" or "4K")
            output_format: "png" or "jpg"
            callback_url: Webhook URL for the completion callback

        Returns:
            Provider task id

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Invalid API key (401/403), rejected request
        """
        body: dict[str, Any] = {
            "model": self.model,
            "input": {
                "prompt": prompt,
                "image_input": image_urls,
                "aspect_ratio": aspect_ratio,
                "resolution": resolution,
                "output_format": output_format,
            },
        }
        if callback_url:
            body["callBackUrl"] = callback_url

        logger.debug("kie.create_task.request", model=self.model, images=len(image_urls))

        client = await self._http()
        try:
            response = await client.post(
                f"{self.base_url}/api/v1/jobs/createTask",
                json=body,
                headers=self.headers,
                timeout=30.0,
            )
        except httpx.TimeoutException as e:
            raise KieNetworkError(f"createTask timeout after 30s: {e}") from e
        except httpx.HTTPError as e:
            raise KieNetworkError(f"createTask network error: {e}") from e

        data = self._unwrap(response, "createTask")
        task_id = data.get("taskId")
        if not task_id:
            raise KieRequestError("Kie AI createTask: response has no taskId")
        return str(task_id)

    async def query_task(self, task_id: str) -> TaskRecord:
        """Poll a task's status.

        Raises:
            TransientError: Network timeout, rate limit (429), service unavailable (5xx)
            PermanentError: Invalid API key (401/403), rejected request
        """
        client = await self._http()
        try:
            response = await client.get(
                f"{self.base_url}/api/v1/jobs/recordInfo",
                params={"taskId": task_id},
                headers=self.headers,
                timeout=15.0,
            )
        except httpx.TimeoutException as e:
            raise KieNetworkError(f"recordInfo timeout after 15s: {e}") from e
        except httpx.HTTPError as e:
            raise KieNetworkError(f"recordInfo network error: {e}") from e

        return TaskRecord.from_payload(self._unwrap(response, "recordInfo"))

    async def fetch_result(self, url: str) -> tuple[bytes, str]:
        """Download one output image from the provider CDN.

        Returns:
            Tuple of (image bytes, content type; defaults to image/png)

        Raises:
            TransientError: Network timeout or CDN unavailable
            PermanentError: Missing or forbidden object
        """
        client = await self._http()
        try:
            # Result URLs are public CDN links; no API key is sent
            response = await client.get(url, timeout=60.0)
        except httpx.TimeoutException as e:
            raise KieNetworkError(f"Result download timeout after 60s: {e}") from e
        except httpx.HTTPError as e:
            raise KieNetworkError(f"Result download network error: {e}") from e

        _classify_response(response, "download")
        mime = response.headers.get("content-type", "").split(";")[0].strip() or "image/png"
        return response.content, mime
