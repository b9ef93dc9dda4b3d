"""Supabase Storage client for binary assets and generation outputs."""

from urllib.parse import quote

import httpx
import structlog

from composit.services.exceptions import StorageNetworkError, StorageRequestError

logger = structlog.get_logger(__name__)


class StorageClient:
    """Object store client using the Supabase Storage REST API.

    Holds one pooled httpx client for the process; call `acquire()` at
    startup and `shutdown()` on exit (methods acquire lazily if needed).
    """

    def __init__(
        self,
        supabase_url: str,
        service_role_key: str,
        bucket: str = "composit-assets",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize storage client.

        Args:
            supabase_url: Supabase project URL (from SUPABASE_URL env var)
            service_role_key: Service role key (from SUPABASE_SERVICE_ROLE_KEY env var)
            bucket: Storage bucket holding all objects
            transport: Optional httpx transport (tests use httpx.MockTransport)
        """
        self.base_url = f"{supabase_url.rstrip('/')}/storage/v1"
        self.bucket = bucket
        self.headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def acquire(self) -> "StorageClient":
        if self._client is None:
            self._client = httpx.AsyncClient(
                transport=self._transport, headers=self.headers, timeout=30.0
            )
        return self

    async def shutdown(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _http(self) -> httpx.AsyncClient:
        await self.acquire()
        assert self._client is not None
        return self._client

    def _object_path(self, key: str) -> str:
        return f"{self.bucket}/{quote(key, safe='/')}"

    @staticmethod
    def _check(response: httpx.Response, operation: str) -> None:
        """Raise the matching storage error for a non-2xx response."""
        if response.status_code == 429 or response.status_code >= 500:
            raise StorageNetworkError(
                f"Storage {operation} unavailable ({response.status_code}): {response.text[:500]}"
            )
        if response.status_code >= 400:
            raise StorageRequestError(
                f"Storage {operation} failed ({response.status_code}): {response.text[:500]}"
            )

    async def upload(self, key: str, data: bytes, mime: str) -> str:
        """Upload (or overwrite) an object.

        Args:
            key: Object key within the bucket
            data: Object bytes
            mime: Content type

        Returns:
            The storage key

        Raises:
            StorageNetworkError: Timeout, rate limit or storage unavailable
            StorageRequestError: Upload rejected
        """
        client = await self._http()
        try:
            response = await client.post(
                f"{self.base_url}/object/{self._object_path(key)}",
                content=data,
                headers={"Content-Type": mime, "x-upsert": "true"},
            )
        except httpx.HTTPError as e:
            raise StorageNetworkError(f"Storage upload network error: {e}") from e

        self._check(response, "upload")
        logger.debug("storage.uploaded", key=key, size_bytes=len(data))
        return key

    async def signed_url(self, key: str, ttl_seconds: int = 300) -> str:
        """Issue a time-limited URL for reading an object.

        Args:
            key: Object key within the bucket
            ttl_seconds: URL lifetime (300 for downloads, longer for the provider)

        Returns:
            Absolute signed URL
        """
        client = await self._http()
        try:
            response = await client.post(
                f"{self.base_url}/object/sign/{self._object_path(key)}",
                json={"expiresIn": ttl_seconds},
            )
        except httpx.HTTPError as e:
            raise StorageNetworkError(f"Storage sign network error: {e}") from e

        self._check(response, "sign")
        signed_path = response.json().get("signedURL")
        if not signed_path:
            raise StorageRequestError(f"Storage sign returned no URL for {key}")
        if signed_path.startswith("http"):
            return signed_path
        return f"{self.base_url}{signed_path}"

    async def delete(self, keys: list[str]) -> None:
        """Delete objects by key; an empty list is a no-op."""
        if not keys:
            return
        client = await self._http()
        try:
            response = await client.request(
                "DELETE",
                f"{self.base_url}/object/{self.bucket}",
                json={"prefixes": keys},
            )
        except httpx.HTTPError as e:
            raise StorageNetworkError(f"Storage delete network error: {e}") from e

        self._check(response, "delete")
        logger.debug("storage.deleted", count=len(keys))
