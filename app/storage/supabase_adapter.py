import httpx

from app.logging.logger import Log
from app.storage.base import BaseBlobStorage, candidate_paths
from app.storage.exceptions import BlobExistsError, BlobNotFoundError, StorageError


class SupabaseStorageAdapter(BaseBlobStorage):
    """Stores blobs in a Supabase Storage bucket through its REST API."""

    def __init__(
        self,
        *,
        url: str,
        service_role_key: str,
        bucket: str,
        timeout_seconds: float,
        client: httpx.Client | None = None,
    ) -> None:
        self._bucket = bucket
        self._client = client or httpx.Client()
        self._base_api_url = f"{url.rstrip('/')}/storage/v1"
        self._timeout = timeout_seconds
        self._headers = {
            "Authorization": f"Bearer {service_role_key}",
            "apikey": service_role_key,
        }

    def put(self, path: str, data: bytes, content_type: str) -> str:
        for candidate in candidate_paths(path):
            response = self._request(
                "POST",
                f"/object/{self._bucket}/{candidate}",
                content=data,
                headers={"Content-Type": content_type, "x-upsert": "false"},
            )
            if response.status_code == 200:
                return candidate
            if _is_duplicate(response):
                Log.warning(f"Supabase object {candidate} already exists, trying another name")
                continue
            Log.error(
                f"Supabase upload of {candidate} failed with "
                f"{response.status_code}: {response.text}"
            )
            raise StorageError(f"Upload failed ({response.status_code}): {response.text}")
        raise BlobExistsError(f"No free name left for {path}")

    def get(self, location: str) -> bytes:
        response = self._request("GET", f"/object/authenticated/{self._bucket}/{location}")
        if response.status_code in (400, 404) and "not found" in response.text.lower():
            raise BlobNotFoundError(f"Object not found: {location}")
        if response.status_code != 200:
            raise StorageError(f"Download failed ({response.status_code}): {response.text}")
        return response.content

    def delete(self, location: str) -> None:
        response = self._request(
            "DELETE",
            f"/object/{self._bucket}",
            json={"prefixes": [location]},
        )
        if response.status_code != 200:
            raise StorageError(f"Delete failed ({response.status_code}): {response.text}")

    def _request(self, method: str, endpoint: str, **kwargs: object) -> httpx.Response:
        headers = {**self._headers, **kwargs.pop("headers", {})}  # type: ignore[dict-item]
        try:
            return self._client.request(
                method,
                f"{self._base_api_url}{endpoint}",
                headers=headers,
                timeout=self._timeout,
                **kwargs,  # type: ignore[arg-type]
            )
        except httpx.TimeoutException as exc:
            raise StorageError(f"Storage request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise StorageError(f"Storage request failed: {exc}") from exc


def _is_duplicate(response: httpx.Response) -> bool:
    # Storage reports an existing key as 409, or as 400 with a Duplicate body.
    if response.status_code == 409:
        return True
    return response.status_code == 400 and "duplicate" in response.text.lower()
