"""HTTP upload client used as the default upload collaborator."""

from __future__ import annotations

import logging
import random
import time
from pathlib import Path
from typing import Any

import httpx

from .config import config
from .exceptions import (
    AuthenticationError,
    NetworkError,
    RateLimitError,
    UploadError,
)
from .utils import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY

logger = logging.getLogger(__name__)


class UploadClient:
    """Uploads single files to a remote directory over HTTP.

    The file is sent as multipart form data to ``<api_url>/upload`` with the
    destination directory in the ``path`` form field.
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        timeout: float = 300.0,
        transport: httpx.BaseTransport | None = None,
    ):
        """Initialize upload client.

        Args:
            api_key: Optional API key (uses config if not provided)
            api_url: Optional API URL (uses config if not provided)
            max_retries: Maximum number of retry attempts (default: 3)
            retry_delay: Initial delay between retries in seconds
            timeout: Request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key or config.api_key
        self.api_url = (api_url or config.api_url).rstrip("/")
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.Client | None = None

    def _get_client(self) -> httpx.Client:
        """Get or create the httpx client."""
        if self._client is None or self._client.is_closed:
            headers = {}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.Client(
                headers=headers,
                timeout=httpx.Timeout(self.timeout),
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None and not self._client.is_closed:
            self._client.close()
            self._client = None

    def __enter__(self) -> UploadClient:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _calculate_retry_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-based)

        Returns:
            Delay in seconds
        """
        base_delay = self.retry_delay * (2**attempt)
        # Add jitter: +/- 25% of base delay
        jitter = base_delay * 0.25 * (2 * random.random() - 1)
        return base_delay + jitter

    def _handle_http_error(
        self, e: httpx.HTTPStatusError, attempt: int
    ) -> tuple[UploadError, bool, float | None]:
        """Classify an HTTP error.

        Returns:
            Tuple of (exception to raise, should_retry, server-requested delay)
        """
        status_code = e.response.status_code

        if status_code == 401:
            raise AuthenticationError("Invalid API key or unauthorized access") from e
        if status_code == 403:
            raise AuthenticationError("Access forbidden - check your permissions") from e
        if status_code == 429:
            retry_after = e.response.headers.get("Retry-After")
            delay = float(retry_after) if retry_after and retry_after.isdigit() else None
            error = RateLimitError("Rate limit exceeded - please try again later")
            return (error, attempt < self.max_retries, delay)

        error_msg = f"Upload failed with status {status_code}"
        try:
            if e.response.content:
                error_data = e.response.json()
                if isinstance(error_data, dict):
                    msg = error_data.get("message") or error_data.get("error")
                    if msg:
                        error_msg = f"{error_msg}: {msg}"
        except ValueError:
            # Body is not JSON, keep the status-based message
            pass

        should_retry = 500 <= status_code < 600 and attempt < self.max_retries
        return (UploadError(error_msg), should_retry, None)

    def upload(self, local_path: Path, remote_dir: str) -> Any:
        """Upload one file into a remote directory.

        Args:
            local_path: File to upload; its name is the remote file name
            remote_dir: Remote destination directory

        Returns:
            Decoded JSON response (empty dict if the body is empty)

        Raises:
            UploadError: If the upload fails after all retries
        """
        local_path = Path(local_path)
        if not local_path.is_file():
            raise UploadError(f"File not found: {local_path}")

        url = f"{self.api_url}/upload"
        client = self._get_client()
        last_exception: UploadError | None = None

        for attempt in range(self.max_retries + 1):
            try:
                with open(local_path, "rb") as f:
                    response = client.post(
                        url,
                        data={"path": remote_dir},
                        files={"file": (local_path.name, f)},
                    )
                response.raise_for_status()
                logger.debug(f"Uploaded {local_path.name} to {remote_dir}")
                if response.content:
                    try:
                        return response.json()
                    except ValueError:
                        return {}
                return {}

            except httpx.HTTPStatusError as e:
                error, should_retry, delay = self._handle_http_error(e, attempt)
                last_exception = error
                if not should_retry:
                    raise error from e
            except httpx.RequestError as e:
                last_exception = NetworkError(f"Network error: {e}")
                if attempt >= self.max_retries:
                    raise last_exception from e
                delay = None
            except OSError as e:
                raise UploadError(f"Failed to read {local_path}: {e}") from e

            delay = delay if delay is not None else self._calculate_retry_delay(attempt)
            logger.debug(
                f"Upload of {local_path.name} failed ({last_exception}), "
                f"retrying in {delay:.1f}s"
            )
            time.sleep(delay)

        if last_exception:
            raise last_exception
        raise UploadError("Upload failed after all retry attempts")
