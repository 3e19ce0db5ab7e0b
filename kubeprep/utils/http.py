"""HTTP access with bounded timeouts and retries."""
import logging
from pathlib import Path
from typing import Any, Dict, Optional

import requests

from ..config import Config
from . import redact_sensitive_data, retrying

logger = logging.getLogger("kubeprep.utils.http")

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


def is_transient(exc: BaseException) -> bool:
    """Return True for failures worth retrying."""
    if isinstance(exc, (requests.ConnectionError, requests.Timeout,
                        requests.exceptions.ChunkedEncodingError)):
        return True
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return exc.response.status_code in RETRYABLE_STATUS
    return False


class HttpClient:
    """Thin wrapper around a requests session used for every upstream call."""

    def __init__(
        self,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        retry_delay: Optional[float] = None,
        session: Optional[requests.Session] = None,
        github_token: Optional[str] = None,
    ):
        self.timeout = Config.HTTP_TIMEOUT if timeout is None else timeout
        self.max_retries = Config.MAX_RETRIES if max_retries is None else max_retries
        self.retry_delay = Config.RETRY_DELAY if retry_delay is None else retry_delay
        self.session = session or requests.Session()
        self.github_token = Config.GITHUB_TOKEN if github_token is None else github_token

    def _headers(self, url: str) -> Dict[str, str]:
        headers = {"User-Agent": "kubeprep"}
        if self.github_token and url.startswith("https://api.github.com/"):
            headers["Authorization"] = f"Bearer {self.github_token}"
        return headers

    def _get_once(self, url: str, stream: bool = False) -> requests.Response:
        headers = self._headers(url)
        logger.debug(f"GET {url} headers={redact_sensitive_data(headers)}")
        response = self.session.get(url, headers=headers, timeout=self.timeout, stream=stream)
        response.raise_for_status()
        return response

    def get(self, url: str, stream: bool = False) -> requests.Response:
        """GET a URL, retrying transient failures with exponential backoff.

        Raises:
            requests.RequestException: The last failure once retries are exhausted
        """
        retryer = retrying(is_transient, max_retries=self.max_retries, delay=self.retry_delay)
        return retryer(self._get_once, url, stream=stream)

    def get_text(self, url: str) -> str:
        return self.get(url).text

    def get_json(self, url: str) -> Any:
        return self.get(url).json()

    def download(self, url: str, dest: Path, chunk_size: int = 1024 * 1024) -> Path:
        """Stream a URL into a local file.

        Args:
            url: Artifact URL
            dest: Destination file path (parent directories are created)
            chunk_size: Bytes per write

        Returns:
            Path: The destination path
        """
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        def _fetch() -> Path:
            response = self._get_once(url, stream=True)
            with open(dest, "wb") as f:
                for chunk in response.iter_content(chunk_size=chunk_size):
                    if chunk:
                        f.write(chunk)
            return dest

        retryer = retrying(is_transient, max_retries=self.max_retries, delay=self.retry_delay)
        logger.debug(f"Downloading {url} -> {dest}")
        return retryer(_fetch)
