"""
HTTP client for the Amazon main-image endpoint.

One `transform` call is one network round trip: the photo goes up as a
multipart upload, the finished JPEG comes back. The client never touches
queue state; failures are classified into the `TransformError` family so
the batch controller can record them per item.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
import logging
from pathlib import Path
import socket
import threading
import time
from typing import Callable, Optional, Tuple
from urllib.parse import unquote, urljoin, urlparse

import requests
from urllib3.exceptions import ReadTimeoutError

from . import config
from .errors import (
    InvalidInputError,
    TransformNetworkError,
    TransformServiceError,
    TransformTimeout,
)

logger = logging.getLogger(__name__)

ENDPOINT_PATH = "api/amazon-main"
_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class FinishedImage:
    data: bytes
    content_type: str = "image/jpeg"

    def to_data_uri(self) -> str:
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:{self.content_type};base64,{encoded}"

    def save(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(self.data)
        return path


def read_local_source(source_ref: str) -> bytes:
    """Default source loader: a filesystem path or a file:// URI."""
    parsed = urlparse(source_ref)
    path = Path(unquote(parsed.path)) if parsed.scheme == "file" else Path(source_ref)
    try:
        return path.read_bytes()
    except OSError as exc:
        raise InvalidInputError(f"Could not read image {source_ref}: {exc.strerror or exc}") from exc


def _error_message(resp: requests.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return resp.text or "Failed to process image"


class TransformationClient:
    def __init__(
        self,
        server_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
        source_loader: Callable[[str], bytes] = read_local_source,
        settings: Optional[config.Settings] = None,
    ):
        settings = settings or config.get_settings()
        self.server_url = server_url or settings.server_url
        self.timeout = timeout if timeout is not None else settings.client_timeout_seconds
        self.connect_timeout = min(settings.client_connect_timeout_seconds, self.timeout)
        self.session = session or requests.Session()
        self.source_loader = source_loader

    @property
    def endpoint(self) -> str:
        return urljoin(self.server_url.rstrip("/") + "/", ENDPOINT_PATH)

    def transform(
        self,
        image_bytes: bytes,
        filename: str = "product_photo.jpg",
        content_type: str = "image/jpeg",
    ) -> FinishedImage:
        """
        Send one photo and return the finished image.

        The whole round trip (connect, headers and body) is bounded by
        `timeout` seconds of wall-clock time. The request runs on a helper
        thread; when the budget runs out the connection is shut down and
        `TransformTimeout` is raised right away.

        Raises:
            TransformTimeout, TransformNetworkError, TransformServiceError
        """
        deadline = time.monotonic() + self.timeout
        call = _RoundTrip(
            self.session,
            self.endpoint,
            files={"file": (filename, image_bytes, content_type)},
            timeout=(self.connect_timeout, self.timeout),
            deadline=deadline,
        )
        worker = threading.Thread(target=call.run, name="transform-request", daemon=True)
        worker.start()
        worker.join(max(0.0, deadline - time.monotonic()))
        if worker.is_alive():
            call.abort()
            logger.warning("transform: %s exceeded the %.1fs budget", self.endpoint, self.timeout)
            raise TransformTimeout()

        image = call.outcome()
        logger.debug("transform: received %d bytes from %s", len(image.data), self.endpoint)
        return image

    def transform_ref(self, source_ref: str) -> FinishedImage:
        """Load `source_ref` through the source loader and transform it."""
        image_bytes = self.source_loader(source_ref)
        return self.transform(image_bytes)


def _is_read_timeout(exc: BaseException) -> bool:
    reason = exc.args[0] if exc.args else None
    return isinstance(reason, ReadTimeoutError)


def _shutdown(resp) -> None:
    """Close the response and wake any read blocked on its socket."""
    conn = getattr(getattr(resp, "raw", None), "_connection", None)
    sock = getattr(conn, "sock", None)
    if sock is not None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
    resp.close()


class _RoundTrip:
    """One POST plus body download, run off the caller's thread so it can be abandoned."""

    def __init__(self, session, url: str, files: dict, timeout: Tuple[float, float], deadline: float):
        self.session = session
        self.url = url
        self.files = files
        self.timeout = timeout
        self.deadline = deadline
        self._lock = threading.Lock()
        self._response = None
        self._aborted = False
        self._result: Optional[FinishedImage] = None
        self._error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self._result = self._perform()
        except requests.Timeout as exc:
            self._error = TransformTimeout()
            self._error.__cause__ = exc
        except (requests.ConnectionError, requests.exceptions.ChunkedEncodingError) as exc:
            if _is_read_timeout(exc) or self._expired():
                self._error = TransformTimeout()
            else:
                self._error = TransformNetworkError()
            self._error.__cause__ = exc
        except BaseException as exc:  # noqa: BLE001
            self._error = exc

    def _expired(self) -> bool:
        return self._aborted or time.monotonic() >= self.deadline

    def _perform(self) -> FinishedImage:
        with self.session.post(self.url, files=self.files, timeout=self.timeout, stream=True) as resp:
            with self._lock:
                self._response = resp
                aborted = self._aborted
            if aborted:
                raise TransformTimeout()
            if not resp.ok:
                raise TransformServiceError(_error_message(resp), status_code=resp.status_code)
            chunks = []
            for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                if self._expired():
                    raise TransformTimeout()
                chunks.append(chunk)
            if self._expired():
                raise TransformTimeout()
            content_type = resp.headers.get("Content-Type", "image/jpeg").split(";")[0].strip()
        return FinishedImage(data=b"".join(chunks), content_type=content_type or "image/jpeg")

    def abort(self) -> None:
        with self._lock:
            self._aborted = True
            resp = self._response
        if resp is not None:
            _shutdown(resp)

    def outcome(self) -> FinishedImage:
        if self._error is not None:
            raise self._error
        return self._result
