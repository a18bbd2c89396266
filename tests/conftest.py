from io import BytesIO
import json
import threading
import time
from typing import Dict, List, Optional, Union

import pytest
from PIL import Image

from amazon_main_service.config import Settings
from amazon_main_service.transform_client import FinishedImage


def make_image_bytes(size=(64, 48), color=(200, 30, 30), mode="RGB", fmt="PNG") -> bytes:
    image = Image.new(mode, size, color)
    buf = BytesIO()
    image.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ai_integrations_gemini_api_key="test-key",
        ai_integrations_gemini_base_url="https://ai.example.test/v1beta",
        server_url="http://service.test",
        client_timeout_seconds=5.0,
        pause_poll_interval=0.01,
    )


@pytest.fixture
def unconfigured_settings() -> Settings:
    return Settings(
        ai_integrations_gemini_api_key=None,
        ai_integrations_gemini_base_url=None,
        server_url="http://service.test",
        pause_poll_interval=0.01,
    )


class FakeResponse:
    def __init__(self, status_code=200, content=b"", json_body=None, headers=None, chunk_delay=0.0):
        self.status_code = status_code
        self.content = content
        self._json = json_body
        self.headers = headers or {}
        self.reason = "Fake"
        self.closed = False
        self.chunk_delay = chunk_delay

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 400

    @property
    def text(self) -> str:
        if self._json is not None:
            return json.dumps(self._json)
        return self.content.decode("utf-8", errors="replace")

    def json(self):
        if self._json is None:
            raise ValueError("no json body")
        return self._json

    def iter_content(self, chunk_size=1):
        for start in range(0, len(self.content), chunk_size):
            if self.chunk_delay:
                time.sleep(self.chunk_delay)
            yield self.content[start:start + chunk_size]

    def close(self):
        self.closed = True

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False


class FakeSession:
    """Stands in for requests.Session; returns or raises the queued outcomes in order."""

    def __init__(self, *outcomes: Union[FakeResponse, Exception]):
        self.outcomes = list(outcomes)
        self.calls: List[dict] = []

    def post(self, url, **kwargs):
        self.calls.append({"url": url, **kwargs})
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeTransformClient:
    """
    Transformation client double for the batch worker.

    `outcomes` maps a source ref to a list of results; each call consumes the
    next one (the last one repeats). Exceptions are raised, anything else is
    wrapped in a FinishedImage.
    """

    def __init__(self, outcomes: Optional[Dict[str, list]] = None, gate: Optional[threading.Event] = None):
        self.outcomes = outcomes or {}
        self.calls: List[str] = []
        self.gate = gate
        self._lock = threading.Lock()
        self.in_flight = 0
        self.max_in_flight = 0

    def transform_ref(self, source_ref: str) -> FinishedImage:
        with self._lock:
            self.calls.append(source_ref)
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.gate is not None:
                self.gate.wait(timeout=5)
            queued = self.outcomes.get(source_ref, [b"jpeg:" + source_ref.encode()])
            outcome = queued.pop(0) if len(queued) > 1 else queued[0]
            if isinstance(outcome, Exception):
                raise outcome
            return FinishedImage(data=outcome)
        finally:
            with self._lock:
                self.in_flight -= 1
