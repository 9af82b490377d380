import io
import zipfile
from types import SimpleNamespace

import pytest
import requests  # type: ignore[import-untyped]


class FakeResponse:
    def __init__(
        self,
        status_code=200,
        body=b"",
        headers=None,
        fail_after=None,
        json_data=None,
        fail_with=None,
    ):
        self.status_code = status_code
        self.body = body
        self.headers = headers or {}
        self.fail_after = fail_after
        self.json_data = json_data
        self.fail_with = fail_with or requests.exceptions.ChunkedEncodingError("Connection reset by peer")
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    def close(self):
        self.closed = True

    def json(self):
        if self.json_data is None:
            raise ValueError("No JSON object could be decoded")
        return self.json_data

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")

    def iter_content(self, chunk_size=1):
        sent = 0
        for start in range(0, len(self.body), chunk_size):
            chunk = self.body[start:start + chunk_size]
            if self.fail_after is not None and sent + len(chunk) > self.fail_after:
                partial = self.fail_after - sent
                if partial > 0:
                    yield chunk[:partial]
                raise self.fail_with
            sent += len(chunk)
            yield chunk


class FakeSession:
    """In-memory stand-in for ``requests.Session`` serving byte payloads with Range support."""

    def __init__(self):
        self.files = {}
        self.json_docs = {}
        self.resets = {}
        self.reset_errors = {}
        self.statuses = {}
        self.errors = {}
        self.calls = []
        self.honor_ranges = True
        self.max_redirects = 30

    def add_file(self, url, data, resets=(), reset_error=None):
        """Serve ``data``; each entry in ``resets`` cuts one response off after that many bytes."""
        self.files[url] = data
        self.resets[url] = list(resets)
        if reset_error is not None:
            self.reset_errors[url] = reset_error

    def add_json(self, url, data):
        self.json_docs[url] = data

    def _failure(self, url):
        return {"fail_with": self.reset_errors[url]} if url in self.reset_errors else {}

    def get(self, url, headers=None, stream=False, timeout=None):
        headers = dict(headers or {})
        self.calls.append(SimpleNamespace(url=url, headers=headers, stream=stream, timeout=timeout))

        if self.errors.get(url):
            raise self.errors[url].pop(0)
        if self.statuses.get(url):
            return FakeResponse(status_code=self.statuses[url].pop(0))
        if url in self.json_docs:
            return FakeResponse(200, json_data=self.json_docs[url])
        if url not in self.files:
            return FakeResponse(404)

        data = self.files[url]
        fail_after = self.resets[url].pop(0) if self.resets.get(url) else None
        range_header = headers.get("Range")
        if range_header and self.honor_ranges:
            start = int(range_header[len("bytes="):].rstrip("-"))
            if start >= len(data):
                return FakeResponse(416, headers={"Content-Range": f"bytes */{len(data)}"})
            body = data[start:]
            return FakeResponse(
                206,
                body,
                {
                    "Content-Length": str(len(body)),
                    "Content-Range": f"bytes {start}-{len(data) - 1}/{len(data)}",
                },
                fail_after,
                **self._failure(url),
            )
        return FakeResponse(200, data, {"Content-Length": str(len(data))}, fail_after, **self._failure(url))


def build_zip(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, content in files.items():
            zf.writestr(name, content)
    return buffer.getvalue()


@pytest.fixture
def fake_session():
    return FakeSession()


@pytest.fixture
def make_zip():
    return build_zip
