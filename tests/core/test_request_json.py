import pytest

from lumina_backend.routes.core import request_json as rq


class _DummyContent:
    def __init__(self, chunks, exc=None):
        self._chunks = chunks
        self._exc = exc

    async def iter_chunked(self, _size):
        if self._exc is not None:
            raise self._exc
        for chunk in self._chunks:
            yield chunk


class _DummyRequest:
    def __init__(self, headers=None, chunks=None, exc=None):
        self.headers = headers or {}
        self.content = _DummyContent(chunks or [], exc=exc)


def test_max_json_bytes_env(monkeypatch) -> None:
    monkeypatch.setenv("LUMINA_MAX_JSON_SIZE", "2048")
    assert rq._max_json_bytes() == 2048
    monkeypatch.setenv("LUMINA_MAX_JSON_SIZE", "bad")
    assert rq._max_json_bytes() == rq.DEFAULT_MAX_JSON_BYTES
    monkeypatch.setenv("LUMINA_MAX_JSON_SIZE", "10")
    assert rq._max_json_bytes() == rq.MIN_JSON_BYTES


def test_content_length_errors() -> None:
    assert rq._content_length_error(_DummyRequest(), 100) is None
    assert rq._content_length_error(_DummyRequest(headers={"Content-Length": "99"}), 100) is None

    big = rq._content_length_error(_DummyRequest(headers={"Content-Length": "999"}), 100)
    assert big is not None and big.meta == {"limit": 100, "size": 999}

    bad = rq._content_length_error(_DummyRequest(headers={"Content-Length": "abc"}), 100)
    assert bad is not None and bad.code == "INVALID_INPUT"


def test_decode_and_parse_json_dict() -> None:
    ok = rq._decode_and_parse_json_dict(b'{"a":1}')
    assert ok.ok and ok.data == {"a": 1}

    empty = rq._decode_and_parse_json_dict(b"  ")
    assert empty.ok and empty.data == {}

    for raw in (b"\xff", b"{", b"[]"):
        out = rq._decode_and_parse_json_dict(raw)
        assert not out.ok
        assert out.code == "INVALID_JSON"


@pytest.mark.asyncio
async def test_read_request_body_limited_behaviors() -> None:
    req = _DummyRequest(chunks=[b"{", b"", b'"a":1', b"}"])
    res = await rq._read_request_body_limited(req, 100)
    assert res.ok
    assert res.data == b'{"a":1}'

    res2 = await rq._read_request_body_limited(_DummyRequest(chunks=[b"x" * 101]), 100)
    assert not res2.ok and res2.code == "INVALID_INPUT"

    res3 = await rq._read_request_body_limited(_DummyRequest(exc=RuntimeError("boom")), 100)
    assert not res3.ok and res3.code == "INVALID_JSON"


@pytest.mark.asyncio
async def test_read_json_end_to_end() -> None:
    req = _DummyRequest(headers={"Content-Length": "9"}, chunks=[b'{"k":"v"}'])
    out = await rq._read_json(req, max_bytes=2048)
    assert out.ok
    assert out.data == {"k": "v"}


@pytest.mark.asyncio
async def test_read_json_rejects_content_length_mismatch_over_limit() -> None:
    req = _DummyRequest(
        headers={"Content-Length": "2"},
        chunks=[b"{", b'"k":"', b"x" * 2048, b'"}'],
    )
    out = await rq._read_json(req, max_bytes=64)
    assert out.ok is False
    assert out.code == "INVALID_INPUT"
