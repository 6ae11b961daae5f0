import json
import math

from lumina_backend.routes.core import response as response_mod
from lumina_backend.routes.core.response import _json_response
from lumina_backend.shared import Result


def test_json_response_sanitizes_non_finite_floats():
    result = Result.Ok(
        {
            "a": math.nan,
            "b": math.inf,
            "c": -math.inf,
            "nested": {"x": math.nan},
            "items": [1.0, math.nan, {"y": math.inf}],
            "pair": (1, math.nan),
        }
    )
    response = _json_response(result)
    payload = json.loads(response.text)
    data = payload["data"]

    assert data["a"] is None
    assert data["b"] is None
    assert data["c"] is None
    assert data["nested"]["x"] is None
    assert data["items"] == [1.0, None, {"y": None}]
    assert data["pair"] == [1, None]


def test_errors_are_enveloped_with_http_200():
    response = _json_response(Result.Err("NOT_FOUND", "File not catalogued", path="x"))
    payload = json.loads(response.text)

    assert response.status == 200
    assert payload == {
        "ok": False,
        "data": None,
        "error": "File not catalogued",
        "code": "NOT_FOUND",
        "meta": {"path": "x"},
    }


def test_explicit_status_is_kept():
    response = _json_response(Result.Err("DB_ERROR", "boom"), status=500)
    assert response.status == 500


def test_safe_error_message_respects_debug(monkeypatch):
    monkeypatch.setattr(response_mod, "DEBUG", True)
    assert response_mod.safe_error_message(OSError("/srv/x"), "Failed") == "Failed: /srv/x"

    monkeypatch.setattr(response_mod, "DEBUG", False)
    monkeypatch.setattr(response_mod, "sanitize_error_message", lambda exc, generic: generic)
    assert response_mod.safe_error_message(OSError("/srv/x"), "Failed") == "Failed"
