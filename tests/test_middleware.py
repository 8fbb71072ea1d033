import logging
import threading
from unittest.mock import patch

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from payload_guard.app.middleware import SanitizeRequestMiddleware, StripStringsMiddleware
from payload_guard.engines.errors import ConfigurationError, FilterFailure, ResourceExhaustion
from payload_guard.engines.markup_filter import MarkupFilter


def build_app(middleware=SanitizeRequestMiddleware, **options):
    app = FastAPI()
    app.add_middleware(middleware, **options)

    @app.post("/echo")
    async def echo(request: Request):
        body = await request.json()
        return {"body": body, "meta": getattr(request.state, "sanitization", None)}

    @app.post("/skip/echo")
    async def skip_echo(request: Request):
        return {"body": await request.json()}

    @app.post("/raw")
    async def raw(request: Request):
        return {"raw": (await request.body()).decode()}

    return app


def test_json_body_is_sanitized():
    client = TestClient(build_app(profile="base"))
    resp = client.post("/echo", json={
        "bio": "<b>hi</b><script>x</script>",
        "password": "<script>p</script>",
        "count": 3,
    })

    assert resp.status_code == 200
    body = resp.json()["body"]
    meta = resp.json()["meta"]
    assert body == {"bio": "<b>hi</b>", "password": "<script>p</script>", "count": 3}
    assert meta["sanitized"] is True
    assert meta["fields_modified"] == ["bio"]
    assert meta["warnings"] == []
    assert "timestamp" in meta


def test_clean_body_has_no_metadata():
    client = TestClient(build_app(profile="base"))
    resp = client.post("/echo", json={"name": "plain", "n": 1})

    assert resp.json() == {"body": {"name": "plain", "n": 1}, "meta": None}


def test_inline_profile_and_sensitive_fields():
    client = TestClient(build_app(profile={"allowedTags": ["i"]}, sensitive_fields=["raw_html"]))
    resp = client.post("/echo", json={"a": "<b>x</b><i>y</i>", "raw_html": "<b>x</b>"})

    assert resp.json()["body"] == {"a": "x<i>y</i>", "raw_html": "<b>x</b>"}


def test_skip_paths_are_untouched():
    client = TestClient(build_app(profile="base", skip_paths=["/skip"]))
    resp = client.post("/skip/echo", json={"bio": "<script>x</script>"})

    assert resp.json()["body"] == {"bio": "<script>x</script>"}


def test_non_json_bodies_pass_through():
    client = TestClient(build_app(profile="base"))

    resp = client.post("/raw", content="<script>x</script>", headers={"content-type": "text/plain"})
    assert resp.json()["raw"] == "<script>x</script>"

    resp = client.post("/raw", content="{not json <script>", headers={"content-type": "application/json"})
    assert resp.json()["raw"] == "{not json <script>"


def test_on_sanitized_callback_and_warning_log(caplog):
    seen = []
    client = TestClient(build_app(
        profile={"maxStringLength": 3},
        on_sanitized=seen.append,
        log_warnings=True,
    ))

    with caplog.at_level(logging.WARNING, logger="payload_guard.middleware"):
        resp = client.post("/echo", json={"note": "abcdef"})

    assert resp.json()["body"] == {"note": "abc"}
    assert len(seen) == 1
    assert seen[0]["warnings"] == ["String in field 'note' truncated from 6 to 3 characters"]
    assert "Sanitization warnings for POST /echo" in caplog.text


def test_filter_failure_returns_400_and_calls_on_error():
    errors = []
    client = TestClient(build_app(profile="base", on_error=lambda err, req: errors.append((err, req.url.path))))

    with patch.object(MarkupFilter, "clean", side_effect=RuntimeError("parser crashed")):
        resp = client.post("/echo", json={"bio": "<b>x</b>"})

    assert resp.status_code == 400
    detail = resp.json()["detail"]
    assert detail["kind"] == "filter_failure"
    assert detail["field"] == "bio"
    assert len(errors) == 1
    assert isinstance(errors[0][0], FilterFailure)
    assert errors[0][1] == "/echo"


def test_deep_payload_returns_413():
    client = TestClient(build_app(profile="base", max_depth=2))
    resp = client.post("/echo", json={"a": {"b": {"c": "x"}}})

    assert resp.status_code == 413
    assert resp.json()["detail"]["kind"] == "resource_exhaustion"


def test_body_deeper_than_decoder_limit_returns_413():
    errors = []
    client = TestClient(build_app(profile="base", on_error=lambda err, req: errors.append(err)))
    depth = 100000
    body = '{"a":' + "[" * depth + '"x"' + "]" * depth + "}"

    resp = client.post("/echo", content=body, headers={"content-type": "application/json"})

    assert resp.status_code == 413
    assert resp.json()["detail"]["kind"] == "resource_exhaustion"
    assert isinstance(errors[0], ResourceExhaustion)


def test_rewrite_runs_off_the_event_loop():
    threads = {}
    app = build_app(profile="base", on_sanitized=lambda meta: threads.setdefault("rewrite", threading.get_ident()))

    @app.post("/loop")
    async def loop(request: Request):
        threads["loop"] = threading.get_ident()
        return {"body": await request.json()}

    resp = TestClient(app).post("/loop", json={"bio": "<script>x</script>"})

    assert resp.json()["body"] == {"bio": ""}
    assert threads["rewrite"] != threads["loop"]



def test_unknown_profile_fails_at_construction():
    with pytest.raises(ConfigurationError):
        SanitizeRequestMiddleware(FastAPI(), profile="nonexistent")


def test_strip_strings_middleware():
    client = TestClient(build_app(StripStringsMiddleware, custom_sensitive_fields=["raw"]))
    resp = client.post("/echo", json={
        "name": " <b>Tom</b> ",
        "password": "<p>",
        "raw": "<i>",
        "nested": {"x": "<b>"},
    })

    assert resp.json()["body"] == {
        "name": "bTom/b",
        "password": "<p>",
        "raw": "<i>",
        "nested": {"x": "<b>"},
    }
