"""Request Body Sanitization Middleware.

Pure ASGI middleware that rewrites JSON request bodies before they reach the
route handlers:

- `SanitizeRequestMiddleware` runs the full recursive engine with a profile.
- `StripStringsMiddleware` strips unsafe characters from top-level strings.

Only requests with a JSON content type and a decodable body are rewritten;
everything else is passed through untouched so the application can reject it
with its own validation errors.

Typical Usage:
    app.add_middleware(SanitizeRequestMiddleware, profile="comment", skip_paths=["/webhooks"])
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from payload_guard.app.config import settings
from payload_guard.app.policy import ProfileSpec, registry
from payload_guard.engines.errors import ResourceExhaustion, SanitizationError
from payload_guard.engines.sanitizer_engine import SanitizerEngine
from payload_guard.engines.string_stripper import sanitize_strings

logger = logging.getLogger("payload_guard.middleware")

def status_for(error: SanitizationError) -> int:
    """Maps a sanitization error onto an HTTP status code.

    `ResourceExhaustion` is 413; filter and configuration failures are 400.
    """
    if isinstance(error, ResourceExhaustion):
        return 413
    return 400

def _is_json(scope: Scope) -> bool:
    for name, value in scope.get("headers", []):
        if name.lower() == b"content-type":
            media_type = value.decode("latin-1").split(";", 1)[0].strip().lower()
            return media_type == "application/json" or media_type.endswith("+json")
    return False

async def _read_body(receive: Receive) -> bytes:
    chunks = []
    while True:
        message = await receive()
        if message["type"] != "http.request":
            break
        chunks.append(message.get("body", b""))
        if not message.get("more_body", False):
            break
    return b"".join(chunks)

def _replay(body: bytes, receive: Receive) -> Receive:
    """Returns a receive callable that yields `body` once, then defers to `receive`."""
    sent = False

    async def replayed() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replayed

def _with_body_length(scope: Scope, length: int) -> Scope:
    headers = [(k, v) for k, v in scope.get("headers", []) if k.lower() != b"content-length"]
    headers.append((b"content-length", str(length).encode("latin-1")))
    return {**scope, "headers": headers}

class _JSONBodyMiddleware:
    """Shared plumbing: buffer a JSON body, rewrite it, replay it downstream."""

    def __init__(self, app: ASGIApp, skip_paths: Optional[Iterable[str]] = None):
        self.app = app
        self.skip_paths: List[str] = list(skip_paths or [])

    def should_skip(self, path: str) -> bool:
        return any(skip in path for skip in self.skip_paths)

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http" or self.should_skip(scope.get("path", "")) or not _is_json(scope):
            await self.app(scope, receive, send)
            return

        body = await _read_body(receive)
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            payload = None
        except RecursionError:
            error = ResourceExhaustion("Request body nesting exceeds the decoder recursion limit")
            await self.handle_error(error, scope, receive, send)
            return

        if not isinstance(payload, (dict, list)):
            await self.app(scope, _replay(body, receive), send)
            return

        try:
            payload, state = await run_in_threadpool(self.rewrite, payload, scope)
        except SanitizationError as e:
            await self.handle_error(e, scope, receive, send)
            return

        new_body = json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")
        scope = _with_body_length(scope, len(new_body))
        if state:
            scope["state"] = {**scope.get("state", {}), "sanitization": state}
        await self.app(scope, _replay(new_body, receive), send)

    def rewrite(self, payload: Any, scope: Scope):
        """Returns the rewritten payload and optional request state metadata."""
        raise NotImplementedError

    async def handle_error(self, error: SanitizationError, scope: Scope, receive: Receive, send: Send):
        logger.warning(f"⛔ Request sanitization failed for {scope.get('method')} {scope.get('path')}: {error}")
        response = JSONResponse(status_code=status_for(error), content={"detail": error.to_dict()})
        await response(scope, receive, send)

class SanitizeRequestMiddleware(_JSONBodyMiddleware):
    """Sanitizes JSON request bodies with a sanitization profile.

    When anything was changed or warned about, the request gets a
    `request.state.sanitization` dict with `sanitized`, `warnings`, `errors`,
    `fields_modified` and `timestamp`.
    """

    def __init__(
        self,
        app: ASGIApp,
        profile: Optional[ProfileSpec] = None,
        skip_paths: Optional[Iterable[str]] = None,
        on_sanitized: Optional[Callable[[dict], None]] = None,
        on_error: Optional[Callable[[SanitizationError, Request], None]] = None,
        log_warnings: bool = False,
        sensitive_fields: Optional[Iterable[str]] = None,
        max_depth: Optional[int] = None,
    ):
        """Initializes the middleware.

        Args:
            app (ASGIApp): The wrapped application.
            profile: Profile name, inline configuration or profile. Defaults to
                `settings.DEFAULT_PROFILE`.
            skip_paths (Iterable[str], optional): Requests whose path contains
                any of these strings are not touched.
            on_sanitized (Callable, optional): Called with the metadata dict
                whenever a body was sanitized or produced warnings.
            on_error (Callable, optional): Called with the error and the request
                before the error response is sent.
            log_warnings (bool): Log sanitization warnings per request.
            sensitive_fields (Iterable[str], optional): Extra protected names.
            max_depth (int, optional): Deepest container nesting to walk.

        Raises:
            ConfigurationError: If `profile` cannot be resolved.
        """
        super().__init__(app, skip_paths)
        self.engine = SanitizerEngine(
            registry.resolve(profile if profile is not None else settings.DEFAULT_PROFILE),
            sensitive_fields=sensitive_fields,
            max_depth=max_depth,
        )
        self.on_sanitized = on_sanitized
        self.on_error = on_error
        self.log_warnings = log_warnings

    def rewrite(self, payload: Any, scope: Scope):
        result = self.engine.sanitize(payload)
        if not (result.sanitized or result.warnings):
            return result.data, None

        metadata = {
            "sanitized": result.sanitized,
            "warnings": result.warnings,
            "errors": result.errors,
            "fields_modified": result.fields_modified,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        if self.log_warnings and result.warnings:
            logger.warning(f"Sanitization warnings for {scope.get('method')} {scope.get('path')}: {result.warnings}")
        if self.on_sanitized:
            self.on_sanitized(metadata)
        return result.data, metadata

    async def handle_error(self, error: SanitizationError, scope: Scope, receive: Receive, send: Send):
        if self.on_error:
            self.on_error(error, Request(scope))
        await super().handle_error(error, scope, receive, send)

class StripStringsMiddleware(_JSONBodyMiddleware):
    """Strips unsafe characters from the top-level strings of JSON object bodies."""

    def __init__(
        self,
        app: ASGIApp,
        custom_sensitive_fields: Optional[Iterable[str]] = None,
        custom_sanitizer: Optional[Callable[[str], str]] = None,
        skip_empty_strings: bool = False,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app, skip_paths)
        self.custom_sensitive_fields = list(custom_sensitive_fields or [])
        self.custom_sanitizer = custom_sanitizer
        self.skip_empty_strings = skip_empty_strings

    def rewrite(self, payload: Any, scope: Scope):
        if not isinstance(payload, dict):
            return payload, None
        cleaned = sanitize_strings(
            payload,
            custom_sensitive_fields=self.custom_sensitive_fields,
            custom_sanitizer=self.custom_sanitizer,
            skip_empty_strings=self.skip_empty_strings,
        )
        return cleaned, None
