"""
BuFood API Gateway — Request Body Limit
=========================================

What:  Caps request bodies at MAX_BODY_BYTES (10 MB by default) before the
       handler parses JSON, form or multipart content.
How:   A declared Content-Length over the cap is rejected up front.
       Bodies without a length (chunked) are counted as they are read; the
       chunk that crosses the cap raises ValidationError inside the handler's
       body read, which the exception handlers classify as `validation`.
"""

from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from gateway.config import Settings
from gateway.error_handlers import error_response
from gateway.exceptions import ValidationError


class BodyLimitMiddleware:
    def __init__(self, app: ASGIApp, *, settings: Settings) -> None:
        self.app = app
        self.settings = settings
        self.max_bytes = settings.max_body_bytes

    def _too_large(self) -> ValidationError:
        return ValidationError(
            message=f"Request body exceeds the {self.max_bytes} byte limit",
            context={"max_body_bytes": self.max_bytes},
        )

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        declared = request.headers.get("content-length")
        if declared is not None:
            try:
                length = int(declared)
            except ValueError:
                length = -1
            if length < 0:
                response = error_response(
                    request, ValidationError(message="Invalid Content-Length header"), self.settings
                )
                await response(scope, receive, send)
                return
            if length > self.max_bytes:
                response = error_response(request, self._too_large(), self.settings)
                await response(scope, receive, send)
                return

        received = 0

        async def limited_receive() -> Message:
            nonlocal received
            message = await receive()
            if message["type"] == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_bytes:
                    raise self._too_large()
            return message

        await self.app(scope, limited_receive, send)
