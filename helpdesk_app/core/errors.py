# helpdesk_app/core/errors.py
"""
Error types for the helpdesk bot and the Flask JSON error handlers.

Command handlers raise the CommandError family; the dispatcher turns them
into the reply text (str(exc)) for the sender. Anything else that escapes a
handler is treated as a collaborator failure and answered with
INTERNAL_ERROR_REPLY.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from flask import jsonify, request

logger = logging.getLogger(__name__)

INTERNAL_ERROR_REPLY = "❌ Ocorreu um erro interno. Tente novamente em alguns instantes."


class AppError(Exception):
    """Base application error with an HTTP status code."""

    status_code: int = 400

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        payload: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {}

    @property
    def message(self) -> str:
        return str(self)


class WebhookError(AppError):
    """Raised when an inbound webhook payload is invalid or unauthorized."""

    status_code = 400


class CommandError(AppError):
    """A command could not run; the message is the reply shown to the sender."""

    status_code = 400


class CommandUsageError(CommandError):
    """Missing or malformed argument."""


class PermissionDeniedError(CommandError):
    status_code = 403


class NotFoundError(CommandError):
    status_code = 404


class InvalidTransitionError(CommandError):
    """Ticket or parts request is not in a state that allows the action."""

    status_code = 409


class NoOpenDialogueError(RuntimeError):
    """DialogueEngine.advance() was called for an identity without a dialogue."""

    def __init__(self, identity: str) -> None:
        super().__init__(f"No open dialogue for identity {identity!r}")
        self.identity = identity


def register_error_handlers(app) -> None:
    """
    Register JSON error handlers on the Flask app.

    The only HTTP surface is the webhook, so every error is JSON.
    """

    @app.errorhandler(AppError)
    def handle_app_error(exc: AppError):
        logger.warning("AppError on %s: %s", request.path, exc)
        status = getattr(exc, "status_code", 400) or 400
        payload = dict(exc.payload)
        payload.setdefault("error", exc.message)
        return jsonify(payload), status

    @app.errorhandler(404)
    def handle_404(exc):
        logger.info("404 Not Found: %s %s", request.method, request.path)
        return jsonify({"error": "Recurso não encontrado"}), 404

    @app.errorhandler(500)
    def handle_500(exc):
        logger.exception("Unhandled server error")
        return jsonify({"error": "Erro interno do servidor"}), 500
