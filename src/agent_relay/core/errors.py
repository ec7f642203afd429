"""Typed failures raised at channel boundaries, each mapped to an HTTP status."""

from __future__ import annotations


class RelayError(Exception):
    """Base class for failures that surface to a caller as an HTTP error."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationFailed(RelayError):
    status_code = 400


class Unauthorized(RelayError):
    status_code = 401


class Forbidden(RelayError):
    status_code = 403


class NotFound(RelayError):
    status_code = 404


class ConfigurationError(RelayError):
    """Server-side setup is missing something the request needs."""

    status_code = 500


class AgentNotFound(NotFound):
    def __init__(self, agent_id: str = ""):
        super().__init__("Agent not found")
        self.agent_id = agent_id


class SessionNotFound(NotFound):
    def __init__(self, session_id: str = ""):
        super().__init__("Session not found")
        self.session_id = session_id


class ChannelNotConfigured(NotFound):
    def __init__(self, channel: str):
        super().__init__(f"{channel} config not found")
        self.channel = channel


class TelegramTokenRejected(Unauthorized):
    def __init__(self) -> None:
        super().__init__(
            "Telegram rejected the request: invalid bot token. "
            "Regenerate it with @BotFather and save the new token."
        )


def require_str(payload: dict, key: str) -> str:
    """Return a stripped, non-empty string field or raise ValidationFailed."""
    value = payload.get(key)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        value = str(value)
    if not isinstance(value, str) or not value.strip():
        raise ValidationFailed(f"{key} is required")
    return value.strip()
