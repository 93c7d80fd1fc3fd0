"""Exception types raised by tgdispatch.

Only setup-time mistakes are raised. Run-time transport failures travel as
`ApiResponse(ok=False)` values and handler failures are logged, so nothing in
this module is raised from inside the dispatch loop.
"""

from __future__ import annotations


class TgDispatchError(Exception):
    """Base class for all tgdispatch errors."""


class ConfigurationError(TgDispatchError, ValueError):
    """Raised synchronously when a bot is configured with invalid values."""


class InvalidShortHandConfiguration(ConfigurationError):
    """Raised when a shorthand is neither a callable nor a valid config object."""


class TelegramBotApiError(TgDispatchError, RuntimeError):
    """Raised when Telegram Bot API returns a non-ok response or invalid JSON."""
