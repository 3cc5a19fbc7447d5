# src/services/errors.py
from typing import Optional


class OAuthConnectionError(Exception):
    """Base for every failure the connection core reports to a caller."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def user_message(self) -> str:
        return self.message


class AuthenticationError(OAuthConnectionError):
    status_code = 401


class AdminRequiredError(AuthenticationError):
    status_code = 403


class ConfigurationError(OAuthConnectionError):
    status_code = 403


class MissingClientId(ConfigurationError):
    def __init__(self, platform: str):
        super().__init__(f"{platform} client id not configured")
        self.platform = platform


# --- anti-forgery state ---
class StateError(OAuthConnectionError):
    status_code = 400
    kind = "invalid"

    @property
    def user_message(self) -> str:
        # missing, mismatched and expired all look the same to the browser
        return "Your connection session expired. Please start the connection again."


class StateMissing(StateError):
    kind = "missing"


class StateMismatch(StateError):
    kind = "mismatch"


class StateExpired(StateError):
    kind = "expired"


# --- request validation ---
class InvalidRequestError(OAuthConnectionError):
    status_code = 400


class MissingPlatform(InvalidRequestError):
    def __init__(self):
        super().__init__("Platform parameter required")


class UnknownPlatform(InvalidRequestError):
    def __init__(self, platform: str):
        super().__init__(f"Unknown platform: {platform}")
        self.platform = platform


class UnknownAction(InvalidRequestError):
    def __init__(self, action: Optional[str]):
        super().__init__(f"Unknown action: {action}" if action else "Missing action parameter")
        self.action = action


class MissingAuthorizationCode(InvalidRequestError):
    def __init__(self, platform: str):
        super().__init__(f"No authorization code received from {platform}")
        self.platform = platform


# --- provider calls ---
class ProviderExchangeError(OAuthConnectionError):
    status_code = 500

    def __init__(self, provider: str, step: str, detail: str):
        super().__init__(f"{provider} {step} failed: {detail}")
        self.provider = provider
        self.step = step
        self.detail = detail


class RefreshTokenMissing(ProviderExchangeError):
    def __init__(self, provider: str = "youtube"):
        super().__init__(
            provider,
            "token exchange",
            "No refresh token received. User may have already granted access. Try revoking access first.",
        )


class MissingResourceError(OAuthConnectionError):
    status_code = 404


class NoPageFound(MissingResourceError):
    def __init__(self):
        super().__init__("No Facebook pages found. You need to be an admin of a Facebook page to connect.")


class NoChannelFound(MissingResourceError):
    def __init__(self):
        super().__init__("No YouTube channel found for this account")


class PersistenceError(OAuthConnectionError):
    status_code = 500
