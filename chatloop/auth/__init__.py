"""Authorization -- device-code login, token refresh and credential storage."""

from chatloop.auth.device import (
    AuthError,
    DeviceAuthFlow,
    DeviceAuthSession,
    PollResult,
    PollStatus,
)
from chatloop.auth.store import (
    ApiCredential,
    Credential,
    CredentialStore,
    OAuthCredential,
)
from chatloop.auth.token import CopilotTokenSource

__all__ = [
    "ApiCredential",
    "AuthError",
    "CopilotTokenSource",
    "Credential",
    "CredentialStore",
    "DeviceAuthFlow",
    "DeviceAuthSession",
    "OAuthCredential",
    "PollResult",
    "PollStatus",
]
