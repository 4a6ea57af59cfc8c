"""Error kinds raised while reconciling DRM configuration."""

from __future__ import annotations

from typing import Optional


class DrmConfigError(Exception):
    """Base class for every reconciliation error."""


class InvalidKeyMaterial(DrmConfigError, ValueError):
    """Key material (signing key, ASK, certificate) is empty or malformed."""


class KeyReadFailure(DrmConfigError):
    """The clear value of an existing persistent key could not be read."""

    def __init__(self, key_name: str, cause: Optional[BaseException] = None):
        self.key_name = key_name
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(f"Cannot read clear value of content key '{key_name}'{detail}")


class RemoteOperationFailure(DrmConfigError):
    """A call to the media service failed during a reconciliation step."""

    def __init__(self, scheme: str, step: str, cause: BaseException):
        self.scheme = scheme
        self.step = step
        self.cause = cause
        super().__init__(f"[{scheme}] {step} failed: {cause}")


class ConfigurationMissing(DrmConfigError, LookupError):
    """A required named setting is absent or empty."""

    def __init__(self, setting: str, detail: str = ""):
        self.setting = setting
        message = f"Missing required setting: {setting}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)
