"""
Settings loading and desired-state resolution.

Settings come from a YAML file; any known key can be overridden from the
environment as ``DRMCONFIG_<SECTION>_<NAME>`` (e.g. ``DRMCONFIG_AMS_CLIENT_SECRET``
for ``ams.client_secret``). Required settings are never defaulted: a missing
or empty value raises ``ConfigurationMissing`` naming the key.

Example file:

    ams:
      tenant_domain: contoso.onmicrosoft.com
      rest_api_endpoint: https://account.restv2.westeurope.media.azure.net/api/
      client_id: ...
      client_secret: ...
    jwt:
      primary_verification_key: <base64url>
      audience: urn:contoso
      issuer: https://sts.contoso.com
    cenc:
      authorization_policy_name: cenc-authorization-policy
      ...
    fairplay:
      enabled: false
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigurationMissing, DrmConfigError
from .keys import decode_hex_key
from .state import CbcsDesired, CencDesired, DesiredState


LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "DRMCONFIG_"

KNOWN_KEYS = (
    "ams.tenant_domain",
    "ams.rest_api_endpoint",
    "ams.client_id",
    "ams.client_secret",
    "ams.http_retries",
    "ams.timeout",
    "jwt.primary_verification_key",
    "jwt.audience",
    "jwt.issuer",
    "cenc.authorization_policy_name",
    "cenc.delivery_policy_name",
    "cenc.widevine_option_name",
    "cenc.playready_option_name",
    "cenc.widevine_license_template_path",
    "cenc.playready_license_template_path",
    "fairplay.enabled",
    "fairplay.authorization_policy_name",
    "fairplay.delivery_policy_name",
    "fairplay.option_name",
    "fairplay.ask_key_name",
    "fairplay.ask_hex",
    "fairplay.app_cert_password_key_name",
    "fairplay.app_cert_password",
    "fairplay.app_cert_path",
)

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}


def env_name(key: str) -> str:
    return ENV_PREFIX + key.replace(".", "_").upper()


def _flatten(data: Mapping[str, Any], prefix: str = "") -> Dict[str, Any]:
    flat: Dict[str, Any] = {}
    for name, value in data.items():
        dotted = f"{prefix}{name}"
        if isinstance(value, Mapping):
            flat.update(_flatten(value, dotted + "."))
        else:
            flat[dotted] = value
    return flat


@dataclass(frozen=True)
class Settings:
    """Flat view over the settings file, keyed by dotted names."""

    values: Mapping[str, Any] = field(repr=False)
    base_dir: Path

    def get(self, key: str, default: Any = None) -> Any:
        value = self.values.get(key)
        return default if value is None else value

    def require(self, key: str) -> str:
        value = self.values.get(key)
        if value is None or str(value).strip() == "":
            raise ConfigurationMissing(key)
        return str(value)

    def flag(self, key: str, default: bool = False) -> bool:
        value = self.values.get(key)
        if value is None or value == "":
            return default
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        raise ConfigurationMissing(key, f"expected a boolean, got {value!r}")

    def number(self, key: str, default: float) -> float:
        value = self.values.get(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except (TypeError, ValueError):
            raise ConfigurationMissing(key, f"expected a number, got {value!r}")

    def path(self, key: str) -> Path:
        p = Path(self.require(key)).expanduser()
        return p if p.is_absolute() else self.base_dir / p


def load_settings(path: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Load settings from ``path`` (optional) and apply environment overrides.

    Raises:
        ConfigurationMissing: If ``path`` is given but does not exist.
        DrmConfigError: If the file is not a YAML mapping.
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = {}
    base_dir = Path.cwd()

    if path:
        p = Path(path).expanduser()
        if not p.is_file():
            raise ConfigurationMissing("config", f"settings file not found: {p}")
        try:
            data = yaml.safe_load(p.read_text()) or {}
        except yaml.YAMLError as e:
            raise DrmConfigError(f"{p} is not valid YAML: {e}") from e
        if not isinstance(data, Mapping):
            raise DrmConfigError(f"{p} must contain a mapping at the top level")
        values.update(_flatten(data))
        base_dir = p.resolve().parent

    for key in KNOWN_KEYS:
        override = environ.get(env_name(key))
        if override is not None:
            LOGGER.debug("Setting %s taken from environment", key)
            values[key] = override

    return Settings(values=values, base_dir=base_dir)


def _read_text(settings: Settings, key: str) -> str:
    p = settings.path(key)
    if not p.is_file():
        raise ConfigurationMissing(key, f"file not found: {p}")
    return p.read_text()


def _read_bytes(settings: Settings, key: str) -> bytes:
    p = settings.path(key)
    if not p.is_file():
        raise ConfigurationMissing(key, f"file not found: {p}")
    return p.read_bytes()


def load_desired_state(settings: Settings) -> DesiredState:
    """Resolve settings into the desired DRM configuration.

    Reads the license templates and, when FairPlay is enabled, the
    application certificate. FairPlay settings are only required when
    ``fairplay.enabled`` is true.
    """
    cenc = CencDesired(
        authorization_policy_name=settings.require("cenc.authorization_policy_name"),
        delivery_policy_name=settings.require("cenc.delivery_policy_name"),
        widevine_option_name=settings.require("cenc.widevine_option_name"),
        widevine_license_template=_read_text(settings, "cenc.widevine_license_template_path"),
        playready_option_name=settings.require("cenc.playready_option_name"),
        playready_license_template=_read_text(settings, "cenc.playready_license_template_path"),
    )

    fairplay_enabled = settings.flag("fairplay.enabled")
    cbcs = None
    if fairplay_enabled:
        cbcs = CbcsDesired(
            authorization_policy_name=settings.require("fairplay.authorization_policy_name"),
            delivery_policy_name=settings.require("fairplay.delivery_policy_name"),
            option_name=settings.require("fairplay.option_name"),
            ask_key_name=settings.require("fairplay.ask_key_name"),
            ask=decode_hex_key(settings.require("fairplay.ask_hex")),
            pfx_password_key_name=settings.require("fairplay.app_cert_password_key_name"),
            pfx_password=settings.require("fairplay.app_cert_password"),
            pfx=_read_bytes(settings, "fairplay.app_cert_path"),
        )

    return DesiredState(
        jwt_verification_key=settings.require("jwt.primary_verification_key"),
        jwt_audience=settings.require("jwt.audience"),
        jwt_issuer=settings.require("jwt.issuer"),
        cenc=cenc,
        fairplay_enabled=fairplay_enabled,
        cbcs=cbcs,
    )
