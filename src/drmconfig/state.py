"""Desired DRM configuration, as resolved from settings and local files."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CencDesired:
    """Widevine + PlayReady: one authorization policy, one delivery policy."""

    authorization_policy_name: str
    delivery_policy_name: str
    widevine_option_name: str
    widevine_license_template: str
    playready_option_name: str
    playready_license_template: str


@dataclass(frozen=True)
class CbcsDesired:
    """FairPlay: one authorization policy, one delivery policy, two persistent keys."""

    authorization_policy_name: str
    delivery_policy_name: str
    option_name: str
    ask_key_name: str
    ask: bytes
    pfx_password_key_name: str
    pfx_password: str
    pfx: bytes

    def __repr__(self) -> str:
        # keep key material out of logs and tracebacks
        return (
            f"CbcsDesired(authorization_policy_name={self.authorization_policy_name!r}, "
            f"delivery_policy_name={self.delivery_policy_name!r}, option_name={self.option_name!r})"
        )


@dataclass(frozen=True)
class DesiredState:
    jwt_verification_key: str
    jwt_audience: str
    jwt_issuer: str
    cenc: CencDesired
    fairplay_enabled: bool = False
    cbcs: Optional[CbcsDesired] = None

    def __repr__(self) -> str:
        return (
            f"DesiredState(jwt_audience={self.jwt_audience!r}, jwt_issuer={self.jwt_issuer!r}, "
            f"cenc={self.cenc!r}, fairplay_enabled={self.fairplay_enabled!r}, cbcs={self.cbcs!r})"
        )
