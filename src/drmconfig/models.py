"""
Entities and enumerations of the remote DRM configuration.

Enum values are the integer codes the media service uses on the wire, so a
model can be serialized without a translation table. All entities are frozen:
an update is expressed by building a replacement with ``dataclasses.replace``
and handing it to the service. Entities read back from the service may carry
codes outside these enums (created by other tools); those stay plain ints.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Mapping, Optional, Tuple


CONTENT_KEY_PREFIX = "nb:kid:UUID:"


# Scheme groupings reconciled independently of each other
CENC = "CENC"
CBCS = "CBCS"


class KeyDeliveryType(IntEnum):
    PLAYREADY_LICENSE = 1
    BASELINE_HTTP = 2
    WIDEVINE = 3
    FAIRPLAY = 4


class RestrictionKind(IntEnum):
    OPEN = 0
    IP_RESTRICTED = 1
    TOKEN_RESTRICTED = 2


class DeliveryPolicyType(IntEnum):
    DYNAMIC_COMMON_ENCRYPTION = 4
    DYNAMIC_COMMON_ENCRYPTION_CBCS = 5


class DeliveryProtocol(IntFlag):
    NONE = 0
    SMOOTH_STREAMING = 1
    DASH = 2
    HLS = 4
    PROGRESSIVE_DOWNLOAD = 16


class DeliveryConfigKey(IntEnum):
    PLAYREADY_LICENSE_ACQUISITION_URL = 4
    WIDEVINE_BASE_LICENSE_ACQUISITION_URL = 8
    FAIRPLAY_LICENSE_ACQUISITION_URL = 9
    COMMON_ENCRYPTION_IV_FOR_CBCS = 11


class ContentKeyType(IntEnum):
    COMMON_ENCRYPTION = 0
    COMMON_ENCRYPTION_CBCS = 6
    FAIRPLAY_ASK = 7
    FAIRPLAY_PFX_PASSWORD = 8


EPHEMERAL_KEY_TYPES = frozenset(
    {ContentKeyType.COMMON_ENCRYPTION, ContentKeyType.COMMON_ENCRYPTION_CBCS}
)


@dataclass(frozen=True)
class Restriction:
    """Token restriction shared by every license delivery path.

    ``requirements`` is the serialized token-restriction template the service
    evaluates when a client presents a JWT.
    """

    name: str
    kind: RestrictionKind
    requirements: str


@dataclass(frozen=True)
class PolicyOption:
    id: str
    name: str
    delivery_type: KeyDeliveryType
    restrictions: Tuple[Restriction, ...]
    configuration: str

    def same_content(self, other: "PolicyOption") -> bool:
        """True when ``other`` carries the same delivery type, restrictions and blob."""
        return (
            self.delivery_type == other.delivery_type
            and tuple(self.restrictions) == tuple(other.restrictions)
            and self.configuration == other.configuration
        )


@dataclass(frozen=True)
class AuthorizationPolicy:
    id: str
    name: str
    options: Tuple[PolicyOption, ...] = ()

    def option_named(self, name: str) -> Optional[PolicyOption]:
        for option in self.options:
            if option.name == name:
                return option
        return None


@dataclass(frozen=True)
class DeliveryPolicy:
    id: str
    name: str
    policy_type: DeliveryPolicyType
    protocols: DeliveryProtocol
    configuration: Mapping[DeliveryConfigKey, str] = field(default_factory=dict)

    def same_content(self, other: "DeliveryPolicy") -> bool:
        return (
            self.policy_type == other.policy_type
            and self.protocols == other.protocols
            and dict(self.configuration) == dict(other.configuration)
        )


@dataclass(frozen=True)
class ContentKey:
    id: str
    name: str
    key_type: ContentKeyType

    @property
    def key_uuid(self) -> uuid.UUID:
        """The bare UUID of the key, without the service's id prefix."""
        return uuid.UUID(self.id.replace(CONTENT_KEY_PREFIX, ""))


def content_key_id(key_uuid: uuid.UUID) -> str:
    return f"{CONTENT_KEY_PREFIX}{key_uuid}"
