"""
Capability interface of the remote media key service.

The reconciler only talks to the service through this protocol. Lookups
return ``None`` (or an empty list) when nothing matches. A failed call raises
one of ``SERVICE_ERRORS``, which the reconciler wraps with the scheme and
step name; anything else is a bug and propagates unchanged.
"""

from __future__ import annotations

import uuid
from typing import List, Mapping, Optional, Protocol, Sequence

import httpx

from .models import (
    AuthorizationPolicy,
    ContentKey,
    ContentKeyType,
    DeliveryConfigKey,
    DeliveryPolicy,
    DeliveryPolicyType,
    DeliveryProtocol,
    KeyDeliveryType,
    PolicyOption,
    Restriction,
)


# transport and response-decoding failures of a service call
SERVICE_ERRORS = (httpx.HTTPError, OSError, ValueError)


class MediaKeyService(Protocol):

    # authorization policies

    def find_authorization_policy(self, name: str) -> Optional[AuthorizationPolicy]:
        ...

    def create_authorization_policy(self, name: str) -> AuthorizationPolicy:
        ...

    def create_policy_option(
        self,
        name: str,
        delivery_type: KeyDeliveryType,
        restrictions: Sequence[Restriction],
        configuration: str,
    ) -> PolicyOption:
        ...

    def attach_policy_option(self, policy: AuthorizationPolicy, option: PolicyOption) -> AuthorizationPolicy:
        ...

    def update_policy_option(self, option: PolicyOption) -> PolicyOption:
        ...

    # delivery policies

    def find_delivery_policy(self, name: str) -> Optional[DeliveryPolicy]:
        ...

    def create_delivery_policy(
        self,
        name: str,
        policy_type: DeliveryPolicyType,
        protocols: DeliveryProtocol,
        configuration: Mapping[DeliveryConfigKey, str],
    ) -> DeliveryPolicy:
        ...

    def update_delivery_policy(self, policy: DeliveryPolicy) -> DeliveryPolicy:
        ...

    # content keys

    def create_content_key(
        self, key_id: uuid.UUID, key_bytes: bytes, name: str, key_type: ContentKeyType
    ) -> ContentKey:
        ...

    def find_content_keys_by_name(self, name: str) -> List[ContentKey]:
        """Every key named ``name``, in service order."""
        ...

    def get_clear_value(self, key: ContentKey) -> bytes:
        ...

    def delete_content_key(self, key: ContentKey) -> None:
        ...

    def get_acquisition_url(self, key: ContentKey, delivery_type: KeyDeliveryType) -> str:
        ...
