"""
In-memory media key service for tests.

Every call is appended to ``calls`` as ``(operation, *args)`` so tests can
assert on call order. ``fail_on`` maps an operation name to the exception it
should raise.
"""

import dataclasses
import uuid
from typing import Dict, List, Optional, Tuple

from drmconfig.models import (
    AuthorizationPolicy,
    ContentKey,
    KeyDeliveryType,
    DeliveryPolicy,
    PolicyOption,
    content_key_id,
)


KEY_DELIVERY_HOST = "https://account.keydelivery.westeurope.media.azure.net"


class FakeMediaKeyService:

    def __init__(self):
        self.policies: Dict[str, Tuple[str, List[str]]] = {}    # name -> (id, option ids)
        self.options: Dict[str, PolicyOption] = {}
        self.delivery_policies: Dict[str, DeliveryPolicy] = {}
        self.keys: Dict[str, Tuple[ContentKey, bytes]] = {}
        self.calls: List[tuple] = []
        self.fail_on: Dict[str, Exception] = {}
        self._counter = 0

    def _record(self, operation: str, *args) -> None:
        self.calls.append((operation,) + args)
        if operation in self.fail_on:
            raise self.fail_on[operation]

    def _next_id(self, prefix: str) -> str:
        self._counter += 1
        return f"nb:{prefix}:UUID:{uuid.UUID(int=self._counter)}"

    # helpers for assertions

    def operations(self) -> List[str]:
        return [call[0] for call in self.calls]

    def writes(self) -> List[tuple]:
        return [c for c in self.calls if c[0].startswith(("create", "update", "delete", "attach"))]

    def keys_named(self, name: str) -> List[ContentKey]:
        return [key for key, _ in self.keys.values() if key.name == name]

    def clear_value(self, key: ContentKey) -> bytes:
        return self.keys[key.id][1]

    # authorization policies

    def _policy(self, name: str) -> AuthorizationPolicy:
        policy_id, option_ids = self.policies[name]
        return AuthorizationPolicy(id=policy_id, name=name, options=tuple(self.options[i] for i in option_ids))

    def find_authorization_policy(self, name: str) -> Optional[AuthorizationPolicy]:
        self._record("find_authorization_policy", name)
        return self._policy(name) if name in self.policies else None

    def create_authorization_policy(self, name: str) -> AuthorizationPolicy:
        self._record("create_authorization_policy", name)
        self.policies[name] = (self._next_id("ckpid"), [])
        return self._policy(name)

    def create_policy_option(self, name, delivery_type, restrictions, configuration) -> PolicyOption:
        self._record("create_policy_option", name, configuration)
        option = PolicyOption(
            id=self._next_id("ckpoid"),
            name=name,
            delivery_type=delivery_type,
            restrictions=tuple(restrictions),
            configuration=configuration,
        )
        self.options[option.id] = option
        return option

    def attach_policy_option(self, policy, option) -> AuthorizationPolicy:
        self._record("attach_policy_option", policy.name, option.name)
        self.policies[policy.name][1].append(option.id)
        return self._policy(policy.name)

    def update_policy_option(self, option) -> PolicyOption:
        self._record("update_policy_option", option.name, option.configuration)
        self.options[option.id] = option
        return option

    # delivery policies

    def find_delivery_policy(self, name: str) -> Optional[DeliveryPolicy]:
        self._record("find_delivery_policy", name)
        return self.delivery_policies.get(name)

    def create_delivery_policy(self, name, policy_type, protocols, configuration) -> DeliveryPolicy:
        self._record("create_delivery_policy", name, dict(configuration))
        policy = DeliveryPolicy(
            id=self._next_id("adpid"),
            name=name,
            policy_type=policy_type,
            protocols=protocols,
            configuration=dict(configuration),
        )
        self.delivery_policies[name] = policy
        return policy

    def update_delivery_policy(self, policy) -> DeliveryPolicy:
        self._record("update_delivery_policy", policy.name, dict(policy.configuration))
        self.delivery_policies[policy.name] = policy
        return policy

    # content keys

    def create_content_key(self, key_id, key_bytes, name, key_type) -> ContentKey:
        self._record("create_content_key", name, key_type)
        key = ContentKey(id=content_key_id(key_id), name=name, key_type=key_type)
        self.keys[key.id] = (key, bytes(key_bytes))
        return key

    def find_content_keys_by_name(self, name: str) -> List[ContentKey]:
        self._record("find_content_keys_by_name", name)
        return self.keys_named(name)

    def get_clear_value(self, key) -> bytes:
        self._record("get_clear_value", key.id)
        return self.keys[key.id][1]

    def delete_content_key(self, key) -> None:
        self._record("delete_content_key", key.id)
        del self.keys[key.id]

    def get_acquisition_url(self, key, delivery_type) -> str:
        self._record("get_acquisition_url", key.id, delivery_type)
        if delivery_type == KeyDeliveryType.PLAYREADY_LICENSE:
            return f"{KEY_DELIVERY_HOST}/PlayReady/"
        if delivery_type == KeyDeliveryType.WIDEVINE:
            return f"{KEY_DELIVERY_HOST}/Widevine/?KID={key.key_uuid}"
        return f"{KEY_DELIVERY_HOST}/FairPlay/?KID={key.key_uuid}"

    # test setup helpers

    def seed_key(self, name, key_bytes, key_type) -> ContentKey:
        key = ContentKey(id=content_key_id(uuid.uuid4()), name=name, key_type=key_type)
        self.keys[key.id] = (key, bytes(key_bytes))
        return key

    def replace_option(self, option: PolicyOption, **changes) -> None:
        self.options[option.id] = dataclasses.replace(option, **changes)
