"""
Media key service over the Azure Media Services v2 REST API.

The API is OData v3 JSON. Entities are addressed as ``Collection('<id>')``
with the id URL-encoded, partial updates use the ``MERGE`` verb, and service
functions return their result under ``value``.

HTTP failures are raised as ``httpx.HTTPError``; the reconciler turns them
into ``RemoteOperationFailure`` with the scheme and step that failed.
"""

from __future__ import annotations

import base64
import dataclasses
import json
import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence
from urllib.parse import quote

import httpx
from cryptography import x509

from ..config import Settings
from ..models import (
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
    RestrictionKind,
    content_key_id,
)
from .auth import AzureAdTokenProvider, BearerAuth
from .protection import encrypt_content_key, key_checksum, load_protection_certificate


LOGGER = logging.getLogger(__name__)

API_VERSION = "2.19"

DEFAULT_HEADERS = {
    "x-ms-version": API_VERSION,
    "DataServiceVersion": "3.0",
    "MaxDataServiceVersion": "3.0",
    "Accept": "application/json",
}

# ProtectionKeyType.X509CertificateThumbprint
PROTECTION_KEY_TYPE = 0


def _entity(collection: str, entity_id: str) -> str:
    return f"{collection}('{quote(entity_id, safe='')}')"


def _odata_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


# ---------- wire <-> model ----------

def _code(enum_cls, raw):
    """Map a wire code onto ``enum_cls``, keeping unknown codes as plain ints.

    Entities created outside this tool may carry types or configuration keys
    it does not manage; as plain ints they compare unequal to the desired
    state, so the normal rotate or full-replace path handles them.
    """
    code = int(raw)
    try:
        return enum_cls(code)
    except ValueError:
        return code


def restriction_to_wire(restriction: Restriction) -> Dict[str, Any]:
    return {
        "Name": restriction.name,
        "KeyRestrictionType": int(restriction.kind),
        "Requirements": restriction.requirements,
    }


def restriction_from_wire(data: Mapping[str, Any]) -> Restriction:
    return Restriction(
        name=data.get("Name") or "",
        kind=_code(RestrictionKind, data["KeyRestrictionType"]),
        requirements=data.get("Requirements") or "",
    )


def option_from_wire(data: Mapping[str, Any]) -> PolicyOption:
    return PolicyOption(
        id=data["Id"],
        name=data.get("Name") or "",
        delivery_type=_code(KeyDeliveryType, data["KeyDeliveryType"]),
        restrictions=tuple(restriction_from_wire(r) for r in data.get("Restrictions") or ()),
        configuration=data.get("KeyDeliveryConfiguration") or "",
    )


def delivery_configuration_to_wire(configuration: Mapping[DeliveryConfigKey, str]) -> str:
    return json.dumps([{"Key": int(key), "Value": value} for key, value in sorted(configuration.items())])


def delivery_configuration_from_wire(text: Optional[str]) -> Dict[DeliveryConfigKey, str]:
    if not text:
        return {}
    configuration = {}
    for item in json.loads(text):
        configuration[_code(DeliveryConfigKey, item["Key"])] = item["Value"]
    return configuration


def delivery_policy_from_wire(data: Mapping[str, Any]) -> DeliveryPolicy:
    return DeliveryPolicy(
        id=data["Id"],
        name=data.get("Name") or "",
        policy_type=_code(DeliveryPolicyType, data["AssetDeliveryPolicyType"]),
        protocols=DeliveryProtocol(int(data["AssetDeliveryProtocol"])),
        configuration=delivery_configuration_from_wire(data.get("AssetDeliveryConfiguration")),
    )


def delivery_policy_to_wire(
    name: str,
    policy_type: DeliveryPolicyType,
    protocols: DeliveryProtocol,
    configuration: Mapping[DeliveryConfigKey, str],
) -> Dict[str, Any]:
    return {
        "Name": name,
        "AssetDeliveryPolicyType": int(policy_type),
        "AssetDeliveryProtocol": int(protocols),
        "AssetDeliveryConfiguration": delivery_configuration_to_wire(configuration),
    }


def content_key_from_wire(data: Mapping[str, Any]) -> ContentKey:
    return ContentKey(
        id=data["Id"],
        name=data.get("Name") or "",
        key_type=_code(ContentKeyType, data["ContentKeyType"]),
    )


# ---------- service ----------

class AmsMediaKeyService:
    """``MediaKeyService`` backed by the Media Services REST API."""

    def __init__(self, endpoint: str, client: httpx.Client):
        self.endpoint = endpoint if endpoint.endswith("/") else endpoint + "/"
        self._client = client
        self._protection_certificates: Dict[str, x509.Certificate] = {}

    @classmethod
    def connect(
        cls,
        endpoint: str,
        auth: Optional[httpx.Auth] = None,
        timeout: float = 30.0,
        retries: int = 0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "AmsMediaKeyService":
        client = httpx.Client(
            base_url=endpoint,
            headers=DEFAULT_HEADERS,
            auth=auth,
            timeout=timeout,
            transport=transport or httpx.HTTPTransport(retries=retries),
        )
        return cls(endpoint, client)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AmsMediaKeyService":
        """Build a connected service from the ``ams.*`` settings."""
        timeout = settings.number("ams.timeout", 30.0)
        provider = AzureAdTokenProvider(
            tenant=settings.require("ams.tenant_domain"),
            client_id=settings.require("ams.client_id"),
            client_secret=settings.require("ams.client_secret"),
            http=httpx.Client(timeout=timeout),
        )
        return cls.connect(
            settings.require("ams.rest_api_endpoint"),
            auth=BearerAuth(provider),
            timeout=timeout,
            retries=int(settings.number("ams.http_retries", 0)),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "AmsMediaKeyService":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def _call(self, method: str, path: str, **kwargs) -> Any:
        response = self._client.request(method, path, **kwargs)
        response.raise_for_status()
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _named(self, collection: str, name: str) -> List[Mapping[str, Any]]:
        payload = self._call("GET", collection, params={"$filter": f"Name eq {_odata_literal(name)}"})
        return list(payload.get("value") or ())

    def _first(self, collection: str, name: str) -> Optional[Mapping[str, Any]]:
        items = self._named(collection, name)
        return items[0] if items else None

    # authorization policies

    def _options_of(self, policy_id: str) -> tuple:
        payload = self._call("GET", _entity("ContentKeyAuthorizationPolicies", policy_id) + "/Options")
        return tuple(option_from_wire(o) for o in payload.get("value") or ())

    def find_authorization_policy(self, name: str) -> Optional[AuthorizationPolicy]:
        data = self._first("ContentKeyAuthorizationPolicies", name)
        if data is None:
            return None
        return AuthorizationPolicy(id=data["Id"], name=data["Name"], options=self._options_of(data["Id"]))

    def create_authorization_policy(self, name: str) -> AuthorizationPolicy:
        data = self._call("POST", "ContentKeyAuthorizationPolicies", json={"Name": name})
        return AuthorizationPolicy(id=data["Id"], name=data["Name"])

    def create_policy_option(
        self,
        name: str,
        delivery_type: KeyDeliveryType,
        restrictions: Sequence[Restriction],
        configuration: str,
    ) -> PolicyOption:
        data = self._call(
            "POST",
            "ContentKeyAuthorizationPolicyOptions",
            json={
                "Name": name,
                "KeyDeliveryType": int(delivery_type),
                "KeyDeliveryConfiguration": configuration,
                "Restrictions": [restriction_to_wire(r) for r in restrictions],
            },
        )
        return option_from_wire(data)

    def attach_policy_option(self, policy: AuthorizationPolicy, option: PolicyOption) -> AuthorizationPolicy:
        uri = self.endpoint + _entity("ContentKeyAuthorizationPolicyOptions", option.id)
        self._call("POST", _entity("ContentKeyAuthorizationPolicies", policy.id) + "/$links/Options", json={"uri": uri})
        return dataclasses.replace(policy, options=policy.options + (option,))

    def update_policy_option(self, option: PolicyOption) -> PolicyOption:
        self._call(
            "MERGE",
            _entity("ContentKeyAuthorizationPolicyOptions", option.id),
            json={
                "Name": option.name,
                "KeyDeliveryType": int(option.delivery_type),
                "KeyDeliveryConfiguration": option.configuration,
                "Restrictions": [restriction_to_wire(r) for r in option.restrictions],
            },
        )
        return option

    # delivery policies

    def find_delivery_policy(self, name: str) -> Optional[DeliveryPolicy]:
        data = self._first("AssetDeliveryPolicies", name)
        return delivery_policy_from_wire(data) if data is not None else None

    def create_delivery_policy(
        self,
        name: str,
        policy_type: DeliveryPolicyType,
        protocols: DeliveryProtocol,
        configuration: Mapping[DeliveryConfigKey, str],
    ) -> DeliveryPolicy:
        data = self._call(
            "POST", "AssetDeliveryPolicies", json=delivery_policy_to_wire(name, policy_type, protocols, configuration)
        )
        return delivery_policy_from_wire(data)

    def update_delivery_policy(self, policy: DeliveryPolicy) -> DeliveryPolicy:
        self._call(
            "MERGE",
            _entity("AssetDeliveryPolicies", policy.id),
            json=delivery_policy_to_wire(policy.name, policy.policy_type, policy.protocols, policy.configuration),
        )
        return policy

    # content keys

    def _protection_certificate(self, key_type: ContentKeyType) -> tuple:
        protection_key_id = self._call("GET", "GetProtectionKeyId", params={"contentKeyType": int(key_type)})["value"]
        certificate = self._protection_certificates.get(protection_key_id)
        if certificate is None:
            payload = self._call("GET", "GetProtectionKey", params={"ProtectionKeyId": _odata_literal(protection_key_id)})
            certificate = load_protection_certificate(base64.b64decode(payload["value"]))
            self._protection_certificates[protection_key_id] = certificate
        return protection_key_id, certificate

    def create_content_key(
        self, key_id: uuid.UUID, key_bytes: bytes, name: str, key_type: ContentKeyType
    ) -> ContentKey:
        protection_key_id, certificate = self._protection_certificate(key_type)
        body = {
            "Id": content_key_id(key_id),
            "Name": name,
            "ContentKeyType": int(key_type),
            "EncryptedContentKey": base64.b64encode(encrypt_content_key(key_bytes, certificate)).decode("ascii"),
            "ProtectionKeyId": protection_key_id,
            "ProtectionKeyType": PROTECTION_KEY_TYPE,
        }
        checksum = key_checksum(key_bytes, key_id)
        if checksum is not None:
            body["Checksum"] = checksum
        data = self._call("POST", "ContentKeys", json=body)
        return content_key_from_wire(data)

    def find_content_keys_by_name(self, name: str) -> List[ContentKey]:
        return [content_key_from_wire(data) for data in self._named("ContentKeys", name)]

    def get_clear_value(self, key: ContentKey) -> bytes:
        # rebinding to an empty certificate returns the clear value
        payload = self._call(
            "GET", "RebindContentKey", params={"id": _odata_literal(key.id), "x509Certificate": "''"}
        )
        return base64.b64decode(payload["value"])

    def delete_content_key(self, key: ContentKey) -> None:
        self._call("DELETE", _entity("ContentKeys", key.id))

    def get_acquisition_url(self, key: ContentKey, delivery_type: KeyDeliveryType) -> str:
        payload = self._call(
            "POST",
            _entity("ContentKeys", key.id) + "/GetKeyDeliveryUrl",
            json={"keyDeliveryType": int(delivery_type)},
        )
        return payload["value"]
