"""
Per-scheme reconciliation of authorization and delivery policies.

Each scheme grouping is reconciled in five steps:

    1. Find or create the authorization policy.
    2. Create or full-replace one option per DRM provider.
    3. Mint an ephemeral key, read the acquisition URLs from it, delete it.
    4. Create or full-replace the delivery policy.
    5. (CBCS) Delete FairPlay keys superseded in step 2.

Writes happen only when the stored entity differs from the desired one, so a
second run with unchanged input leaves the service untouched (apart from the
ephemeral key and, for FairPlay, the per-run IV).

Any service failure aborts the scheme with a ``RemoteOperationFailure``
naming the scheme and the failing step. Partial progress is left in place;
every create is preceded by a lookup, so the next run converges.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Sequence, Tuple, TypeVar
from urllib.parse import urlsplit, urlunsplit

from .errors import DrmConfigError, RemoteOperationFailure
from .fairplay import build_descriptor, check_certificate, new_content_encryption_iv
from .keys import KeyRotationManager
from .models import (
    CBCS,
    CENC,
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
from .service import SERVICE_ERRORS, MediaKeyService
from .state import CbcsDesired, CencDesired


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

CENC_PROTOCOLS = DeliveryProtocol.DASH | DeliveryProtocol.SMOOTH_STREAMING
CBCS_PROTOCOLS = DeliveryProtocol.HLS

HTTPS_PREFIX = "https://"
FAIRPLAY_KEY_PREFIX = "skd://"


@dataclass(frozen=True)
class Change:
    action: str  # created | updated | rotated | deleted
    entity: str
    name: str

    def __str__(self) -> str:
        return f"{self.action} {self.entity} '{self.name}'"


@dataclass(frozen=True)
class SchemeResult:
    scheme: str
    delivery_policy: DeliveryPolicy
    changes: Tuple[Change, ...] = ()

    @property
    def changed(self) -> bool:
        return bool(self.changes)


@dataclass
class _SchemeRun:
    """Step runner for one scheme: wraps service failures and records changes."""

    scheme: str
    changes: List[Change] = field(default_factory=list)

    def step(self, name: str, func: Callable[..., T], *args) -> T:
        try:
            return func(*args)
        except DrmConfigError:
            raise
        except SERVICE_ERRORS as e:
            LOGGER.debug("[%s] %s failed", self.scheme, name, exc_info=True)
            raise RemoteOperationFailure(self.scheme, name, e) from e

    def record(self, action: str, entity: str, name: str) -> None:
        change = Change(action, entity, name)
        LOGGER.info("[%s] %s", self.scheme, change)
        self.changes.append(change)


# ---------- URL rewriting ----------

def strip_query(url: str) -> str:
    """Drop the query string (Widevine base license URL)."""
    parts = urlsplit(url)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "", parts.fragment))


def to_fairplay_key_url(url: str) -> str:
    """Rewrite the first ``https://`` prefix into FairPlay's ``skd://``."""
    return url.replace(HTTPS_PREFIX, FAIRPLAY_KEY_PREFIX, 1)


# ---------- shared steps ----------

def ensure_authorization_policy(run: _SchemeRun, service: MediaKeyService, name: str) -> AuthorizationPolicy:
    policy = run.step("find authorization policy", service.find_authorization_policy, name)
    if policy is None:
        policy = run.step("create authorization policy", service.create_authorization_policy, name)
        run.record("created", "authorization policy", name)
    return policy


def upsert_policy_option(
    run: _SchemeRun,
    service: MediaKeyService,
    policy: AuthorizationPolicy,
    name: str,
    delivery_type: KeyDeliveryType,
    restrictions: Sequence[Restriction],
    configuration: str,
) -> Tuple[AuthorizationPolicy, PolicyOption]:
    """Create the option named ``name`` in ``policy`` or replace all of its fields.

    Restrictions added to the option by hand are dropped: the desired list
    replaces the stored one.
    """
    existing = policy.option_named(name)
    if existing is None:
        option = run.step(
            f"create {delivery_type.name} option",
            service.create_policy_option,
            name,
            delivery_type,
            tuple(restrictions),
            configuration,
        )
        policy = run.step(f"attach {delivery_type.name} option", service.attach_policy_option, policy, option)
        run.record("created", "authorization policy option", name)
        return policy, option

    desired = dataclasses.replace(
        existing,
        delivery_type=delivery_type,
        restrictions=tuple(restrictions),
        configuration=configuration,
    )
    if existing.same_content(desired):
        LOGGER.debug("[%s] option '%s' is up to date", run.scheme, name)
        return policy, existing

    option = run.step(f"update {delivery_type.name} option", service.update_policy_option, desired)
    run.record("updated", "authorization policy option", name)
    return policy, option


def acquire_urls(
    run: _SchemeRun,
    service: MediaKeyService,
    key_type: ContentKeyType,
    delivery_types: Sequence[KeyDeliveryType],
) -> Dict[KeyDeliveryType, str]:
    """Read acquisition URL templates from a throwaway key of ``key_type``.

    The ephemeral key is deleted whether or not the URLs could be read.
    """
    manager = KeyRotationManager(service)
    key = run.step("mint ephemeral key", manager.mint_ephemeral, key_type)

    urls: Dict[KeyDeliveryType, str] = {}
    try:
        for delivery_type in delivery_types:
            urls[delivery_type] = run.step(
                f"get {delivery_type.name} acquisition URL", service.get_acquisition_url, key, delivery_type
            )
    finally:
        _discard_ephemeral(run, service, key)
    return urls


def _discard_ephemeral(run: _SchemeRun, service: MediaKeyService, key: ContentKey) -> None:
    # The URL template stays valid without the key, so a failed delete is not fatal.
    try:
        service.delete_content_key(key)
    except SERVICE_ERRORS as e:
        LOGGER.warning("[%s] could not delete ephemeral key %s: %s", run.scheme, key.id, e)
    else:
        LOGGER.debug("[%s] deleted ephemeral key %s", run.scheme, key.id)


def upsert_delivery_policy(
    run: _SchemeRun,
    service: MediaKeyService,
    name: str,
    policy_type: DeliveryPolicyType,
    protocols: DeliveryProtocol,
    configuration: Mapping[DeliveryConfigKey, str],
) -> DeliveryPolicy:
    existing = run.step("find delivery policy", service.find_delivery_policy, name)
    if existing is None:
        policy = run.step(
            "create delivery policy", service.create_delivery_policy, name, policy_type, protocols, dict(configuration)
        )
        run.record("created", "delivery policy", name)
        return policy

    desired = dataclasses.replace(
        existing, policy_type=policy_type, protocols=protocols, configuration=dict(configuration)
    )
    if existing.same_content(desired):
        LOGGER.debug("[%s] delivery policy '%s' is up to date", run.scheme, name)
        return existing

    policy = run.step("update delivery policy", service.update_delivery_policy, desired)
    run.record("updated", "delivery policy", name)
    return policy


# ---------- schemes ----------

def reconcile_cenc(service: MediaKeyService, restriction: Restriction, desired: CencDesired) -> SchemeResult:
    """Reconcile Widevine + PlayReady under dynamic common encryption."""
    run = _SchemeRun(CENC)
    restrictions = (restriction,)

    policy = ensure_authorization_policy(run, service, desired.authorization_policy_name)
    policy, _ = upsert_policy_option(
        run, service, policy,
        desired.widevine_option_name, KeyDeliveryType.WIDEVINE, restrictions, desired.widevine_license_template,
    )
    policy, _ = upsert_policy_option(
        run, service, policy,
        desired.playready_option_name, KeyDeliveryType.PLAYREADY_LICENSE, restrictions,
        desired.playready_license_template,
    )

    urls = acquire_urls(
        run, service, ContentKeyType.COMMON_ENCRYPTION,
        (KeyDeliveryType.PLAYREADY_LICENSE, KeyDeliveryType.WIDEVINE),
    )
    configuration = {
        DeliveryConfigKey.PLAYREADY_LICENSE_ACQUISITION_URL: urls[KeyDeliveryType.PLAYREADY_LICENSE],
        DeliveryConfigKey.WIDEVINE_BASE_LICENSE_ACQUISITION_URL: strip_query(urls[KeyDeliveryType.WIDEVINE]),
    }

    delivery = upsert_delivery_policy(
        run, service, desired.delivery_policy_name,
        DeliveryPolicyType.DYNAMIC_COMMON_ENCRYPTION, CENC_PROTOCOLS, configuration,
    )
    return SchemeResult(CENC, delivery, tuple(run.changes))


def reconcile_cbcs(service: MediaKeyService, restriction: Restriction, desired: CbcsDesired) -> SchemeResult:
    """Reconcile FairPlay under dynamic common encryption CBCS.

    Superseded FairPlay keys are deleted last, after the option and the
    delivery policy referencing their replacements have been written.
    """
    run = _SchemeRun(CBCS)
    check_certificate(desired.pfx, desired.pfx_password)

    policy = ensure_authorization_policy(run, service, desired.authorization_policy_name)

    manager = KeyRotationManager(service)
    superseded: List[ContentKey] = []
    key_ids = {}
    for step, name, value, key_type in (
        ("ensure application secret key", desired.ask_key_name, desired.ask, ContentKeyType.FAIRPLAY_ASK),
        ("ensure certificate password key", desired.pfx_password_key_name,
         desired.pfx_password.encode("utf-8"), ContentKeyType.FAIRPLAY_PFX_PASSWORD),
    ):
        result = run.step(step, manager.ensure_persistent, name, value, key_type)
        superseded.extend(result.superseded)
        if result.created:
            run.record("rotated" if result.superseded else "created", "content key", name)
        key_ids[key_type] = result.key.key_uuid

    iv = new_content_encryption_iv()
    descriptor = build_descriptor(
        desired.pfx,
        desired.pfx_password,
        pfx_password_key_id=key_ids[ContentKeyType.FAIRPLAY_PFX_PASSWORD],
        ask_key_id=key_ids[ContentKeyType.FAIRPLAY_ASK],
        content_encryption_iv=iv,
    )
    policy, _ = upsert_policy_option(
        run, service, policy,
        desired.option_name, KeyDeliveryType.FAIRPLAY, (restriction,), descriptor.serialize(),
    )

    urls = acquire_urls(run, service, ContentKeyType.COMMON_ENCRYPTION_CBCS, (KeyDeliveryType.FAIRPLAY,))
    configuration = {
        DeliveryConfigKey.FAIRPLAY_LICENSE_ACQUISITION_URL: to_fairplay_key_url(urls[KeyDeliveryType.FAIRPLAY]),
        DeliveryConfigKey.COMMON_ENCRYPTION_IV_FOR_CBCS: iv,
    }
    delivery = upsert_delivery_policy(
        run, service, desired.delivery_policy_name,
        DeliveryPolicyType.DYNAMIC_COMMON_ENCRYPTION_CBCS, CBCS_PROTOCOLS, configuration,
    )

    for key in superseded:
        run.step("delete superseded key", manager.retire, [key])
        run.record("deleted", "content key", f"{key.name} ({key.id})")

    return SchemeResult(CBCS, delivery, tuple(run.changes))
