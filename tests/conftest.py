"""Shared fixtures: fake service, restriction, FairPlay certificate and desired state."""

import base64
import datetime
import textwrap

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID

from drmconfig.restriction import build_restriction
from drmconfig.state import CbcsDesired, CencDesired, DesiredState
from fakes import FakeMediaKeyService


PFX_PASSWORD = "fairplay-secret"
ASK = bytes.fromhex("00112233445566778899aabbccddeeff")
VERIFICATION_KEY = base64.urlsafe_b64encode(b"0123456789abcdef0123456789abcdef").rstrip(b"=").decode()
AUDIENCE = "urn:test-audience"
ISSUER = "https://sts.example.test"


SETTINGS = textwrap.dedent(f"""\
    ams:
      tenant_domain: contoso.onmicrosoft.com
      rest_api_endpoint: https://account.restv2.westeurope.media.azure.net/api/
      client_id: client
      client_secret: from-file
    jwt:
      primary_verification_key: {VERIFICATION_KEY}
      audience: urn:test-audience
      issuer: https://sts.example.test
    cenc:
      authorization_policy_name: cenc-policy
      delivery_policy_name: cenc-delivery
      widevine_option_name: widevine
      playready_option_name: playready
      widevine_license_template_path: templates/widevine.json
      playready_license_template_path: templates/playready.xml
    fairplay:
      enabled: false
      authorization_policy_name: cbcs-policy
      delivery_policy_name: cbcs-delivery
      option_name: fairplay
      ask_key_name: fairplay-ask
      ask_hex: {ASK.hex()}
      app_cert_password_key_name: fairplay-pfx-password
      app_cert_password: {PFX_PASSWORD}
      app_cert_path: fairplay.pfx
    """)


@pytest.fixture
def settings_file(tmp_path, pfx):
    """Settings YAML with license templates and certificate beside it."""
    templates = tmp_path / "templates"
    templates.mkdir()
    (templates / "widevine.json").write_text('{"allowed_track_types":"SD_HD"}')
    (templates / "playready.xml").write_text("<PlayReadyLicenseResponseTemplate />")
    (tmp_path / "fairplay.pfx").write_bytes(pfx)
    path = tmp_path / "settings.yml"
    path.write_text(SETTINGS)
    return path


def make_certificate(common_name: str = "FairPlay Test"):
    """Self-signed RSA certificate and its private key."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = datetime.datetime.now(datetime.timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=30))
        .sign(key, hashes.SHA256())
    )
    return cert, key


@pytest.fixture(scope="session")
def certificate_and_key():
    return make_certificate()


@pytest.fixture(scope="session")
def pfx(certificate_and_key):
    cert, key = certificate_and_key
    return pkcs12.serialize_key_and_certificates(
        b"fairplay",
        key,
        cert,
        None,
        serialization.BestAvailableEncryption(PFX_PASSWORD.encode()),
    )


@pytest.fixture
def service():
    return FakeMediaKeyService()


@pytest.fixture
def restriction():
    return build_restriction(VERIFICATION_KEY, AUDIENCE, ISSUER)


@pytest.fixture
def cenc_desired():
    return CencDesired(
        authorization_policy_name="cenc-policy",
        delivery_policy_name="cenc-delivery",
        widevine_option_name="widevine",
        widevine_license_template='{"allowed_track_types":"SD_HD"}',
        playready_option_name="playready",
        playready_license_template="<PlayReadyLicenseResponseTemplate />",
    )


@pytest.fixture
def cbcs_desired(pfx):
    return CbcsDesired(
        authorization_policy_name="cbcs-policy",
        delivery_policy_name="cbcs-delivery",
        option_name="fairplay",
        ask_key_name="fairplay-ask",
        ask=ASK,
        pfx_password_key_name="fairplay-pfx-password",
        pfx_password=PFX_PASSWORD,
        pfx=pfx,
    )


@pytest.fixture
def desired_state(cenc_desired, cbcs_desired):
    return DesiredState(
        jwt_verification_key=VERIFICATION_KEY,
        jwt_audience=AUDIENCE,
        jwt_issuer=ISSUER,
        cenc=cenc_desired,
        fairplay_enabled=True,
        cbcs=cbcs_desired,
    )
