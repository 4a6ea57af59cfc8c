"""Tests for settings loading and desired-state resolution."""

import pytest

from conftest import ASK, PFX_PASSWORD, VERIFICATION_KEY
from drmconfig.config import env_name, load_desired_state, load_settings
from drmconfig.errors import ConfigurationMissing, DrmConfigError, InvalidKeyMaterial


class TestLoadSettings:
    """Test the YAML layer and environment overrides."""

    def test_flattened_keys(self, settings_file):
        settings = load_settings(str(settings_file), environ={})

        assert settings.require("ams.client_id") == "client"
        assert settings.flag("fairplay.enabled") is False
        assert settings.base_dir == settings_file.parent.resolve()

    def test_environment_overrides_file(self, settings_file):
        """Test that DRMCONFIG_* variables take precedence over the file."""
        environ = {env_name("ams.client_secret"): "from-env", env_name("fairplay.enabled"): "yes"}

        settings = load_settings(str(settings_file), environ=environ)

        assert env_name("ams.client_secret") == "DRMCONFIG_AMS_CLIENT_SECRET"
        assert settings.require("ams.client_secret") == "from-env"
        assert settings.flag("fairplay.enabled") is True

    def test_environment_only(self):
        settings = load_settings(environ={"DRMCONFIG_JWT_AUDIENCE": "aud"})
        assert settings.require("jwt.audience") == "aud"

    def test_secret_not_in_repr(self, settings_file):
        settings = load_settings(str(settings_file), environ={})
        assert "from-file" not in repr(settings)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationMissing):
            load_settings(str(tmp_path / "absent.yml"), environ={})

    @pytest.mark.parametrize("text", ["- a\n- b\n", "key: [unclosed\n"])
    def test_invalid_yaml(self, tmp_path, text):
        path = tmp_path / "bad.yml"
        path.write_text(text)
        with pytest.raises(DrmConfigError):
            load_settings(str(path), environ={})

    def test_missing_setting_is_named(self, settings_file):
        settings = load_settings(str(settings_file), environ={})
        with pytest.raises(ConfigurationMissing) as exc:
            settings.require("ams.not_there")
        assert exc.value.setting == "ams.not_there"
        assert "ams.not_there" in str(exc.value)

    def test_bad_flag(self, settings_file):
        settings = load_settings(str(settings_file), environ={"DRMCONFIG_FAIRPLAY_ENABLED": "maybe"})
        with pytest.raises(ConfigurationMissing):
            settings.flag("fairplay.enabled")

    def test_number(self, settings_file):
        settings = load_settings(str(settings_file), environ={"DRMCONFIG_AMS_TIMEOUT": "12.5"})
        assert settings.number("ams.timeout", 30.0) == 12.5
        assert settings.number("ams.http_retries", 3) == 3


class TestLoadDesiredState:
    """Test resolution of templates, keys and the certificate."""

    def test_templates_resolved_relative_to_file(self, settings_file):
        desired = load_desired_state(load_settings(str(settings_file), environ={}))

        assert desired.cenc.widevine_license_template == '{"allowed_track_types":"SD_HD"}'
        assert desired.cenc.playready_license_template == "<PlayReadyLicenseResponseTemplate />"
        assert desired.jwt_verification_key == VERIFICATION_KEY

    def test_fairplay_disabled_has_no_cbcs(self, settings_file):
        desired = load_desired_state(load_settings(str(settings_file), environ={}))

        assert desired.fairplay_enabled is False
        assert desired.cbcs is None

    def test_fairplay_enabled(self, settings_file, pfx):
        settings = load_settings(str(settings_file), environ={"DRMCONFIG_FAIRPLAY_ENABLED": "true"})

        desired = load_desired_state(settings)

        assert desired.cbcs.ask == ASK
        assert desired.cbcs.pfx == pfx
        assert desired.cbcs.pfx_password == PFX_PASSWORD
        assert PFX_PASSWORD not in repr(desired)

    def test_fairplay_settings_only_required_when_enabled(self, settings_file):
        environ = {"DRMCONFIG_FAIRPLAY_APP_CERT_PATH": ""}
        load_desired_state(load_settings(str(settings_file), environ=environ))

        environ["DRMCONFIG_FAIRPLAY_ENABLED"] = "true"
        with pytest.raises(ConfigurationMissing) as exc:
            load_desired_state(load_settings(str(settings_file), environ=environ))
        assert exc.value.setting == "fairplay.app_cert_path"

    def test_missing_template_file(self, settings_file):
        (settings_file.parent / "templates" / "playready.xml").unlink()

        with pytest.raises(ConfigurationMissing) as exc:
            load_desired_state(load_settings(str(settings_file), environ={}))
        assert exc.value.setting == "cenc.playready_license_template_path"

    def test_bad_ask(self, settings_file):
        environ = {"DRMCONFIG_FAIRPLAY_ENABLED": "true", "DRMCONFIG_FAIRPLAY_ASK_HEX": "not-hex"}
        with pytest.raises(InvalidKeyMaterial):
            load_desired_state(load_settings(str(settings_file), environ=environ))
