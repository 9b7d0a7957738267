"""Tests for configuration validation and derived settings."""

import pytest
from pydantic import ValidationError

from app.core.config import DEFAULT_JWT_SECRET, Settings

SECRET = "a-test-secret-that-is-long-enough"


def make_settings(**overrides):
    values = {"jwt_secret_key": SECRET, "_env_file": None}
    values.update(overrides)
    return Settings(**values)


class TestJwtSecretValidation:
    """Tests for JWT secret validation."""

    def test_short_secret_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            make_settings(jwt_secret_key="short")

        assert "16" in str(exc_info.value)

    def test_default_secret_flagged(self):
        warnings = make_settings(jwt_secret_key=DEFAULT_JWT_SECRET).check_security_configuration()

        assert any("JWT_SECRET_KEY" in w for w in warnings)


class TestEnvironment:
    def test_unknown_environment_rejected(self):
        with pytest.raises(ValidationError):
            make_settings(environment="qa")

    def test_is_production(self):
        assert make_settings(environment="production").is_production is True
        assert make_settings(environment="staging").is_production is False

    def test_debug_in_production_flagged(self):
        warnings = make_settings(environment="production", debug=True).check_security_configuration()

        assert any("DEBUG" in w for w in warnings)


class TestOriginSeeds:
    """Tests for allow-list seed parsing."""

    def test_seeds_grouped_by_environment(self):
        settings = make_settings(
            frontend_url="http://localhost:3000",
            cors_seed_dev_origins="http://localhost:3000, http://localhost:5173",
            cors_seed_staging_origins="",
            cors_seed_prod_origins="https://blog.example.com",
        )

        assert settings.origin_seeds == {
            "dev": ["http://localhost:3000", "http://localhost:5173"],
            "staging": [],
            "prod": ["https://blog.example.com"],
        }

    def test_insecure_prod_seed_flagged(self):
        warnings = make_settings(
            cors_seed_prod_origins="http://blog.example.com"
        ).check_security_configuration()

        assert any("does not use https" in w for w in warnings)

    def test_wildcard_seed_flagged(self):
        warnings = make_settings(
            cors_seed_prod_origins="https://*.example.com"
        ).check_security_configuration()

        assert any("Wildcard" in w for w in warnings)

    def test_clean_configuration_has_no_warnings(self):
        settings = make_settings(
            cors_seed_dev_origins="",
            cors_seed_prod_origins="https://blog.example.com",
        )

        assert settings.check_security_configuration() == []


class TestDerivedSets:
    def test_trusted_proxy_ips(self):
        settings = make_settings(trusted_proxy_ips="10.0.0.2, 10.0.0.3,")

        assert settings.trusted_proxy_ip_set == {"10.0.0.2", "10.0.0.3"}

    def test_localhost_ports_skip_garbage(self):
        settings = make_settings(localhost_standard_ports="80, 443, abc, 3000")

        assert settings.localhost_standard_port_set == {80, 443, 3000}

    def test_empty_localhost_ports_reach_the_validator(self):
        from app.core.container import SecurityContainer
        from tests.conftest import (
            FakeUserDirectory,
            InMemoryOriginStore,
            InMemoryRevocationBackend,
        )

        settings = make_settings(localhost_standard_ports="")
        container = SecurityContainer.build(
            settings,
            origin_store=InMemoryOriginStore(),
            revocation_backend=InMemoryRevocationBackend(),
            users=FakeUserDirectory(),
            notifier=None,
        )

        assert settings.localhost_standard_port_set == set()
        check = container.gate.validator.validate("http://localhost:3000")
        assert any("non-standard port" in w for w in check.warnings)

    def test_rate_limit_budgets_must_be_positive(self):
        with pytest.raises(ValidationError):
            make_settings(rate_limit_preflight_max=0)
