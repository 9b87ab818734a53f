"""Settings loading from BILLING_* environment variables."""

from billing.configs import AdminConfig, configs


class TestAdminConfig:
    def test_secret_read_from_environment(self) -> None:
        assert configs.Admin.Secret == "test-admin-secret"

    def test_secret_defaults_to_empty(self) -> None:
        assert AdminConfig().Secret == ""
