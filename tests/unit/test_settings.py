"""
Tests for settings loading and normalization.

Covers:
- Normalization of crypto code, URIs, route prefix and log level
- Currency configuration from daemon and wallet URIs
"""

from xmrpay.config.settings import Settings


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


class TestNormalization:
    """Test field validators."""

    def test_crypto_code_upper(self):
        assert make_settings(crypto_code=" xmr ").crypto_code == "XMR"

    def test_uri_trailing_slash(self):
        settings = make_settings(xmr_daemon_uri="http://node:18081/")

        assert settings.xmr_daemon_uri == "http://node:18081"

    def test_empty_uri_is_unset(self):
        assert make_settings(xmr_wallet_daemon_uri="").xmr_wallet_daemon_uri is None

    def test_prefix(self):
        assert make_settings(callback_prefix="callbacks/").callback_prefix == "/callbacks"
        assert make_settings(callback_prefix="/").callback_prefix == ""

    def test_log_level(self):
        assert make_settings(log_level="debug").log_level == "DEBUG"


class TestMoneroLikeConfiguration:
    """Test per-currency configuration."""

    def test_configured(self):
        settings = make_settings(
            xmr_daemon_uri="http://node:18081",
            xmr_wallet_daemon_uri="http://wallet:18082",
            xmr_daemon_username="user",
            xmr_daemon_password="secret",
            xmr_wallet_daemon_walletdir="/wallets",
        )

        configuration = settings.get_monero_like_configuration()

        assert configuration.crypto_codes == ["XMR"]
        item = configuration.items["XMR"]
        assert item.daemon_rpc_uri == "http://node:18081"
        assert item.internal_wallet_rpc_uri == "http://wallet:18082"
        assert item.username == "user"
        assert item.wallet_directory == "/wallets"

    def test_wallet_missing(self):
        settings = make_settings(xmr_daemon_uri="http://node:18081", xmr_wallet_daemon_uri=None)

        assert settings.get_monero_like_configuration().items == {}

    def test_environment(self):
        """Defaults come from the environment set up for the test session."""
        configuration = make_settings().get_monero_like_configuration()

        assert configuration.items["XMR"].internal_wallet_rpc_uri == "http://127.0.0.1:18082"
