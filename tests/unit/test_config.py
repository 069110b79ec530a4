"""
Unit tests for server configuration.
"""

import dataclasses

import pytest

from httpengine.config import ServerConfig


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_defaults(self):
        config = ServerConfig()

        assert config.port == 12345
        assert config.num_threads == 4
        assert not config.is_tls
        config.validate()

    def test_frozen(self):
        config = ServerConfig()
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.port = 80

    def test_is_tls(self):
        config = ServerConfig(certificate_chain_file="chain.pem", private_key_file="key.pem")
        assert config.is_tls

    @pytest.mark.parametrize("overrides", [
        {"port": -1},
        {"port": 65536},
        {"num_threads": 0},
        {"backlog": 0},
        {"buffer_size": 512},
        {"buffer_size": 8192, "max_header_size": 4096},
        {"poll_interval": 0},
        {"certificate_chain_file": "chain.pem"},
        {"private_key_file": "key.pem"},
    ])
    def test_validate_rejects(self, overrides):
        with pytest.raises(ValueError):
            ServerConfig(**overrides).validate()

    def test_port_zero_allowed(self):
        ServerConfig(port=0).validate()

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("HTTP_HOST", "127.0.0.1")
        monkeypatch.setenv("HTTP_PORT", "8443")
        monkeypatch.setenv("HTTP_THREADS", "2")
        monkeypatch.setenv("HTTP_CERT_FILE", "chain.pem")
        monkeypatch.setenv("HTTP_KEY_FILE", "key.pem")
        monkeypatch.setenv("HTTP_LOG_LEVEL", "DEBUG")

        config = ServerConfig.from_env()

        assert config.host == "127.0.0.1"
        assert config.port == 8443
        assert config.num_threads == 2
        assert config.certificate_chain_file == "chain.pem"
        assert config.private_key_file == "key.pem"
        assert config.log_level == "DEBUG"
        assert config.is_tls

    def test_from_env_defaults(self, monkeypatch):
        for name in ("HTTP_HOST", "HTTP_PORT", "HTTP_THREADS",
                     "HTTP_CERT_FILE", "HTTP_KEY_FILE", "HTTP_LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        assert ServerConfig.from_env() == ServerConfig()
