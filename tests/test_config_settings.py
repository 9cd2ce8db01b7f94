from paycore.config import Settings


def test_backend_url_legacy_alias(monkeypatch):
    """Backend URL should load from the legacy API_URL variable when unset."""

    monkeypatch.delenv("BACKEND_API_URL", raising=False)
    monkeypatch.setenv("API_URL", "https://legacy.example.com")

    settings = Settings(_env_file=None)

    assert settings.backend_api_url == "https://legacy.example.com"


def test_backend_url_direct_env(monkeypatch):
    """Environment-provided backend URL remains the primary source."""

    monkeypatch.setenv("BACKEND_API_URL", "https://api.example.com")
    monkeypatch.setenv("API_URL", "https://legacy.example.com")

    settings = Settings(_env_file=None)

    assert settings.backend_api_url == "https://api.example.com"


def test_solana_rpc_resolution(monkeypatch):
    monkeypatch.delenv("SOLANA_RPC_URL", raising=False)
    monkeypatch.setenv("ALCHEMY_API_KEY", "key123")

    settings = Settings(_env_file=None)

    assert settings.resolve_solana_rpc_url() == "https://solana-mainnet.g.alchemy.com/v2/key123"

    monkeypatch.setenv("SOLANA_RPC_URL", "https://rpc.example.com")
    assert Settings(_env_file=None).resolve_solana_rpc_url() == "https://rpc.example.com"


def test_defaults(monkeypatch):
    monkeypatch.delenv("STRICT_NETWORK_CLASSIFICATION", raising=False)
    monkeypatch.delenv("SIGNING_TIMEOUT_SECONDS", raising=False)

    settings = Settings(_env_file=None)

    assert settings.strict_network_classification is False
    assert settings.signing_timeout_seconds is None
    assert settings.solana_blockhash_retries == 1
    assert settings.contact_lookup_local_fallback is True
