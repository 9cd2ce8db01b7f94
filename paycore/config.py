import os

from pathlib import Path
from typing import Any, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.backend_api_url:
            fallback = os.getenv("API_URL")
            object.__setattr__(self, "backend_api_url", fallback or "http://localhost:5001")

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Backend API
    backend_api_url: str = Field(
        default="",
        description="Base URL of the remote backend (ledger, requests, enrichment)",
        validation_alias=AliasChoices("backend_api_url", "BACKEND_API_URL"),
    )
    backend_api_token: str = Field(default="", description="Bearer token for backend calls")
    backend_timeout_seconds: float = Field(default=25.0, description="Backend request timeout")
    backend_max_retries: int = Field(default=3, ge=0, description="Retries for transient backend failures")
    backend_retry_base_delay_seconds: float = Field(
        default=1.0,
        description="Base delay for exponential backoff (1s, 2s, 4s...)",
    )
    app_version: str = Field(default="1.0.0", description="Reported in the App-Version header")
    platform: str = Field(default="server", description="Reported in the Platform header")

    # Solana
    solana_rpc_url: str = Field(default="", description="Solana RPC endpoint")
    alchemy_api_key: str = Field(default="", description="Alchemy API key (Solana RPC fallback)")
    solana_commitment: str = Field(default="confirmed", description="Commitment for blockhash reads")
    solana_rpc_timeout_seconds: float = Field(default=30.0, description="Solana RPC timeout")
    solana_blockhash_retries: int = Field(
        default=1,
        ge=0,
        description="Rebuild-and-resend attempts after a BlockhashNotFound rejection",
    )

    # Networks
    strict_network_classification: bool = Field(
        default=False,
        description="Raise UnknownNetwork instead of falling back to ethereum",
    )

    # Signing
    default_gas_limit: int = Field(default=21000, description="Gas limit when no estimate is available")
    signing_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Upper bound on a wallet signature prompt (None = wait for the user)",
    )
    evm_confirmation_timeout_seconds: float = Field(
        default=120.0,
        description="How long to wait for a receipt on WalletConnect sessions",
    )
    evm_confirmation_poll_seconds: float = Field(default=2.0, description="Receipt poll interval")
    solana_confirmation_timeout_seconds: float = Field(
        default=30.0,
        description="How long to poll a Solana signature status after broadcast",
    )
    solana_confirmation_poll_seconds: float = Field(default=1.0, description="Signature status poll interval")

    # Tracking
    enrichment_timeout_seconds: float = Field(
        default=10.0,
        description="Upper bound on the single enrichment fetch per record",
    )

    # Fiat ramp (Transak)
    transak_api_key: str = Field(default="", description="Transak widget API key")
    transak_environment: str = Field(default="STAGING", description="STAGING or PRODUCTION")
    ramp_default_crypto_currency: str = Field(default="ETH", description="Default crypto for ramp orders")
    ramp_default_fiat_amount: str = Field(default="100", description="Default fiat amount")
    ramp_default_fiat_currency: str = Field(default="USD", description="Default fiat currency")
    ramp_partner_prefix: str = Field(default="PAYCORE", description="Prefix for partnerOrderId")
    ramp_session_ttl_seconds: float = Field(
        default=86400.0,
        description="Open ramp sessions older than this are dropped",
    )
    ramp_settled_retention: int = Field(
        default=1000,
        description="Settled partnerOrderIds remembered for duplicate suppression",
    )

    # Contacts
    contact_lookup_local_fallback: bool = Field(
        default=True,
        description="Consult the local contact book when backend lookup fails",
    )

    @property
    def has_backend_token(self) -> bool:
        return bool(self.backend_api_token)

    @property
    def has_transak_key(self) -> bool:
        return bool(self.transak_api_key)

    def resolve_solana_rpc_url(self) -> str:
        """
        Resolve the Solana RPC URL.

        Order: explicit setting, Alchemy Solana URL, public mainnet RPC.
        """
        if self.solana_rpc_url:
            return self.solana_rpc_url
        if self.alchemy_api_key:
            return f"https://solana-mainnet.g.alchemy.com/v2/{self.alchemy_api_key}"
        return "https://api.mainnet-beta.solana.com"


# Global settings instance
settings = Settings()
