from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # Durable key-value storage
    db_url: str = Field("sqlite+aiosqlite:///./didholder.sqlite3", alias="DB_URL")

    # Issuer HTTP
    issuer_scheme: str = Field("http", alias="ISSUER_SCHEME")
    http_timeout: float = Field(10.0, alias="HTTP_TIMEOUT")
    credential_format: str = Field("jwt_sd", alias="CREDENTIAL_FORMAT")
    default_credential_types: list[str] = Field(
        ["VerifiableCredential", "NaturalPersonCredential"],
        alias="DEFAULT_CREDENTIAL_TYPES",
    )

    # Hostname -> port applied when an issuer identifier carries no port
    issuer_default_ports: dict[str, int] = Field(
        {"fido.moi.gov.tw": 5000, "land.moi.gov.tw": 5001, "zuvi.io": 5002},
        alias="ISSUER_DEFAULT_PORTS",
    )
    # None keeps discovery documents for the lifetime of the process
    issuer_config_ttl_seconds: float | None = Field(None, alias="ISSUER_CONFIG_TTL_SECONDS")

    # Deep links (didholder://connect?..., didholder://shared-credential?data=...)
    deep_link_scheme: str = Field("didholder", alias="DEEP_LINK_SCHEME")

    # Wallet / session
    wallet_key_path: str = Field("keys/wallet_ed25519.pem", alias="WALLET_KEY_PATH")
    session_ttl_days: int = Field(7, alias="SESSION_TTL_DAYS")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )


settings = Settings()
