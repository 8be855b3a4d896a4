from typing import Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    """Client settings"""
    model_config = SettingsConfigDict(
        env_prefix="ELECTRUM_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Server settings
    host: str = "electrum.acinq.co"
    port: int = 50002
    use_ssl: bool = True
    verify_certificate: bool = True

    # Socket timeouts in seconds, None blocks forever
    read_timeout: Optional[float] = None
    write_timeout: Optional[float] = None
    connect_timeout: Optional[float] = 30.0

    # Connect retry settings
    connect_retries: int = 3
    retry_delay: float = 1.0

    # Protocol negotiation
    client_name: str = "smart-electrum"
    protocol_version: str = "1.4"

    # Logging settings
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @field_validator('port')
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError(f"Port out of range: {v}")
        return v

    @field_validator('read_timeout', 'write_timeout', 'connect_timeout')
    @classmethod
    def validate_timeout(cls, v: Optional[float]) -> Optional[float]:
        # A zero timeout would put the socket in non-blocking mode
        if v is not None and v <= 0:
            raise ValueError("Timeouts must be positive")
        return v

    @field_validator('connect_retries')
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("connect_retries cannot be negative")
        return v

def get_settings() -> Settings:
    """Get client settings"""
    return Settings()
