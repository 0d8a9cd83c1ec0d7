from functools import lru_cache

from pydantic_settings import BaseSettings
from pydantic import Field


class EnvSettings(BaseSettings):
    # LDAP
    ldap_host: str = Field(..., alias="LDAP_HOST")
    ldap_port: int = Field(636, alias="LDAP_PORT")
    ldap_username: str = Field(..., alias="LDAP_USERNAME")
    ldap_password: str = Field(..., alias="LDAP_PASSWORD")
    ldap_base_dn: str = Field(..., alias="LDAP_BASEDN")
    ldap_domain: str = Field("", alias="LDAP_DOMAIN")
    ldap_zones: str = Field("", alias="LDAP_ZONES")  # ',' separated
    ldap_pool_size: int = Field(10, alias="LDAP_POOLSIZE")
    ldap_use_ssl: bool = Field(True, alias="LDAP_USE_SSL")
    ldap_starttls: bool = Field(False, alias="LDAP_STARTTLS")
    ldap_tls_validate: bool = Field(False, alias="LDAP_TLS_VALIDATE")
    ldap_ca_cert_file: str = Field("", alias="LDAP_CA_CERT_FILE")
    ldap_acquire_timeout: float = Field(5.0, alias="LDAP_ACQUIRE_TIMEOUT")

    # HTTP
    listen: str = Field("0.0.0.0", alias="APP_LISTEN")
    port: int = Field(8080, alias="APP_PORT")

    # Logging
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_dir: str = Field("", alias="LOG_DIR")
    log_retention_days: int = Field(30, alias="LOG_RETENTION_DAYS")

    class Config:
        populate_by_name = True

    @property
    def zones(self) -> list[str]:
        return [z.strip() for z in (self.ldap_zones or "").split(",") if z.strip()]


@lru_cache(maxsize=1)
def get_env() -> EnvSettings:
    return EnvSettings()
