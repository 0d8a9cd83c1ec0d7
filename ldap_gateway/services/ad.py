from __future__ import annotations

import logging

from ..ad import ADClient, ADConfig, ConnectionPool
from ..env_settings import EnvSettings

log = logging.getLogger(__name__)


def ad_cfg_from_env(env: EnvSettings) -> ADConfig:
    return ADConfig(
        host=env.ldap_host,
        port=env.ldap_port,
        bind_username=env.ldap_username,
        bind_password=env.ldap_password,
        base_dn=env.ldap_base_dn,
        domain=env.ldap_domain,
        zones=env.zones,
        pool_size=env.ldap_pool_size,
        use_ssl=env.ldap_use_ssl,
        starttls=env.ldap_starttls,
        tls_validate=env.ldap_tls_validate,
        ca_cert_file=env.ldap_ca_cert_file,
        acquire_timeout=env.ldap_acquire_timeout,
    )


def build_ad_client(cfg: ADConfig) -> ADClient:
    """Create the process-wide pool and the client bound to it.

    Connections are opened lazily on first use.
    """
    log.info(
        "Инициализация пула LDAP соединений: %s, размер=%d, base=%s",
        cfg.address, cfg.pool_size, cfg.base_dn,
    )
    return ADClient(cfg, ConnectionPool(cfg))
