"""Application service layer.

Stable import surface for routers and startup code:
    from ldap_gateway.services import ...
"""

from .ad import ad_cfg_from_env, build_ad_client

__all__ = [
    "ad_cfg_from_env",
    "build_ad_client",
]
