"""Active Directory (LDAP) client package.

Public API:
    - ADConfig
    - ConnectionPool
    - ADClient
    - User / Group records
"""

from .models import ADConfig, Group, User
from .pool import ConnectionPool
from .client import ADClient

__all__ = ["ADConfig", "ConnectionPool", "ADClient", "User", "Group"]
