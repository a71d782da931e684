from incident_api.stores.base import (
    UserStore,
    RefreshTokenStore,
    TokenBlacklistStore,
    PasswordResetTokenStore,
)
from incident_api.stores.memory import (
    InMemoryUserStore,
    InMemoryRefreshTokenStore,
    InMemoryTokenBlacklistStore,
    InMemoryPasswordResetTokenStore,
)
from incident_api.stores.sql import (
    SqlUserStore,
    SqlRefreshTokenStore,
    SqlTokenBlacklistStore,
    SqlPasswordResetTokenStore,
)

__all__ = [
    "UserStore",
    "RefreshTokenStore",
    "TokenBlacklistStore",
    "PasswordResetTokenStore",
    "InMemoryUserStore",
    "InMemoryRefreshTokenStore",
    "InMemoryTokenBlacklistStore",
    "InMemoryPasswordResetTokenStore",
    "SqlUserStore",
    "SqlRefreshTokenStore",
    "SqlTokenBlacklistStore",
    "SqlPasswordResetTokenStore",
]
