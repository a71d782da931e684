from incident_api.core.config import settings
from incident_api.core.database import Base, get_db, engine, SessionLocal
from incident_api.core.security import (
    PasswordHasher,
    TokenCodec,
    hash_token,
)
