from garage_backend.core.config import settings
from garage_backend.core.database import get_db, Base, get_db_session
from garage_backend.core.security import create_access_token, decode_token
