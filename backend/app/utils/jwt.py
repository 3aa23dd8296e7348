from datetime import datetime, timedelta, timezone
from jose import jwt

from .. import config

ALGORITHM = "HS256"
# Admin sessions last a working day; the admin UI re-authenticates after that.
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 12


def create_access_token(data: dict) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=ALGORITHM)
