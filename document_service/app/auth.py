import secrets

from fastapi import Depends
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .config import Settings, get_settings
from .exceptions import AuthenticationError

# auto_error=False so missing credentials go through AuthenticationError too
security = HTTPBasic(auto_error=False)


def authenticate_user(username: str, password: str, settings: Settings):
    expected = settings.api_users.get(username)
    if expected is None:
        return False
    if not secrets.compare_digest(password.encode("utf-8"), expected.encode("utf-8")):
        return False
    return {"username": username}


def verify_user(
    credentials: HTTPBasicCredentials = Depends(security),
    settings: Settings = Depends(get_settings),
) -> str:
    """Resolve the caller's owner id from HTTP Basic credentials."""
    if credentials is None:
        raise AuthenticationError("Missing authentication credentials")
    user = authenticate_user(credentials.username, credentials.password, settings)
    if not user:
        raise AuthenticationError()
    return user["username"]
