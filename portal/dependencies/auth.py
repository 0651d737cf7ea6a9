from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
import jwt

from portal.core.config.settings import get_settings

oauth2_scheme = OAuth2PasswordBearer(tokenUrl=get_settings().TOKEN_URL)


def get_current_supervisor(token: str = Depends(oauth2_scheme)) -> int:
    """Id of the acting supervisor, taken from the ``sub`` claim of the bearer token"""
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except jwt.PyJWTError:
        raise credentials_exception

    subject = payload.get("sub")
    try:
        return int(subject)
    except (TypeError, ValueError):
        raise credentials_exception
