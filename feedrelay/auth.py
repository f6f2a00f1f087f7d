from fastapi import Header, HTTPException, status

from .config import settings


def _api_keys() -> set[str]:
    return {k.strip() for k in settings.API_KEYS.split(",") if k.strip()}


def _bearer(authorization: str | None) -> str | None:
    if authorization and authorization.startswith("Bearer "):
        return authorization.split(" ", 1)[1].strip()
    return None


def require_write_token(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    valid_token = (settings.API_TOKEN or "").strip()
    valid_keys = _api_keys()

    token = _bearer(authorization)
    if token is not None:
        if token == valid_token or token in valid_keys:
            return
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="bad token")

    if x_api_key and x_api_key in valid_keys:
        return

    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing token")


def require_auth(
    authorization: str | None = Header(default=None),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    configured_token = (settings.API_TOKEN or "").strip()
    valid_tokens = {configured_token} if configured_token else set()
    valid_keys = _api_keys()
    token = _bearer(authorization)
    if token is not None and (token in valid_tokens or token in valid_keys):
        return
    if x_api_key and x_api_key in valid_keys:
        return
    raise HTTPException(status_code=401, detail="unauthorized")
