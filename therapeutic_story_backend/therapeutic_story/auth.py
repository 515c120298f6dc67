import logging
from typing import Optional
from fastapi import Depends, Header, HTTPException, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def get_specialist_id(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    x_specialist_id: Optional[str] = Header(None),
) -> str:
    """
    Resolve the calling specialist. With AUTH_TOKENS configured the bearer
    token decides; with none configured (local development) the
    X-Specialist-Id header is trusted as-is.
    """
    tokens = request.app.state.auth_tokens
    if tokens:
        if credentials is None:
            raise HTTPException(401, "Authentication required")
        specialist_id = tokens.get(credentials.credentials)
        if not specialist_id:
            logger.warning("Rejected request with unknown bearer token")
            raise HTTPException(401, "Invalid authentication token")
        return specialist_id

    if not x_specialist_id or not x_specialist_id.strip():
        raise HTTPException(401, "X-Specialist-Id header is required")
    return x_specialist_id.strip()
