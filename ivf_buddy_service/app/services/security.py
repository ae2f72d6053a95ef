from typing import Optional

from fastapi import Depends, Header, HTTPException

from app.api.deps import get_container
from app.core.container import ServiceContainer


def verify_cron_secret(
    authorization: Optional[str] = Header(default=None),
    container: ServiceContainer = Depends(get_container),
):
    """Bearer check for the external tick trigger. Open when no secret is configured."""
    secret = container.settings.cron_secret
    if not secret:
        return

    if authorization != f"Bearer {secret}":
        raise HTTPException(
            status_code=401,
            detail="Unauthorized"
        )
