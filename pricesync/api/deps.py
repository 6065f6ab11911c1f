"""FastAPI dependencies."""

from typing import Optional

from fastapi import Header, HTTPException, Request, status

from pricesync.config import settings
from pricesync.remote.client import RemoteStoreClient
from pricesync.worker.tasks import SyncTaskRunner


def get_remote_client(request: Request) -> RemoteStoreClient:
    """Shared remote store client created in the app lifespan."""
    return request.app.state.remote_client


def get_task_runner(request: Request) -> SyncTaskRunner:
    """Shared task runner created in the app lifespan."""
    return request.app.state.task_runner


async def require_admin_api_key(
    x_admin_api_key: Optional[str] = Header(None, alias="X-Admin-API-Key")
) -> None:
    """
    Require the admin API key on write endpoints when one is configured.

    Raises:
        HTTPException: 401 if header missing, 403 if invalid
    """
    if not settings.admin_api_key:
        return

    if not x_admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing admin API key"
        )

    if x_admin_api_key != settings.admin_api_key:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key"
        )
