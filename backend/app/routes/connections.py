"""
Connection Routes

User-facing endpoints for:
- Listing providers
- Creating and managing connections
- Linking connections to their upstream
- Requesting a sync
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session
from typing import List

from backend.database import get_db
from backend.app import models, schemas
from backend.app.auth import get_current_active_user
from backend.app.runtime import Runtime, get_runtime
from backend.app.sync import ConnectionService, ConnectionNotFoundError
from backend.app.sync.exceptions import ProviderConfigurationError, UnknownProviderError


router = APIRouter(prefix="/connections", tags=["connections"])


def get_connection_service(
    db: Session = Depends(get_db),
    runtime: Runtime = Depends(get_runtime)
) -> ConnectionService:
    return ConnectionService(db, runtime.orchestrator)


@router.get("/providers", response_model=List[schemas.ProviderResponse])
def list_available_providers(
    service: ConnectionService = Depends(get_connection_service),
    current_user: models.User = Depends(get_current_active_user)
):
    return [
        schemas.ProviderResponse(
            provider_id=info.provider_id,
            name=info.name,
            connection_type=info.connection_type,
            requires_auth=info.requires_auth,
            fields=[
                schemas.ProviderFieldResponse(key=f.key, label=f.label, secret=f.secret, required=f.required)
                for f in info.fields
            ]
        )
        for info in service.list_providers()
    ]


@router.get("/", response_model=List[schemas.ConnectionResponse])
def list_connections(
    service: ConnectionService = Depends(get_connection_service),
    current_user: models.User = Depends(get_current_active_user)
):
    return service.list_connections(current_user.id)


@router.post("/", response_model=schemas.ConnectionResponse, status_code=status.HTTP_201_CREATED)
def create_connection(
    request: schemas.ConnectionCreate,
    service: ConnectionService = Depends(get_connection_service),
    current_user: models.User = Depends(get_current_active_user)
):
    try:
        return service.create_connection(
            current_user.id,
            request.provider_id,
            display_name=request.display_name,
            config=request.config
        )
    except UnknownProviderError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.patch("/{connection_id}", response_model=schemas.ConnectionResponse)
def update_connection(
    connection_id: int,
    request: schemas.ConnectionUpdate,
    service: ConnectionService = Depends(get_connection_service),
    current_user: models.User = Depends(get_current_active_user)
):
    try:
        return service.update_connection(
            current_user.id,
            connection_id,
            display_name=request.display_name,
            auto_sync_enabled=request.auto_sync_enabled
        )
    except ConnectionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{connection_id}")
def disable_connection(
    connection_id: int,
    service: ConnectionService = Depends(get_connection_service),
    current_user: models.User = Depends(get_current_active_user)
):
    """Soft-delete: the connection is disabled and no longer synced."""
    try:
        service.disable_connection(current_user.id, connection_id)
    except ConnectionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Connection disabled"}


@router.post("/{connection_id}/connect", response_model=schemas.ConnectResponse)
async def initiate_connection(
    connection_id: int,
    service: ConnectionService = Depends(get_connection_service),
    current_user: models.User = Depends(get_current_active_user)
):
    try:
        redirect_url = await service.initiate_connection(current_user.id, connection_id)
    except ConnectionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (UnknownProviderError, ProviderConfigurationError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return schemas.ConnectResponse(redirect_url=redirect_url)


@router.post("/{connection_id}/sync", response_model=schemas.ConnectionResponse)
async def sync_connection(
    connection_id: int,
    service: ConnectionService = Depends(get_connection_service),
    current_user: models.User = Depends(get_current_active_user)
):
    """
    Request a sync. The run happens in the background; the response shows
    the connection state right after the request (RUNNING, SKIPPED, ...).
    """
    try:
        return service.request_sync(current_user.id, connection_id)
    except ConnectionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
