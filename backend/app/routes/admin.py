from fastapi import APIRouter, Depends

from backend.app import models, schemas
from backend.app.auth import require_admin
from backend.app.models import utcnow
from backend.app.runtime import Runtime, get_runtime
from backend.app.settings_store import RuntimeSettings

router = APIRouter(prefix="/admin", tags=["admin"])


def _settings_response(settings: RuntimeSettings) -> schemas.AdminSettingsResponse:
    return schemas.AdminSettingsResponse(
        sync_enabled=settings.sync_enabled,
        sync_interval_ms=int(settings.sync_interval.total_seconds() * 1000),
        crypto_sync_interval_ms=int(settings.crypto_sync_interval.total_seconds() * 1000),
        ai_enabled=settings.ai_enabled,
        ai_model=settings.ai_model,
        ai_available=settings.ai_available(utcnow()),
        ai_disabled_until=settings.ai_disabled_until,
        ai_last_error=settings.ai_last_error,
        ai_last_error_at=settings.ai_last_error_at,
    )


@router.get("/settings", response_model=schemas.AdminSettingsResponse)
def get_settings(
    runtime: Runtime = Depends(get_runtime),
    admin: models.User = Depends(require_admin)
):
    return _settings_response(runtime.settings_store.snapshot())


@router.put("/settings", response_model=schemas.AdminSettingsResponse)
def update_settings(
    request: schemas.AdminSettingsUpdate,
    runtime: Runtime = Depends(get_runtime),
    admin: models.User = Depends(require_admin)
):
    """
    Update runtime knobs. Intervals are clamped (sync 5 min to 24 h, crypto
    1 min to 24 h); switching AI on clears a pending cooldown.
    """
    settings = runtime.settings_store.update(
        sync_enabled=request.sync_enabled,
        sync_interval_ms=request.sync_interval_ms,
        crypto_sync_interval_ms=request.crypto_sync_interval_ms,
        ai_enabled=request.ai_enabled,
        ai_model=request.ai_model,
    )
    return _settings_response(settings)


@router.post("/ai/test", response_model=schemas.AiKeyTestResponse)
async def test_ai_key(
    runtime: Runtime = Depends(get_runtime),
    admin: models.User = Depends(require_admin)
):
    result = await runtime.ai_classifier.test_api_key()
    return schemas.AiKeyTestResponse(ok=result.ok, code=result.code, message=result.message)
