# app/api/endpoints/scan.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Request, UploadFile

from app.core.config import Settings
from app.core.deps import Identity, get_optional_identity, get_services, get_settings_dep
from app.core.errors import AnalysisError, AppError, RateLimited, ValidationError
from app.schemas.analysis import AnalysisResult
from app.services.rate_limit import scan_key

router = APIRouter(tags=["scan"])
log = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES = {"image/jpeg", "image/png", "image/jpg"}
# Gemini 只認標準 MIME type
MIME_ALIASES = {"image/jpg": "image/jpeg"}


def is_valid_image(content_type: Optional[str]) -> bool:
    return content_type in ALLOWED_CONTENT_TYPES


async def _record_scan(services, identity: Identity, result: AnalysisResult) -> None:
    """統計 / 歷史寫入屬附帶作業：失敗只記 log，不影響掃描結果。"""
    try:
        await services.user_store.get_or_create(identity.user_id, identity.email)
        await services.user_store.increment_ingredient_counts(identity.user_id, result)
        await services.user_store.add_scan_history(identity.user_id, result)
    except Exception as exc:
        log.warning("Failed to record scan %s for user %s: %s", result.scan_id, identity.user_id, exc)


@router.post(
    "/scan",
    response_model=AnalysisResult,
    response_model_exclude_none=True,
    summary="Scan an ingredient label image",
)
async def scan_ingredients(
    request: Request,
    file: Optional[UploadFile] = File(None),
    identity: Optional[Identity] = Depends(get_optional_identity),
    services=Depends(get_services),
    settings: Settings = Depends(get_settings_dep),
):
    if file is None:
        raise ValidationError("Please upload an image")
    if not is_valid_image(file.content_type):
        raise ValidationError("Only JPEG and PNG images are allowed")

    image = await file.read(settings.MAX_UPLOAD_BYTES + 1)
    if not image:
        raise ValidationError("Please upload an image")
    if len(image) > settings.MAX_UPLOAD_BYTES:
        raise ValidationError(f"Image exceeds {settings.MAX_UPLOAD_BYTES} bytes")

    if services.rate_limiter is not None:
        ip = request.client.host if request.client else None
        try:
            allowed, retry_after = await services.rate_limiter.hit(
                scan_key(identity.user_id if identity else None, ip)
            )
        except Exception as exc:
            # Redis 掛掉時放行（fail-open），不讓限流拖垮掃描
            log.warning("Scan rate limit check failed: %s", exc)
            allowed, retry_after = True, 0
        if not allowed:
            raise RateLimited("Too many scans. Please try again later.", retry_after)

    try:
        mime_type = MIME_ALIASES.get(file.content_type, file.content_type)
        result = await services.vision.analyze(image, mime_type)
    except AppError as exc:
        log.error("Scan failed: %s", exc.message)
        raise
    except Exception as exc:
        log.exception("Scan failed: %s", exc)
        raise AnalysisError(f"Analysis failed: {exc}") from exc

    if identity is not None:
        await _record_scan(services, identity, result)

    return result
