from dataclasses import asdict
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import Response
import logging

from ..core.config import settings, THUMBNAIL_SIZES
from ..exceptions import create_success_response
from ..application.sources import UploadedBlob
from ..application.ports.image_repo import ImageRecord
from ..application.services.management_service import ImageManagementService
from ..application.services.migration_service import LegacyImageMigrationService, MigrationOptions
from ..application.services.serving_service import ImageServingService, ServedImage
from ..application.services.upload_service import ImageUploadService
from ..dependencies import (
    get_management_service,
    get_migration_service,
    get_serving_service,
    get_upload_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/images", tags=["Images"])


def _record_payload(record: ImageRecord) -> dict:
    return {
        "id": record.id,
        "establishment_id": record.establishment_id,
        "original_filename": record.original_filename,
        "mime_type": record.mime_type,
        "file_size": record.file_size,
        "width": record.width,
        "height": record.height,
        "url": record.primary_url,
        "fallback_url": record.fallback_url,
        "primary_format": record.primary_format,
        "thumbnails": {
            name: {"url": t.url, "width": t.width, "height": t.height, "file_size": t.file_size}
            for name, t in record.thumbnails.items()
        },
        "uploaded_by": record.uploaded_by,
        "created_at": record.created_at.isoformat(),
    }


def _image_response(served: ServedImage) -> Response:
    headers = {"X-Image-Placeholder": "true"} if served.is_placeholder else {}
    return Response(content=served.data, media_type=served.content_type, headers=headers)


@router.post("/upload")
def upload_images(
    files: List[UploadFile] = File(...),
    establishment_id: str = Form(...),
    uploaded_by: str = Form(...),
    entity_type: Optional[str] = Form(None),
    entity_id: Optional[str] = Form(None),
    upload_service: ImageUploadService = Depends(get_upload_service),
):
    attach_to = (entity_type, entity_id) if entity_type and entity_id else None
    sources = [UploadedBlob(f) for f in files]
    if len(sources) == 1:
        result = upload_service.upload(sources[0], establishment_id, uploaded_by, attach_to)
        return create_success_response({
            "images": [_record_payload(result.record)],
            "warnings": result.warnings,
            "failures": [],
        })

    batch = upload_service.upload_many(sources, establishment_id, uploaded_by, attach_to)
    if not batch.uploaded:
        # nothing went through; surface the first failure with its own status
        raise batch.failures[0].error
    return create_success_response({
        "images": [_record_payload(r.record) for r in batch.uploaded],
        "warnings": [w for r in batch.uploaded for w in r.warnings],
        "failures": [
            {"filename": f.filename, "kind": f.kind, "error": f.message} for f in batch.failures
        ],
    })


@router.get("/config")
def get_image_config():
    return create_success_response({
        "max_file_size": settings.MAX_FILE_SIZE,
        "max_files_per_request": settings.MAX_FILES_PER_REQUEST,
        "allowed_formats": settings.allowed_image_formats_list,
        "primary_quality": settings.PRIMARY_QUALITY,
        "fallback_quality": settings.FALLBACK_QUALITY,
        "thumbnail_sizes": {name: {"width": w, "height": h} for name, (w, h) in THUMBNAIL_SIZES.items()},
    })


@router.get("/migration/status")
def get_migration_status(
    migration_service: LegacyImageMigrationService = Depends(get_migration_service),
):
    stats = migration_service.get_migration_stats()
    completeness = migration_service.validate_migration_completeness()
    return create_success_response({
        "stats": asdict(stats),
        "completeness": asdict(completeness),
    })


@router.post("/migration/run")
def run_migration(
    dry_run: bool = Query(False),
    skip_errors: bool = Query(True),
    batch_size: Optional[int] = Query(None, ge=1),
    uploaded_by: Optional[str] = Query(None),
    migration_service: LegacyImageMigrationService = Depends(get_migration_service),
):
    options = MigrationOptions(
        skip_errors=skip_errors,
        dry_run=dry_run,
        batch_size=batch_size,
        uploader_id=uploaded_by,
    )
    report = migration_service.batch_migration(options)
    payload = asdict(report)
    payload.pop("progress", None)
    return create_success_response(payload)


@router.get("/{image_id}/thumbnail/{size}")
def get_thumbnail(
    image_id: str,
    size: str,
    request: Request,
    serving_service: ImageServingService = Depends(get_serving_service),
):
    accept = request.headers.get("accept", "")
    prefer_webp = "image/webp" in accept or "image/jpeg" not in accept
    return _image_response(serving_service.serve_thumbnail(image_id, size, prefer_webp=prefer_webp))


@router.get("/{image_ref}")
def get_image(
    image_ref: str,
    serving_service: ImageServingService = Depends(get_serving_service),
):
    return _image_response(serving_service.serve_image(image_ref))


@router.delete("/{image_ref}")
def delete_image(
    image_ref: str,
    force: bool = Query(False),
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[str] = Query(None),
    management_service: ImageManagementService = Depends(get_management_service),
):
    entity = (entity_type, entity_id) if entity_type and entity_id else None
    result = management_service.delete_image(image_ref, force=force, entity=entity)
    logger.info(f"Image {result.image_id} deleted via API")
    return create_success_response(asdict(result))
