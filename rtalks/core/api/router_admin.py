"""
Administrative API router for RTalks.

This module provides endpoints for:
- Admin login, session check and logout
- Dashboard statistics
- Events CRUD (JSON)
- Speakers CRUD (multipart, with an optional photo)
- Standalone image uploads

Every route is under the general rate limit; login additionally has its
own, and anything that stores a file goes through the upload pipeline.

The multipart routes are async so the body can be streamed; their database
and disk calls go through ``run_in_threadpool``.
"""

from __future__ import annotations

from typing import Any, Optional

import pydantic
from fastapi import APIRouter, Depends, Header, Request, status
from starlette.concurrency import run_in_threadpool

from rtalks.config.settings import AppSettings
from rtalks.core.api.dependencies import (
    client_key,
    get_auth_service,
    get_metrics,
    get_pipeline,
    get_resolver,
    get_settings,
    get_store,
    rate_limit,
    request_base_url,
    require_admin,
)
from rtalks.core.api.models import EventRequest, LoginRequest, LoginResponse, SpeakerForm
from rtalks.core.api.multipart import FilePart, MultipartReader
from rtalks.core.auth.service import AdminAuthService, AdminIdentity
from rtalks.core.errors import NotFoundError, RTalksError, StorageError, ValidationError
from rtalks.core.monitoring import MetricsCollector
from rtalks.core.storage.file.local_backend import StorageResolver
from rtalks.core.storage.file.models import UploadedFile
from rtalks.core.storage.file.pipeline import UploadPipeline
from rtalks.core.storage.sql_storage import SQLStore
from rtalks.logging.setup import get_logger

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(rate_limit("general"))])


# Auth

@router.post("/login", response_model=LoginResponse,
             dependencies=[Depends(rate_limit("login"))])
def login(
    payload: LoginRequest,
    auth: AdminAuthService = Depends(get_auth_service),
):
    token, identity = auth.login(
        payload.password, email=payload.email, username=payload.username)
    return {
        "message": "Login successful",
        "token": token,
        "admin": identity.to_dict(),
    }


@router.get("/check-auth")
def check_auth(admin: AdminIdentity = Depends(require_admin)):
    return {"isAuthenticated": True, "admin": admin.to_dict()}


@router.post("/logout")
def logout(admin: AdminIdentity = Depends(require_admin)):
    # Tokens are stateless; the client discards its copy
    logger.info(f"Admin logged out: id={admin.id}")
    return {"message": "Logout successful"}


@router.get("/dashboard")
def dashboard(
    admin: AdminIdentity = Depends(require_admin),
    store: SQLStore = Depends(get_store),
):
    return {
        "stats": store.get_stats(),
        "counts": {
            "events": len(store.list_events()),
            "speakers": len(store.list_speakers()),
        },
    }


# Events

@router.post("/events", status_code=status.HTTP_201_CREATED)
def create_event(
    payload: EventRequest,
    admin: AdminIdentity = Depends(require_admin),
    store: SQLStore = Depends(get_store),
):
    event = store.create_event(payload.model_dump())
    logger.info(f"Event {event['id']} created by admin {admin.id}")
    return {"event": event}


@router.put("/events/{event_id}")
def update_event(
    event_id: int,
    payload: EventRequest,
    admin: AdminIdentity = Depends(require_admin),
    store: SQLStore = Depends(get_store),
):
    event = store.update_event(event_id, payload.model_dump())
    if event is None:
        raise NotFoundError("Event")
    logger.info(f"Event {event_id} updated by admin {admin.id}")
    return {"event": event}


@router.delete("/events/{event_id}")
def delete_event(
    event_id: int,
    admin: AdminIdentity = Depends(require_admin),
    store: SQLStore = Depends(get_store),
):
    if store.delete_event(event_id) is None:
        raise NotFoundError("Event")
    logger.info(f"Event {event_id} deleted by admin {admin.id}")
    return {"message": "Event deleted successfully"}


# Uploads

@router.post("/uploads", status_code=status.HTTP_201_CREATED)
async def upload_image(
    request: Request,
    authorization: Optional[str] = Header(None),
    settings: AppSettings = Depends(get_settings),
    pipeline: UploadPipeline = Depends(get_pipeline),
    resolver: StorageResolver = Depends(get_resolver),
):
    """Store a single image and return its descriptor with the public URL."""
    attempt = await run_in_threadpool(pipeline.admit, client_key(request), authorization)
    field = settings.uploads.field_name
    reader = MultipartReader.from_request(request, file_field=field)

    uploaded: UploadedFile | None = None
    try:
        async for part in reader:
            if isinstance(part, FilePart):
                uploaded = await pipeline.receive(
                    attempt, part, field, request_base_url(request))
    except RTalksError:
        await run_in_threadpool(_discard, resolver, uploaded)
        raise

    if uploaded is None:
        # Rejects the attempt with "No file uploaded"
        await pipeline.receive(attempt, None, field)
    return {"file": uploaded.to_dict()}


# Speakers

@router.post("/speakers", status_code=status.HTTP_201_CREATED)
async def create_speaker(
    request: Request,
    admin: AdminIdentity = Depends(require_admin),
    store: SQLStore = Depends(get_store),
    pipeline: UploadPipeline = Depends(get_pipeline),
    resolver: StorageResolver = Depends(get_resolver),
    metrics: MetricsCollector = Depends(get_metrics),
    settings: AppSettings = Depends(get_settings),
):
    form, uploaded = await _read_speaker_form(request, pipeline, resolver, settings)
    try:
        speaker = await run_in_threadpool(
            store.create_speaker,
            form.model_dump(),
            image_url=uploaded.public_url if uploaded else None,
            image_filename=uploaded.filename if uploaded else None,
        )
    except RTalksError:
        _report_orphan(metrics, uploaded)
        raise

    logger.info(f"Speaker {speaker['id']} created by admin {admin.id}")
    return {"speaker": speaker}


@router.put("/speakers/{speaker_id}")
async def update_speaker(
    speaker_id: int,
    request: Request,
    admin: AdminIdentity = Depends(require_admin),
    store: SQLStore = Depends(get_store),
    pipeline: UploadPipeline = Depends(get_pipeline),
    resolver: StorageResolver = Depends(get_resolver),
    metrics: MetricsCollector = Depends(get_metrics),
    settings: AppSettings = Depends(get_settings),
):
    existing = await run_in_threadpool(store.get_speaker, speaker_id)
    if existing is None:
        raise NotFoundError("Speaker")

    form, uploaded = await _read_speaker_form(request, pipeline, resolver, settings)
    try:
        speaker = await run_in_threadpool(
            store.update_speaker,
            speaker_id,
            form.model_dump(),
            image_url=uploaded.public_url if uploaded else None,
            image_filename=uploaded.filename if uploaded else None,
        )
    except RTalksError:
        _report_orphan(metrics, uploaded)
        raise

    if speaker is None:
        # Deleted while the photo was streaming
        await run_in_threadpool(_discard, resolver, uploaded)
        raise NotFoundError("Speaker")

    old_filename = existing.get("image_filename")
    if uploaded and old_filename and old_filename != uploaded.filename:
        await run_in_threadpool(_delete_replaced, resolver, old_filename)

    logger.info(f"Speaker {speaker_id} updated by admin {admin.id}")
    return {"speaker": speaker}


@router.delete("/speakers/{speaker_id}")
def delete_speaker(
    speaker_id: int,
    admin: AdminIdentity = Depends(require_admin),
    store: SQLStore = Depends(get_store),
    resolver: StorageResolver = Depends(get_resolver),
):
    speaker = store.delete_speaker(speaker_id)
    if speaker is None:
        raise NotFoundError("Speaker")
    if speaker.get("image_filename"):
        _delete_replaced(resolver, speaker["image_filename"])
    logger.info(f"Speaker {speaker_id} deleted by admin {admin.id}")
    return {"message": "Speaker deleted successfully"}


async def _read_speaker_form(
    request: Request,
    pipeline: UploadPipeline,
    resolver: StorageResolver,
    settings: AppSettings,
) -> tuple[SpeakerForm, UploadedFile | None]:
    """
    Read the speaker form, storing the photo through the pipeline if present.

    A stored photo is removed again if the rest of the form turns out invalid.
    """
    field = settings.uploads.field_name
    reader = MultipartReader.from_request(request, file_field=field)
    fields: dict[str, Any] = {}
    uploaded: UploadedFile | None = None

    try:
        async for part in reader:
            if isinstance(part, FilePart):
                if not part.filename:
                    # Browsers send an empty file part when no photo is chosen
                    await part.drain()
                    continue
                attempt = await run_in_threadpool(
                    pipeline.admit, client_key(request),
                    request.headers.get("Authorization"))
                uploaded = await pipeline.receive(
                    attempt, part, field, request_base_url(request))
            else:
                fields[part.name] = part.value
        form = SpeakerForm(**{k: v for k, v in fields.items()
                              if k in SpeakerForm.model_fields})
    except pydantic.ValidationError as e:
        await run_in_threadpool(_discard, resolver, uploaded)
        first = e.errors()[0]
        location = ".".join(str(p) for p in first.get("loc", ()))
        raise ValidationError(f"{location}: {first.get('msg', 'invalid value')}")
    except RTalksError:
        await run_in_threadpool(_discard, resolver, uploaded)
        raise

    return form, uploaded


def _discard(resolver: StorageResolver, uploaded: UploadedFile | None) -> None:
    if uploaded is None:
        return
    try:
        resolver.delete(uploaded.filename)
    except StorageError as e:
        logger.error(f"Could not remove unused upload {uploaded.filename}: {e}")


def _delete_replaced(resolver: StorageResolver, filename: str) -> None:
    try:
        resolver.delete(filename)
    except (StorageError, ValidationError) as e:
        logger.warning(f"Could not delete replaced photo {filename}: {e}")


def _report_orphan(metrics: MetricsCollector, uploaded: UploadedFile | None) -> None:
    if uploaded is None:
        return
    metrics.track_upload("orphaned")
    logger.error(
        f"orphaned upload {uploaded.filename} at {uploaded.storage_path}: "
        "record write failed, file eligible for cleanup")
