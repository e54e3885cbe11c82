"""Read-only endpoints backing the public site."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from rtalks.core.api.dependencies import get_store, rate_limit
from rtalks.core.errors import NotFoundError
from rtalks.core.storage.sql_storage import SQLStore
from rtalks.logging.setup import get_logger

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(rate_limit("general"))])


@router.get("/upcoming-event")
def upcoming_event(store: SQLStore = Depends(get_store)):
    return {"event": store.get_upcoming_event()}


@router.get("/stats")
def stats(store: SQLStore = Depends(get_store)):
    return {"stats": store.get_stats()}


@router.get("/packages")
def packages(store: SQLStore = Depends(get_store)):
    return {"packages": store.list_packages()}


@router.get("/packages/{package_id}")
def package(package_id: int, store: SQLStore = Depends(get_store)):
    found = store.get_package(package_id)
    if found is None:
        raise NotFoundError("Package")
    return {"package": found}


@router.get("/speakers")
def speakers(store: SQLStore = Depends(get_store)):
    return {"speakers": store.list_speakers()}


@router.get("/speakers/{speaker_id}")
def speaker(speaker_id: int, store: SQLStore = Depends(get_store)):
    found = store.get_speaker(speaker_id)
    if found is None:
        raise NotFoundError("Speaker")
    return {"speaker": found}


@router.get("/events")
def events(store: SQLStore = Depends(get_store)):
    return {"events": store.list_events()}


@router.get("/events/{event_id}")
def event(event_id: int, store: SQLStore = Depends(get_store)):
    found = store.get_event(event_id)
    if found is None:
        raise NotFoundError("Event")
    return {"event": found}


@router.get("/contact")
def contact(store: SQLStore = Depends(get_store)):
    return {"contactInfo": store.get_contact_info()}
