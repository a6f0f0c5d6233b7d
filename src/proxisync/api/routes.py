"""
API routes.

Endpoints:
- POST   `/api/locations`: client position report.
- PATCH  `/api/locations/{user_id}/sharing`: ghost-mode toggle (coordinates unchanged).
- GET    `/api/friends/nearby`: ranked nearby-friends view for a viewer.
- GET    `/api/events/nearby`: upcoming public events within a radius.
- GET    `/api/geocode`, `/api/reverse-geocode`: gazetteer lookups.
- POST/DELETE `/api/presence/sessions`, GET `/api/presence`: connection lifecycle.
- GET    `/api/settings`: public tuning knobs.
"""

from __future__ import annotations

from functools import lru_cache

from fastapi import APIRouter, HTTPException, Query, Response
from pydantic import BaseModel

from proxisync.config.settings import get_settings
from proxisync.domain.models import (
    Coordinates,
    EventResult,
    LocationReport,
    ProximityResult,
    SharingToggle,
)
from proxisync.engine import ProximityEngine
from proxisync.errors import FriendshipPermissionError, TransientStorageError

router = APIRouter()


@lru_cache
def _engine() -> ProximityEngine:
    return ProximityEngine(get_settings())


class SessionRequest(BaseModel):
    user_id: str


def _storage_unavailable(e: Exception) -> HTTPException:
    return HTTPException(status_code=503, detail={"code": "STORAGE_UNAVAILABLE", "message": str(e)})


@router.post("/api/locations", status_code=204)
def post_location(report: LocationReport) -> Response:
    """Upsert the reporter's position (server stamps `updated_at`)."""
    try:
        _engine().report_location(report)
    except TransientStorageError as e:
        raise _storage_unavailable(e) from e
    except ValueError as e:
        raise HTTPException(status_code=400, detail={"code": "VALIDATION_ERROR", "message": str(e)}) from e
    return Response(status_code=204)


@router.patch("/api/locations/{user_id}/sharing", status_code=204)
def patch_sharing(user_id: str, toggle: SharingToggle) -> Response:
    try:
        _engine().set_sharing(user_id, toggle.is_sharing)
    except TransientStorageError as e:
        raise _storage_unavailable(e) from e
    return Response(status_code=204)


@router.get("/api/friends/nearby", response_model=list[ProximityResult])
def get_nearby_friends(
    viewer_id: str,
    radius_km: float | None = Query(default=None, gt=0),
    q: str | None = None,
) -> list[ProximityResult]:
    try:
        return _engine().nearby_friends(viewer_id, radius_km=radius_km, query=q)
    except TransientStorageError as e:
        raise _storage_unavailable(e) from e


@router.get("/api/events/nearby", response_model=list[EventResult])
def get_nearby_events(
    viewer_id: str,
    radius_km: float | None = Query(default=None, gt=0),
    q: str | None = None,
) -> list[EventResult]:
    try:
        return _engine().nearby_events(viewer_id, radius_km, query=q)
    except TransientStorageError as e:
        raise _storage_unavailable(e) from e


@router.get("/api/geocode")
def get_geocode(q: str) -> dict:
    point = _engine().resolver.geocode(q)
    return {"query": q, "coordinates": Coordinates(lat=point.lat, lng=point.lng) if point else None}


@router.get("/api/reverse-geocode")
def get_reverse_geocode(lat: float = Query(..., ge=-90, le=90), lng: float = Query(..., ge=-180, le=180)) -> dict:
    return {"lat": lat, "lng": lng, "name": _engine().resolver.reverse_geocode(lat, lng)}


@router.post("/api/presence/sessions")
def post_presence_session(body: SessionRequest) -> dict:
    return {"session_id": _engine().presence.register(body.user_id)}


@router.delete("/api/presence/sessions/{session_id}", status_code=204)
def delete_presence_session(session_id: str) -> Response:
    _engine().presence.deregister(session_id)
    return Response(status_code=204)


@router.get("/api/presence")
def get_presence() -> dict:
    return {"online": _engine().presence.snapshot()}


@router.post("/api/friendships/{addressee_id}/respond")
def post_friendship_response(addressee_id: str, requester_id: str, accept: bool = True) -> dict:
    """Addressee accepts/rejects a pending request (the only legal transition)."""
    try:
        edge = _engine().graph.respond(addressee_id, requester_id, accept=accept)
    except FriendshipPermissionError as e:
        raise HTTPException(status_code=403, detail={"code": "FORBIDDEN", "message": str(e)}) from e
    return edge.model_dump(mode="json")


@router.get("/api/settings")
def get_public_settings() -> dict:
    """Return safe-to-expose settings (storage paths removed)."""
    settings = get_settings()
    return {
        "geocoding": settings.geocoding.model_dump(mode="json"),
        "feed": settings.feed.model_dump(mode="json"),
        "alerts": settings.alerts.model_dump(mode="json"),
        "privacy": settings.privacy.model_dump(mode="json"),
        "reporting": settings.reporting.model_dump(mode="json"),
    }
