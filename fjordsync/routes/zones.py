from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from fjordsync.services import zones

router = APIRouter(prefix="/api/zones")


@router.get("/disease-zones")
async def get_disease_zones(request: Request):
    state = request.app.state
    return await zones.get_disease_zones(state.http, state.store, state.broker)


@router.get("/locality-polygons")
async def get_locality_polygons(request: Request):
    state = request.app.state
    return await zones.get_locality_polygons(state.http, state.store)


@router.get("/protected-areas")
async def get_protected_areas(request: Request, bbox: str | None = None):
    state = request.app.state
    box = None
    if bbox:
        try:
            box = zones.parse_bbox(bbox)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
    return await zones.get_protected_areas(state.http, state.store, box)


@router.post("/clear-cache")
async def clear_cache(request: Request):
    zones.clear_zones_cache(request.app.state.store)
    return {"success": True, "message": "Zones cache cleared"}
