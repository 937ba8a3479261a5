from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, Request

from fjordsync.services import barentswatch

router = APIRouter(prefix="/api/fishhealth")


def _resolve_week(year: int | None, week: int | None) -> tuple[int, int]:
    cur_year, cur_week = barentswatch.current_week()
    return year or cur_year, week or cur_week


@router.get("/week")
async def get_week(
    request: Request,
    year: int | None = Query(None, ge=2000),
    week: int | None = Query(None, ge=1, le=53),
):
    state = request.app.state
    y, w = _resolve_week(year, week)
    return await barentswatch.get_lice_data(state.http, state.store, state.broker, y, w)


@router.get("/localities")
async def get_localities(
    request: Request,
    year: int | None = Query(None, ge=2000),
    week: int | None = Query(None, ge=1, le=53),
):
    state = request.app.state
    y, w = _resolve_week(year, week)
    return await barentswatch.fetch_fish_health(
        state.http, state.store, state.broker, y, w
    )


@router.get("/nearby")
async def get_nearby(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius_km: float = Query(10.0, gt=0, le=500),
):
    state = request.app.state
    farms = await barentswatch.get_nearby_farms(
        state.http, state.store, state.broker, lat, lng, radius_km
    )
    return {"count": len(farms), "farms": farms}


@router.get("/locality-polygons")
async def get_locality_polygons(request: Request, loknr: str = Query(..., min_length=1)):
    try:
        numbers = [int(n) for n in loknr.split(",") if n.strip()]
    except ValueError:
        raise HTTPException(
            status_code=400, detail=f"loknr must be comma-separated integers: {loknr!r}"
        )
    if not numbers:
        raise HTTPException(status_code=400, detail="loknr is empty")
    state = request.app.state
    return await barentswatch.get_detailed_polygons(
        state.http, state.store, state.broker, numbers
    )
