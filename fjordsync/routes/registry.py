from __future__ import annotations

from fastapi import APIRouter, Request

from fjordsync.services import fiskeridir

router = APIRouter(prefix="/api/registry")


@router.get("/localities")
async def get_localities(request: Request):
    state = request.app.state
    features = await fiskeridir.fetch_localities_with_owners(state.http, state.store)
    return {"type": "FeatureCollection", "features": features, "source": "Fiskeridirektoratet"}


@router.get("/companies")
async def get_companies(request: Request):
    state = request.app.state
    companies = await fiskeridir.get_companies(state.http, state.store)
    return {"count": len(companies), "companies": companies}


@router.get("/companies/{name}/sites")
async def get_company_sites(request: Request, name: str):
    state = request.app.state
    sites = await fiskeridir.get_company_sites(state.http, state.store, name)
    return {"company": name, "count": len(sites), "sites": sites}
