from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query

from community_connect.core.errors import not_found
from community_connect.core.regions import QLD_REGIONS, find_region_by_suburb, get_region
from community_connect.services.categories import seed_categories

router = APIRouter(prefix="/api")


@router.get("/regions")
def list_regions():
    return [r.to_dict() for r in QLD_REGIONS]


@router.get("/regions/lookup")
def lookup_region(suburb: str = Query(min_length=1)):
    region = find_region_by_suburb(suburb)
    if region is None:
        not_found("region_not_found", f"no region matches {suburb!r}")
    return region.to_dict()


@router.get("/regions/{region_id}/suburbs")
def region_suburbs(region_id: str):
    region = get_region(region_id)
    if region is None:
        not_found("region_not_found", f"unknown region {region_id}")
    return {"regionId": region.id, "name": region.name, "suburbs": list(region.suburbs)}


# ──────────────────────────────────────────────────────────────
# Categories
# ──────────────────────────────────────────────────────────────

@router.get("/categories")
def list_categories():
    return seed_categories()["categories"]


@router.get("/subcategories")
def list_subcategories(categoryId: Optional[str] = None):
    subs = seed_categories()["subcategories"]
    if categoryId:
        subs = [s for s in subs if s["categoryId"] == categoryId]
    return subs
