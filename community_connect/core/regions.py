from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

LngLat = Tuple[float, float]


@dataclass(frozen=True)
class Region:
    id: str
    name: str
    suburbs: Tuple[str, ...]
    # Polygon ring [lng, lat], closed
    boundary: Optional[Tuple[LngLat, ...]] = field(default=None)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "suburbs": list(self.suburbs),
            "boundary": [list(p) for p in self.boundary] if self.boundary else None,
        }


# ──────────────────────────────────────────────────────────────
# Queensland regions
# Order matters: lookups return the first match.
# ──────────────────────────────────────────────────────────────

QLD_REGIONS: Tuple[Region, ...] = (
    Region(
        id="sunshine-coast",
        name="Sunshine Coast",
        suburbs=(
            "Caloundra", "Caloundra West", "Golden Beach", "Pelican Waters",
            "Maroochydore", "Mooloolaba", "Alexandra Headland", "Mooloolah Valley",
            "Noosa", "Noosa Heads", "Noosaville", "Tewantin", "Sunrise Beach",
            "Nambour", "Palmwoods", "Maleny", "Montville", "Yandina",
            "Cooroy", "Pomona", "Eumundi", "Peregian Beach", "Coolum Beach",
            "Buderim", "Sippy Downs", "Chancellor Park", "Birtinya",
            "Kawana", "Kawana Forest", "Currimundi", "Dicky Beach", "Kings Beach", "Bulcock Beach",
            "Bells Creek",
        ),
        boundary=(
            (152.7, -26.9),    # NW, inland near Cooroy
            (153.1, -26.4),    # NE, Noosa Heads
            (153.15, -26.65),  # E, Coolum Beach
            (153.16, -26.8),   # SE, Caloundra coastline
            (152.9, -26.85),   # SW, inland Caloundra
            (152.75, -26.82),  # W, Nambour-Maleny
            (152.7, -26.9),
        ),
    ),
    Region(
        id="gold-coast",
        name="Gold Coast",
        suburbs=(
            "Surfers Paradise", "Broadbeach", "Main Beach", "Southport",
            "Nerang", "Robina", "Varsity Lakes", "Burleigh Heads",
            "Currumbin", "Tugun", "Coolangatta", "Tweed Heads",
            "Miami", "Mermaid Beach", "Nobby Beach", "Palm Beach",
            "Elanora", "Tallebudgera", "West Burleigh", "Burleigh Waters",
            "Mudgeeraba", "Springbrook", "Advancetown", "Coomera",
            "Upper Coomera", "Oxenford", "Hope Island", "Sanctuary Cove",
        ),
        boundary=(
            (153.05, -27.75),  # NW, Hope Island
            (153.45, -27.8),   # NE, Southport coast
            (153.55, -28.17),  # SE, Coolangatta
            (153.25, -28.25),  # SW, inland Currumbin
            (153.0, -28.1),    # W, Springbrook
            (152.9, -27.9),    # W, Nerang inland
            (153.05, -27.75),
        ),
    ),
    Region(
        id="brisbane",
        name="Greater Brisbane",
        suburbs=(
            "Brisbane", "Brisbane City", "South Brisbane", "West End", "Fortitude Valley",
            "New Farm", "Paddington", "Red Hill", "Spring Hill", "Petrie Terrace",
            "Toowong", "St Lucia", "Indooroopilly", "Taringa", "Chapel Hill",
            "Kenmore", "Fig Tree Pocket", "Brookfield", "Pullenvale",
            "Ashgrove", "The Gap", "Enoggera", "Kelvin Grove", "Herston",
            "Woolloongabba", "Annerley", "Fairfield", "Yeronga", "Yeerongpilly",
            "Moorooka", "Rocklea", "Acacia Ridge", "Sunnybank", "Sunnybank Hills",
            "Calamvale", "Stretton", "Karawatha", "Algester", "Parkinson",
            "Forest Lake", "Inala", "Richlands", "Darra", "Oxley",
            "Corinda", "Sherwood", "Graceville", "Chelmer", "Jindalee",
            "Mount Ommaney", "Jamboree Heights", "Westlake", "Riverhills",
            "Chermside", "Aspley", "Carseldine", "Bridgeman Downs", "Bald Hills",
            "Strathpine", "Lawnton", "Petrie", "Kallangur", "Murrumba Downs",
            "Griffin", "North Lakes", "Mango Hill", "Rothwell", "Redcliffe",
            "Clontarf", "Margate", "Woody Point", "Scarborough", "Newport",
            "Deception Bay", "Narangba", "Burpengary", "Caboolture", "Morayfield",
            "Ipswich", "Springfield", "Springfield Central", "Augustine Heights",
            "Redbank", "Goodna", "Bellbird Park", "Collingwood Park", "Redbank Plains",
            "Logan", "Logan Central", "Springwood", "Daisy Hill", "Shailer Park",
            "Beenleigh", "Eagleby", "Waterford", "Holmview", "Bahrs Scrub",
        ),
        boundary=(
            (152.5, -27.0),    # NW, Caboolture
            (153.2, -27.1),    # NE, Redcliffe Peninsula
            (153.25, -27.65),  # SE, Logan
            (152.8, -27.75),   # SW, Ipswich
            (152.6, -27.5),    # W, Springfield
            (152.5, -27.0),
        ),
    ),
    Region(
        id="ipswich",
        name="Ipswich",
        suburbs=(
            "Ipswich", "Ipswich CBD", "Booval", "Bundamba", "Dinmore",
            "Riverview", "Karalee", "Springfield", "Springfield Central",
            "Springfield Lakes", "Augustine Heights", "Redbank", "Goodna",
            "Collingwood Park", "Redbank Plains", "Bellbird Park", "Brookwater",
            "Ripley", "Bellvista", "Providence", "Deebing Heights",
        ),
    ),
    Region(
        id="logan",
        name="Logan",
        suburbs=(
            "Logan", "Logan Central", "Logan Village", "Springwood", "Daisy Hill",
            "Shailer Park", "Beenleigh", "Eagleby", "Waterford", "Holmview",
            "Bahrs Scrub", "Windaroo", "Yarrabilba", "Park Ridge", "Jimboomba",
            "Beaudesert", "Tamborine", "Mount Tamborine", "Canungra",
        ),
    ),
    Region(
        id="moreton-bay",
        name="Moreton Bay",
        suburbs=(
            "Caboolture", "Morayfield", "Burpengary", "Narangba", "Deception Bay",
            "Redcliffe", "Clontarf", "Margate", "Woody Point", "Scarborough",
            "Newport", "Rothwell", "North Lakes", "Mango Hill", "Griffin",
            "Murrumba Downs", "Kallangur", "Petrie", "Lawnton", "Strathpine",
        ),
    ),
    Region(
        id="cairns",
        name="Cairns",
        suburbs=(
            "Cairns", "Cairns City", "Cairns North", "Edge Hill", "Whitfield",
            "Redlynch", "Stratford", "Freshwater", "Brinsmead", "Kamerunga",
            "Smithfield", "Trinity Beach", "Palm Cove", "Ellis Beach",
            "Port Douglas", "Mossman", "Kuranda", "Mareeba", "Atherton",
        ),
    ),
    Region(
        id="townsville",
        name="Townsville",
        suburbs=(
            "Townsville", "Townsville City", "South Townsville", "West End",
            "North Ward", "Railway Estate", "Hermit Park", "Aitkenvale",
            "Mysterton", "Cranbrook", "Annandale", "Kirwan", "Thuringowa",
            "Condon", "Deeragun", "Bohle Plains", "Mount Louisa", "Douglas",
        ),
    ),
    Region(
        id="toowoomba",
        name="Toowoomba",
        suburbs=(
            "Toowoomba", "Toowoomba City", "South Toowoomba", "East Toowoomba",
            "West Toowoomba", "North Toowoomba", "Newtown", "Harristown",
            "Kearneys Spring", "Mount Lofty", "Highfields", "Crows Nest",
            "Dalby", "Chinchilla", "Miles", "Wandoan",
        ),
    ),
    Region(
        id="rockhampton",
        name="Rockhampton",
        suburbs=(
            "Rockhampton", "Rockhampton City", "North Rockhampton", "West Rockhampton",
            "South Rockhampton", "Berserker", "Norman Gardens", "Kawana",
            "Park Avenue", "Frenchville", "Mount Archer", "Yeppoon",
            "Emu Park", "Rosslyn Bay", "Keppel Sands",
        ),
    ),
)

_BY_ID = {r.id: r for r in QLD_REGIONS}


def get_region(region_id: str) -> Optional[Region]:
    return _BY_ID.get(str(region_id or "").strip())


def find_region_by_suburb(suburb: str) -> Optional[Region]:
    """
    Case-insensitive containment match in both directions,
    first against the region name, then against its suburbs.
    """
    needle = str(suburb or "").strip().lower()
    if not needle:
        return None

    for region in QLD_REGIONS:
        name = region.name.lower()
        if needle in name or name in needle:
            return region
        for s in region.suburbs:
            sl = s.lower()
            if needle in sl or sl in needle:
                return region
    return None


def get_regional_suburbs(suburb: str) -> List[str]:
    region = find_region_by_suburb(suburb)
    return list(region.suburbs) if region else [suburb]


def are_in_same_region(suburb1: str, suburb2: str) -> bool:
    r1 = find_region_by_suburb(suburb1)
    r2 = find_region_by_suburb(suburb2)
    return bool(r1 and r2 and r1.id == r2.id)


def is_point_in_polygon(point: Sequence[float], polygon: Sequence[Sequence[float]]) -> bool:
    # Ray casting; point and polygon are [lng, lat]
    lng, lat = float(point[0]), float(point[1])
    inside = False
    n = len(polygon)
    j = n - 1
    for i in range(n):
        xi, yi = polygon[i][0], polygon[i][1]
        xj, yj = polygon[j][0], polygon[j][1]
        if (yi > lat) != (yj > lat) and lng < (xj - xi) * (lat - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def get_region_from_coordinates(lat: float, lng: float, text_fallback: Optional[str] = None) -> Optional[Region]:
    for region in QLD_REGIONS:
        if region.boundary and is_point_in_polygon((lng, lat), region.boundary):
            return region
    if text_fallback:
        return find_region_by_suburb(text_fallback)
    return None
