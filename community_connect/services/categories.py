from __future__ import annotations

import logging
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────
# Fixed ids
# ──────────────────────────────────────────────────────────────

CATEGORY_UUIDS: Dict[str, str] = {
    "COMMUNITY": "deaca906-3561-4f80-b79f-ed99561c3b04",
    "EMERGENCY": "54d31da5-fc10-4ad2-8eca-04bac680e668",
    "INFRASTRUCTURE": "9b1d58d9-cfd1-4c31-93e9-754276a5f265",
    "LOST_FOUND": "d1dfcd4e-48e9-4e58-9476-4782a2a132f3",
    "PETS": "4ea3a6f0-c49e-4baf-9ca5-f074ca2811b0",
    "SAFETY_CRIME": "792759f4-1b98-4665-b14c-44a54e9969e9",
    "WILDLIFE": "d03f47a9-10fb-4656-ae73-92e959d7566a",
}

SUBCATEGORY_UUIDS: Dict[str, str] = {
    # Emergency Situations
    "CHEMICAL_HAZMAT": "3f7adaca-dcf9-4151-88ae-324041a8da30",
    "FIRE_SMOKE": "c3980ed0-46b0-43df-b4d8-fa8a83ce9452",
    "MEDICAL_EMERGENCIES": "e69d5194-4885-47a2-985e-3568e30833dd",
    "NATURAL_DISASTERS": "a6719ffd-b353-4dee-8969-dd917093285d",
    # Safety & Crime
    "PUBLIC_DISTURBANCES": "e39e8d3f-4358-4a91-ac09-38dbb25d4832",
    "SUSPICIOUS_ACTIVITY": "7b1ba0b9-b9d5-437e-a106-886f96660f99",
    "THEFT_PROPERTY": "e6a187d7-428b-47e6-a2d0-617db1963aee",
    "VIOLENCE_THREATS": "97a99d33-f10a-4391-b22f-78631eff8805",
    # Infrastructure & Hazards
    "BUILDING_PROBLEMS": "d81dc944-8b65-4a14-96da-fc539e883249",
    "ENVIRONMENTAL_HAZARDS": "e03aeb13-b061-4bf1-b524-2037fdfd948f",
    "ROAD_HAZARDS": "ca42fc3b-9ac1-4054-a30e-c65650599d02",
    "UTILITY_ISSUES": "83b09678-a090-4b08-8123-e316524a0d57",
    # Wildlife & Nature
    "ANIMAL_WELFARE": "668fe7c1-401a-4aff-a388-903622651418",
    "DANGEROUS_ANIMALS": "819a1a14-e6f5-46e4-aefb-daa55e2c0342",
    "ENVIRONMENTAL_ISSUES": "607f0066-5b11-4a06-ac14-5d136bafbcab",
    "PEST_PROBLEMS": "7fbd7375-6352-4b50-b067-19c66c99ba96",
    # Lost & Found
    "FOUND_ITEMS": "4c6da291-c786-4212-bc12-c77f16a5e016",
    "FOUND_PETS_LOST": "0ed39343-bf5f-48ea-829a-fb6ae6be77fd",
    # Pets
    "FOUND_PETS": "2dd8cb36-fc5d-4c34-a40f-196fcf79320d",
    "MISSING_PETS": "3dc966d4-e732-4f91-8aa0-3fb00be77265",
}

_C = CATEGORY_UUIDS
_S = SUBCATEGORY_UUIDS

CATEGORY_NAMES: Dict[str, str] = {
    _C["COMMUNITY"]: "Community Issues",
    _C["EMERGENCY"]: "Emergency Situations",
    _C["INFRASTRUCTURE"]: "Infrastructure & Hazards",
    _C["LOST_FOUND"]: "Lost & Found",
    _C["PETS"]: "Pets",
    _C["SAFETY_CRIME"]: "Safety & Crime",
    _C["WILDLIFE"]: "Wildlife & Nature",
}

SUBCATEGORY_NAMES: Dict[str, str] = {
    _S["CHEMICAL_HAZMAT"]: "Chemical/Hazmat",
    _S["FIRE_SMOKE"]: "Fire & Smoke",
    _S["MEDICAL_EMERGENCIES"]: "Medical Emergencies",
    _S["NATURAL_DISASTERS"]: "Natural Disasters",
    _S["PUBLIC_DISTURBANCES"]: "Public Disturbances",
    _S["SUSPICIOUS_ACTIVITY"]: "Suspicious Activity",
    _S["THEFT_PROPERTY"]: "Theft & Property Crime",
    _S["VIOLENCE_THREATS"]: "Violence & Threats",
    _S["BUILDING_PROBLEMS"]: "Building Problems",
    _S["ENVIRONMENTAL_HAZARDS"]: "Environmental Hazards",
    _S["ROAD_HAZARDS"]: "Road Hazards",
    _S["UTILITY_ISSUES"]: "Utility Issues",
    _S["ANIMAL_WELFARE"]: "Animal Welfare",
    _S["DANGEROUS_ANIMALS"]: "Dangerous Animals",
    _S["ENVIRONMENTAL_ISSUES"]: "Environmental Issues",
    _S["PEST_PROBLEMS"]: "Pest Problems",
    _S["FOUND_ITEMS"]: "Found Items",
    _S["FOUND_PETS_LOST"]: "Found Pets",
    _S["FOUND_PETS"]: "Found Pets",
    _S["MISSING_PETS"]: "Missing Pets",
}

# subcategory id -> parent category id
SUBCATEGORY_PARENTS: Dict[str, str] = {
    _S["CHEMICAL_HAZMAT"]: _C["EMERGENCY"],
    _S["FIRE_SMOKE"]: _C["EMERGENCY"],
    _S["MEDICAL_EMERGENCIES"]: _C["EMERGENCY"],
    _S["NATURAL_DISASTERS"]: _C["EMERGENCY"],
    _S["PUBLIC_DISTURBANCES"]: _C["SAFETY_CRIME"],
    _S["SUSPICIOUS_ACTIVITY"]: _C["SAFETY_CRIME"],
    _S["THEFT_PROPERTY"]: _C["SAFETY_CRIME"],
    _S["VIOLENCE_THREATS"]: _C["SAFETY_CRIME"],
    _S["BUILDING_PROBLEMS"]: _C["INFRASTRUCTURE"],
    _S["ENVIRONMENTAL_HAZARDS"]: _C["INFRASTRUCTURE"],
    _S["ROAD_HAZARDS"]: _C["INFRASTRUCTURE"],
    _S["UTILITY_ISSUES"]: _C["INFRASTRUCTURE"],
    _S["ANIMAL_WELFARE"]: _C["WILDLIFE"],
    _S["DANGEROUS_ANIMALS"]: _C["WILDLIFE"],
    _S["ENVIRONMENTAL_ISSUES"]: _C["WILDLIFE"],
    _S["PEST_PROBLEMS"]: _C["WILDLIFE"],
    _S["FOUND_ITEMS"]: _C["LOST_FOUND"],
    _S["FOUND_PETS_LOST"]: _C["LOST_FOUND"],
    _S["FOUND_PETS"]: _C["PETS"],
    _S["MISSING_PETS"]: _C["PETS"],
}


def _pair(uuid: str, names: Dict[str, str]) -> Dict[str, str]:
    return {"uuid": uuid, "name": names[uuid]}


def log_unmapped_category(source: str, category: str, subcategory: Optional[str] = None) -> None:
    logger.warning("[categories] unmapped %s category: category=%s subcategory=%s", source, category, subcategory)


# ──────────────────────────────────────────────────────────────
# Upstream feed mapping
# ──────────────────────────────────────────────────────────────

def map_tmr_category(tmr_category: str = "") -> Dict[str, str]:
    return _pair(_C["INFRASTRUCTURE"], CATEGORY_NAMES)


def map_tmr_subcategory(tmr_subcategory: str = "") -> Dict[str, str]:
    return _pair(_S["ROAD_HAZARDS"], SUBCATEGORY_NAMES)


def map_emergency_category(emergency_category: str = "") -> Dict[str, str]:
    return _pair(_C["EMERGENCY"], CATEGORY_NAMES)


_EMERGENCY_KEYWORDS = (
    (("fire", "smoke", "burning", "alarm"), "FIRE_SMOKE"),
    (("medical", "ambulance", "injury", "rescue", "crash", "accident"), "MEDICAL_EMERGENCIES"),
    (("chemical", "hazmat", "gas", "spill"), "CHEMICAL_HAZMAT"),
    (("flood", "storm", "disaster", "weather"), "NATURAL_DISASTERS"),
)


def map_emergency_subcategory(text: str) -> Dict[str, str]:
    normalized = str(text or "").lower().strip()
    for words, key in _EMERGENCY_KEYWORDS:
        if any(w in normalized for w in words):
            return _pair(_S[key], SUBCATEGORY_NAMES)

    if normalized and normalized not in ("undefined", "null", "none"):
        log_unmapped_category("emergency", "Emergency Situations", normalized)
    return _pair(_S["FIRE_SMOKE"], SUBCATEGORY_NAMES)


def get_category_name(uuid: str) -> str:
    return CATEGORY_NAMES.get(uuid, uuid)


def get_subcategory_name(uuid: str) -> str:
    return SUBCATEGORY_NAMES.get(uuid, uuid)


# ──────────────────────────────────────────────────────────────
# Coarse buckets for feed counts and notification preferences
# ──────────────────────────────────────────────────────────────

def incident_type_for_category(category_id: Optional[str]) -> str:
    """traffic | crime | wildlife | other"""
    if category_id == _C["INFRASTRUCTURE"]:
        return "traffic"
    if category_id == _C["SAFETY_CRIME"]:
        return "crime"
    if category_id == _C["WILDLIFE"]:
        return "wildlife"
    return "other"


def preference_bucket_for_category(category_id: Optional[str]) -> str:
    """safety | pets | lostfound | community"""
    if category_id in (_C["SAFETY_CRIME"], _C["EMERGENCY"]):
        return "safety"
    if category_id == _C["PETS"]:
        return "pets"
    if category_id == _C["LOST_FOUND"]:
        return "lostfound"
    return "community"


def seed_categories() -> Dict[str, List[Dict[str, Optional[str]]]]:
    categories = [
        {"id": uuid, "name": CATEGORY_NAMES[uuid], "key": key}
        for key, uuid in CATEGORY_UUIDS.items()
    ]
    subcategories = [
        {"id": uuid, "name": SUBCATEGORY_NAMES[uuid], "key": key, "categoryId": SUBCATEGORY_PARENTS[uuid]}
        for key, uuid in SUBCATEGORY_UUIDS.items()
    ]
    return {"categories": categories, "subcategories": subcategories}


def is_known_category(category_id: str) -> bool:
    return category_id in CATEGORY_NAMES


def is_known_subcategory(subcategory_id: str, category_id: Optional[str] = None) -> bool:
    parent = SUBCATEGORY_PARENTS.get(subcategory_id)
    if parent is None:
        return False
    return category_id is None or parent == category_id
