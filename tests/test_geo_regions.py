from community_connect.core.geo import (
    MAX_GEOCELLS,
    calculate_distance,
    compute_centroid,
    create_expanded_bounding_box,
    extract_coordinates_from_geometry,
    filter_locations_by_proximity,
    generate_geocell,
    geocells_in_bounding_box,
    is_within_bounding_box,
    is_within_radius,
)
from community_connect.core.regions import (
    QLD_REGIONS,
    are_in_same_region,
    find_region_by_suburb,
    get_region,
    get_region_from_coordinates,
    get_regional_suburbs,
    is_point_in_polygon,
)

BRISBANE = (-27.4698, 153.0251)
SURFERS = (-28.0023, 153.4145)


def _point_feature(fid, lat, lng):
    return {"id": fid, "geometry": {"type": "Point", "coordinates": [lng, lat]}, "properties": {}}


def test_haversine_brisbane_to_gold_coast():
    km = calculate_distance(BRISBANE, SURFERS)
    assert 65 < km < 78
    assert calculate_distance(BRISBANE, BRISBANE) == 0
    assert is_within_radius(BRISBANE, SURFERS, 80)
    assert not is_within_radius(BRISBANE, SURFERS, 50)


def test_expanded_box_contains_radius():
    box = create_expanded_bounding_box(BRISBANE, 10)
    assert box["minLat"] < BRISBANE[0] < box["maxLat"]
    assert box["minLng"] < BRISBANE[1] < box["maxLng"]
    assert abs((box["maxLat"] - box["minLat"]) - 20 / 111.0) < 1e-9
    assert is_within_bounding_box(box, (-27.5, 153.05))
    assert not is_within_bounding_box(box, SURFERS)


def test_filter_by_proximity_uses_prefilter_and_radius():
    near = _point_feature("near", -27.48, 153.03)
    far = _point_feature("far", *SURFERS)
    no_geom = {"id": "x", "geometry": None}
    box = create_expanded_bounding_box(BRISBANE, 15)
    kept = filter_locations_by_proximity(
        [near, far, no_geom], BRISBANE, [box["minLat"], box["maxLat"], box["minLng"], box["maxLng"]], 15
    )
    assert [f["id"] for f in kept] == ["near"]
    assert [f["id"] for f in filter_locations_by_proximity([near, far], BRISBANE, None, 100)] == ["near", "far"]


def test_extract_coordinates():
    assert extract_coordinates_from_geometry({"type": "Point", "coordinates": [153.0, -27.0]}) == [153.0, -27.0]
    assert extract_coordinates_from_geometry(
        {"type": "MultiPoint", "coordinates": [[153.1, -27.1], [153.2, -27.2]]}
    ) == [153.1, -27.1]
    collection = {
        "type": "GeometryCollection",
        "geometries": [
            {"type": "LineString", "coordinates": [[152.0, -26.0], [152.5, -26.5]]},
            {"type": "Point", "coordinates": [153.3, -27.3]},
        ],
    }
    assert extract_coordinates_from_geometry(collection) == [153.3, -27.3]
    lines_only = {"type": "GeometryCollection", "geometries": [collection["geometries"][0]]}
    assert extract_coordinates_from_geometry(lines_only) == [152.0, -26.0]
    assert extract_coordinates_from_geometry({"type": "LineString", "coordinates": [[1, 2], [3, 4]]}) is None
    assert extract_coordinates_from_geometry(None) is None


def test_centroids():
    assert compute_centroid({"type": "Point", "coordinates": [153.0, -27.0]}) == (-27.0, 153.0)
    line = {"type": "LineString", "coordinates": [[153.0, -27.0], [153.1, -27.1], [153.2, -27.2]]}
    assert compute_centroid(line) == (-27.1, 153.1)
    square = {
        "type": "Polygon",
        "coordinates": [[[153.0, -27.0], [153.2, -27.0], [153.2, -27.2], [153.0, -27.2]]],
    }
    lat, lng = compute_centroid(square)
    assert abs(lat + 27.1) < 1e-9 and abs(lng - 153.1) < 1e-9
    multi = {"type": "MultiPolygon", "coordinates": [square["coordinates"]]}
    assert compute_centroid(multi) == compute_centroid(square)
    assert compute_centroid({"type": "MultiLineString", "coordinates": [line["coordinates"]]}) == (-27.1, 153.1)
    assert compute_centroid({"type": "GeometryCollection", "geometries": [line]}) == (-27.1, 153.1)
    assert compute_centroid({"type": "Point", "coordinates": []}) is None
    assert compute_centroid({"type": "Polygon", "coordinates": "garbage"}) is None


def test_geocells():
    assert generate_geocell(-27.4698, 153.0251) == "3_-27.470_153.025"
    assert generate_geocell(-27.4698, 153.0251, 2) == "2_-27.47_153.02"

    cells = geocells_in_bounding_box((-27.4705, 153.0245), (-27.4685, 153.0255))
    assert generate_geocell(*BRISBANE) in cells
    assert len(cells) == 3 * 2

    assert geocells_in_bounding_box((-28.0, 152.0), (-27.0, 153.0)) is None
    assert MAX_GEOCELLS == 10_000
    assert geocells_in_bounding_box((-27.0, 153.0), (-28.0, 153.1)) == set()


def test_region_lookup_by_suburb():
    assert QLD_REGIONS[0].id == "sunshine-coast"
    assert find_region_by_suburb("Mooloolaba").id == "sunshine-coast"
    assert find_region_by_suburb("surfers paradise").id == "gold-coast"
    assert find_region_by_suburb("Southport, QLD").id == "gold-coast"
    assert find_region_by_suburb("") is None
    assert find_region_by_suburb("Atlantis") is None

    assert "Caloundra" in get_regional_suburbs("Maroochydore")
    assert get_regional_suburbs("Atlantis") == ["Atlantis"]
    assert are_in_same_region("Mooloolaba", "Caloundra")
    assert not are_in_same_region("Mooloolaba", "Southport")


def test_region_lookup_by_coordinates():
    assert get_region("gold-coast").name == "Gold Coast"
    assert get_region("nowhere") is None
    assert get_region_from_coordinates(*SURFERS).id == "gold-coast"
    assert get_region_from_coordinates(*BRISBANE).id == "brisbane"
    assert get_region_from_coordinates(-10.0, 100.0) is None
    assert get_region_from_coordinates(-10.0, 100.0, "Mooloolaba").id == "sunshine-coast"


def test_point_in_polygon():
    square = [(0, 0), (10, 0), (10, 10), (0, 10), (0, 0)]
    assert is_point_in_polygon((5, 5), square)
    assert not is_point_in_polygon((15, 5), square)
