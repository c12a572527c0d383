from community_connect.services.clustering import ClusterIndex, MarkerData, abbreviate_count

WORLD = {"west": -180, "south": -85, "east": 180, "north": 85}


def _marker(i, lat, lng, marker_type="traffic", color="#f97316"):
    return MarkerData(id=f"m{i}", lat=lat, lng=lng, markerType=marker_type, color=color)


def _total(features):
    return sum(f["properties"]["point_count"] if f["properties"]["cluster"] else 1 for f in features)


def _sample_markers():
    markers = [
        _marker(0, -27.4700, 153.0200),
        _marker(1, -27.4701, 153.0201),
        _marker(2, -27.4702, 153.0202, "crime", "#9333ea"),
        _marker(3, -28.0000, 153.4000),
        _marker(4, -26.6800, 153.1200),
    ]
    return ClusterIndex().load(markers)


def test_point_count_preserved_at_every_zoom():
    index = _sample_markers()
    for zoom in range(0, 18):
        assert _total(index.get_clusters(WORLD, zoom)) == 5


def test_low_zoom_clusters_and_high_zoom_leaves():
    index = _sample_markers()
    assert len(index.get_clusters(WORLD, 0)) == 1
    leaves = index.get_clusters(WORLD, 17)
    assert len(leaves) == 5
    assert all(not f["properties"]["cluster"] for f in leaves)
    assert {f["properties"]["id"] for f in leaves} == {"m0", "m1", "m2", "m3", "m4"}


def test_dominant_type_and_color():
    index = _sample_markers()
    (cluster,) = index.get_clusters(WORLD, 0)
    props = cluster["properties"]
    assert props["cluster"]
    assert props["point_count"] == 5
    assert props["point_count_abbreviated"] == 5
    assert props["dominantType"] == "traffic"
    assert props["dominantColor"] == "#f97316"


def test_leaves_and_expansion_zoom_for_tight_group():
    markers = [_marker(i, -27.47, 153.02 + i * 0.0001) for i in range(3)]
    index = ClusterIndex().load(markers)
    (cluster,) = index.get_clusters(WORLD, 10)
    cid = cluster["properties"]["cluster_id"]

    leaves = index.get_cluster_leaves(cid)
    assert len(leaves) == 3
    assert {leaf["properties"]["id"] for leaf in leaves} == {"m0", "m1", "m2"}
    assert len(index.get_cluster_leaves(cid, limit=2)) == 2
    assert len(index.get_cluster_leaves(cid, limit=10, offset=2)) == 1

    assert index.get_cluster_expansion_zoom(cid) == 17


def test_invalid_cluster_id():
    index = _sample_markers()
    # origin zoom 5, origin index far past the end of that zoom's nodes
    bogus = (1000 << 5) + 5 + index.point_count
    assert index.get_cluster_leaves(bogus) == []
    assert index.get_cluster_expansion_zoom(bogus) == 16


def test_antimeridian_bounds():
    index = ClusterIndex().load([_marker(0, 0.0, 179.5), _marker(1, 0.0, -179.5), _marker(2, 0.0, 0.0)])
    features = index.get_clusters({"west": 170, "south": -10, "east": -170, "north": 10}, 17)
    assert {f["properties"]["id"] for f in features} == {"m0", "m1"}


def test_empty_index():
    index = ClusterIndex().load([])
    assert index.point_count == 0
    assert index.get_clusters(WORLD, 5) == []


def test_abbreviate_count():
    assert abbreviate_count(999) == 999
    assert abbreviate_count(1000) == "1k"
    assert abbreviate_count(1500) == "1.5k"
    assert abbreviate_count(12345) == "12k"
