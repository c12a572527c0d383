from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_TYPE = "traffic"
DEFAULT_COLOR = "#6b7280"

_INF_ZOOM = math.inf


@dataclass
class MarkerData:
    id: str
    lat: float
    lng: float
    markerType: str
    color: str
    feature: Any = None
    timestamp: float = 0.0


# ──────────────────────────────────────────────────────────────
# Web-Mercator unit space (0..1 on both axes)
# ──────────────────────────────────────────────────────────────

def lng_x(lng: float) -> float:
    return lng / 360.0 + 0.5


def lat_y(lat: float) -> float:
    s = math.sin(lat * math.pi / 180.0)
    if s >= 1.0:
        return 0.0
    if s <= -1.0:
        return 1.0
    y = 0.5 - 0.25 * math.log((1 + s) / (1 - s)) / math.pi
    return 0.0 if y < 0 else 1.0 if y > 1 else y


def x_lng(x: float) -> float:
    return (x - 0.5) * 360.0


def y_lat(y: float) -> float:
    y2 = (180.0 - y * 360.0) * math.pi / 180.0
    return 360.0 * math.atan(math.exp(y2)) / math.pi - 90.0


def _round_half_up(v: float) -> int:
    return int(math.floor(v + 0.5))


def abbreviate_count(count: int) -> Any:
    if count >= 10000:
        return f"{_round_half_up(count / 1000)}k"
    if count >= 1000:
        v = _round_half_up(count / 100) / 10
        return f"{int(v)}k" if v == int(v) else f"{v}k"
    return count


# ──────────────────────────────────────────────────────────────
# Index nodes + grid
# ──────────────────────────────────────────────────────────────

@dataclass
class _Node:
    x: float
    y: float
    zoom: float = _INF_ZOOM
    index: int = -1                 # leaf: position in the loaded markers
    id: int = -1                    # cluster: encoded cluster id
    parent_id: int = -1
    num_points: int = 0             # 0 for leaves
    props: Optional[Dict[str, Any]] = None


@dataclass
class _GridIndex:
    """Uniform grid over unit space; cell size matches the query radius used against it."""

    nodes: List[_Node]
    cell: float
    buckets: Dict[Tuple[int, int], List[int]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for i, n in enumerate(self.nodes):
            self.buckets.setdefault(self._key(n.x, n.y), []).append(i)

    def _key(self, x: float, y: float) -> Tuple[int, int]:
        return int(math.floor(x / self.cell)), int(math.floor(y / self.cell))

    def within(self, x: float, y: float, r: float) -> List[int]:
        cx0, cy0 = self._key(x - r, y - r)
        cx1, cy1 = self._key(x + r, y + r)
        r2 = r * r
        out: List[int] = []
        for cx in range(cx0, cx1 + 1):
            for cy in range(cy0, cy1 + 1):
                for i in self.buckets.get((cx, cy), ()):
                    n = self.nodes[i]
                    dx = n.x - x
                    dy = n.y - y
                    if dx * dx + dy * dy <= r2:
                        out.append(i)
        out.sort()
        return out

    def range(self, min_x: float, min_y: float, max_x: float, max_y: float) -> List[int]:
        return [
            i for i, n in enumerate(self.nodes)
            if min_x <= n.x <= max_x and min_y <= n.y <= max_y
        ]


def _merge_counts(into: Dict[str, int], other: Dict[str, int]) -> None:
    for k, v in other.items():
        into[k] = into.get(k, 0) + v


def _dominant(counts: Dict[str, int], default: str) -> str:
    best = default
    best_n = 0
    for k, v in counts.items():
        if v > best_n:
            best, best_n = k, v
    return best


class ClusterIndex:
    """
    Hierarchical greedy point clustering, supercluster compatible.

    Cluster ids encode the index of the seed point and the zoom it was formed at,
    so children and leaves can be recovered without extra bookkeeping.
    """

    def __init__(self, *, radius: float = 60, max_zoom: int = 16, min_zoom: int = 0, extent: int = 512, min_points: int = 2):
        self.radius = radius
        self.max_zoom = max_zoom
        self.min_zoom = min_zoom
        self.extent = extent
        self.min_points = min_points
        self.markers: List[MarkerData] = []
        self._trees: Dict[int, _GridIndex] = {}

    @property
    def point_count(self) -> int:
        return len(self.markers)

    def _radius_at(self, zoom: float) -> float:
        return self.radius / (self.extent * math.pow(2, zoom))

    def _make_tree(self, nodes: List[_Node], zoom: int) -> _GridIndex:
        # Trees at zoom z are queried with the radius of zoom z-1
        return _GridIndex(nodes=nodes, cell=self._radius_at(zoom - 1))

    def load(self, markers: Iterable[MarkerData]) -> "ClusterIndex":
        self.markers = list(markers)
        self._trees = {}

        nodes = [
            _Node(x=lng_x(m.lng), y=lat_y(m.lat), index=i)
            for i, m in enumerate(self.markers)
        ]
        self._trees[self.max_zoom + 1] = self._make_tree(nodes, self.max_zoom + 1)

        for z in range(self.max_zoom, self.min_zoom - 1, -1):
            nodes = self._cluster(nodes, z)
            self._trees[z] = self._make_tree(nodes, z)

        logger.debug("[cluster] loaded %d markers over zooms %d..%d", len(self.markers), self.min_zoom, self.max_zoom)
        return self

    # ──────────────────────────────────────────────────────────
    # Build
    # ──────────────────────────────────────────────────────────

    def _leaf_props(self, index: int) -> Dict[str, Any]:
        m = self.markers[index]
        return {
            "count": 1,
            "typeCounts": {m.markerType: 1},
            "colorCounts": {m.color: 1},
        }

    def _node_props(self, node: _Node) -> Dict[str, Any]:
        if node.num_points:
            p = node.props or {}
            return {
                "count": p.get("count", node.num_points),
                "typeCounts": dict(p.get("typeCounts") or {}),
                "colorCounts": dict(p.get("colorCounts") or {}),
            }
        return self._leaf_props(node.index)

    def _cluster(self, points: List[_Node], zoom: int) -> List[_Node]:
        r = self._radius_at(zoom)
        tree = self._trees[zoom + 1]
        clusters: List[_Node] = []

        for i, p in enumerate(points):
            if p.zoom <= zoom:
                continue
            p.zoom = zoom

            neighbor_ids = tree.within(p.x, p.y, r)
            origin_n = p.num_points or 1
            num_points = origin_n
            for nid in neighbor_ids:
                b = tree.nodes[nid]
                if b.zoom > zoom:
                    num_points += b.num_points or 1

            if num_points > origin_n and num_points >= self.min_points:
                wx = p.x * origin_n
                wy = p.y * origin_n
                props = self._node_props(p)
                cid = (i << 5) + (zoom + 1) + len(self.markers)

                for nid in neighbor_ids:
                    b = tree.nodes[nid]
                    if b.zoom <= zoom:
                        continue
                    b.zoom = zoom
                    n2 = b.num_points or 1
                    wx += b.x * n2
                    wy += b.y * n2
                    b.parent_id = cid
                    bp = self._node_props(b)
                    props["count"] += bp["count"]
                    _merge_counts(props["typeCounts"], bp["typeCounts"])
                    _merge_counts(props["colorCounts"], bp["colorCounts"])

                p.parent_id = cid
                clusters.append(
                    _Node(x=wx / num_points, y=wy / num_points, id=cid, num_points=num_points, props=props)
                )
            else:
                clusters.append(p)
                if num_points > 1:
                    for nid in neighbor_ids:
                        b = tree.nodes[nid]
                        if b.zoom <= zoom:
                            continue
                        b.zoom = zoom
                        clusters.append(b)

        return clusters

    # ──────────────────────────────────────────────────────────
    # Output
    # ──────────────────────────────────────────────────────────

    def _leaf_feature(self, index: int) -> Dict[str, Any]:
        m = self.markers[index]
        return {
            "type": "Feature",
            "properties": {
                "cluster": False,
                "id": m.id,
                "markerType": m.markerType,
                "color": m.color,
                "feature": m.feature,
                "timestamp": m.timestamp,
            },
            "geometry": {"type": "Point", "coordinates": [m.lng, m.lat]},
        }

    def _cluster_feature(self, node: _Node) -> Dict[str, Any]:
        props = node.props or {}
        return {
            "type": "Feature",
            "id": node.id,
            "properties": {
                "cluster": True,
                "cluster_id": node.id,
                "point_count": node.num_points,
                "point_count_abbreviated": abbreviate_count(node.num_points),
                "dominantType": _dominant(props.get("typeCounts") or {}, DEFAULT_TYPE),
                "dominantColor": _dominant(props.get("colorCounts") or {}, DEFAULT_COLOR),
            },
            "geometry": {"type": "Point", "coordinates": [x_lng(node.x), y_lat(node.y)]},
        }

    def _feature(self, node: _Node) -> Dict[str, Any]:
        return self._cluster_feature(node) if node.num_points else self._leaf_feature(node.index)

    def _limit_zoom(self, zoom: float) -> int:
        return int(max(self.min_zoom, min(math.floor(zoom), self.max_zoom + 1)))

    def get_clusters(self, bounds: Dict[str, float], zoom: float) -> List[Dict[str, Any]]:
        west, south, east, north = (
            float(bounds["west"]), float(bounds["south"]), float(bounds["east"]), float(bounds["north"])
        )

        min_lng = ((west + 180) % 360 + 360) % 360 - 180
        min_lat = max(-90.0, min(90.0, south))
        max_lng = 180.0 if east == 180 else ((east + 180) % 360 + 360) % 360 - 180
        max_lat = max(-90.0, min(90.0, north))

        if east - west >= 360:
            min_lng, max_lng = -180.0, 180.0
        elif min_lng > max_lng:
            eastern = self.get_clusters({"west": min_lng, "south": min_lat, "east": 180.0, "north": max_lat}, zoom)
            western = self.get_clusters({"west": -180.0, "south": min_lat, "east": max_lng, "north": max_lat}, zoom)
            return eastern + western

        tree = self._trees.get(self._limit_zoom(zoom))
        if tree is None:
            return []
        ids = tree.range(lng_x(min_lng), lat_y(max_lat), lng_x(max_lng), lat_y(min_lat))
        return [self._feature(tree.nodes[i]) for i in ids]

    def _origin_zoom(self, cluster_id: int) -> int:
        return (cluster_id - len(self.markers)) % 32

    def _origin_id(self, cluster_id: int) -> int:
        return (cluster_id - len(self.markers)) >> 5

    def get_children(self, cluster_id: int) -> List[Dict[str, Any]]:
        origin_zoom = self._origin_zoom(cluster_id)
        origin_id = self._origin_id(cluster_id)
        tree = self._trees.get(origin_zoom)
        if tree is None or origin_id < 0 or origin_id >= len(tree.nodes):
            raise ValueError("No cluster with the specified id.")

        origin = tree.nodes[origin_id]
        r = self._radius_at(origin_zoom - 1)
        children = [
            self._feature(tree.nodes[i])
            for i in tree.within(origin.x, origin.y, r)
            if tree.nodes[i].parent_id == cluster_id
        ]
        if not children:
            raise ValueError("No cluster with the specified id.")
        return children

    def _append_leaves(self, result: List[Dict[str, Any]], cluster_id: int, limit: int, offset: int, skipped: int) -> int:
        for child in self.get_children(cluster_id):
            props = child["properties"]
            if props.get("cluster"):
                if skipped + props["point_count"] <= offset:
                    skipped += props["point_count"]
                else:
                    skipped = self._append_leaves(result, props["cluster_id"], limit, offset, skipped)
            elif skipped < offset:
                skipped += 1
            else:
                result.append(child)
            if len(result) == limit:
                break
        return skipped

    def get_cluster_leaves(self, cluster_id: int, limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        leaves: List[Dict[str, Any]] = []
        try:
            self._append_leaves(leaves, int(cluster_id), int(limit), int(offset), 0)
        except ValueError:
            return []
        return leaves

    def get_cluster_expansion_zoom(self, cluster_id: int) -> int:
        try:
            cid = int(cluster_id)
            expansion = self._origin_zoom(cid) - 1
            while expansion <= self.max_zoom:
                children = self.get_children(cid)
                expansion += 1
                if len(children) != 1:
                    break
                cid = children[0]["properties"]["cluster_id"]
            return expansion
        except (ValueError, KeyError):
            return 16
