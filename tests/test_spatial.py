"""
Unit Tests for Spatial Module (dayatlas/spatial)

Tests the per-day density pass, the trailing noise bucket, cluster merging,
radius estimation and the geometry helpers.
"""

import pytest
import numpy as np

from dayatlas.core.errors import InvalidClusteringParameters
from dayatlas.core.models import NO_GPS_LABEL, SCATTERED_LABEL, Cluster, Coordinate
from dayatlas.spatial import (
    ClusteringConfig,
    bounding_box,
    centroid_of,
    cluster_day,
    cluster_items,
    diagnose_clusters,
    estimate_radius,
    haversine_m,
    merge_clusters,
    pairwise_distances_m,
)
from dayatlas.spatial.geo import METERS_PER_DEGREE_LAT

from .factories import BASE_LAT, BASE_LON, make_item, north_of


def member_sets(clusters):
    return [frozenset(c.member_ids) for c in clusters]


# ==============================================================================
# Geometry Tests
# ==============================================================================

class TestGeometry:
    """Test great-circle helpers."""

    def test_haversine_along_meridian(self):
        assert haversine_m(north_of(0), north_of(250)) == pytest.approx(250.0, abs=1e-4)

    def test_haversine_known_distance(self):
        paris = Coordinate(48.8566, 2.3522)
        london = Coordinate(51.5074, -0.1278)
        assert haversine_m(paris, london) == pytest.approx(343_500, rel=0.01)

    def test_pairwise_matrix_is_symmetric(self):
        coords = [north_of(0), north_of(100), north_of(300)]
        matrix = pairwise_distances_m(coords)
        assert matrix.shape == (3, 3)
        assert np.allclose(matrix, matrix.T)
        assert matrix[0, 2] == pytest.approx(300.0, abs=1e-4)

    def test_pairwise_matrix_empty(self):
        assert pairwise_distances_m([]).shape == (0, 0)

    def test_centroid_ignores_non_geotagged(self):
        items = [make_item("a", meters=0), make_item("b", meters=100), make_item("c")]
        centroid = centroid_of(items)
        assert centroid.lat == pytest.approx(BASE_LAT + 50 / METERS_PER_DEGREE_LAT)
        assert centroid.lon == pytest.approx(BASE_LON)

    def test_centroid_without_coordinates_is_sentinel(self):
        assert centroid_of([make_item("a")]).is_sentinel

    def test_bounding_box_contains_circle(self):
        center = Coordinate(BASE_LAT, BASE_LON)
        min_lat, max_lat, min_lon, max_lon = bounding_box(center, 1000)
        assert haversine_m(center, Coordinate(max_lat, BASE_LON)) == pytest.approx(1000, rel=1e-6)
        # Longitude span is wider than latitude span away from the equator
        assert (max_lon - min_lon) > (max_lat - min_lat)


# ==============================================================================
# Clustering Tests
# ==============================================================================

class TestClusterDay:
    """Test the density pass over a single day."""

    def test_tight_group_with_missing_gps(self):
        """Four items within 10 m form one cluster; the GPS-less item is 'No GPS'."""
        items = [
            make_item("A", meters=0),
            make_item("B", meters=3),
            make_item("C", meters=7),
            make_item("D", meters=10),
            make_item("E"),
        ]

        clusters = cluster_day(items, radius_m=300, min_points=2)

        assert len(clusters) == 2
        assert set(clusters[0].member_ids) == {"A", "B", "C", "D"}
        assert clusters[0].radius_m == 300
        assert clusters[0].label is None
        assert clusters[1].member_ids == ["E"]
        assert clusters[1].label == NO_GPS_LABEL
        assert clusters[1].radius_m == 0
        assert clusters[1].centroid.is_sentinel

    def test_all_noise_becomes_scattered(self):
        items = [
            make_item("F", meters=0),
            make_item("G", meters=1500),
            make_item("H", meters=3200),
        ]

        clusters = cluster_day(items, radius_m=300, min_points=2)

        assert len(clusters) == 1
        assert set(clusters[0].member_ids) == {"F", "G", "H"}
        assert clusters[0].label == SCATTERED_LABEL
        assert clusters[0].radius_m == 0
        assert not clusters[0].centroid.is_sentinel

    def test_scattered_bucket_includes_non_geotagged(self):
        items = [make_item("F", meters=0), make_item("G", meters=2000), make_item("X")]
        clusters = cluster_day(items, radius_m=300, min_points=2)
        assert len(clusters) == 1
        assert clusters[0].label == SCATTERED_LABEL
        assert set(clusters[0].member_ids) == {"F", "G", "X"}

    def test_no_geotagged_items(self):
        items = [make_item("x"), make_item("y")]
        clusters = cluster_day(items, radius_m=300, min_points=2)
        assert len(clusters) == 1
        assert clusters[0].label == NO_GPS_LABEL
        assert clusters[0].member_ids == ["x", "y"]

    def test_empty_input(self):
        assert cluster_day([], radius_m=300, min_points=2) == []

    def test_single_item_min_points_one_is_noise(self):
        """A lone item has no other neighbours, so even min_points=1 leaves it unclustered."""
        clusters = cluster_day([make_item("solo", meters=0)], radius_m=300, min_points=1)
        assert len(clusters) == 1
        assert clusters[0].member_ids == ["solo"]
        assert clusters[0].label == SCATTERED_LABEL
        assert clusters[0].radius_m == 0

    def test_close_pair_is_noise_at_default_min_points(self):
        """Each item of a 10 m pair has one other neighbour, fewer than min_points=2."""
        items = [make_item("a", meters=0), make_item("b", meters=10)]
        clusters = cluster_day(items, radius_m=300, min_points=2)
        assert len(clusters) == 1
        assert set(clusters[0].member_ids) == {"a", "b"}
        assert clusters[0].label == SCATTERED_LABEL
        assert clusters[0].radius_m == 0

    def test_neighbourhood_excludes_the_point_itself(self):
        items = [make_item("a", meters=0), make_item("b", meters=5), make_item("c", meters=10)]
        assert cluster_day(items, radius_m=300, min_points=3)[0].label == SCATTERED_LABEL
        dense = cluster_day(items, radius_m=300, min_points=2)
        assert len(dense) == 1
        assert dense[0].label is None
        assert dense[0].radius_m == 300

    def test_close_pair_clusters_at_min_points_one(self):
        items = [make_item("a", meters=0), make_item("b", meters=10)]
        clusters = cluster_day(items, radius_m=300, min_points=1)
        assert len(clusters) == 1
        assert clusters[0].label is None

    def test_single_item_min_points_two_is_noise(self):
        clusters = cluster_day([make_item("solo", meters=0)], radius_m=300, min_points=2)
        assert clusters[0].label == SCATTERED_LABEL

    @pytest.mark.parametrize("min_points", [0, -1])
    def test_invalid_min_points(self, min_points):
        with pytest.raises(InvalidClusteringParameters):
            cluster_day([make_item("a", meters=0)], radius_m=300, min_points=min_points)

    def test_invalid_parameters_are_value_errors(self):
        with pytest.raises(ValueError):
            cluster_day([make_item("a", meters=0)], radius_m=-1, min_points=2)

    def test_border_points_are_absorbed(self):
        """A chain of points 250 m apart links through core points."""
        items = [make_item(str(i), meters=i * 250) for i in range(5)]
        clusters = cluster_day(items, radius_m=300, min_points=2)
        assert len(clusters) == 1
        assert clusters[0].label is None
        assert len(clusters[0].members) == 5

    def test_sorted_by_size(self):
        items = [
            make_item("s1", meters=0),
            make_item("s2", meters=10),
            make_item("l1", meters=2000),
            make_item("l2", meters=2010),
            make_item("l3", meters=2020),
        ]
        clusters = cluster_day(items, radius_m=300, min_points=2)
        sizes = [len(c.members) for c in clusters]
        assert sizes == sorted(sizes, reverse=True)
        assert set(clusters[0].member_ids) == {"l1", "l2", "l3"}

    def test_centroid_is_mean_of_members(self):
        items = [make_item("a", meters=0), make_item("b", meters=20)]
        cluster = cluster_day(items, radius_m=300, min_points=1)[0]
        assert haversine_m(cluster.centroid, north_of(10)) < 0.01

    def test_determinism(self, paris_day_items):
        first = cluster_day(paris_day_items, radius_m=300, min_points=2)
        second = cluster_day(paris_day_items, radius_m=300, min_points=2)
        assert member_sets(first) == member_sets(second)
        # Ids are regenerated each run
        assert first[0].id != second[0].id

    def test_cluster_items_uses_config(self):
        items = [make_item("a", meters=0), make_item("b", meters=150)]
        assert len(cluster_items(items, ClusteringConfig(radius_m=100))) == 1
        assert cluster_items(items, ClusteringConfig(radius_m=100))[0].label == SCATTERED_LABEL
        assert cluster_items(items, ClusteringConfig(radius_m=200, min_points=1))[0].label is None


class TestOrderSensitivity:
    """
    A border point reachable from two clusters joins whichever reaches it first.

    The bridge point at 90 m is within 100 m of the rightmost left point (0 m)
    and the leftmost right point (180 m) but is not itself a core point.
    """

    LEFT = [("l1", -60), ("l2", -40), ("l3", -20), ("l4", 0)]
    BRIDGE = [("bridge", 90)]
    RIGHT = [("r1", 180), ("r2", 200), ("r3", 220), ("r4", 240)]

    def _items(self, layout):
        return [make_item(item_id, meters=m) for item_id, m in layout]

    def _owner_of_bridge(self, clusters):
        for cluster in clusters:
            if "bridge" in cluster.member_ids:
                return cluster
        raise AssertionError("bridge point not clustered")

    def test_left_first_claims_bridge(self):
        items = self._items(self.LEFT + self.BRIDGE + self.RIGHT)
        clusters = cluster_day(items, radius_m=100, min_points=3)
        owner = self._owner_of_bridge(clusters)
        assert {"l1", "l2", "l3", "l4"} <= set(owner.member_ids)
        assert sorted(len(c.members) for c in clusters) == [4, 5]

    def test_right_first_claims_bridge(self):
        items = self._items(list(reversed(self.LEFT + self.BRIDGE + self.RIGHT)))
        clusters = cluster_day(items, radius_m=100, min_points=3)
        owner = self._owner_of_bridge(clusters)
        assert {"r1", "r2", "r3", "r4"} <= set(owner.member_ids)
        assert sorted(len(c.members) for c in clusters) == [4, 5]


# ==============================================================================
# Diagnostics Tests
# ==============================================================================

class TestDiagnostics:
    def test_two_clusters_have_silhouette(self):
        items = [
            make_item("a", meters=0),
            make_item("b", meters=10),
            make_item("c", meters=3000),
            make_item("d", meters=3010),
            make_item("x"),
        ]
        diagnostics = diagnose_clusters(cluster_day(items, radius_m=300, min_points=1))
        assert diagnostics.num_items == 5
        assert diagnostics.num_geotagged == 4
        assert diagnostics.num_clusters == 2
        assert diagnostics.num_noise == 1
        assert diagnostics.cluster_sizes == [2, 2]
        assert diagnostics.silhouette_score is not None
        assert diagnostics.silhouette_score > 0.9
        assert diagnostics.noise_ratio == pytest.approx(0.2)

    def test_single_cluster_has_no_silhouette(self):
        items = [make_item("a", meters=0), make_item("b", meters=10)]
        diagnostics = diagnose_clusters(cluster_day(items, radius_m=300, min_points=1))
        assert diagnostics.num_clusters == 1
        assert diagnostics.silhouette_score is None


# ==============================================================================
# Merge Tests
# ==============================================================================

def _cluster(prefix, meters_list, day="2024-05-01"):
    members = [make_item(f"{prefix}{i}", day=day, meters=m) for i, m in enumerate(meters_list)]
    return Cluster(day_key=day, centroid=centroid_of(members), radius_m=300, label=prefix, members=members)


class TestMergeClusters:
    def test_merges_close_clusters(self):
        """Centroids 400 m apart merge; the centroid is the mean of the union."""
        first = _cluster("west", [0, 10])
        second = _cluster("east", [400, 410])
        assert haversine_m(first.centroid, second.centroid) == pytest.approx(400, abs=1e-3)

        merged = merge_clusters([first, second], max_merge_distance_m=500)

        assert len(merged) == 1
        assert set(merged[0].member_ids) == {"west0", "west1", "east0", "east1"}
        assert haversine_m(merged[0].centroid, north_of(205)) < 0.01
        assert merged[0].id == first.id
        assert merged[0].label == "west"

    def test_far_clusters_stay_apart(self):
        merged = merge_clusters([_cluster("a", [0]), _cluster("b", [600])], max_merge_distance_m=500)
        assert len(merged) == 2

    def test_sentinel_centroids_never_merge(self):
        no_gps = Cluster(day_key="2024-05-01", label=NO_GPS_LABEL, members=[make_item("x")])
        near_origin = Cluster(
            day_key="2024-05-01",
            centroid=Coordinate(0.0001, 0.0001),
            members=[make_item("y", coordinate=Coordinate(0.0001, 0.0001))],
        )
        merged = merge_clusters([no_gps, near_origin], max_merge_distance_m=500)
        assert len(merged) == 2

    def test_merge_chains_restart(self):
        """After a merge the recomputed centroid can reach a third cluster."""
        merged = merge_clusters(
            [_cluster("a", [0]), _cluster("b", [450]), _cluster("c", [700])],
            max_merge_distance_m=500,
        )
        assert len(merged) == 1
        assert len(merged[0].members) == 3

    def test_result_sorted_by_size(self):
        merged = merge_clusters(
            [_cluster("small", [0]), _cluster("big", [5000, 5010, 5020])],
            max_merge_distance_m=500,
        )
        assert [len(c.members) for c in merged] == [3, 1]


# ==============================================================================
# Radius Estimation Tests
# ==============================================================================

class TestEstimateRadius:
    def test_lower_half_median(self):
        """Pairwise distances {100, 200, 300}: lower half [100], estimate 100."""
        items = [make_item("a", meters=0), make_item("b", meters=100), make_item("c", meters=300)]
        assert estimate_radius(items) == pytest.approx(100.0, abs=1e-3)

    def test_default_with_fewer_than_two_geotagged(self):
        assert estimate_radius([]) == 300
        assert estimate_radius([make_item("a", meters=0), make_item("b")]) == 300

    def test_two_items_use_their_distance(self):
        items = [make_item("a", meters=0), make_item("b", meters=450)]
        assert estimate_radius(items) == pytest.approx(450.0, abs=1e-3)

    def test_clamped_to_minimum(self):
        items = [make_item(str(i), meters=i * 5) for i in range(6)]
        assert estimate_radius(items) == 100

    def test_clamped_to_maximum(self):
        items = [make_item(str(i), meters=i * 5000) for i in range(4)]
        assert estimate_radius(items) == 1000

    def test_ignores_outliers(self):
        items = [make_item(str(i), meters=i * 200) for i in range(5)]
        items.append(make_item("outlier", meters=50_000))
        assert estimate_radius(items) < 1000
