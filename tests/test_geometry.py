"""Tests for face-oval contour geometry."""

from __future__ import annotations

import numpy as np
import pytest
from conftest import oval_face

from ovalmosaic.mosaic.geometry import (
    FACE_OVAL,
    BoundingRegion,
    Landmark,
    bounding_region,
    build_contour_geometry,
    expand_about_centroid,
    select_contour_points,
)

# ---------------------------------------------------------------------------
# Landmark subset selection
# ---------------------------------------------------------------------------


class TestSelectContourPoints:
    def test_face_oval_has_36_unique_indices(self) -> None:
        assert len(FACE_OVAL) == 36
        assert len(set(FACE_OVAL)) == 36

    def test_scales_to_pixels_in_contour_order(self) -> None:
        face = oval_face(0.5, 0.5, 0.25)
        points = select_contour_points(face, 400, 200)

        assert points.shape == (36, 2)
        first = face[FACE_OVAL[0]]
        assert points[0] == pytest.approx([first.x * 400, first.y * 200])
        last = face[FACE_OVAL[-1]]
        assert points[-1] == pytest.approx([last.x * 400, last.y * 200])

    def test_skips_out_of_range_indices(self) -> None:
        face = oval_face(0.5, 0.5, 0.25)[:300]
        points = select_contour_points(face, 100, 100)
        expected = sum(1 for i in FACE_OVAL if i < 300)
        assert len(points) == expected

    def test_skips_missing_entries(self) -> None:
        face: list[Landmark | None] = list(oval_face(0.5, 0.5, 0.25))
        face[FACE_OVAL[3]] = None
        face[FACE_OVAL[7]] = None
        points = select_contour_points(face, 100, 100)
        assert len(points) == 34

    def test_accepts_tuples_and_arrays(self) -> None:
        face = np.full((478, 3), 0.5)
        face[FACE_OVAL[0]] = (0.1, 0.2, 0.0)
        points = select_contour_points(face, 10, 20)
        assert points[0] == pytest.approx([1.0, 4.0])

    def test_empty_landmarks(self) -> None:
        points = select_contour_points([], 100, 100)
        assert points.shape == (0, 2)


# ---------------------------------------------------------------------------
# Expansion and bounding region
# ---------------------------------------------------------------------------


class TestExpandAboutCentroid:
    def test_factor_one_is_identity(self) -> None:
        pts = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
        np.testing.assert_allclose(expand_about_centroid(pts, 1.0), pts)

    def test_scales_distance_from_centroid(self) -> None:
        pts = np.array([[0.0, 0.0], [20.0, 0.0], [20.0, 20.0], [0.0, 20.0]])
        expanded = expand_about_centroid(pts, 1.5)
        np.testing.assert_allclose(expanded, [[-5, -5], [25, -5], [25, 25], [-5, 25]])

    def test_does_not_mutate_input(self) -> None:
        pts = np.array([[0.0, 0.0], [20.0, 0.0], [0.0, 20.0]])
        before = pts.copy()
        expand_about_centroid(pts, 2.0)
        np.testing.assert_array_equal(pts, before)


class TestBoundingRegion:
    def test_padding_applied(self) -> None:
        pts = np.array([[100.0, 50.0], [200.0, 150.0]])
        region = bounding_region(pts, 0.1, 1000, 1000)
        assert region == BoundingRegion(x=90.0, y=40.0, width=pytest.approx(120.0), height=pytest.approx(120.0))

    def test_clamped_at_origin(self) -> None:
        pts = np.array([[-30.0, -30.0], [50.0, 50.0]])
        region = bounding_region(pts, 0.1, 100, 100)
        assert region.x == 0
        assert region.y == 0

    def test_clamped_at_far_edge(self) -> None:
        pts = np.array([[80.0, 80.0], [130.0, 130.0]])
        region = bounding_region(pts, 0.1, 100, 100)
        assert region.x + region.width == pytest.approx(100)
        assert region.y + region.height == pytest.approx(100)

    def test_degenerate_box_is_at_least_one_pixel(self) -> None:
        pts = np.array([[10.0, 10.0], [10.0, 10.0], [10.0, 10.0]])
        region = bounding_region(pts, 0.08, 100, 100)
        assert region.width == 1
        assert region.height == 1

    def test_entirely_past_far_edge(self) -> None:
        pts = np.array([[150.0, 150.0], [160.0, 170.0], [155.0, 190.0]])
        region = bounding_region(pts, 0.08, 100, 100)
        assert region.x == 100
        assert region.width == 1
        assert region.pixel_box(100, 100) == (99, 99, 1, 1)

    def test_always_within_image_for_random_polygons(self) -> None:
        rng = np.random.default_rng(7)
        for _ in range(200):
            w, h = (int(v) for v in rng.integers(1, 300, size=2))
            pts = rng.uniform(-0.5, 1.5, size=(int(rng.integers(3, 37)), 2)) * (w, h)
            region = bounding_region(pts, float(rng.uniform(0, 0.2)), w, h)

            assert 0 <= region.x <= w
            assert 0 <= region.y <= h
            assert region.width >= 1
            assert region.height >= 1
            assert region.x + region.width <= w + 1e-9 or region.width == 1
            assert region.y + region.height <= h + 1e-9 or region.height == 1

            x0, y0, bw, bh = region.pixel_box(w, h)
            assert 0 <= x0 and x0 + bw <= w
            assert 0 <= y0 and y0 + bh <= h
            assert bw >= 1 and bh >= 1


class TestPixelBox:
    def test_rounds_outward(self) -> None:
        region = BoundingRegion(x=10.4, y=20.6, width=30.2, height=40.0)
        assert region.pixel_box(1000, 1000) == (10, 20, 31, 40)

    def test_pulled_inside_image(self) -> None:
        region = BoundingRegion(x=90.5, y=0.0, width=9.5, height=5.0)
        x0, _, w, _ = region.pixel_box(100, 100)
        assert x0 + w <= 100


# ---------------------------------------------------------------------------
# Full build
# ---------------------------------------------------------------------------


class TestBuildContourGeometry:
    def test_fewer_than_three_points_is_skipped(self) -> None:
        pts = np.array([[10.0, 10.0], [20.0, 20.0]])
        assert build_contour_geometry(pts, 100, 100) is None

    def test_centered_face_scenario(self) -> None:
        points = select_contour_points(oval_face(0.5, 0.5, 0.25), 400, 400)
        geometry = build_contour_geometry(points, 400, 400, expansion=1.12, padding=0.08)

        assert geometry is not None
        assert geometry.polygon.shape == (36, 2)
        radii = np.linalg.norm(geometry.polygon - (200, 200), axis=1)
        np.testing.assert_allclose(radii, 112.0, atol=1e-6)

        region = geometry.region
        assert region.x == pytest.approx(88 - 224 * 0.08)
        assert region.y == pytest.approx(88 - 224 * 0.08)
        assert region.width == pytest.approx(224 * 1.16)
        assert region.height == pytest.approx(224 * 1.16)

    def test_region_contains_polygon(self) -> None:
        points = select_contour_points(oval_face(0.4, 0.6, 0.2, 0.3), 300, 500)
        geometry = build_contour_geometry(points, 300, 500)
        assert geometry is not None
        r = geometry.region
        assert (geometry.polygon[:, 0] >= r.x).all()
        assert (geometry.polygon[:, 0] <= r.x + r.width).all()
        assert (geometry.polygon[:, 1] >= r.y).all()
        assert (geometry.polygon[:, 1] <= r.y + r.height).all()

    def test_rejects_shrinking_expansion(self) -> None:
        pts = np.array([[0.0, 0.0], [10.0, 0.0], [0.0, 10.0]])
        with pytest.raises(ValueError, match="expansion"):
            build_contour_geometry(pts, 100, 100, expansion=0.9)
