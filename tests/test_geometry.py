
import numpy as np
import pytest

from foldgate.geometry import angle_diff, bond_angle, centroid, dihedral, fibonacci_sphere, place_atom, xyz_distance


def test_angle_diff_wraps_to_shortest_arc():
  assert angle_diff(170.0, -170.0) == pytest.approx(-20.0)
  assert angle_diff(-170.0, 170.0) == pytest.approx(20.0)
  assert angle_diff(45.0, 45.0) == pytest.approx(0.0)


def test_dihedral_known_values():
  a = np.array([1.0, 0.0, 0.0])
  b = np.array([0.0, 0.0, 0.0])
  c = np.array([0.0, 1.0, 0.0])
  assert dihedral(a, b, c, np.array([1.0, 1.0, 0.0])) == pytest.approx(0.0, abs=1e-9)
  assert dihedral(a, b, c, np.array([-1.0, 1.0, 0.0])) == pytest.approx(180.0, abs=1e-9)
  assert abs(dihedral(a, b, c, np.array([0.0, 1.0, 1.0]))) == pytest.approx(90.0, abs=1e-9)


def test_dihedral_degenerate_returns_zero():
  p = np.zeros(3)
  assert dihedral(p, p, p, p) == 0.0


@pytest.mark.parametrize("torsion", [-150.0, -60.0, 0.0, 75.0, 180.0])
def test_place_atom_reproduces_internal_coordinates(torsion: float):
  a = np.array([0.0, 1.4, 0.3])
  b = np.array([0.0, 0.0, 0.0])
  c = np.array([1.5, 0.0, 0.0])
  d = place_atom(a, b, c, 1.33, 116.2, torsion)

  assert xyz_distance(c, d) == pytest.approx(1.33)
  assert bond_angle(b, c, d) == pytest.approx(116.2)
  assert angle_diff(dihedral(a, b, c, d), torsion) == pytest.approx(0.0, abs=1e-6)


def test_place_atom_rejects_collinear_references():
  with pytest.raises(ValueError):
    place_atom(np.zeros(3), np.array([1.0, 0.0, 0.0]), np.array([2.0, 0.0, 0.0]), 1.0, 110.0, 60.0)


def test_array_helpers():
  coords = np.array([[0.0, 0.0, 0.0], [2.0, 0.0, 0.0], [0.0, 4.0, 0.0]])
  assert np.allclose(centroid(coords), [2.0 / 3.0, 4.0 / 3.0, 0.0])
  assert np.allclose(centroid(np.zeros((0, 3))), 0.0)


def test_fibonacci_sphere_unit_vectors():
  points = fibonacci_sphere(100)
  assert points.shape == (100, 3)
  assert np.allclose(np.linalg.norm(points, axis=1), 1.0)
  # roughly uniform, the mean direction is near the origin
  assert np.linalg.norm(points.mean(axis=0)) < 0.05
  with pytest.raises(ValueError):
    fibonacci_sphere(1)
