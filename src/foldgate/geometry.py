"""
Geometry primitives shared by the validator, the energy evaluator and the backbone builder.
All distances are in Angstrom, public angles in degrees unless stated otherwise.
"""

import math

import numpy as np


# -----------------------------
# Scalar helpers
# -----------------------------
def safe_acos(cos_value: float) -> float:
  """Return acos with inputs clamped to [-1, 1] to avoid numeric blowups.

  Args:
    cos_value: Cosine value to clamp.

  Returns:
    acos(cos_value) in radians.
  """
  return math.acos(min(1.0, max(-1.0, cos_value)))


def angle_diff(a: float, b: float) -> float:
  """Return the shortest signed difference ``a - b`` between two angles in degrees, in [-180, 180]."""
  return (a - b + 180.0) % 360.0 - 180.0


# -----------------------------
# Point helpers
# -----------------------------
def xyz_distance(a: np.ndarray, b: np.ndarray) -> float:
  """Return Euclidean distance between two points.

  Args:
    a: First point.
    b: Second point.

  Returns:
    Distance in Angstrom.
  """
  return float(np.linalg.norm(np.asarray(a, dtype=float) - np.asarray(b, dtype=float)))


def xyz_angle(v1: np.ndarray, v2: np.ndarray) -> float:
  """Return the angle between two vectors in radians (0 for degenerate vectors)."""
  norm = np.linalg.norm(v1) * np.linalg.norm(v2)
  if norm < 1e-12:
    return 0.0
  return safe_acos(float(np.dot(v1, v2) / norm))


def bond_angle(a: np.ndarray, b: np.ndarray, c: np.ndarray) -> float:
  """Return the angle a-b-c in degrees."""
  return math.degrees(xyz_angle(np.asarray(a) - np.asarray(b), np.asarray(c) - np.asarray(b)))


def dihedral(a: np.ndarray, b: np.ndarray, c: np.ndarray, d: np.ndarray) -> float:
  """Return the signed torsion angle a-b-c-d in degrees (IUPAC convention, range [-180, 180]).

  Degenerate (collinear) inputs return 0.
  """
  b0 = np.asarray(a, dtype=float) - np.asarray(b, dtype=float)
  b1 = np.asarray(c, dtype=float) - np.asarray(b, dtype=float)
  b2 = np.asarray(d, dtype=float) - np.asarray(c, dtype=float)
  n1 = np.linalg.norm(b1)
  if n1 < 1e-12:
    return 0.0
  b1 = b1 / n1
  v = b0 - np.dot(b0, b1) * b1
  w = b2 - np.dot(b2, b1) * b1
  if np.linalg.norm(v) < 1e-12 or np.linalg.norm(w) < 1e-12:
    return 0.0
  x = np.dot(v, w)
  y = np.dot(np.cross(b1, v), w)
  return math.degrees(math.atan2(y, x))


def place_atom(a: np.ndarray, b: np.ndarray, c: np.ndarray, bond_length: float, angle: float, torsion: float) -> np.ndarray:
  """Place a fourth atom D from three reference atoms using internal coordinates (NeRF).

  Args:
    a: Atom A coordinates.
    b: Atom B coordinates.
    c: Atom C coordinates, D is bonded to C.
    bond_length: Length of the C-D bond.
    angle: Bond angle B-C-D in degrees.
    torsion: Torsion angle A-B-C-D in degrees.

  Returns:
    Coordinates for atom D.
  """
  a, b, c = (np.asarray(x, dtype=float) for x in (a, b, c))
  bc = c - b
  norm_bc = np.linalg.norm(bc)
  n = np.cross(b - a, bc)
  norm_n = np.linalg.norm(n)
  if norm_bc < 1e-12 or norm_n < 1e-12:
    raise ValueError("Reference atoms are collinear, cannot place atom")
  bc /= norm_bc
  n /= norm_n
  m = np.column_stack((bc, np.cross(n, bc), n))
  theta = math.radians(angle)
  tau = math.radians(torsion)
  d2 = np.array(
    [
      -bond_length * math.cos(theta),
      bond_length * math.sin(theta) * math.cos(tau),
      bond_length * math.sin(theta) * math.sin(tau),
    ]
  )
  return c + m @ d2


# -----------------------------
# Array helpers
# -----------------------------
def centroid(coords: np.ndarray) -> np.ndarray:
  """Return the geometric center of an (N, 3) coordinate array."""
  coords = np.asarray(coords, dtype=float)
  if coords.size == 0:
    return np.zeros(3)
  return coords.mean(axis=0)


def fibonacci_sphere(num_points: int) -> np.ndarray:
  """Return ``num_points`` roughly uniform unit vectors on a sphere (golden-angle spiral)."""
  if num_points < 2:
    raise ValueError(f"Need at least 2 sphere points, found {num_points}")
  i = np.arange(num_points, dtype=float)
  golden = math.pi * (3.0 - math.sqrt(5.0))
  y = 1.0 - (i / (num_points - 1)) * 2.0
  radius = np.sqrt(np.clip(1.0 - y * y, 0.0, None))
  theta = golden * i
  return np.column_stack((np.cos(theta) * radius, y, np.sin(theta) * radius))
