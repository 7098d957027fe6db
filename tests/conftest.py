from typing import Sequence

import numpy as np
import pytest

from foldgate.structure import Residue, Structure


def _ca_trace(points: Sequence[Sequence[float]], title: str = "CA Trace") -> Structure:
  residues = []
  for i, xyz in enumerate(points):
    res = Residue(index=i, name="ALA")
    res.add_atom("CA", xyz)
    residues.append(res)
  return Structure(residues=residues, title=title)


def _clashing_trace(num_clashes: int, title: str = "Clashing Trace") -> Structure:
  # groups of three CA atoms 20 A apart, the first and third of each group sit 0.5 A apart
  points = []
  for k in range(num_clashes):
    base = np.array([20.0 * k, 0.0, 0.0])
    points.extend([base, base + [0.0, 10.0, 0.0], base + [0.5, 0.0, 0.0]])
  return _ca_trace(points, title)


@pytest.fixture
def ca_trace():
  """Factory for CA-only structures, one residue per point."""
  return _ca_trace


@pytest.fixture
def clashing_trace():
  """Factory for CA-only structures with an exact number of clashing pairs."""
  return _clashing_trace
