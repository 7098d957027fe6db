"""
Tests for the foldgate.algos.validator module.
"""

import numpy as np
import pytest

from foldgate.algos.validator import (
  WORST_DISTANCE_SENTINEL,
  RejectionReason,
  check_backbone,
  check_coordinates,
  detect_clashes,
  quick_clash_removal,
  validate,
)
from foldgate.builder import extended_chain, ideal_helix
from foldgate.config import GateConfig


def _stretch_junction(structure, residue_index: int, length: float):
  """Translate every residue after ``residue_index`` so the C(i)-N(i+1) junction has ``length``."""
  c = structure.residues[residue_index].C.xyz
  n = structure.residues[residue_index + 1].N.xyz
  direction = (n - c) / np.linalg.norm(n - c)
  shift = (length - np.linalg.norm(n - c)) * direction
  for res in structure.residues[residue_index + 1 :]:
    for atom in res.atoms.values():
      atom.xyz += shift
  return structure


# -----------------------
# Clash census
# -----------------------
def test_close_atoms_in_non_adjacent_residues_clash(ca_trace):
  structure = ca_trace([[0.0, 0.0, 0.0], [0.0, 10.0, 0.0], [0.5, 0.0, 0.0]])
  report = validate(structure)
  assert report.is_valid
  assert report.clash_count == 1
  assert report.worst_distance == pytest.approx(0.5)
  assert report.clashes == [(0, 2, pytest.approx(0.5))]


def test_distant_atoms_do_not_clash(ca_trace):
  structure = ca_trace([[0.0, 0.0, 0.0], [0.0, 10.0, 0.0], [4.0, 0.0, 0.0]])
  report = validate(structure)
  assert report.is_valid
  assert report.clash_count == 0
  assert report.worst_distance == WORST_DISTANCE_SENTINEL


def test_adjacent_residues_are_never_counted(ca_trace):
  structure = ca_trace([[0.0, 0.0, 0.0], [0.5, 0.0, 0.0]])
  assert validate(structure).clash_count == 0


def test_clash_coefficient_scales_threshold(ca_trace):
  structure = ca_trace([[0.0, 0.0, 0.0], [0.0, 10.0, 0.0], [2.5, 0.0, 0.0]])
  # C-C threshold is 0.6 * 3.4 = 2.04 by default
  assert detect_clashes(structure).clash_count == 0
  assert detect_clashes(structure, GateConfig(clash_coefficient=0.8)).clash_count == 1


def test_clash_count_is_exact(clashing_trace):
  report = validate(clashing_trace(7))
  assert report.is_valid
  assert report.clash_count == 7


def test_built_backbones_are_clean():
  report = validate(extended_chain("MKTAYIAKQRQISFVKSHFSRQ"))
  assert report.is_valid
  assert report.clash_count == 0
  assert validate(ideal_helix("AAAAAAAAAAAA")).is_valid


# -----------------------
# Backbone continuity
# -----------------------
def test_broken_backbone_is_rejected():
  structure = _stretch_junction(extended_chain("AAAAA"), 2, 3.5)
  report = validate(structure)
  assert not report.is_valid
  assert report.reason is RejectionReason.BROKEN_BACKBONE
  assert report.residue_index == 2
  assert "broken backbone at residue 2" in report.message


@pytest.mark.parametrize("length,valid", [(0.9, False), (1.01, True), (1.99, True), (2.1, False)])
def test_bond_range_is_inclusive(length: float, valid: bool):
  structure = _stretch_junction(extended_chain("AAA"), 0, length)
  assert (check_backbone(structure) is None) is valid


def test_junction_missing_an_atom_is_skipped():
  structure = _stretch_junction(extended_chain("AAAA"), 1, 3.5)
  assert check_backbone(structure).residue_index == 1
  del structure.residues[1].atoms["C"]
  assert check_backbone(structure) is None


def test_full_report_keeps_clash_census():
  structure = extended_chain("AAAA")
  _stretch_junction(structure, 1, 3.5)
  # pull residue 3 onto residue 0 to create clashes on top of the broken junction
  shift = structure.residues[0].CA.xyz - structure.residues[3].CA.xyz
  for atom in structure.residues[3].atoms.values():
    atom.xyz += shift

  short = validate(structure)
  full = validate(structure, full_report=True)
  assert short.reason is full.reason is RejectionReason.BROKEN_BACKBONE
  assert short.clash_count == 0
  assert full.clash_count > 0
  assert not full.is_valid


# -----------------------
# Coordinate sanity
# -----------------------
@pytest.mark.parametrize("value", [np.nan, np.inf, -np.inf])
def test_non_finite_coordinates_are_corrupt(value: float):
  structure = extended_chain("AAAA")
  structure.residues[2].CA.xyz[1] = value
  report = validate(structure, full_report=True)
  assert not report.is_valid
  assert report.reason is RejectionReason.CORRUPT_COORDINATE
  assert report.message == "non-finite coordinate"
  assert report.clash_count == 0


def test_far_coordinates_are_corrupt():
  structure = extended_chain("AAAA")
  structure.residues[3].O.xyz += 5000.0
  report = check_coordinates(structure)
  assert report is not None
  assert report.reason is RejectionReason.CORRUPT_COORDINATE
  assert "out of bounds" in report.message
  assert check_coordinates(structure, GateConfig(coordinate_bound=1e5)) is None


def test_validate_never_mutates(clashing_trace):
  structure = clashing_trace(3)
  before = structure.coords()
  validate(structure, full_report=True)
  assert np.array_equal(before, structure.coords())


# -----------------------
# Repair
# -----------------------
def test_quick_clash_removal(clashing_trace):
  structure = clashing_trace(2)
  fixed = quick_clash_removal(structure)
  assert fixed == 2
  assert validate(structure).clash_count == 0
  assert quick_clash_removal(structure) == 0
  with pytest.raises(ValueError):
    quick_clash_removal(structure, min_distance=3.0, target_distance=2.0)
