"""
Tests for the foldgate.algos.energy module.
"""

import math

import numpy as np
import pytest

from foldgate.algos.energy import (
  ENERGY_TERMS,
  EnergyBreakdown,
  ForceField,
  burial_statistics,
  clamp_energy,
  detect_hydrogen_bonds,
  evaluate,
  hbond_statistics,
)
from foldgate.builder import build_backbone, extended_chain, ideal_helix
from foldgate.config import EnergyConfig


# -----------------------
# Clamping
# -----------------------
@pytest.mark.parametrize("value", [-1e12, -10000.0, -3.5, 0.0, 42.0, 10000.0, 1e30, math.inf, -math.inf, math.nan])
def test_clamp_is_bounded_and_idempotent(value: float):
  once = clamp_energy(value)
  assert -10000.0 <= once <= 10000.0
  assert clamp_energy(once) == once


def test_clamp_nan_saturates_high():
  assert clamp_energy(math.nan, 50.0) == 50.0


# -----------------------
# Evaluation
# -----------------------
def test_breakdown_is_finite_and_sums():
  energy = evaluate(ideal_helix("ACDEFGHIKLMN"))
  assert isinstance(energy, EnergyBreakdown)
  terms = [getattr(energy, name) for name in ENERGY_TERMS]
  assert all(math.isfinite(t) for t in terms)
  assert energy.unclamped_total == pytest.approx(sum(terms))
  assert energy.total == energy.unclamped_total
  assert not energy.saturated
  assert set(ENERGY_TERMS) <= set(energy.as_dict())


def test_overlapping_atoms_saturate():
  structure = extended_chain("AAAAA")
  shift = structure.residues[0].CA.xyz - structure.residues[3].CA.xyz
  for atom in structure.residues[3].atoms.values():
    atom.xyz += shift
  energy = evaluate(structure, energy_clamp=500.0)
  assert energy.saturated
  assert energy.total == 500.0
  assert energy.unclamped_total > 500.0


def test_non_finite_input_still_yields_bounded_total():
  structure = extended_chain("AAAA")
  structure.residues[1].CA.xyz[:] = np.nan
  energy = evaluate(structure)
  assert energy.saturated
  assert -10000.0 <= energy.total <= 10000.0


def test_optional_terms_can_be_disabled():
  helix = ideal_helix("AAAAAAAAAA")
  energy = evaluate(helix, EnergyConfig(dihedral_weight=0.0, solvation=False, hbond=False))
  assert energy.dihedral == 0.0
  assert energy.solvation == 0.0
  assert energy.hbond == 0.0


def test_dihedral_term_prefers_basins():
  favoured = evaluate(ideal_helix("AAAAAAAA")).dihedral
  phi = [60.0] * 8
  psi = [-120.0] * 8
  disallowed = evaluate(build_backbone("AAAAAAAA", phi, psi)).dihedral
  assert 0.0 <= favoured < disallowed


# -----------------------
# Hydrogen bonds
# -----------------------
def test_hbond_energy_is_zero_without_partners():
  # donors and acceptors of a dipeptide are always adjacent
  energy = evaluate(extended_chain("AA"))
  assert energy.hbond == 0.0
  assert detect_hydrogen_bonds(extended_chain("AA")) == []


def test_helix_forms_backbone_hbonds():
  helix = ideal_helix("A" * 14)
  hbonds = detect_hydrogen_bonds(helix)
  assert hbonds
  assert all(hb.energy < 0.0 for hb in hbonds)
  assert all(hb.separation >= 2 for hb in hbonds)

  stats = hbond_statistics(helix)
  assert stats["num_hbonds"] == len(hbonds)
  assert stats["helix_hbonds"] > 0
  assert stats["total_energy"] == pytest.approx(evaluate(helix).hbond)


def test_hbond_statistics_empty():
  stats = hbond_statistics(extended_chain("AA"))
  assert stats["num_hbonds"] == 0
  assert stats["average_distance"] == 0.0


# -----------------------
# Solvation
# -----------------------
def test_isolated_residue_is_fully_exposed():
  structure = extended_chain("A")
  ff = ForceField(structure)
  area = ff.sasa(structure.coords())
  radius = 1.7 + 1.4
  assert area == {0: pytest.approx(4.0 * math.pi * radius * radius)}


def test_burial_statistics_counts_every_residue():
  helix = ideal_helix("LKLLKKLLKLLK")
  stats = burial_statistics(helix)
  assert stats["num_buried"] + stats["num_partial"] + stats["num_exposed"] == 12
  assert stats["hydrophobic_buried"] + stats["hydrophobic_exposed"] == 7
  assert stats["total_sasa"] > 0.0


# -----------------------
# Gradient
# -----------------------
def test_gradient_matches_finite_differences():
  structure = extended_chain("AGA")
  rng = np.random.default_rng(0)
  coords = structure.coords() + rng.normal(0.0, 0.05, size=(len(structure.atoms()), 3))
  ff = ForceField(structure)
  _, grad = ff.energy_and_gradient(coords)

  h = 1e-6
  for atom in range(0, ff.num_atoms, 3):
    for axis in range(3):
      plus, minus = coords.copy(), coords.copy()
      plus[atom, axis] += h
      minus[atom, axis] -= h
      numeric = (ff.energy_and_gradient(plus)[0] - ff.energy_and_gradient(minus)[0]) / (2.0 * h)
      assert grad[atom, axis] == pytest.approx(numeric, rel=1e-3, abs=1e-3)


def test_differentiable_energy_matches_breakdown():
  helix = ideal_helix("AAAAAA")
  ff = ForceField(helix)
  energy, _ = ff.energy_and_gradient(helix.coords())
  parts = ff.breakdown(helix.coords())
  assert energy == pytest.approx(parts.bond + parts.angle + parts.vdw + parts.electrostatic)
