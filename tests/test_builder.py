import numpy as np
import pytest

from foldgate.algos.energy import ForceField
from foldgate.builder import basin_producer, build_backbone, extended_chain, ideal_helix, perturbation_producer
from foldgate.constants import PEPTIDE_BOND_LENGTH
from foldgate.geometry import angle_diff, xyz_distance


def test_build_backbone_junctions_are_nominal():
  structure = extended_chain("MKTAYIAKQR")
  for prev_res, next_res in zip(structure.residues, structure.residues[1:]):
    assert xyz_distance(prev_res.C.xyz, next_res.N.xyz) == pytest.approx(PEPTIDE_BOND_LENGTH)


def test_build_backbone_reproduces_torsions():
  phi = [-60.0, -70.0, -120.0, 60.0, -80.0, -65.0]
  psi = [-40.0, 140.0, 130.0, 40.0, 150.0, -45.0]
  structure = build_backbone("AGSAVL", phi, psi)
  ff = ForceField(structure)
  torsions = ff.backbone_torsions(structure.coords())
  assert [t[0] for t in torsions] == [1, 2, 3, 4]
  for res_index, got_phi, got_psi in torsions:
    assert angle_diff(got_phi, phi[res_index]) == pytest.approx(0.0, abs=1e-6)
    assert angle_diff(got_psi, psi[res_index]) == pytest.approx(0.0, abs=1e-6)


def test_hydrogens_skip_first_residue_and_proline():
  structure = build_backbone("APAG")
  assert structure.residues[0].H is None
  assert structure.residues[1].H is None
  assert structure.residues[2].H is not None
  assert structure.residues[3].H is not None
  assert all(res.H is None for res in build_backbone("AAA", add_hydrogens=False).residues)


def test_build_backbone_rejects_bad_input():
  with pytest.raises(ValueError, match="non-standard"):
    build_backbone("AXA")
  with pytest.raises(ValueError):
    build_backbone("")
  with pytest.raises(ValueError, match="phi and psi"):
    build_backbone("AAA", phi=[-60.0], psi=[-45.0])


def test_ideal_helix_is_compact():
  helix = ideal_helix("A" * 12)
  strand = extended_chain("A" * 12)
  span = lambda s: xyz_distance(s.residues[0].CA.xyz, s.residues[-1].CA.xyz)  # noqa: E731
  # 1.5 A rise per residue in a helix against ~3.3 A in a strand
  assert span(helix) < 20.0
  assert span(strand) > 30.0


def test_perturbation_producer_is_deterministic():
  produce = perturbation_producer(sigma=0.2, seed=7)
  first = produce("ACDE", 3)
  second = produce("ACDE", 3)
  assert len(first) == 3
  assert [s.title for s in first] == ["perturbed_0", "perturbed_1", "perturbed_2"]
  for a, b in zip(first, second):
    assert np.allclose(a.coords(), b.coords())
  assert not np.allclose(first[0].coords(), first[1].coords())


def test_perturbation_producer_uses_template():
  template = ideal_helix("AAAAA")
  (candidate,) = perturbation_producer(template, sigma=0.0)("AAAAA", 1)
  assert np.allclose(candidate.coords(), template.coords())
  assert candidate is not template
  with pytest.raises(ValueError):
    perturbation_producer(sigma=-1.0)


def test_basin_producer():
  candidates = basin_producer(seed=3)("GAVLI", 4)
  assert len(candidates) == 4
  assert all(c.sequence() == "GAVLI" for c in candidates)
  with pytest.raises(ValueError):
    basin_producer(basins="unknown")
