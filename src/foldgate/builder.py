"""
Ideal-geometry backbone construction and simple candidate producers.

Producers follow one contract: ``producer(sequence, count) -> Iterable[Structure]``. They
are external to the validity gate and are free to emit broken or clashing candidates, the
pipeline filters those out.
"""

from typing import Callable, Iterable, List, Optional, Sequence

import numpy as np

from foldgate.constants import PEPTIDE_BOND_LENGTH, RAMA_BASINS, SECONDARY_STRUCTURE_ANGLES, STANDARD_AAs, getAA
from foldgate.geometry import place_atom
from foldgate.structure import Residue, Structure

# ideal internal coordinates (Engh & Huber), lengths in Angstrom, angles in degrees
N_CA_LENGTH = 1.458
CA_C_LENGTH = 1.525
C_O_LENGTH = 1.229
N_H_LENGTH = 1.01
N_CA_C_ANGLE = 111.2
CA_C_N_ANGLE = 116.2
C_N_CA_ANGLE = 121.7
CA_C_O_ANGLE = 120.5
CA_N_H_ANGLE = 119.0
OMEGA = 180.0

Producer = Callable[[str, int], Iterable[Structure]]


def _check_sequence(sequence: str) -> str:
  sequence = sequence.strip().upper()
  if not sequence:
    raise ValueError("Sequence must contain at least one residue")
  invalid = sorted(set(sequence) - STANDARD_AAs)
  if invalid:
    raise ValueError(f"Sequence contains non-standard amino acids: {', '.join(invalid)}")
  return sequence


def build_backbone(
  sequence: str,
  phi: Optional[Sequence[float]] = None,
  psi: Optional[Sequence[float]] = None,
  add_hydrogens: bool = True,
  title: str = "Built Backbone",
) -> Structure:
  """Build a backbone (N, CA, C, O and optionally amide H) from torsion angles.

  Atoms are placed sequentially with the natural extension reference frame method using
  ideal bond lengths and angles, a trans peptide bond and the nominal 1.33 Å C-N junction.

  Parameters:
    sequence: 1-letter amino acid sequence
    phi: Phi angle per residue in degrees, defaults to an extended chain
    psi: Psi angle per residue in degrees, defaults to an extended chain
    add_hydrogens: Whether to place backbone amide hydrogens (not on the first residue or prolines)
    title: Title of the returned structure

  Returns:
    The built :obj:`Structure`

  """
  sequence = _check_sequence(sequence)
  n = len(sequence)
  default_phi, default_psi = SECONDARY_STRUCTURE_ANGLES["extended"]
  phi = [default_phi] * n if phi is None else list(phi)
  psi = [default_psi] * n if psi is None else list(psi)
  if len(phi) != n or len(psi) != n:
    raise ValueError(f"Expected {n} phi and psi angles, found {len(phi)} and {len(psi)}")

  n_xyz = np.zeros(3)
  ca_xyz = np.array([N_CA_LENGTH, 0.0, 0.0])
  theta = np.radians(180.0 - N_CA_C_ANGLE)
  c_xyz = ca_xyz + CA_C_LENGTH * np.array([np.cos(theta), np.sin(theta), 0.0])

  backbone = [(n_xyz, ca_xyz, c_xyz)]
  for i in range(1, n):
    prev_n, prev_ca, prev_c = backbone[-1]
    next_n = place_atom(prev_n, prev_ca, prev_c, PEPTIDE_BOND_LENGTH, CA_C_N_ANGLE, psi[i - 1])
    next_ca = place_atom(prev_ca, prev_c, next_n, N_CA_LENGTH, C_N_CA_ANGLE, OMEGA)
    next_c = place_atom(prev_c, next_n, next_ca, CA_C_LENGTH, N_CA_C_ANGLE, phi[i])
    backbone.append((next_n, next_ca, next_c))

  residues: List[Residue] = []
  for i, (code, (n_xyz, ca_xyz, c_xyz)) in enumerate(zip(sequence, backbone)):
    res = Residue(index=i, name=getAA(code).abr)
    res.add_atom("N", n_xyz)
    res.add_atom("CA", ca_xyz)
    res.add_atom("C", c_xyz)
    # carbonyl O sits trans to the next N in the peptide plane
    res.add_atom("O", place_atom(n_xyz, ca_xyz, c_xyz, C_O_LENGTH, CA_C_O_ANGLE, psi[i] + 180.0))
    if add_hydrogens and i > 0 and res.name != "PRO":
      res.add_atom("H", place_atom(c_xyz, ca_xyz, n_xyz, N_H_LENGTH, CA_N_H_ANGLE, phi[i] + 180.0))
    residues.append(res)
  return Structure(residues=residues, title=title)


def extended_chain(sequence: str, add_hydrogens: bool = True) -> Structure:
  """Build a fully extended chain, the fallback starting point when no model is available."""
  phi, psi = SECONDARY_STRUCTURE_ANGLES["extended"]
  n = len(_check_sequence(sequence))
  return build_backbone(sequence, [phi] * n, [psi] * n, add_hydrogens=add_hydrogens, title="Extended Chain")


def ideal_helix(sequence: str, add_hydrogens: bool = True) -> Structure:
  """Build an ideal right-handed alpha helix."""
  phi, psi = SECONDARY_STRUCTURE_ANGLES["helix"]
  n = len(_check_sequence(sequence))
  return build_backbone(sequence, [phi] * n, [psi] * n, add_hydrogens=add_hydrogens, title="Ideal Helix")


# -----------------------------
# Candidate producers
# -----------------------------
def perturbation_producer(template: Optional[Structure] = None, sigma: float = 0.3, seed: int = 0) -> Producer:
  """Return a producer that adds isotropic Gaussian noise to a template backbone.

  Parameters:
    template: Structure to perturb, if not provided an extended chain of the requested sequence is used
    sigma: Standard deviation of the coordinate noise in Angstrom
    seed: Seed of the random generator, the producer is deterministic for a given seed

  Returns:
    A producer callable ``(sequence, count) -> List[Structure]``

  """
  if sigma < 0:
    raise ValueError(f"sigma must be non-negative, found {sigma}")

  def produce(sequence: str, count: int) -> List[Structure]:
    rng = np.random.default_rng(seed)
    base = template if template is not None else extended_chain(sequence)
    out = []
    for k in range(count):
      candidate = base.copy()
      coords = candidate.coords()
      candidate.set_coords(coords + rng.normal(0.0, sigma, size=coords.shape))
      candidate.title = f"perturbed_{k}"
      out.append(candidate)
    return out

  return produce


def basin_producer(seed: int = 0, jitter: float = 15.0, basins: str = "general") -> Producer:
  """Return a producer that samples each residue's (phi, psi) from the Ramachandran basins.

  Parameters:
    seed: Seed of the random generator
    jitter: Standard deviation in degrees added around the chosen basin center
    basins: Key of :data:`foldgate.constants.RAMA_BASINS` to sample from

  Returns:
    A producer callable ``(sequence, count) -> List[Structure]``

  """
  if basins not in RAMA_BASINS:
    raise ValueError(f"Unknown basin set '{basins}'")
  centers = np.array([(b[0], b[1]) for b in RAMA_BASINS[basins]], dtype=float)

  def produce(sequence: str, count: int) -> List[Structure]:
    rng = np.random.default_rng(seed)
    n = len(_check_sequence(sequence))
    out = []
    for k in range(count):
      picks = centers[rng.integers(0, len(centers), size=n)]
      angles = picks + rng.normal(0.0, jitter, size=picks.shape)
      out.append(build_backbone(sequence, angles[:, 0], angles[:, 1], title=f"basin_{k}"))
    return out

  return produce
