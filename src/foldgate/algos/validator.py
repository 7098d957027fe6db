"""
Structural validity gate.

Checks run cheapest first and short-circuit on the first structural failure:

1. coordinate sanity (finite values, bounded distance from the chain centroid)
2. backbone continuity across every residue junction
3. the O(n^2) steric clash census

A coordinate failure always stops the scan since distances on corrupt coordinates are
meaningless. A backbone failure stops the scan unless a full report is requested.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

import numpy as np

from foldgate.config import GateConfig
from foldgate.constants import JUNCTION_ATOMS
from foldgate.geometry import xyz_distance
from foldgate.log import logger
from foldgate.structure import Structure

WORST_DISTANCE_SENTINEL = 999.9


### CLASSES ###
class RejectionReason(str, Enum):
  """Why a candidate left the pipeline."""

  CORRUPT_COORDINATE = "corrupt_coordinate"
  BROKEN_BACKBONE = "broken_backbone"
  EXCESSIVE_CLASH = "excessive_clash"
  REFINEMENT_BUDGET_EXHAUSTED = "refinement_budget_exhausted"
  REFINEMENT_ERROR = "refinement_error"


@dataclass
class ClashReport:
  """Result of one validation pass. Never stored on a :obj:`Structure`.

  Attributes:
    clash_count: Number of clashing atom pairs found.
    worst_distance: Smallest distance among clashing pairs (999.9 when none were found or the scan did not run).
    is_valid: Whether every structural check passed.
    reason: Failure category, ``None`` for valid structures.
    message: Human readable explanation of the failure.
    residue_index: Residue ``i`` of the offending C(i)-N(i+1) junction for backbone failures.
    clashes: Clashing ``(atom_i, atom_j, distance)`` tuples, atom indices follow :meth:`Structure.atoms`.
  """
  clash_count: int = 0
  worst_distance: float = WORST_DISTANCE_SENTINEL
  is_valid: bool = True
  reason: Optional[RejectionReason] = None
  message: str = ""
  residue_index: Optional[int] = None
  clashes: List[Tuple[int, int, float]] = field(default_factory=list)

  def __str__(self) -> str:
    if self.is_valid:
      return f"valid ({self.clash_count} clashes, worst {self.worst_distance:.2f} Å)"
    return f"invalid: {self.message}"


### FUNCTIONS ###
def check_coordinates(structure: Structure, config: Optional[GateConfig] = None) -> Optional[ClashReport]:
  """Return a failing report if any coordinate is non-finite or too far from the centroid, otherwise ``None``."""
  config = config or GateConfig()
  coords = structure.coords()
  if coords.size == 0:
    return None
  if not np.all(np.isfinite(coords)):
    return ClashReport(is_valid=False, reason=RejectionReason.CORRUPT_COORDINATE, message="non-finite coordinate")
  extent = np.linalg.norm(coords - coords.mean(axis=0), axis=1)
  if np.any(extent > config.coordinate_bound):
    return ClashReport(
      is_valid=False,
      reason=RejectionReason.CORRUPT_COORDINATE,
      message=f"coordinate out of bounds ({extent.max():.1f} Å from centroid, bound {config.coordinate_bound:.1f})",
    )
  return None


def check_backbone(structure: Structure, config: Optional[GateConfig] = None) -> Optional[ClashReport]:
  """Return a failing report for the first residue junction whose C(i)-N(i+1) length is out of range."""
  config = config or GateConfig()
  low, high = config.bond_range
  for prev_res, next_res in zip(structure.residues, structure.residues[1:]):
    c_atom, n_atom = prev_res.get_atom(JUNCTION_ATOMS[0]), next_res.get_atom(JUNCTION_ATOMS[1])
    if c_atom is None or n_atom is None:
      continue
    length = xyz_distance(c_atom.xyz, n_atom.xyz)
    if not low <= length <= high:
      return ClashReport(
        is_valid=False,
        reason=RejectionReason.BROKEN_BACKBONE,
        message=f"broken backbone at residue {prev_res.index} (C-N {length:.2f} Å, allowed [{low}, {high}])",
        residue_index=prev_res.index,
      )
  return None


def detect_clashes(structure: Structure, config: Optional[GateConfig] = None) -> ClashReport:
  """Run the steric clash census.

  Every unordered atom pair whose residues are neither the same nor adjacent is tested
  against ``clash_coefficient * (r_i + r_j)``. Pairs are visited in a fixed order so the
  resulting clash list is deterministic.

  Parameters:
    structure: Structure to scan
    config: Gate thresholds

  Returns:
    A valid :obj:`ClashReport` carrying the clash count, the worst distance and the clashing pairs

  """
  config = config or GateConfig()
  atoms = structure.atoms()
  report = ClashReport()
  if len(atoms) < 2:
    return report
  coords = np.array([a.xyz for a in atoms], dtype=float)
  radii = np.array([a.radius for a in atoms], dtype=float)
  res_idx = np.array([a.res_index for a in atoms])

  i_idx, j_idx = np.triu_indices(len(atoms), k=1)
  keep = np.abs(res_idx[i_idx] - res_idx[j_idx]) > 1
  i_idx, j_idx = i_idx[keep], j_idx[keep]
  dist = np.linalg.norm(coords[i_idx] - coords[j_idx], axis=1)
  threshold = config.clash_coefficient * (radii[i_idx] + radii[j_idx])
  hits = np.nonzero(dist < threshold)[0]

  report.clash_count = int(len(hits))
  report.clashes = [(int(i_idx[k]), int(j_idx[k]), float(dist[k])) for k in hits]
  if len(hits):
    report.worst_distance = float(dist[hits].min())
  return report


def validate(structure: Structure, config: Optional[GateConfig] = None, full_report: bool = False) -> ClashReport:
  """Validate a structure.

  Parameters:
    structure: Candidate to validate, it is never modified
    config: Gate thresholds, defaults to :obj:`GateConfig`
    full_report: Still run the clash census when the backbone check fails

  Returns:
    The resulting :obj:`ClashReport`

  """
  config = config or GateConfig()
  failure = check_coordinates(structure, config)
  if failure is not None:
    return failure

  failure = check_backbone(structure, config)
  if failure is not None and not full_report:
    return failure

  report = detect_clashes(structure, config)
  if failure is not None:
    failure.clash_count = report.clash_count
    failure.worst_distance = report.worst_distance
    failure.clashes = report.clashes
    return failure
  return report


def quick_clash_removal(structure: Structure, min_distance: float = 2.0, target_distance: float = 2.5, max_rounds: int = 10) -> int:
  """Push severely overlapping non-adjacent atoms apart, in place.

  Each pair closer than ``min_distance`` is moved symmetrically along its separation axis
  until it sits at ``target_distance``. Rounds repeat until no severe overlap remains or
  ``max_rounds`` is reached. Intended as a cheap pre-refinement repair for sampled
  candidates, not as a substitute for the validity gate.

  Parameters:
    structure: Structure to repair in place
    min_distance: Pairs closer than this are treated as severe overlaps
    target_distance: Separation each overlapping pair is pushed to
    max_rounds: Maximum number of passes over all pairs

  Returns:
    Total number of pair corrections applied

  """
  if target_distance < min_distance:
    raise ValueError("target_distance must be at least min_distance")
  atoms = structure.atoms()
  res_idx = np.array([a.res_index for a in atoms])
  fixed = 0
  for _ in range(max_rounds):
    coords = np.array([a.xyz for a in atoms], dtype=float)
    i_idx, j_idx = np.triu_indices(len(atoms), k=1)
    keep = np.abs(res_idx[i_idx] - res_idx[j_idx]) > 1
    i_idx, j_idx = i_idx[keep], j_idx[keep]
    dist = np.linalg.norm(coords[i_idx] - coords[j_idx], axis=1)
    severe = np.nonzero(dist < min_distance)[0]
    if not len(severe):
      break
    for k in severe:
      i, j = i_idx[k], j_idx[k]
      delta = atoms[j].xyz - atoms[i].xyz
      d = float(np.linalg.norm(delta))
      if d < 1e-6:
        # coincident atoms, separate along x
        direction = np.array([1.0, 0.0, 0.0])
      else:
        direction = delta / d
      shift = 0.5 * (target_distance - d) * direction
      atoms[i].xyz -= shift
      atoms[j].xyz += shift
      fixed += 1
  if fixed:
    logger.debug(f"Pushed apart {fixed} severely overlapping atom pairs in {structure.title}")
  return fixed
