"""
Backbone potential energy with hard saturation.

The total is the sum of seven independent terms:

- ``vdw``: Lennard-Jones 12-6 with Lorentz-Berthelot combination
- ``electrostatic``: Coulomb with a distance dependent dielectric (eps = 4r)
- ``bond`` / ``angle``: harmonic penalties against AMBER ff14SB backbone geometry
- ``dihedral``: Ramachandran basin potential over backbone (phi, psi), optional
- ``hbond``: backbone N-H...O=C hydrogen bonds, exactly 0 when none qualify
- ``solvation``: CA based SASA burial term driven by Kyte-Doolittle hydropathy

Non-bonded terms skip atom pairs in the same or adjacent residues, the same exclusion rule as
the clash census. The reported total is clamped to ``[-energy_clamp, energy_clamp]``, a
clamped result sets :attr:`EnergyBreakdown.saturated`.

:class:`ForceField` precomputes every index table once per structure so refinement can
evaluate energies and gradients directly on coordinate arrays.
"""

import math
from dataclasses import asdict, dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
from scipy.spatial.distance import cdist

from foldgate.config import EnergyConfig
from foldgate.constants import (
  ANGLE_PARAMS,
  BOND_PARAMS,
  BURIAL_ENTROPY_PENALTY,
  BURIED_SASA_CUTOFF,
  COULOMB_CONSTANT,
  DEFAULT_ANGLE_PARAMS,
  DEFAULT_BOND_PARAMS,
  DIELECTRIC_SCALE,
  HBOND_HO_DISTANCE_RANGE,
  HBOND_MIN_ANGLE,
  HBOND_NO_DISTANCE_RANGE,
  HBOND_OPTIMAL_DISTANCE,
  HBOND_WELL_DEPTH,
  HYDROPHOBIC_EFFECT_SCALE,
  RAMA_BASINS,
  RAMA_SCALE,
  SOLVATION_CA_RADIUS,
  SOLVATION_PROBE_RADIUS,
  SOLVATION_SIGMA_SCALE,
  SOLVATION_SPHERE_POINTS,
  hydrophobicity,
  lj_params,
)
from foldgate.geometry import angle_diff, bond_angle, dihedral, fibonacci_sphere
from foldgate.structure import Structure

DEFAULT_ENERGY_CLAMP = 10000.0
# floor on pair distances, keeps coincident atoms finite
MIN_PAIR_DISTANCE = 1e-3

ENERGY_TERMS = ("vdw", "electrostatic", "bond", "angle", "dihedral", "hbond", "solvation")


### CLASSES ###
@dataclass
class EnergyBreakdown:
  """Per-term energies in kcal/mol.

  Attributes:
    total: Sum of all terms clamped to the configured band.
    unclamped_total: Raw sum before clamping (may be ``inf`` or ``nan`` on corrupt input).
    saturated: Whether the clamp engaged, the energy overflow diagnostic.
  """
  vdw: float = 0.0
  electrostatic: float = 0.0
  bond: float = 0.0
  angle: float = 0.0
  dihedral: float = 0.0
  hbond: float = 0.0
  solvation: float = 0.0
  total: float = 0.0
  unclamped_total: float = 0.0
  saturated: bool = False

  def as_dict(self) -> Dict[str, float]:
    return asdict(self)


@dataclass
class HBond:
  """A backbone hydrogen bond from the amide of ``donor`` to the carbonyl of ``acceptor``."""
  donor: int
  acceptor: int
  distance: float  # N...O in Angstrom
  angle: float  # degrees, 180 is ideal
  energy: float

  @property
  def separation(self) -> int:
    return abs(self.donor - self.acceptor)


### FUNCTIONS ###
def clamp_energy(value: float, bound: float = DEFAULT_ENERGY_CLAMP) -> float:
  """Saturate an energy to ``[-bound, bound]``. ``nan`` saturates to ``+bound``.

  Clamping an already clamped value is a no-op.
  """
  if math.isnan(value):
    return bound
  return min(bound, max(-bound, value))


def _rama_energy(phi: float, psi: float, res_name: str) -> float:
  """Return the Ramachandran basin penalty for one residue (0 at a basin center)."""
  key = res_name if res_name in RAMA_BASINS else "general"
  best = 0.0
  for phi0, psi0, sig_phi, sig_psi in RAMA_BASINS[key]:
    d_phi = angle_diff(phi, phi0)
    d_psi = angle_diff(psi, psi0)
    best = max(best, math.exp(-0.5 * ((d_phi / sig_phi) ** 2 + (d_psi / sig_psi) ** 2)))
  return RAMA_SCALE[key] * (1.0 - best)


class ForceField:
  """Index tables and energy functions for one fixed atom layout.

  Coordinates passed to every method must follow :meth:`Structure.atoms` order of the
  structure the force field was built from.

  Args:
    structure: Structure whose topology is tabulated.
    config: Energy settings.
  """

  def __init__(self, structure: Structure, config: Optional[EnergyConfig] = None):
    self.config = config or EnergyConfig()
    atoms = structure.atoms()
    self.num_atoms = len(atoms)
    index = {(a.res_index, a.name): k for k, a in enumerate(atoms)}

    # bonds and angles
    bonds: List[Tuple[int, int, float, float]] = []
    angles: List[Tuple[int, int, int, float, float]] = []

    def add_bond(a, b, key):
      if a in index and b in index:
        k, r0 = BOND_PARAMS.get(key, DEFAULT_BOND_PARAMS)
        bonds.append((index[a], index[b], k, r0))

    def add_angle(a, b, c, key):
      if a in index and b in index and c in index:
        k, theta0 = ANGLE_PARAMS.get(key, DEFAULT_ANGLE_PARAMS)
        angles.append((index[a], index[b], index[c], k, math.radians(theta0)))

    for res in structure.residues:
      i = res.index
      add_bond((i, "N"), (i, "CA"), "N-CA")
      add_bond((i, "CA"), (i, "C"), "CA-C")
      add_bond((i, "C"), (i, "O"), "C-O")
      add_bond((i, "N"), (i, "H"), "N-H")
      add_angle((i, "N"), (i, "CA"), (i, "C"), "N-CA-C")
      add_angle((i, "CA"), (i, "C"), (i, "O"), "CA-C-O")
    for prev_res, next_res in zip(structure.residues, structure.residues[1:]):
      i, j = prev_res.index, next_res.index
      add_bond((i, "C"), (j, "N"), "C-N")
      add_angle((i, "CA"), (i, "C"), (j, "N"), "CA-C-N+")
      add_angle((i, "C"), (j, "N"), (j, "CA"), "C-N+-CA+")

    self.bond_idx = np.array([b[:2] for b in bonds], dtype=int).reshape(-1, 2)
    self.bond_k = np.array([b[2] for b in bonds], dtype=float)
    self.bond_r0 = np.array([b[3] for b in bonds], dtype=float)
    self.angle_idx = np.array([a[:3] for a in angles], dtype=int).reshape(-1, 3)
    self.angle_k = np.array([a[3] for a in angles], dtype=float)
    self.angle_theta0 = np.array([a[4] for a in angles], dtype=float)

    # non-bonded pairs
    res_idx = np.array([a.res_index for a in atoms], dtype=int)
    lj = np.array([lj_params(a.element) for a in atoms], dtype=float).reshape(-1, 2)
    charges = np.array([a.charge for a in atoms], dtype=float)
    i_idx, j_idx = np.triu_indices(self.num_atoms, k=1)
    keep = np.abs(res_idx[i_idx] - res_idx[j_idx]) > 1
    self.pair_i, self.pair_j = i_idx[keep], j_idx[keep]
    self.pair_eps = np.sqrt(lj[self.pair_i, 0] * lj[self.pair_j, 0])
    self.pair_sigma = 0.5 * (lj[self.pair_i, 1] + lj[self.pair_j, 1])
    self.pair_qq = charges[self.pair_i] * charges[self.pair_j]

    # backbone torsions, (C-1, N, CA, C) for phi and (N, CA, C, N+1) for psi
    self.torsions = []
    for prev_res, res, next_res in zip(structure.residues, structure.residues[1:], structure.residues[2:]):
      keys = [(prev_res.index, "C"), (res.index, "N"), (res.index, "CA"), (res.index, "C"), (next_res.index, "N")]
      if all(k in index for k in keys):
        self.torsions.append((res.index, res.name, [index[k] for k in keys]))

    # hydrogen bond donors (N, H or -1, CA or -1) and acceptors (O) keyed by residue
    self.donors = []
    self.acceptors = []
    for res in structure.residues:
      i = res.index
      if (i, "N") in index and res.name != "PRO":
        h = index.get((i, "H"), -1)
        ca = index.get((i, "CA"), -1)
        if h >= 0 or ca >= 0:
          self.donors.append((i, index[(i, "N")], h, ca))
      if (i, "O") in index:
        self.acceptors.append((i, index[(i, "O")]))

    # solvation uses CA atoms only
    ca_rows = [(res.index, index[(res.index, "CA")], hydrophobicity(res.name)) for res in structure.residues if (res.index, "CA") in index]
    self.ca_res = np.array([r[0] for r in ca_rows], dtype=int)
    self.ca_idx = np.array([r[1] for r in ca_rows], dtype=int)
    self.ca_hydro = np.array([0.0 if r[2] is None else r[2] for r in ca_rows], dtype=float)
    self.sphere = fibonacci_sphere(SOLVATION_SPHERE_POINTS)

  # -----------------------------
  # Differentiable terms
  # -----------------------------
  def bond_energy(self, coords: np.ndarray, grad: Optional[np.ndarray] = None) -> float:
    if not len(self.bond_idx):
      return 0.0
    delta = coords[self.bond_idx[:, 0]] - coords[self.bond_idx[:, 1]]
    r = np.maximum(np.linalg.norm(delta, axis=1), MIN_PAIR_DISTANCE)
    dr = r - self.bond_r0
    if grad is not None:
      g = (2.0 * self.bond_k * dr / r)[:, None] * delta
      np.add.at(grad, self.bond_idx[:, 0], g)
      np.add.at(grad, self.bond_idx[:, 1], -g)
    return float(np.sum(self.bond_k * dr * dr))

  def angle_energy(self, coords: np.ndarray, grad: Optional[np.ndarray] = None) -> float:
    if not len(self.angle_idx):
      return 0.0
    i, j, k = self.angle_idx[:, 0], self.angle_idx[:, 1], self.angle_idx[:, 2]
    u = coords[i] - coords[j]
    v = coords[k] - coords[j]
    nu = np.maximum(np.linalg.norm(u, axis=1), MIN_PAIR_DISTANCE)
    nv = np.maximum(np.linalg.norm(v, axis=1), MIN_PAIR_DISTANCE)
    u_hat = u / nu[:, None]
    v_hat = v / nv[:, None]
    cos_t = np.clip(np.sum(u_hat * v_hat, axis=1), -1.0, 1.0)
    theta = np.arccos(cos_t)
    d_theta = theta - self.angle_theta0
    if grad is not None:
      sin_t = np.maximum(np.sqrt(1.0 - cos_t * cos_t), 1e-8)
      de = 2.0 * self.angle_k * d_theta
      gi = (-de / sin_t)[:, None] * (v_hat - cos_t[:, None] * u_hat) / nu[:, None]
      gk = (-de / sin_t)[:, None] * (u_hat - cos_t[:, None] * v_hat) / nv[:, None]
      np.add.at(grad, i, gi)
      np.add.at(grad, k, gk)
      np.add.at(grad, j, -(gi + gk))
    return float(np.sum(self.angle_k * d_theta * d_theta))

  def nonbonded_energy(self, coords: np.ndarray, grad: Optional[np.ndarray] = None) -> Tuple[float, float]:
    """Return ``(vdw, electrostatic)`` over the non-bonded pair list."""
    if not len(self.pair_i):
      return 0.0, 0.0
    delta = coords[self.pair_i] - coords[self.pair_j]
    r = np.maximum(np.linalg.norm(delta, axis=1), MIN_PAIR_DISTANCE)

    vdw_mask = r <= self.config.vdw_cutoff
    s6 = (self.pair_sigma / r) ** 6
    s12 = s6 * s6
    e_vdw = np.where(vdw_mask, 4.0 * self.pair_eps * (s12 - s6), 0.0)

    elec_mask = (r <= self.config.elec_cutoff) & (self.pair_qq != 0.0)
    e_elec = np.where(elec_mask, COULOMB_CONSTANT * self.pair_qq / (DIELECTRIC_SCALE * r * r), 0.0)

    if grad is not None:
      de_dr = np.where(vdw_mask, 4.0 * self.pair_eps * (-12.0 * s12 + 6.0 * s6) / r, 0.0)
      de_dr += np.where(elec_mask, -2.0 * COULOMB_CONSTANT * self.pair_qq / (DIELECTRIC_SCALE * r**3), 0.0)
      g = (de_dr / r)[:, None] * delta
      np.add.at(grad, self.pair_i, g)
      np.add.at(grad, self.pair_j, -g)
    return float(np.sum(e_vdw)), float(np.sum(e_elec))

  def energy_and_gradient(self, coords: np.ndarray) -> Tuple[float, np.ndarray]:
    """Return the differentiable energy (bond + angle + vdW + electrostatic) and its (N, 3) gradient."""
    coords = np.asarray(coords, dtype=float).reshape(self.num_atoms, 3)
    grad = np.zeros_like(coords)
    energy = self.bond_energy(coords, grad) + self.angle_energy(coords, grad)
    vdw, elec = self.nonbonded_energy(coords, grad)
    return energy + vdw + elec, grad

  # -----------------------------
  # Non-differentiable terms
  # -----------------------------
  def backbone_torsions(self, coords: np.ndarray) -> List[Tuple[int, float, float]]:
    """Return ``(residue index, phi, psi)`` in degrees for every interior residue with a complete backbone."""
    out = []
    for res_index, _, (c_prev, n, ca, c, n_next) in self.torsions:
      phi = dihedral(coords[c_prev], coords[n], coords[ca], coords[c])
      psi = dihedral(coords[n], coords[ca], coords[c], coords[n_next])
      out.append((res_index, phi, psi))
    return out

  def dihedral_energy(self, coords: np.ndarray) -> float:
    if self.config.dihedral_weight == 0.0:
      return 0.0
    total = 0.0
    for (_, res_name, _), (_, phi, psi) in zip(self.torsions, self.backbone_torsions(coords)):
      total += _rama_energy(phi, psi, res_name)
    return self.config.dihedral_weight * total

  def detect_hbonds(self, coords: np.ndarray) -> List[HBond]:
    """Return every qualifying backbone hydrogen bond.

    With an explicit amide H the H...O distance must lie in [1.5, 2.5] Å and the N-H...O
    angle is measured at H. Without H, the N...O distance must lie in [2.5, 3.5] Å and the
    angle is approximated from the N-CA direction. Donor and acceptor residues must be at
    least two apart and the angle at least 120 degrees.
    """
    found = []
    for d_res, n, h, ca in self.donors:
      for a_res, o in self.acceptors:
        if abs(d_res - a_res) <= 1:
          continue
        n_o = float(np.linalg.norm(coords[o] - coords[n]))
        if h >= 0:
          window = float(np.linalg.norm(coords[o] - coords[h]))
          low, high = HBOND_HO_DISTANCE_RANGE
          angle = bond_angle(coords[n], coords[h], coords[o])
        else:
          window = n_o
          low, high = HBOND_NO_DISTANCE_RANGE
          angle = 180.0 - bond_angle(coords[ca], coords[n], coords[o])
        if not low <= window <= high or angle < HBOND_MIN_ANGLE:
          continue
        distance_term = math.exp(-((n_o - HBOND_OPTIMAL_DISTANCE) ** 2) / 0.2)
        angle_term = (1.0 + math.cos(math.radians(angle))) / 2.0
        found.append(HBond(d_res, a_res, n_o, angle, HBOND_WELL_DEPTH * distance_term * angle_term))
    return found

  def hbond_energy(self, coords: np.ndarray) -> float:
    return float(sum(hb.energy for hb in self.detect_hbonds(coords)))

  def sasa(self, coords: np.ndarray) -> Dict[int, float]:
    """Return the CA-based solvent accessible surface area (Å^2) keyed by residue index."""
    if not len(self.ca_idx):
      return {}
    radius = SOLVATION_CA_RADIUS + SOLVATION_PROBE_RADIUS
    sphere_area = 4.0 * math.pi * radius * radius
    ca = coords[self.ca_idx]
    out = {}
    for k, res_index in enumerate(self.ca_res):
      points = ca[k] + radius * self.sphere
      dist = cdist(points, np.delete(ca, k, axis=0))
      exposed = np.count_nonzero(~np.any(dist < radius, axis=1)) if dist.size else len(points)
      out[int(res_index)] = sphere_area * exposed / len(points)
    return out

  def solvation_energy(self, coords: np.ndarray) -> float:
    """Transfer free energy plus hydrophobic effect plus the burial entropy penalty."""
    if not self.config.solvation or not len(self.ca_idx):
      return 0.0
    area = np.array(list(self.sasa(coords).values()), dtype=float)
    transfer = np.sum(self.ca_hydro * SOLVATION_SIGMA_SCALE * area)
    hydrophobic = np.sum(self.ca_hydro * area * HYDROPHOBIC_EFFECT_SCALE)
    entropy = BURIAL_ENTROPY_PENALTY * np.count_nonzero(area < BURIED_SASA_CUTOFF)
    return float(transfer + hydrophobic + entropy)

  # -----------------------------
  # Aggregate
  # -----------------------------
  def breakdown(self, coords: np.ndarray, energy_clamp: float = DEFAULT_ENERGY_CLAMP) -> EnergyBreakdown:
    """Evaluate every term on ``coords`` and return the clamped :obj:`EnergyBreakdown`."""
    coords = np.asarray(coords, dtype=float).reshape(self.num_atoms, 3)
    terms = {name: 0.0 for name in ENERGY_TERMS}
    terms["bond"] = self.bond_energy(coords)
    terms["angle"] = self.angle_energy(coords)
    terms["vdw"], terms["electrostatic"] = self.nonbonded_energy(coords)
    if np.all(np.isfinite(coords)):
      terms["dihedral"] = self.dihedral_energy(coords)
      if self.config.hbond:
        terms["hbond"] = self.hbond_energy(coords)
      terms["solvation"] = self.solvation_energy(coords)
    unclamped = float(sum(terms.values()))
    total = clamp_energy(unclamped, energy_clamp)
    saturated = math.isnan(unclamped) or total != unclamped
    return EnergyBreakdown(**terms, total=total, unclamped_total=unclamped, saturated=saturated)


def evaluate(structure: Structure, config: Optional[EnergyConfig] = None, energy_clamp: float = DEFAULT_ENERGY_CLAMP) -> EnergyBreakdown:
  """Compute the energy breakdown of a structure.

  Parameters:
    structure: Structure to evaluate, it is not modified
    config: Energy settings
    energy_clamp: Half-width of the saturation band of the total

  Returns:
    The :obj:`EnergyBreakdown`, its ``total`` always lies within ``[-energy_clamp, energy_clamp]``

  """
  return ForceField(structure, config).breakdown(structure.coords(), energy_clamp)


def detect_hydrogen_bonds(structure: Structure) -> List[HBond]:
  """Return the backbone hydrogen bonds of a structure."""
  return ForceField(structure).detect_hbonds(structure.coords())


def hbond_statistics(structure: Structure) -> Dict[str, float]:
  """Summarise backbone hydrogen bonds by count, geometry and pattern.

  Helix bonds are i -> i+4, sheet (or long range) bonds span 5 or more residues, all others
  are counted as loop bonds.
  """
  hbonds = detect_hydrogen_bonds(structure)
  stats = {
    "num_hbonds": len(hbonds),
    "average_distance": 0.0,
    "average_angle": 0.0,
    "average_energy": 0.0,
    "total_energy": 0.0,
    "helix_hbonds": 0,
    "sheet_hbonds": 0,
    "loop_hbonds": 0,
  }
  if not hbonds:
    return stats
  for hb in hbonds:
    if hb.separation == 4:
      stats["helix_hbonds"] += 1
    elif hb.separation >= 5:
      stats["sheet_hbonds"] += 1
    else:
      stats["loop_hbonds"] += 1
  stats["average_distance"] = float(np.mean([hb.distance for hb in hbonds]))
  stats["average_angle"] = float(np.mean([hb.angle for hb in hbonds]))
  stats["total_energy"] = float(sum(hb.energy for hb in hbonds))
  stats["average_energy"] = stats["total_energy"] / len(hbonds)
  return stats


def burial_statistics(structure: Structure) -> Dict[str, float]:
  """Classify residues by CA-based SASA.

  Buried is below 20 Å^2, exposed above 100 Å^2, partial in between. Hydrophobic residues
  (hydropathy above 0.5) and hydrophilic ones are also split into buried (< 50 Å^2) and exposed.
  """
  ff = ForceField(structure)
  areas = ff.sasa(structure.coords())
  names = {res.index: res.name for res in structure.residues}
  stats = {
    "num_buried": 0,
    "num_partial": 0,
    "num_exposed": 0,
    "average_sasa": 0.0,
    "total_sasa": 0.0,
    "hydrophobic_buried": 0,
    "hydrophilic_buried": 0,
    "hydrophobic_exposed": 0,
    "hydrophilic_exposed": 0,
  }
  for res_index, area in areas.items():
    if area < 20.0:
      stats["num_buried"] += 1
    elif area < 100.0:
      stats["num_partial"] += 1
    else:
      stats["num_exposed"] += 1
    hydro = hydrophobicity(names[res_index])
    if hydro is None:
      continue
    label = "hydrophobic" if hydro > 0.5 else "hydrophilic"
    stats[f"{label}_{'buried' if area < BURIED_SASA_CUTOFF else 'exposed'}"] += 1
  if areas:
    stats["total_sasa"] = float(sum(areas.values()))
    stats["average_sasa"] = stats["total_sasa"] / len(areas)
  return stats
