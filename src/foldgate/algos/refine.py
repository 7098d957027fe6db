"""
Refinement strategies.

Four interchangeable strategies sit behind the single :func:`refine` entry point:

- :attr:`Strategy.GENTLE`: bounded steepest descent, the low risk default
- :attr:`Strategy.LBFGS`: limited-memory quasi-Newton minimization with a per-cycle trust region
- :attr:`Strategy.ANNEAL`: Metropolis simulated annealing over a cooling schedule
- :attr:`Strategy.CONSTRAINT`: alternating minimization and distance restraint projection

Every strategy copies its input before touching coordinates, enforces its own step budget
and returns a failed :obj:`RefinementResult` instead of a structure with non-finite
coordinates or energy. New strategies are added to :class:`Strategy` and the dispatch table.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

import numpy as np
from scipy.optimize import minimize

from foldgate.algos.energy import EnergyBreakdown, ForceField
from foldgate.algos.validator import check_coordinates
from foldgate.config import AnnealConfig, ConstraintConfig, EnergyConfig, GateConfig, GentleConfig, LBFGSConfig, PipelineConfig
from foldgate.constants import BOLTZMANN_KCAL, JUNCTION_ATOMS, PEPTIDE_BOND_LENGTH
from foldgate.log import logger
from foldgate.structure import Structure

GOLDEN_RATIO = (1.0 + math.sqrt(5.0)) / 2.0


### CLASSES ###
class Strategy(str, Enum):
  GENTLE = "gentle"
  LBFGS = "lbfgs"
  ANNEAL = "anneal"
  CONSTRAINT = "constraint"


class FailureReason(str, Enum):
  BUDGET_EXHAUSTED = "budget_exhausted"
  NON_FINITE_ENERGY = "non_finite_energy"
  CORRUPT_COORDINATES = "corrupt_coordinates"


@dataclass
class RefinementResult:
  """Outcome of one strategy applied to one candidate.

  Attributes:
    strategy: Strategy that produced this result.
    structure: Refined copy, ``None`` on failure. Ownership passes to the caller.
    energy: Energy breakdown of the refined copy, ``None`` on failure.
    failure: Failure category, ``None`` on success.
    message: Human readable summary.
    iterations: Steps or iterations consumed.
    converged: Whether a convergence criterion (rather than the budget) ended the run.
    initial_energy: Clamped total energy of the input.
  """
  strategy: Strategy
  structure: Optional[Structure] = None
  energy: Optional[EnergyBreakdown] = None
  failure: Optional[FailureReason] = None
  message: str = ""
  iterations: int = 0
  converged: bool = False
  initial_energy: float = 0.0

  @property
  def ok(self) -> bool:
    return self.failure is None and self.structure is not None


@dataclass(frozen=True)
class Restraint:
  """Flat-bottom distance restraint between two atoms (indices follow :meth:`Structure.atoms`)."""
  atom_i: int
  atom_j: int
  target: float
  tolerance: float = 0.5


### FUNCTIONS ###
def restraints_from_structure(structure: Structure, cutoff: float = 8.0, tolerance: float = 0.5, min_separation: int = 2) -> List[Restraint]:
  """Derive CA-CA distance restraints from a structure, typically a sampling-phase candidate.

  Parameters:
    structure: Structure to read distances from
    cutoff: Only CA pairs closer than this become restraints
    tolerance: Flat-bottom half width of every restraint
    min_separation: Minimum residue separation of restrained pairs

  Returns:
    List of :obj:`Restraint` targeting the current distances

  """
  ca = [(k, atom) for k, atom in enumerate(structure.atoms()) if atom.name == "CA"]
  out = []
  for a in range(len(ca)):
    for b in range(a + 1, len(ca)):
      (i, atom_i), (j, atom_j) = ca[a], ca[b]
      if abs(atom_i.res_index - atom_j.res_index) < min_separation:
        continue
      d = float(np.linalg.norm(atom_i.xyz - atom_j.xyz))
      if d < cutoff:
        out.append(Restraint(i, j, d, tolerance))
  return out


def _junction_restraints(structure: Structure) -> List[Restraint]:
  """Restraints holding every C(i)-N(i+1) peptide bond at its nominal length."""
  index = {(a.res_index, a.name): k for k, a in enumerate(structure.atoms())}
  out = []
  for prev_res, next_res in zip(structure.residues, structure.residues[1:]):
    c, n = index.get((prev_res.index, JUNCTION_ATOMS[0])), index.get((next_res.index, JUNCTION_ATOMS[1]))
    if c is not None and n is not None:
      out.append(Restraint(c, n, PEPTIDE_BOND_LENGTH, 0.05))
  return out


def _cap_displacement(step: np.ndarray, max_displacement: float) -> np.ndarray:
  """Scale each atom's displacement so no atom moves farther than ``max_displacement``."""
  norms = np.linalg.norm(step, axis=1)
  scale = np.minimum(1.0, max_displacement / np.maximum(norms, 1e-12))
  return step * scale[:, None]


def _finish(
  strategy: Strategy,
  work: Structure,
  ff: ForceField,
  coords: np.ndarray,
  iterations: int,
  converged: bool,
  initial: EnergyBreakdown,
  gate: GateConfig,
  message: str,
) -> RefinementResult:
  """Write coordinates back and turn the run into a success or a failure."""
  result = RefinementResult(strategy=strategy, iterations=iterations, converged=converged, initial_energy=initial.total)
  if not np.all(np.isfinite(coords)):
    result.failure = FailureReason.CORRUPT_COORDINATES
    result.message = f"non-finite coordinates after {iterations} iterations"
    return result
  work.set_coords(coords)
  corrupt = check_coordinates(work, gate)
  if corrupt is not None:
    result.failure = FailureReason.CORRUPT_COORDINATES
    result.message = f"{corrupt.message} after {iterations} iterations"
    return result
  energy = ff.breakdown(coords, gate.energy_clamp)
  if not math.isfinite(energy.unclamped_total):
    result.failure = FailureReason.NON_FINITE_ENERGY
    result.message = f"non-finite energy after {iterations} iterations"
    return result
  result.structure = work
  result.energy = energy
  result.message = message
  if energy.saturated:
    logger.warning(f"{strategy.value} left {work.title} with a saturated energy ({energy.unclamped_total:.3e})")
  logger.debug(f"{strategy.value}: {work.title} {initial.total:.2f} -> {energy.total:.2f} in {iterations} iterations ({message})")
  return result


# -----------------------------
# Strategies
# -----------------------------
def gentle_relax(
  structure: Structure,
  config: Optional[GentleConfig] = None,
  energy_config: Optional[EnergyConfig] = None,
  gate: Optional[GateConfig] = None,
) -> RefinementResult:
  """Relax a structure with small, bounded steepest-descent steps.

  Each atom moves ``step_size`` times its negative gradient, capped at ``max_displacement``.
  A step that raises the energy is undone and the step size halved. The run converges once
  an accepted step changes the energy by less than ``energy_tolerance``.

  Parameters:
    structure: Input candidate, never modified
    config: Step budget and sizes
    energy_config: Energy settings
    gate: Gate thresholds used for the final coordinate check and energy clamp

  Returns:
    The :obj:`RefinementResult`

  """
  config = config or GentleConfig()
  gate = gate or GateConfig()
  work = structure.copy()
  ff = ForceField(work, energy_config)
  initial = ff.breakdown(work.coords(), gate.energy_clamp)
  coords = work.coords()
  energy, grad = ff.energy_and_gradient(coords)
  step_size = config.step_size
  converged = False
  step = 0
  for step in range(1, config.max_steps + 1):
    trial = coords + _cap_displacement(-step_size * grad, config.max_displacement)
    trial_energy, trial_grad = ff.energy_and_gradient(trial)
    if not math.isfinite(trial_energy) or trial_energy > energy:
      step_size *= 0.5
      if step_size < 1e-6:
        converged = True
        break
      continue
    delta = energy - trial_energy
    coords, energy, grad = trial, trial_energy, trial_grad
    if delta < config.energy_tolerance:
      converged = True
      break
  return _finish(Strategy.GENTLE, work, ff, coords, step, converged, initial, gate, "converged" if converged else "step budget reached")


def lbfgs_minimize(
  structure: Structure,
  config: Optional[LBFGSConfig] = None,
  energy_config: Optional[EnergyConfig] = None,
  gate: Optional[GateConfig] = None,
) -> RefinementResult:
  """Minimize with L-BFGS inside successive trust-region boxes.

  Every cycle boxes each coordinate to ``max_displacement / sqrt(3)`` around the cycle's
  starting point, so no atom moves farther than ``max_displacement`` per cycle, and runs
  ``scipy.optimize.minimize(method="L-BFGS-B")`` for at most ``cycle_iterations`` iterations. Cycles repeat until the largest gradient component drops
  below ``gradient_tolerance``, a cycle improves the energy by less than ``energy_tolerance``,
  or ``max_iterations`` is spent.

  Parameters:
    structure: Input candidate, never modified
    config: Iteration budget and tolerances
    energy_config: Energy settings
    gate: Gate thresholds used for the final coordinate check and energy clamp

  Returns:
    The :obj:`RefinementResult`

  """
  config = config or LBFGSConfig()
  gate = gate or GateConfig()
  work = structure.copy()
  ff = ForceField(work, energy_config)
  initial = ff.breakdown(work.coords(), gate.energy_clamp)
  shape = (ff.num_atoms, 3)

  def objective(x: np.ndarray) -> Tuple[float, np.ndarray]:
    e, g = ff.energy_and_gradient(x.reshape(shape))
    return e, g.ravel()

  x = work.coords().ravel()
  energy, grad = objective(x)
  # per-coordinate half width keeping every atom inside a sphere of max_displacement
  half_width = config.max_displacement / math.sqrt(3.0)
  iterations = 0
  converged = False
  while iterations < config.max_iterations and math.isfinite(energy):
    if np.max(np.abs(grad), initial=0.0) < config.gradient_tolerance:
      converged = True
      break
    budget = min(config.cycle_iterations, config.max_iterations - iterations)
    bounds = list(zip(x - half_width, x + half_width))
    res = minimize(
      objective,
      x,
      jac=True,
      method="L-BFGS-B",
      bounds=bounds,
      options={"maxiter": budget, "maxcor": config.memory, "gtol": config.gradient_tolerance},
    )
    iterations += max(int(res.nit), 1)
    if not np.all(np.isfinite(res.x)) or not math.isfinite(float(res.fun)):
      x = res.x
      break
    improvement = energy - float(res.fun)
    if improvement < 0:
      # uphill cycle, keep the previous point
      converged = True
      break
    x = res.x
    energy, grad = objective(x)
    if improvement < config.energy_tolerance:
      converged = True
      break
  return _finish(Strategy.LBFGS, work, ff, x.reshape(shape), iterations, converged, initial, gate, "converged" if converged else "iteration budget reached")


def _temperature(step: int, config: AnnealConfig) -> float:
  t = float(step)
  n = float(config.max_steps)
  t0, tf = config.initial_temperature, config.final_temperature
  if config.schedule == "linear":
    return t0 - (t0 - tf) * t / n
  if config.schedule == "geometric":
    return t0 / (1.0 + (t0 - tf) / (tf * n) * t)
  if config.schedule == "golden":
    alpha = GOLDEN_RATIO ** (-t / (n / math.log(GOLDEN_RATIO)))
    return t0 * alpha + tf * (1.0 - alpha)
  return t0 * (tf / t0) ** (t / n)


def simulated_annealing(
  structure: Structure,
  config: Optional[AnnealConfig] = None,
  energy_config: Optional[EnergyConfig] = None,
  gate: Optional[GateConfig] = None,
) -> RefinementResult:
  """Anneal a structure with single-atom Metropolis moves.

  Each step displaces one random atom by a uniform offset whose size shrinks linearly from
  ``perturbation_initial`` to ``perturbation_final``. Uphill moves are accepted with
  probability ``exp(-dE / (k_B T))``. The lowest-energy state seen is returned. The run ends
  early once the temperature is near its floor and the best energy has not improved for
  ``stagnation_window`` steps.

  Parameters:
    structure: Input candidate, never modified
    config: Schedule, step budget and seed
    energy_config: Energy settings
    gate: Gate thresholds used for the final coordinate check and energy clamp

  Returns:
    The :obj:`RefinementResult`

  """
  config = config or AnnealConfig()
  gate = gate or GateConfig()
  work = structure.copy()
  ff = ForceField(work, energy_config)
  initial = ff.breakdown(work.coords(), gate.energy_clamp)
  rng = np.random.default_rng(config.seed)

  coords = work.coords()
  current = initial.unclamped_total
  best_coords, best = coords.copy(), current
  last_improvement = 0
  accepted = 0
  converged = False
  step = 0
  if ff.num_atoms == 0:
    return _finish(Strategy.ANNEAL, work, ff, coords, 0, True, initial, gate, "nothing to anneal")
  for step in range(1, config.max_steps + 1):
    temperature = _temperature(step - 1, config)
    size = config.perturbation_initial - (config.perturbation_initial - config.perturbation_final) * (step - 1) / config.max_steps
    proposal = coords.copy()
    atom = rng.integers(ff.num_atoms)
    proposal[atom] += rng.uniform(-size, size, size=3)
    proposed = ff.breakdown(proposal, math.inf).unclamped_total
    delta = proposed - current
    if not math.isfinite(proposed):
      continue
    if delta < 0 or rng.random() < math.exp(-delta / (BOLTZMANN_KCAL * temperature)):
      coords, current = proposal, proposed
      accepted += 1
      if current < best:
        best_coords, best = coords.copy(), current
        last_improvement = step
    if temperature < 2.0 * config.final_temperature and step - last_improvement > config.stagnation_window:
      converged = True
      break
  message = f"{accepted}/{step} moves accepted" + (", stagnated" if converged else "")
  return _finish(Strategy.ANNEAL, work, ff, best_coords, step, converged, initial, gate, message)


def _project(coords: np.ndarray, restraints: Sequence[Restraint], strength: float) -> float:
  """Move restrained atom pairs toward their flat-bottom band, in place. Returns the largest violation seen."""
  worst = 0.0
  for r in restraints:
    delta = coords[r.atom_j] - coords[r.atom_i]
    d = float(np.linalg.norm(delta))
    if d < 1e-9:
      continue
    if d > r.target + r.tolerance:
      violation = d - (r.target + r.tolerance)
    elif d < r.target - r.tolerance:
      violation = d - (r.target - r.tolerance)
    else:
      continue
    worst = max(worst, abs(violation))
    shift = 0.5 * strength * violation * delta / d
    coords[r.atom_i] += shift
    coords[r.atom_j] -= shift
  return worst


def constraint_refine(
  structure: Structure,
  config: Optional[ConstraintConfig] = None,
  energy_config: Optional[EnergyConfig] = None,
  gate: Optional[GateConfig] = None,
  restraints: Optional[Sequence[Restraint]] = None,
) -> RefinementResult:
  """Alternate one energy-minimization step with a restraint projection.

  The projection corrects each violated restraint by ``constraint_strength`` times its
  violation (SHAKE-like) and always includes restraints holding every peptide junction at its
  nominal length.

  Parameters:
    structure: Input candidate, never modified
    config: Step budget, step size and constraint strength
    energy_config: Energy settings
    gate: Gate thresholds used for the final coordinate check and energy clamp
    restraints: Distance restraints, derived from the input's own CA distances if not provided

  Returns:
    The :obj:`RefinementResult`

  """
  config = config or ConstraintConfig()
  gate = gate or GateConfig()
  work = structure.copy()
  ff = ForceField(work, energy_config)
  initial = ff.breakdown(work.coords(), gate.energy_clamp)
  if restraints is None:
    restraints = restraints_from_structure(work, cutoff=config.restraint_cutoff, tolerance=config.restraint_tolerance)
  for r in restraints:
    if not (0 <= r.atom_i < ff.num_atoms and 0 <= r.atom_j < ff.num_atoms):
      raise ValueError(f"Restraint {r} references atoms outside the structure ({ff.num_atoms} atoms)")
  active = list(restraints) + _junction_restraints(work)

  coords = work.coords()
  energy, grad = ff.energy_and_gradient(coords)
  converged = False
  step = 0
  for step in range(1, config.max_steps + 1):
    coords = coords + _cap_displacement(-config.step_size * grad, 10.0 * config.step_size)
    worst = _project(coords, active, config.constraint_strength)
    new_energy, grad = ff.energy_and_gradient(coords)
    if not math.isfinite(new_energy):
      break
    delta = abs(energy - new_energy)
    energy = new_energy
    if delta < config.energy_tolerance and worst < config.restraint_tolerance:
      converged = True
      break
  return _finish(Strategy.CONSTRAINT, work, ff, coords, step, converged, initial, gate, f"{len(active)} restraints" + (", converged" if converged else ""))


# -----------------------------
# Dispatch
# -----------------------------
_DISPATCH: Dict[Strategy, Tuple[Callable[..., RefinementResult], str]] = {
  Strategy.GENTLE: (gentle_relax, "gentle"),
  Strategy.LBFGS: (lbfgs_minimize, "lbfgs"),
  Strategy.ANNEAL: (simulated_annealing, "anneal"),
  Strategy.CONSTRAINT: (constraint_refine, "constraint"),
}


def refine(
  structure: Structure,
  strategy: Union[Strategy, str] = Strategy.GENTLE,
  config: Optional[PipelineConfig] = None,
  restraints: Optional[Sequence[Restraint]] = None,
) -> RefinementResult:
  """Apply one refinement strategy to a candidate.

  Parameters:
    structure: Input candidate, never modified
    strategy: :class:`Strategy` member or its value (``"gentle"``, ``"lbfgs"``, ``"anneal"``, ``"constraint"``)
    config: Pipeline configuration supplying the strategy budget, energy settings and gate thresholds. With
      ``require_convergence`` set, a run that spends its whole budget fails with :attr:`FailureReason.BUDGET_EXHAUSTED`
    restraints: Restraints for :attr:`Strategy.CONSTRAINT`, ignored by the other strategies

  Returns:
    The :obj:`RefinementResult`

  """
  config = config or PipelineConfig()
  try:
    strategy = Strategy(strategy)
  except ValueError:
    raise ValueError(f"Unknown refinement strategy '{strategy}', expected one of {[s.value for s in Strategy]}") from None
  func, section = _DISPATCH[strategy]
  kwargs = {"restraints": restraints} if strategy is Strategy.CONSTRAINT else {}
  result = func(structure, getattr(config, section), energy_config=config.energy, gate=config.gate, **kwargs)
  if config.require_convergence and result.ok and not result.converged:
    result.failure = FailureReason.BUDGET_EXHAUSTED
    result.structure = None
    result.energy = None
    result.message = f"no convergence within {result.iterations} iterations"
  return result
