"""
Configuration records for the validity gate, the energy evaluator, every refinement strategy and the pipeline.

Every record is a frozen dataclass so a single instance can be shared read-only between the
orchestrator and its worker processes. Use :func:`dataclasses.replace` to derive overrides.
"""

from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, Mapping, Tuple

ANNEAL_SCHEDULES = ("exponential", "linear", "geometric", "golden")


### CLASSES ###
@dataclass(frozen=True)
class GateConfig:
  """Thresholds used by the structural validator and the selection policy.

  Attributes:
    clash_coefficient: Fraction of the summed van der Waals radii below which two atoms clash.
    clash_ceiling: Candidates with more clashes than this are rejected.
    clash_penalty: Energy units added to the selection score per residual clash.
    energy_clamp: Energy totals are saturated to ``[-energy_clamp, energy_clamp]``.
    bond_range: Acceptable C(i)-N(i+1) junction length in Angstrom (inclusive).
    coordinate_bound: Maximum allowed distance of any atom from the chain centroid.
  """
  clash_coefficient: float = 0.6
  clash_ceiling: int = 5
  clash_penalty: float = 100.0
  energy_clamp: float = 10000.0
  bond_range: Tuple[float, float] = (1.0, 2.0)
  coordinate_bound: float = 1000.0

  def __post_init__(self):
    if self.clash_coefficient <= 0:
      raise ValueError(f"clash_coefficient must be positive, found {self.clash_coefficient}")
    if self.clash_ceiling < 0:
      raise ValueError(f"clash_ceiling must be non-negative, found {self.clash_ceiling}")
    if self.energy_clamp <= 0:
      raise ValueError(f"energy_clamp must be positive, found {self.energy_clamp}")
    if len(self.bond_range) != 2 or self.bond_range[0] > self.bond_range[1]:
      raise ValueError(f"bond_range must be an ordered (min, max) pair, found {self.bond_range}")
    if self.coordinate_bound <= 0:
      raise ValueError(f"coordinate_bound must be positive, found {self.coordinate_bound}")
    # JSON input yields lists
    object.__setattr__(self, "bond_range", tuple(float(x) for x in self.bond_range))


@dataclass(frozen=True)
class EnergyConfig:
  """Energy evaluator settings.

  Attributes:
    vdw_cutoff: Lennard-Jones cutoff in Angstrom.
    elec_cutoff: Coulomb cutoff in Angstrom.
    dihedral_weight: Scale of the Ramachandran term, 0 disables it.
    solvation: Whether to compute the implicit solvation term.
    hbond: Whether to compute the hydrogen bond term.
  """
  vdw_cutoff: float = 10.0
  elec_cutoff: float = 12.0
  dihedral_weight: float = 1.0
  solvation: bool = True
  hbond: bool = True

  def __post_init__(self):
    if self.vdw_cutoff <= 0 or self.elec_cutoff <= 0:
      raise ValueError("Non-bonded cutoffs must be positive")
    if self.dihedral_weight < 0:
      raise ValueError(f"dihedral_weight must be non-negative, found {self.dihedral_weight}")


@dataclass(frozen=True)
class GentleConfig:
  """Gentle steepest-descent relaxation budget."""
  max_steps: int = 50
  step_size: float = 0.01
  energy_tolerance: float = 0.1
  max_displacement: float = 0.1

  def __post_init__(self):
    if self.max_steps < 1:
      raise ValueError(f"max_steps must be at least 1, found {self.max_steps}")
    if self.step_size <= 0 or self.max_displacement <= 0:
      raise ValueError("step_size and max_displacement must be positive")


@dataclass(frozen=True)
class LBFGSConfig:
  """Limited-memory quasi-Newton budget.

  Attributes:
    max_iterations: Total optimizer iterations across all trust-region cycles.
    memory: Number of correction pairs kept by L-BFGS.
    gradient_tolerance: Stop once the largest gradient component falls below this.
    energy_tolerance: Stop once a cycle improves the energy by less than this.
    max_displacement: No atom moves farther than this from its position at the start of a cycle.
    cycle_iterations: Iterations allowed inside a single trust-region cycle.
  """
  max_iterations: int = 1000
  memory: int = 10
  gradient_tolerance: float = 0.1
  energy_tolerance: float = 0.01
  max_displacement: float = 0.5
  cycle_iterations: int = 50

  def __post_init__(self):
    if self.max_iterations < 1 or self.cycle_iterations < 1:
      raise ValueError("Iteration budgets must be at least 1")
    if self.memory < 1:
      raise ValueError(f"memory must be at least 1, found {self.memory}")
    if self.max_displacement <= 0:
      raise ValueError(f"max_displacement must be positive, found {self.max_displacement}")


@dataclass(frozen=True)
class AnnealConfig:
  """Simulated annealing schedule and budget."""
  max_steps: int = 5000
  initial_temperature: float = 1000.0
  final_temperature: float = 1.0
  schedule: str = "exponential"
  perturbation_initial: float = 2.0
  perturbation_final: float = 0.1
  seed: int = 42
  stagnation_window: int = 500

  def __post_init__(self):
    if self.max_steps < 1:
      raise ValueError(f"max_steps must be at least 1, found {self.max_steps}")
    if not 0 < self.final_temperature <= self.initial_temperature:
      raise ValueError("Temperatures must satisfy 0 < final_temperature <= initial_temperature")
    if self.schedule not in ANNEAL_SCHEDULES:
      raise ValueError(f"Unknown cooling schedule '{self.schedule}', expected one of {ANNEAL_SCHEDULES}")
    if self.perturbation_initial < 0 or self.perturbation_final < 0:
      raise ValueError("Perturbation sizes must be non-negative")


@dataclass(frozen=True)
class ConstraintConfig:
  """Constraint-projection refinement budget.

  Attributes:
    max_steps: Number of minimize/project rounds.
    step_size: Gradient step length in Angstrom per round.
    constraint_strength: Fraction of each restraint violation corrected per projection.
    energy_tolerance: Stop once a round changes the energy by less than this.
    restraint_tolerance: Default flat-bottom width of derived restraints.
    restraint_cutoff: Only CA pairs closer than this become restraints.
  """
  max_steps: int = 100
  step_size: float = 0.01
  constraint_strength: float = 0.5
  energy_tolerance: float = 0.01
  restraint_tolerance: float = 0.5
  restraint_cutoff: float = 8.0

  def __post_init__(self):
    if self.max_steps < 1:
      raise ValueError(f"max_steps must be at least 1, found {self.max_steps}")
    if not 0 < self.constraint_strength <= 1:
      raise ValueError(f"constraint_strength must be in (0, 1], found {self.constraint_strength}")


@dataclass(frozen=True)
class PipelineConfig:
  """Bundle of every configuration record plus orchestration settings.

  Attributes:
    ensemble_size: Maximum number of candidates kept from sampling.
    num_processes: Worker processes for the refining phase, 1 runs serially.
    strategy: Default strategy name used by the refining phase.
    require_convergence: Treat a strategy that spends its whole budget as a failure.
  """
  gate: GateConfig = field(default_factory=GateConfig)
  energy: EnergyConfig = field(default_factory=EnergyConfig)
  gentle: GentleConfig = field(default_factory=GentleConfig)
  lbfgs: LBFGSConfig = field(default_factory=LBFGSConfig)
  anneal: AnnealConfig = field(default_factory=AnnealConfig)
  constraint: ConstraintConfig = field(default_factory=ConstraintConfig)
  ensemble_size: int = 50
  num_processes: int = 1
  strategy: str = "gentle"
  require_convergence: bool = False

  def __post_init__(self):
    if self.ensemble_size < 1:
      raise ValueError(f"ensemble_size must be at least 1, found {self.ensemble_size}")
    if self.num_processes < 1:
      raise ValueError(f"num_processes must be at least 1, found {self.num_processes}")

  @classmethod
  def from_dict(cls, data: Mapping[str, Any]) -> "PipelineConfig":
    """Build a configuration from a plain (e.g. JSON decoded) mapping.

    Nested sections are given as mappings keyed by the field name (``gate``, ``lbfgs``, ...).
    Unknown keys raise a ``ValueError`` instead of being silently ignored.

    Parameters:
      data: Mapping of field names to values or nested mappings

    Returns:
      The resulting :obj:`PipelineConfig`

    """
    kwargs: Dict[str, Any] = {}
    known = {f.name: f for f in fields(cls)}
    for key, value in data.items():
      if key not in known:
        raise ValueError(f"Unknown configuration key '{key}'")
      section_type = known[key].default_factory  # MISSING for scalar fields
      if isinstance(value, Mapping) and is_dataclass(section_type):
        section_fields = {f.name for f in fields(section_type)}
        unknown = set(value) - section_fields
        if unknown:
          raise ValueError(f"Unknown keys for section '{key}': {sorted(unknown)}")
        kwargs[key] = section_type(**value)
      else:
        kwargs[key] = value
    return cls(**kwargs)

  def to_dict(self) -> Dict[str, Any]:
    """Return a plain nested dictionary of every setting."""
    out: Dict[str, Any] = {}
    for f in fields(self):
      value = getattr(self, f.name)
      if is_dataclass(value):
        out[f.name] = {sf.name: getattr(value, sf.name) for sf in fields(value)}
      else:
        out[f.name] = value
    return out
