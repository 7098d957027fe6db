"""
Tests for the foldgate.algos.refine module.
"""

import math

import numpy as np
import pytest

from foldgate.algos.refine import (
  FailureReason,
  Restraint,
  Strategy,
  constraint_refine,
  gentle_relax,
  lbfgs_minimize,
  refine,
  restraints_from_structure,
  simulated_annealing,
)
from foldgate.algos.validator import validate
from foldgate.builder import ideal_helix, perturbation_producer
from foldgate.config import AnnealConfig, ConstraintConfig, GentleConfig, LBFGSConfig, PipelineConfig

SMALL_BUDGET = PipelineConfig(
  gentle=GentleConfig(max_steps=20),
  lbfgs=LBFGSConfig(max_iterations=60, cycle_iterations=20),
  anneal=AnnealConfig(max_steps=300, initial_temperature=300.0, perturbation_initial=0.3, perturbation_final=0.02, stagnation_window=100),
  constraint=ConstraintConfig(max_steps=20),
)


@pytest.fixture
def noisy_helix():
  template = ideal_helix("AKLEAGLKAE")
  (candidate,) = perturbation_producer(template, sigma=0.1, seed=11)("AKLEAGLKAE", 1)
  return candidate


@pytest.mark.parametrize("strategy", list(Strategy))
def test_refine_returns_valid_copy(noisy_helix, strategy: Strategy):
  before = noisy_helix.coords()
  result = refine(noisy_helix, strategy, SMALL_BUDGET)

  assert result.ok, result.message
  assert result.strategy is strategy
  assert result.failure is None
  assert result.structure is not noisy_helix
  # the input is never modified
  assert np.array_equal(noisy_helix.coords(), before)
  assert np.all(np.isfinite(result.structure.coords()))
  assert math.isfinite(result.energy.total)
  assert result.iterations >= 1
  assert validate(result.structure).is_valid


def test_refine_accepts_strategy_names(noisy_helix):
  assert refine(noisy_helix, "gentle", SMALL_BUDGET).strategy is Strategy.GENTLE


def test_unknown_strategy_is_rejected(noisy_helix):
  with pytest.raises(ValueError, match="Unknown refinement strategy"):
    refine(noisy_helix, "steepest")


def test_gentle_relax_respects_displacement_cap(noisy_helix):
  config = GentleConfig(max_steps=5, step_size=1.0, max_displacement=0.05)
  result = gentle_relax(noisy_helix, config)
  assert result.ok
  moved = np.linalg.norm(result.structure.coords() - noisy_helix.coords(), axis=1)
  assert moved.max() <= 5 * 0.05 + 1e-9


def test_lbfgs_lowers_differentiable_energy(noisy_helix):
  from foldgate.algos.energy import ForceField

  result = lbfgs_minimize(noisy_helix, LBFGSConfig(max_iterations=100, cycle_iterations=25))
  assert result.ok
  ff = ForceField(noisy_helix)
  before, _ = ff.energy_and_gradient(noisy_helix.coords())
  after, _ = ff.energy_and_gradient(result.structure.coords())
  assert after < before


def test_annealing_never_returns_worse_than_input(noisy_helix):
  result = simulated_annealing(noisy_helix, SMALL_BUDGET.anneal)
  assert result.ok
  assert result.energy.total <= result.initial_energy + 1e-6


def test_annealing_is_reproducible(noisy_helix):
  first = simulated_annealing(noisy_helix, SMALL_BUDGET.anneal)
  second = simulated_annealing(noisy_helix, SMALL_BUDGET.anneal)
  assert np.array_equal(first.structure.coords(), second.structure.coords())


@pytest.mark.parametrize("schedule", ["exponential", "linear", "geometric", "golden"])
def test_annealing_schedules(noisy_helix, schedule: str):
  config = AnnealConfig(max_steps=50, schedule=schedule, perturbation_initial=0.2)
  assert simulated_annealing(noisy_helix, config).ok


def test_constraint_refine_holds_restraints(noisy_helix):
  restraints = restraints_from_structure(noisy_helix, cutoff=8.0)
  assert restraints
  assert all(r.target < 8.0 for r in restraints)

  result = constraint_refine(noisy_helix, ConstraintConfig(max_steps=30), restraints=restraints)
  assert result.ok
  coords = result.structure.coords()
  for r in restraints:
    d = np.linalg.norm(coords[r.atom_i] - coords[r.atom_j])
    assert abs(d - r.target) < r.tolerance + 0.5


def test_constraint_refine_rejects_foreign_restraints(noisy_helix):
  with pytest.raises(ValueError, match="outside the structure"):
    constraint_refine(noisy_helix, restraints=[Restraint(0, 10_000, 3.8)])


@pytest.mark.parametrize(
  "func,config",
  [
    (gentle_relax, GentleConfig(max_steps=20)),
    (lbfgs_minimize, LBFGSConfig(max_iterations=40, cycle_iterations=20)),
    (simulated_annealing, AnnealConfig(max_steps=200)),
    (constraint_refine, ConstraintConfig(max_steps=20)),
  ],
)
def test_non_finite_input_fails_instead_of_returning(noisy_helix, func, config):
  noisy_helix.residues[4].CA.xyz[:] = np.nan
  result = func(noisy_helix, config)
  assert not result.ok
  assert result.structure is None and result.energy is None
  assert result.failure is FailureReason.CORRUPT_COORDINATES
  assert "non-finite coordinates" in result.message


def test_lbfgs_moves_atoms_at_most_max_displacement_per_cycle(noisy_helix):
  # a huge energy tolerance stops after the first cycle
  config = LBFGSConfig(max_iterations=50, cycle_iterations=50, max_displacement=0.5, energy_tolerance=1e9)
  result = lbfgs_minimize(noisy_helix, config)
  assert result.ok
  moved = np.linalg.norm(result.structure.coords() - noisy_helix.coords(), axis=1)
  assert moved.max() <= 0.5 + 1e-6


def test_refine_can_require_convergence(noisy_helix):
  config = PipelineConfig(gentle=GentleConfig(max_steps=1, energy_tolerance=0.0), require_convergence=True)
  result = refine(noisy_helix, "gentle", config)
  assert not result.ok
  assert result.failure is FailureReason.BUDGET_EXHAUSTED
  assert result.structure is None
  assert refine(noisy_helix, "gentle", PipelineConfig(gentle=GentleConfig(max_steps=1, energy_tolerance=0.0))).ok
