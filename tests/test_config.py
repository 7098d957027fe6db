import dataclasses

import pytest

from foldgate.config import AnnealConfig, GateConfig, GentleConfig, LBFGSConfig, PipelineConfig


def test_defaults():
  config = PipelineConfig()
  assert config.gate.clash_coefficient == 0.6
  assert config.gate.clash_ceiling == 5
  assert config.gate.clash_penalty == 100.0
  assert config.gate.energy_clamp == 10000.0
  assert config.gate.bond_range == (1.0, 2.0)
  assert config.strategy == "gentle"
  assert config.num_processes == 1


def test_records_are_frozen():
  config = GateConfig()
  with pytest.raises(dataclasses.FrozenInstanceError):
    config.clash_ceiling = 10
  assert dataclasses.replace(config, clash_ceiling=10).clash_ceiling == 10


@pytest.mark.parametrize(
  "factory",
  [
    lambda: GateConfig(clash_coefficient=0.0),
    lambda: GateConfig(clash_ceiling=-1),
    lambda: GateConfig(bond_range=(2.0, 1.0)),
    lambda: GateConfig(energy_clamp=0.0),
    lambda: GentleConfig(max_steps=0),
    lambda: LBFGSConfig(memory=0),
    lambda: AnnealConfig(schedule="cubic"),
    lambda: AnnealConfig(initial_temperature=1.0, final_temperature=10.0),
    lambda: PipelineConfig(num_processes=0),
  ],
)
def test_invalid_values_are_rejected(factory):
  with pytest.raises(ValueError):
    factory()


def test_from_dict_builds_nested_sections():
  config = PipelineConfig.from_dict(
    {
      "gate": {"clash_ceiling": 3, "bond_range": [1.1, 1.9]},
      "anneal": {"schedule": "golden", "seed": 7},
      "ensemble_size": 10,
      "strategy": "anneal",
    }
  )
  assert config.gate.clash_ceiling == 3
  assert config.gate.bond_range == (1.1, 1.9)
  assert config.anneal.schedule == "golden"
  assert config.anneal.seed == 7
  assert config.ensemble_size == 10
  # untouched sections keep their defaults
  assert config.lbfgs == LBFGSConfig()

  assert PipelineConfig.from_dict(config.to_dict()) == config


def test_from_dict_rejects_unknown_keys():
  with pytest.raises(ValueError, match="Unknown configuration key"):
    PipelineConfig.from_dict({"temperature": 300})
  with pytest.raises(ValueError, match="Unknown keys for section 'gate'"):
    PipelineConfig.from_dict({"gate": {"ceiling": 3}})
