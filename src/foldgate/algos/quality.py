"""
Quality scoring on top of the validity gate.
"""

from typing import Optional, Tuple

from foldgate.algos.validator import ClashReport, validate
from foldgate.config import GateConfig
from foldgate.structure import Structure

# reserved for "never select this candidate", cannot tie with a valid score of 0
INVALID_QUALITY = -999999.9
CLASHES_TO_ZERO_QUALITY = 10


def quality_from_report(report: ClashReport) -> float:
  """Map a clash report to a quality in [0, 1], or :data:`INVALID_QUALITY` for invalid structures."""
  if not report.is_valid:
    return INVALID_QUALITY
  return max(0.0, 1.0 - report.clash_count / CLASHES_TO_ZERO_QUALITY)


def score(structure: Structure, config: Optional[GateConfig] = None) -> Tuple[float, ClashReport]:
  """Score a structure by its clash census.

  Zero clashes on a valid backbone gives exactly 1.0, every clash costs 0.1 down to a floor
  of 0.0. Invalid structures get :data:`INVALID_QUALITY` so they stay distinguishable from
  valid but poor ones.

  Parameters:
    structure: Structure to score
    config: Gate thresholds

  Returns:
    Tuple of the quality and the :obj:`ClashReport` it was derived from

  """
  report = validate(structure, config)
  return quality_from_report(report), report
