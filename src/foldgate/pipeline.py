"""
Multi-phase refinement pipeline.

The :class:`PhaseOrchestrator` walks ``Baseline -> Sampling -> Refining -> Selected``:

- **Baseline** stores one initial structure for regression comparison, no filtering.
- **Sampling** collects a bounded ensemble from external producers, no filtering.
- **Refining** gates, refines and re-gates every candidate independently (optionally in
  worker processes). Rejected candidates are dropped for good.
- **Selected** holds the surviving candidate with the lowest
  ``energy.total + clash_penalty * clash_count``, ties going to the earliest candidate.

Per-candidate problems never abort the run, only an empty ensemble does.
"""

import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from itertools import islice
from multiprocessing import Pool
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pandas as pd
from tqdm import tqdm

from foldgate.algos.energy import evaluate
from foldgate.algos.quality import quality_from_report
from foldgate.algos.refine import FailureReason, Restraint, Strategy, refine
from foldgate.algos.validator import RejectionReason, validate
from foldgate.builder import Producer, extended_chain
from foldgate.config import PipelineConfig
from foldgate.log import logger
from foldgate.structure import Structure, calculate_rmsd

Comparator = Callable[[Structure, Structure], float]
StrategyChoice = Union[Strategy, str, Sequence[Union[Strategy, str]]]

# strategy failure -> rejection reason
FAILURE_REASONS: Dict[FailureReason, RejectionReason] = {
  FailureReason.BUDGET_EXHAUSTED: RejectionReason.REFINEMENT_BUDGET_EXHAUSTED,
  FailureReason.CORRUPT_COORDINATES: RejectionReason.CORRUPT_COORDINATE,
  FailureReason.NON_FINITE_ENERGY: RejectionReason.CORRUPT_COORDINATE,
}


### CLASSES ###
class Phase(str, Enum):
  BASELINE = "baseline"
  SAMPLING = "sampling"
  REFINING = "refining"
  SELECTED = "selected"
  REJECTED = "rejected"


class Checkpoint(str, Enum):
  """Where in the refining phase a candidate was rejected."""

  PRE_REFINEMENT = "pre_refinement"
  REFINEMENT = "refinement"
  POST_REFINEMENT = "post_refinement"


class SelectionOutcome(str, Enum):
  SELECTED = "selected"  # at least one candidate survived
  EMPTY = "empty"  # every candidate was rejected by the gates
  FAILED = "failed"  # nothing survived and at least one candidate was lost to a strategy error


class EmptyEnsembleError(ValueError):
  """Raised when the refining phase starts without any candidates."""


@dataclass
class CandidateRecord:
  """Audit trail of one candidate through the refining phase."""
  index: int
  title: str
  phase: Phase = Phase.REFINING
  checkpoint: Optional[Checkpoint] = None
  reason: Optional[RejectionReason] = None
  message: str = ""
  strategy: str = ""
  clashes_before: Optional[int] = None
  clashes_after: Optional[int] = None
  energy: Optional[float] = None
  saturated: bool = False
  score: Optional[float] = None
  iterations: int = 0
  rmsd: Optional[float] = None
  structure: Optional[Structure] = field(default=None, repr=False)

  def reject(self, checkpoint: Checkpoint, reason: RejectionReason, message: str) -> "CandidateRecord":
    self.phase = Phase.REJECTED
    self.checkpoint = checkpoint
    self.reason = reason
    self.message = message
    self.structure = None
    return self


@dataclass
class BaselineRecord:
  """Reference measurements of the baseline structure."""
  title: str
  energy: float
  saturated: bool
  quality: float
  clash_count: int
  is_valid: bool
  rmsd: Optional[float] = None


class SelectionTracker:
  """Best-candidate tracker, the single point of serialization of the refining phase.

  A lower score always wins. Equal scores go to the lower ensemble index so the result does
  not depend on the order in which workers finish.
  """

  def __init__(self):
    self._lock = threading.Lock()
    self.index: Optional[int] = None
    self.score: Optional[float] = None
    self.structure: Optional[Structure] = None

  def offer(self, index: int, score: float, structure: Structure) -> bool:
    """Offer a surviving candidate, returns whether it became the new best."""
    with self._lock:
      if self.score is None or score < self.score or (score == self.score and index < self.index):
        self.index, self.score, self.structure = index, score, structure
        return True
      return False


@dataclass
class PipelineReport:
  """Result of a pipeline run.

  Attributes:
    outcome: Whether a candidate was selected, the selection was empty, or strategy errors emptied it.
    records: One :obj:`CandidateRecord` per ensemble member, in ensemble order.
    best_index: Ensemble index of the selected candidate.
    best_score: Selection score of the selected candidate.
    best: The selected (refined) structure.
    baseline: Baseline measurements, if a baseline was run.
  """
  outcome: SelectionOutcome
  records: List[CandidateRecord]
  best_index: Optional[int] = None
  best_score: Optional[float] = None
  best: Optional[Structure] = None
  baseline: Optional[BaselineRecord] = None

  @property
  def rejections_by_checkpoint(self) -> Dict[str, int]:
    counts = {cp.value: 0 for cp in Checkpoint}
    for rec in self.records:
      if rec.checkpoint is not None:
        counts[rec.checkpoint.value] += 1
    return counts

  @property
  def reason_counts(self) -> Counter:
    return Counter(rec.reason.value for rec in self.records if rec.reason is not None)

  @property
  def num_survivors(self) -> int:
    return sum(1 for rec in self.records if rec.phase is Phase.SELECTED)

  def to_df(self) -> pd.DataFrame:
    """Return one row per candidate, without structures."""
    rows = []
    for rec in self.records:
      rows.append(
        {
          "index": rec.index,
          "title": rec.title,
          "phase": rec.phase.value,
          "checkpoint": rec.checkpoint.value if rec.checkpoint else None,
          "reason": rec.reason.value if rec.reason else None,
          "strategy": rec.strategy,
          "clashes_before": rec.clashes_before,
          "clashes_after": rec.clashes_after,
          "energy": rec.energy,
          "saturated": rec.saturated,
          "score": rec.score,
          "iterations": rec.iterations,
          "rmsd": rec.rmsd,
          "selected": rec.index == self.best_index,
          "message": rec.message,
        }
      )
    return pd.DataFrame(rows)

  def summary(self) -> str:
    lines = [f"outcome: {self.outcome.value} ({self.num_survivors}/{len(self.records)} candidates survived)"]
    if self.best_index is not None:
      lines.append(f"selected candidate {self.best_index} with score {self.best_score:.2f}")
    for checkpoint, count in self.rejections_by_checkpoint.items():
      lines.append(f"rejected at {checkpoint}: {count}")
    for reason, count in sorted(self.reason_counts.items()):
      lines.append(f"  {reason}: {count}")
    return "\n".join(lines)


### FUNCTIONS ###
def selection_score(energy_total: float, clash_count: int, clash_penalty: float = 100.0) -> float:
  """Return the ranking score of a surviving candidate, lower is better."""
  return energy_total + clash_penalty * clash_count


def _as_strategies(strategy: StrategyChoice) -> Tuple[Strategy, ...]:
  if isinstance(strategy, (Strategy, str)):
    return (Strategy(strategy),)
  strategies = tuple(Strategy(s) for s in strategy)
  if not strategies:
    raise ValueError("At least one refinement strategy is required")
  return strategies


def process_candidate(args: Tuple[int, Structure, Tuple[Strategy, ...], PipelineConfig, Optional[Sequence[Restraint]]]) -> CandidateRecord:
  """Gate, refine and re-gate one candidate.

  Runs inside worker processes, so it takes a single picklable tuple
  ``(index, structure, strategies, config, restraints)``. Several strategies are applied in
  order, each output passing through the gate before the next strategy sees it.

  Returns:
    The :obj:`CandidateRecord`, carrying the refined structure when the candidate survives

  """
  index, structure, strategies, config, restraints = args
  gate = config.gate
  rec = CandidateRecord(index=index, title=structure.title, strategy="+".join(s.value for s in strategies))

  report = validate(structure, gate)
  rec.clashes_before = report.clash_count
  if not report.is_valid:
    return rec.reject(Checkpoint.PRE_REFINEMENT, report.reason, report.message)
  if report.clash_count > gate.clash_ceiling:
    return rec.reject(Checkpoint.PRE_REFINEMENT, RejectionReason.EXCESSIVE_CLASH, f"{report.clash_count} clashes exceed ceiling of {gate.clash_ceiling}")

  current = structure
  result = None
  for strategy in strategies:
    try:
      result = refine(current, strategy, config, restraints=restraints)
    except Exception as e:
      logger.error(f"{strategy.value} raised on candidate {index} ({structure.title}): {e!r}")
      return rec.reject(Checkpoint.REFINEMENT, RejectionReason.REFINEMENT_ERROR, f"{strategy.value} raised {e!r}")
    rec.iterations += result.iterations
    if not result.ok:
      return rec.reject(Checkpoint.REFINEMENT, FAILURE_REASONS[result.failure], f"{strategy.value}: {result.failure.value}, {result.message}")
    current = result.structure

    report = validate(current, gate)
    rec.clashes_after = report.clash_count
    if not report.is_valid:
      logger.warning(f"{strategy.value} destabilized candidate {index}: {report.message}")
      return rec.reject(Checkpoint.POST_REFINEMENT, report.reason, report.message)
    if report.clash_count > gate.clash_ceiling:
      logger.warning(f"{strategy.value} left candidate {index} with {report.clash_count} clashes")
      return rec.reject(
        Checkpoint.POST_REFINEMENT, RejectionReason.EXCESSIVE_CLASH, f"{report.clash_count} clashes after refinement exceed ceiling of {gate.clash_ceiling}"
      )

  rec.phase = Phase.SELECTED
  rec.energy = result.energy.total
  rec.saturated = result.energy.saturated
  rec.score = selection_score(result.energy.total, rec.clashes_after, gate.clash_penalty)
  rec.message = result.message
  rec.structure = current
  return rec


class PhaseOrchestrator:
  """Drive the Baseline, Sampling and Refining phases and select the best candidate.

  Parameters:
    config: Pipeline configuration, defaults to :obj:`PipelineConfig`
    reference: Optional reference structure for reporting deviations, never used for selection
    comparator: Deviation metric between the reference and a candidate, RMSD by default

  """

  def __init__(self, config: Optional[PipelineConfig] = None, reference: Optional[Structure] = None, comparator: Comparator = calculate_rmsd):
    self.config = config or PipelineConfig()
    self.reference = reference
    self.comparator = comparator
    self.phase: Optional[Phase] = None
    self.baseline: Optional[Structure] = None
    self.baseline_record: Optional[BaselineRecord] = None
    self.ensemble: List[Structure] = []
    self.report: Optional[PipelineReport] = None

  def _compare(self, structure: Structure) -> Optional[float]:
    if self.reference is None:
      return None
    try:
      return float(self.comparator(self.reference, structure))
    except ValueError as e:
      logger.warning(f"Could not compare {structure.title} against the reference: {e}")
      return None

  def run_baseline(self, structure: Structure) -> BaselineRecord:
    """Store the baseline structure and record its energy, quality and deviation.

    Parameters:
      structure: Externally produced initial structure, accepted without filtering

    Returns:
      The :obj:`BaselineRecord`

    """
    if self.phase is not None:
      raise ValueError(f"Baseline must be the first phase, orchestrator is already in {self.phase.value}")
    self.baseline = structure.copy()
    report = validate(self.baseline, self.config.gate)
    energy = evaluate(self.baseline, self.config.energy, self.config.gate.energy_clamp)
    self.baseline_record = BaselineRecord(
      title=self.baseline.title,
      energy=energy.total,
      saturated=energy.saturated,
      quality=quality_from_report(report),
      clash_count=report.clash_count,
      is_valid=report.is_valid,
      rmsd=self._compare(self.baseline),
    )
    self.phase = Phase.BASELINE
    logger.info(f"Baseline {self.baseline.title}: energy {energy.total:.2f}, quality {self.baseline_record.quality:.2f} ({report})")
    return self.baseline_record

  def run_sampling(self, producers: Iterable[Producer], sequence: str, ensemble_size: Optional[int] = None) -> List[Structure]:
    """Collect an ensemble from candidate producers, no filtering.

    Producers are asked in order for the remaining number of candidates until the ensemble is full.

    Parameters:
      producers: Callables ``(sequence, count) -> Iterable[Structure]``
      sequence: Target sequence passed to every producer
      ensemble_size: Maximum ensemble size, defaults to ``config.ensemble_size``

    Returns:
      The collected ensemble

    """
    if self.phase is not Phase.BASELINE:
      raise ValueError("Sampling requires a completed baseline phase")
    ensemble_size = self.config.ensemble_size if ensemble_size is None else ensemble_size
    if ensemble_size < 1:
      raise ValueError(f"ensemble_size must be at least 1, found {ensemble_size}")
    self.ensemble = []
    for producer in producers:
      remaining = ensemble_size - len(self.ensemble)
      if remaining <= 0:
        break
      produced = list(islice(producer(sequence, remaining), remaining))
      self.ensemble.extend(produced)
      logger.debug(f"Producer {getattr(producer, '__name__', producer)} supplied {len(produced)} candidates")
    self.phase = Phase.SAMPLING
    logger.info(f"Sampled {len(self.ensemble)} candidates for {len(sequence)} residues")
    return self.ensemble

  def run_refining(self, strategy: Optional[StrategyChoice] = None, restraints: Optional[Sequence[Restraint]] = None) -> PipelineReport:
    """Gate, refine and re-gate every sampled candidate and select the best survivor.

    Parameters:
      strategy: Strategy, strategy name or sequence of strategies applied in order, defaults to ``config.strategy``
      restraints: Restraints for the constraint strategy, derived per candidate if not provided

    Returns:
      The :obj:`PipelineReport`

    """
    if self.phase is not Phase.SAMPLING:
      raise ValueError("Refining requires a completed sampling phase")
    if not self.ensemble:
      logger.critical("Refining phase started with an empty ensemble")
      raise EmptyEnsembleError("Cannot refine an empty ensemble")
    self.phase = Phase.REFINING
    strategies = _as_strategies(self.config.strategy if strategy is None else strategy)
    logger.info(f"Refining {len(self.ensemble)} candidates with {'+'.join(s.value for s in strategies)} on {self.config.num_processes} process(es)")

    # each worker owns its candidate for the whole gate/refine/gate cycle
    args = [(i, candidate, strategies, self.config, restraints) for i, candidate in enumerate(self.ensemble)]
    tracker = SelectionTracker()
    records: List[CandidateRecord] = []
    if self.config.num_processes > 1:
      with Pool(processes=self.config.num_processes) as pool:
        for rec in tqdm(pool.imap(process_candidate, args), total=len(args), desc="Refining candidates"):
          records.append(self._reduce(rec, tracker))
    else:
      for item in tqdm(args, total=len(args), desc="Refining candidates"):
        records.append(self._reduce(process_candidate(item), tracker))

    records.sort(key=lambda rec: rec.index)
    if tracker.index is not None:
      outcome = SelectionOutcome.SELECTED
    elif any(rec.reason is RejectionReason.REFINEMENT_ERROR for rec in records):
      outcome = SelectionOutcome.FAILED
    else:
      outcome = SelectionOutcome.EMPTY

    self.report = PipelineReport(
      outcome=outcome,
      records=records,
      best_index=tracker.index,
      best_score=tracker.score,
      best=tracker.structure,
      baseline=self.baseline_record,
    )
    self.phase = Phase.SELECTED
    if outcome is SelectionOutcome.SELECTED:
      logger.info(f"Selected candidate {tracker.index} with score {tracker.score:.2f} ({self.report.num_survivors}/{len(records)} survived)")
    elif outcome is SelectionOutcome.FAILED:
      logger.error(f"No candidate survived, strategy errors: {self.report.reason_counts[RejectionReason.REFINEMENT_ERROR.value]}")
    else:
      logger.warning(f"No candidate survived the gates: {dict(self.report.reason_counts)}")
    return self.report

  def _reduce(self, rec: CandidateRecord, tracker: SelectionTracker) -> CandidateRecord:
    """Fold one worker result into the tracker, in the parent process only."""
    if rec.phase is Phase.SELECTED:
      rec.rmsd = self._compare(rec.structure)
      tracker.offer(rec.index, rec.score, rec.structure)
      logger.debug(f"Candidate {rec.index} survived with score {rec.score:.2f} ({rec.clashes_after} clashes)")
    else:
      logger.debug(f"Candidate {rec.index} rejected at {rec.checkpoint.value}: {rec.message}")
    # only the tracker keeps refined structures
    rec.structure = None
    return rec

  def run(
    self,
    sequence: str,
    producers: Iterable[Producer],
    baseline: Optional[Structure] = None,
    strategy: Optional[StrategyChoice] = None,
    restraints: Optional[Sequence[Restraint]] = None,
  ) -> PipelineReport:
    """Run every phase in order.

    Parameters:
      sequence: Target sequence
      producers: Candidate producers for the sampling phase
      baseline: Baseline structure, defaults to an extended chain of ``sequence``
      strategy: Refinement strategy or sequence of strategies
      restraints: Restraints for the constraint strategy

    Returns:
      The :obj:`PipelineReport`

    """
    self.run_baseline(baseline if baseline is not None else extended_chain(sequence))
    self.run_sampling(producers, sequence)
    return self.run_refining(strategy, restraints)
