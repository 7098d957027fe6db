import pytest

from foldgate.algos.quality import INVALID_QUALITY, score
from foldgate.builder import extended_chain


def test_clean_structure_scores_one():
  quality, report = score(extended_chain("ACDEFGHIK"))
  assert report.clash_count == 0
  assert quality == 1.0


@pytest.mark.parametrize("num_clashes,expected", [(1, 0.9), (3, 0.7), (10, 0.0), (12, 0.0)])
def test_each_clash_costs_a_tenth(clashing_trace, num_clashes: int, expected: float):
  quality, report = score(clashing_trace(num_clashes))
  assert report.clash_count == num_clashes
  assert quality == pytest.approx(expected)


def test_invalid_structure_gets_sentinel():
  structure = extended_chain("AAAA")
  structure.residues[1].N.xyz[0] = float("nan")
  quality, report = score(structure)
  assert not report.is_valid
  assert quality == INVALID_QUALITY
  assert quality < 0.0
