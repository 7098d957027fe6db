"""
This file contains constants.

All tables are read-only mappings built once at import time and shared by every
pipeline stage and worker process.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

## Backbone Atoms
# Names of atoms that make up the modelled protein backbone, in build order
BACKBONE_ATOMS = ("N", "CA", "C", "O", "H")
# Atom that terminates residue i at a peptide junction and the atom that starts residue i+1
JUNCTION_ATOMS = ("C", "N")
# Nominal peptide C-N bond length in Angstrom
PEPTIDE_BOND_LENGTH = 1.33

## Amino Acid Codes and Properties
# Codes for standard amino acids
STANDARD_AAs = set("ACDEFGHIKLMNPQRSTVWY")


# Amino acid Record class
@dataclass(frozen=True)
class AARecord:
  code: str  # 1-letter code
  abr: str  # 3-letter abbreviation
  name: str  # full name (upper-cased)
  hydrophobicity: float  # Kyte-Doolittle hydropathy index


## Amino acids keyed by ABR
AA_RECORDS: Mapping[str, AARecord] = MappingProxyType(
  {
    "ALA": AARecord("A", "ALA", "ALANINE", 1.8),
    "ARG": AARecord("R", "ARG", "ARGININE", -4.5),
    "ASN": AARecord("N", "ASN", "ASPARAGINE", -3.5),
    "ASP": AARecord("D", "ASP", "ASPARTIC ACID", -3.5),
    "CYS": AARecord("C", "CYS", "CYSTEINE", 2.5),
    "GLN": AARecord("Q", "GLN", "GLUTAMINE", -3.5),
    "GLU": AARecord("E", "GLU", "GLUTAMIC ACID", -3.5),
    "GLY": AARecord("G", "GLY", "GLYCINE", -0.4),
    "HIS": AARecord("H", "HIS", "HISTIDINE", -3.2),
    "ILE": AARecord("I", "ILE", "ISOLEUCINE", 4.5),
    "LEU": AARecord("L", "LEU", "LEUCINE", 3.8),
    "LYS": AARecord("K", "LYS", "LYSINE", -3.9),
    "MET": AARecord("M", "MET", "METHIONINE", 1.9),
    "PHE": AARecord("F", "PHE", "PHENYLALANINE", 2.8),
    "PRO": AARecord("P", "PRO", "PROLINE", -1.6),
    "SER": AARecord("S", "SER", "SERINE", -0.8),
    "THR": AARecord("T", "THR", "THREONINE", -0.7),
    "TRP": AARecord("W", "TRP", "TRYPTOPHAN", -0.9),
    "TYR": AARecord("Y", "TYR", "TYROSINE", -1.3),
    "VAL": AARecord("V", "VAL", "VALINE", 4.2),
  }
)
## Amino acids keyed by 1-letter code
AA_RECORDS_BY_CODE: Mapping[str, AARecord] = MappingProxyType({rec.code: rec for rec in AA_RECORDS.values()})


def getAA(query: str) -> AARecord:
  """Efficiently get any amino acid using either their 1-letter code or 3-letter abbreviation.

  Parameters:
    query: 1-letter code or 3-letter abbreviation (case-insensitive)

  Returns:
    The matching :obj:`AARecord`

  """
  query = query.upper()
  if len(query) == 1 and query in AA_RECORDS_BY_CODE:
    return AA_RECORDS_BY_CODE[query]
  if len(query) == 3 and query in AA_RECORDS:
    return AA_RECORDS[query]
  raise ValueError(f"Unknown amino acid for query '{query}'")


## Element tables
# van der Waals radii (Bondi) used by the clash census, unknown elements fall back to carbon
VDW_RADII: Mapping[str, float] = MappingProxyType({"H": 1.20, "C": 1.70, "N": 1.55, "O": 1.52, "S": 1.80})
DEFAULT_VDW_RADIUS = VDW_RADII["C"]

# Lennard-Jones (epsilon kcal/mol, sigma Angstrom) per element
LJ_PARAMS: Mapping[str, Tuple[float, float]] = MappingProxyType(
  {
    "C": (0.086, 1.908),
    "N": (0.170, 1.824),
    "O": (0.210, 1.661),
    "H": (0.016, 1.487),
    "S": (0.250, 2.000),
  }
)
DEFAULT_LJ_PARAMS = (0.1, 1.8)

# Backbone partial charges (AMBER ff14SB) keyed by atom name
BACKBONE_CHARGES: Mapping[str, float] = MappingProxyType({"N": -0.4157, "H": 0.2719, "CA": 0.0337, "C": 0.5973, "O": -0.5679})

## Force field
COULOMB_CONSTANT = 332.06  # kcal*Angstrom/(mol*e^2)
DIELECTRIC_SCALE = 4.0  # distance dependent dielectric, eps(r) = 4r
BOLTZMANN_KCAL = 0.001987  # kcal/(mol*K)

# Harmonic bond parameters (k kcal/mol/A^2, r0 Angstrom), "C-N" is the peptide bond to the next residue
BOND_PARAMS: Mapping[str, Tuple[float, float]] = MappingProxyType(
  {
    "N-CA": (337.0, 1.449),
    "CA-C": (317.0, 1.522),
    "C-O": (570.0, 1.229),
    "N-H": (434.0, 1.010),
    "C-N": (490.0, 1.335),
  }
)
DEFAULT_BOND_PARAMS = (300.0, 1.5)

# Harmonic angle parameters (k kcal/mol/rad^2, theta0 degrees), "+" marks atoms of the next residue
ANGLE_PARAMS: Mapping[str, Tuple[float, float]] = MappingProxyType(
  {
    "N-CA-C": (63.0, 110.1),
    "CA-C-O": (80.0, 120.4),
    "CA-C-N+": (70.0, 116.6),
    "C-N+-CA+": (50.0, 121.9),
  }
)
DEFAULT_ANGLE_PARAMS = (50.0, 109.5)

## Ramachandran basins
# (phi0, psi0, sigma_phi, sigma_psi) in degrees, energy = scale * (1 - max gaussian)
RAMA_BASINS: Mapping[str, Tuple[Tuple[float, float, float, float], ...]] = MappingProxyType(
  {
    "general": ((-60.0, -45.0, 30.0, 30.0), (-120.0, 120.0, 40.0, 50.0), (60.0, 45.0, 25.0, 25.0), (-75.0, 145.0, 30.0, 30.0)),
    "GLY": ((-60.0, -45.0, 50.0, 50.0), (-120.0, 120.0, 60.0, 70.0), (60.0, 45.0, 50.0, 50.0), (-75.0, 145.0, 50.0, 50.0)),
    "PRO": ((-60.0, -30.0, 20.0, 40.0), (-60.0, 145.0, 20.0, 30.0)),
  }
)
RAMA_SCALE: Mapping[str, float] = MappingProxyType({"general": 15.0, "GLY": 5.0, "PRO": 20.0})
# ideal backbone torsions used by the builder, (phi, psi) in degrees
SECONDARY_STRUCTURE_ANGLES: Mapping[str, Tuple[float, float]] = MappingProxyType(
  {
    "helix": (-57.0, -47.0),
    "sheet": (-120.0, 130.0),
    "extended": (-150.0, 150.0),
    "ppii": (-75.0, 145.0),
  }
)

## Solvation
SOLVATION_PROBE_RADIUS = 1.4
SOLVATION_CA_RADIUS = 1.70
SOLVATION_SPHERE_POINTS = 100
SOLVATION_SIGMA_SCALE = 0.012  # kcal/mol/A^2 per unit of hydropathy
HYDROPHOBIC_EFFECT_SCALE = 0.05
BURIAL_ENTROPY_PENALTY = 1.0  # kcal/mol per buried residue
BURIED_SASA_CUTOFF = 50.0

## Hydrogen bonds
HBOND_NO_DISTANCE_RANGE = (2.5, 3.5)
HBOND_HO_DISTANCE_RANGE = (1.5, 2.5)
HBOND_MIN_ANGLE = 120.0
HBOND_OPTIMAL_DISTANCE = 2.9
HBOND_WELL_DEPTH = -5.0


def vdw_radius(element: str) -> float:
  """Return the van der Waals radius of an element, defaulting to carbon."""
  return VDW_RADII.get(element.upper(), DEFAULT_VDW_RADIUS)


def lj_params(element: str) -> Tuple[float, float]:
  """Return the Lennard-Jones (epsilon, sigma) pair for an element."""
  return LJ_PARAMS.get(element.upper(), DEFAULT_LJ_PARAMS)


def hydrophobicity(res_name: str) -> Optional[float]:
  """Return the Kyte-Doolittle hydropathy of a residue or ``None`` if it is not standard."""
  rec = AA_RECORDS.get(res_name.upper())
  return rec.hydrophobicity if rec is not None else None


def three_to_one(res_names) -> str:
  """Convert an iterable of 3-letter residue names to a 1-letter sequence (``X`` for unknowns)."""
  out = []
  for name in res_names:
    rec = AA_RECORDS.get(name.upper())
    out.append(rec.code if rec is not None else "X")
  return "".join(out)
