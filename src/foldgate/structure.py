"""
Backbone data model used throughout foldgate.

A :obj:`Structure` is a single polypeptide chain made of :obj:`Residue` objects, each owning
a small ordered set of backbone :obj:`Atom` objects. Coordinates are mutable in place, everything
else (residue order, atom sets) is fixed once a candidate is built. Refinement never shares a
Structure between stages, it works on :meth:`Structure.copy`.
"""

import copy
import os
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
from Bio.PDB import PDBIO, PDBParser
from Bio.PDB.Polypeptide import is_aa
from Bio.PDB.StructureBuilder import StructureBuilder
from Bio.SVDSuperimposer import SVDSuperimposer

from foldgate.constants import BACKBONE_ATOMS, BACKBONE_CHARGES, three_to_one, vdw_radius
from foldgate.geometry import centroid


### CLASSES ###
@dataclass
class Atom:
  """Atom with coordinates and the properties that drive the energy and clash tables.

  Attributes:
    name: Atom name (e.g. N, CA, C, O, H).
    element: Element symbol, determines radius and Lennard-Jones parameters.
    res_index: Index of the owning residue within the chain (0-based).
    xyz: Cartesian coordinate in Angstrom.
    is_backbone: Whether the atom is part of the main chain.
    charge: Partial charge (e).
  """
  name: str
  element: str
  res_index: int
  xyz: np.ndarray = field(default_factory=lambda: np.zeros(3, dtype=float))
  is_backbone: bool = True
  charge: float = 0.0

  @property
  def radius(self) -> float:
    return vdw_radius(self.element)


@dataclass
class Residue:
  """Residue with an ordered mapping of atom name to :obj:`Atom`."""
  index: int
  name: str
  atoms: Dict[str, Atom] = field(default_factory=dict)

  def get_atom(self, name: str) -> Optional[Atom]:
    """Return an atom by name if present."""
    return self.atoms.get(name)

  def add_atom(self, name: str, xyz: Sequence[float], element: Optional[str] = None, charge: Optional[float] = None) -> Atom:
    """Create an atom in this residue, inferring element, backbone role and charge from the name."""
    element = element or name[0]
    atom = Atom(
      name=name,
      element=element.upper(),
      res_index=self.index,
      xyz=np.array(xyz, dtype=float),
      is_backbone=name in BACKBONE_ATOMS,
      charge=BACKBONE_CHARGES.get(name, 0.0) if charge is None else charge,
    )
    self.atoms[name] = atom
    return atom

  @property
  def N(self) -> Optional[Atom]:
    return self.atoms.get("N")

  @property
  def CA(self) -> Optional[Atom]:
    return self.atoms.get("CA")

  @property
  def C(self) -> Optional[Atom]:
    return self.atoms.get("C")

  @property
  def O(self) -> Optional[Atom]:  # noqa: E743
    return self.atoms.get("O")

  @property
  def H(self) -> Optional[Atom]:
    return self.atoms.get("H")


@dataclass
class Structure:
  """A single-chain backbone candidate.

  Attributes:
    residues: Residues in chain order.
    title: Free-form label used in logs and reports.
  """
  residues: List[Residue] = field(default_factory=list)
  title: str = "Untitled Structure"

  def __len__(self) -> int:
    return len(self.residues)

  def atoms(self) -> List[Atom]:
    """Return every atom in chain order (residue order, then insertion order inside a residue)."""
    return [atom for res in self.residues for atom in res.atoms.values()]

  def coords(self) -> np.ndarray:
    """Return an (N, 3) copy of all atom coordinates in :meth:`atoms` order."""
    atoms = self.atoms()
    if not atoms:
      return np.zeros((0, 3), dtype=float)
    return np.array([atom.xyz for atom in atoms], dtype=float)

  def set_coords(self, coords: np.ndarray):
    """Write an (N, 3) coordinate array back onto the atoms in place.

    Parameters:
      coords: Coordinates in :meth:`atoms` order

    """
    coords = np.asarray(coords, dtype=float)
    atoms = self.atoms()
    if coords.shape != (len(atoms), 3):
      raise ValueError(f"Expected coordinates of shape ({len(atoms)}, 3), found {coords.shape}")
    for atom, xyz in zip(atoms, coords):
      atom.xyz[:] = xyz

  def copy(self) -> "Structure":
    """Return an independent deep copy."""
    return copy.deepcopy(self)

  def sequence(self) -> str:
    """Return the 1-letter amino acid sequence (``X`` for non-standard residues)."""
    return three_to_one(res.name for res in self.residues)

  def centroid(self) -> np.ndarray:
    """Return the geometric center of every atom."""
    return centroid(self.coords())

  def backbone_coords(self, names: Iterable[str] = ("CA",)) -> np.ndarray:
    """Return coordinates of the named atoms, in chain order, skipping residues that lack them."""
    names = tuple(names)
    out = []
    for res in self.residues:
      for name in names:
        atom = res.get_atom(name)
        if atom is not None:
          out.append(atom.xyz)
    return np.array(out, dtype=float).reshape(-1, 3)

  def to_df(self) -> pd.DataFrame:
    """Return a biopandas-like dataframe with one row per atom.

    Inspired by: https://biopandas.github.io/biopandas

    """
    df = {
      "res_id": [],
      "res_name": [],
      "atom_name": [],
      "element": [],
      "backbone": [],
      "charge": [],
      "x": [],
      "y": [],
      "z": [],
    }
    for res in self.residues:
      for atom in res.atoms.values():
        df["res_id"].append(res.index)
        df["res_name"].append(res.name)
        df["atom_name"].append(atom.name)
        df["element"].append(atom.element)
        df["backbone"].append(atom.is_backbone)
        df["charge"].append(atom.charge)
        df["x"].append(atom.xyz[0])
        df["y"].append(atom.xyz[1])
        df["z"].append(atom.xyz[2])
    return pd.DataFrame(df)

  @classmethod
  def from_pdb(cls, fpath: str, chain: Optional[str] = None) -> "Structure":
    """Load the backbone of one chain from a PDB file.

    Only amino acid residues are kept and only their backbone atoms (N, CA, C, O, H).
    Residues are re-indexed from 0 in file order.

    Parameters:
      fpath: Path to a PDB file
      chain: Chain ID to load, if not provided the first chain containing amino acids is used

    Returns:
      The loaded :obj:`Structure`

    """
    if not os.path.exists(fpath):
      raise ValueError(f"PDB file {fpath} does not exist")
    parser = PDBParser(QUIET=True)
    bio_structure = parser.get_structure("structure", fpath)
    if not len(bio_structure):
      raise ValueError("No models found. Structure appears to be empty.")
    model = bio_structure[0]

    selected = None
    for bio_chain in model:
      if chain is not None and bio_chain.id != chain:
        continue
      if any(is_aa(res, standard=False) for res in bio_chain):
        selected = bio_chain
        break
    if selected is None:
      raise ValueError(f"No amino acid chain found in {fpath}" + (f" matching chain {chain}" if chain else ""))

    residues = []
    for bio_res in selected:
      if not is_aa(bio_res, standard=False):
        continue
      res = Residue(index=len(residues), name=bio_res.get_resname())
      for name in BACKBONE_ATOMS:
        if name in bio_res:
          bio_atom = bio_res[name]
          res.add_atom(name, bio_atom.coord, element=bio_atom.element or name[0])
      residues.append(res)
    return cls(residues=residues, title=os.path.basename(fpath))

  def save(self, fpath: str, chain_id: str = "A"):
    """Save the structure as a PDB file, overwriting any existing file.

    Parameters:
      fpath: File path where you want to save the structure
      chain_id: Chain identifier written for every residue

    """
    builder = StructureBuilder()
    builder.init_structure(self.title)
    builder.init_model(0)
    builder.init_chain(chain_id)
    builder.init_seg("    ")
    for res in self.residues:
      builder.init_residue(res.name, " ", res.index + 1, " ")
      for atom in res.atoms.values():
        fullname = f" {atom.name:<3}" if len(atom.name) < 4 else atom.name
        builder.init_atom(atom.name, np.asarray(atom.xyz, dtype="f"), 0.0, 1.0, " ", fullname, element=atom.element)
    io = PDBIO()
    io.set_structure(builder.get_structure())
    io.save(fpath)


### FUNCTIONS ###
def _paired_coords(reference: Structure, model: Structure, names: Tuple[str, ...]) -> Tuple[np.ndarray, np.ndarray]:
  """Return matching coordinate arrays of the named atoms present in both structures."""
  if len(reference) != len(model):
    raise ValueError(f"Structures must have the same number of residues, found {len(reference)} and {len(model)}")
  ref, mob = [], []
  for res_ref, res_mob in zip(reference.residues, model.residues):
    for name in names:
      a, b = res_ref.get_atom(name), res_mob.get_atom(name)
      if a is not None and b is not None:
        ref.append(a.xyz)
        mob.append(b.xyz)
  if len(ref) < 3:
    raise ValueError("At least 3 matching atoms are required for superposition")
  return np.array(ref, dtype=float), np.array(mob, dtype=float)


def calculate_rmsd(reference: Structure, model: Structure, atoms: Tuple[str, ...] = ("CA",), align: bool = True) -> float:
  """Calculate the RMSD between two structures of equal length. RMSD is in angstroms (Å).

  Parameters:
    reference: Reference structure
    model: Structure to compare against the reference, it is not modified
    atoms: Atom names to compare
    align: Whether to superimpose the structures first

  Returns:
    The root-mean-square deviation between the two structures

  """
  ref, mob = _paired_coords(reference, model, atoms)
  if not align:
    return float(np.sqrt(np.mean(np.sum((ref - mob) ** 2, axis=1))))
  sup = SVDSuperimposer()
  sup.set(ref, mob)
  sup.run()
  return float(sup.get_rms())


def calculate_tm_score(reference: Structure, model: Structure) -> float:
  """Calculate the TM-score of a model against a reference after CA superposition.

  Uses the standard length-dependent distance scale ``d0 = 1.24 (L - 15)^(1/3) - 1.8``
  with a floor of 0.5 Å. This is a fixed-superposition approximation, it does not search
  for the TM-score maximising alignment.

  Parameters:
    reference: Reference structure, defines the normalisation length
    model: Structure to compare

  Returns:
    TM-score in (0, 1]

  """
  ref, mob = _paired_coords(reference, model, ("CA",))
  sup = SVDSuperimposer()
  sup.set(ref, mob)
  sup.run()
  moved = sup.get_transformed()
  length = len(reference)
  d0 = max(0.5, 1.24 * max(length - 15, 0) ** (1.0 / 3.0) - 1.8)
  dist = np.linalg.norm(moved - ref, axis=1)
  return float(np.sum(1.0 / (1.0 + (dist / d0) ** 2)) / length)
