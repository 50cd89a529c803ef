# seqtree/phylogeny.py

"""
Neighbor-joining trees from multiple sequence alignments.

The alignment is encoded as a numpy matrix (A, C, G, T/U -> 0..3, anything
else missing), turned into a Bio.Phylo DistanceMatrix under one of the
nucleotide distance models below, and passed to
DistanceTreeConstructor.nj().

Models:
    raw   proportion of differing sites (p-distance)
    N     number of differing sites
    JC69  Jukes-Cantor 1969
    K80   Kimura 2-parameter
    F81   Felsenstein 1981, base frequencies from the whole alignment
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

import numpy as np
import matplotlib
matplotlib.use('Agg')  # Use non-interactive backend
import matplotlib.pyplot as plt
from Bio import Phylo
from Bio.Phylo.TreeConstruction import DistanceMatrix, DistanceTreeConstructor

logger = logging.getLogger(__name__)

MISSING = 255
DISTANCE_MODELS = ("raw", "N", "JC69", "K80", "F81")

_BASE_CODES = {"A": 0, "C": 1, "G": 2, "T": 3, "U": 3}


@dataclass
class EncodedAlignment:
    """
    Numeric form of an alignment.

    Attributes:
        names: Sequence ids in alignment order
        codes: uint8 array of shape (n_sequences, n_sites); purines are
            even (A=0, G=2), pyrimidines odd (C=1, T=3), MISSING otherwise
    """
    names: List[str]
    codes: np.ndarray


def _code_lookup() -> np.ndarray:
    lookup = np.full(256, MISSING, dtype=np.uint8)
    for base, code in _BASE_CODES.items():
        lookup[ord(base)] = code
        lookup[ord(base.lower())] = code
    return lookup


def encode_alignment(msa) -> EncodedAlignment:
    """
    Encode an alignment of nucleotide sequences.

    Args:
        msa: A MultipleSeqAlignment or any iterable of SeqRecords of equal length

    Returns:
        EncodedAlignment: Names and code matrix
    """
    rows = list(msa)
    if not rows:
        raise ValueError("Alignment contains no sequences")

    lengths = {len(row.seq) for row in rows}
    if len(lengths) != 1:
        raise ValueError(f"Aligned sequences must all have the same length; found lengths {sorted(lengths)}")

    raw = np.array([
        np.frombuffer(str(row.seq).encode("ascii", errors="replace"), dtype=np.uint8)
        for row in rows
    ])
    codes = _code_lookup()[raw]
    return EncodedAlignment(names=[row.id for row in rows], codes=codes)


def _base_frequencies(codes: np.ndarray, valid: np.ndarray) -> np.ndarray:
    counts = np.bincount(codes[valid].astype(np.int64), minlength=4)[:4].astype(float)
    total = counts.sum()
    if total == 0:
        return np.full(4, np.nan)
    return counts / total


def _pair_distance(a: np.ndarray, b: np.ndarray, mask: np.ndarray, model: str,
                   freqs: Optional[np.ndarray] = None) -> float:
    a = a[mask]
    b = b[mask]
    sites = len(a)
    diff = a != b
    n_diff = int(diff.sum())

    if model == "N":
        return float(n_diff)
    if sites == 0:
        return float("nan")

    p = n_diff / sites
    if model == "raw":
        return p

    with np.errstate(divide="ignore", invalid="ignore"):
        if model == "JC69":
            d = -0.75 * np.log(1.0 - 4.0 * p / 3.0)
        elif model == "K80":
            transitions = int((diff & (a % 2 == b % 2)).sum())
            P = transitions / sites
            Q = (n_diff - transitions) / sites
            d = -0.5 * np.log(1.0 - 2.0 * P - Q) - 0.25 * np.log(1.0 - 2.0 * Q)
        else:
            e = 1.0 - float(np.sum(freqs ** 2))
            d = -e * np.log(1.0 - p / e)

    d = float(d)
    # saturated pairs have no finite distance
    return d if np.isfinite(d) else float("nan")


def distance_matrix(encoded: EncodedAlignment, model: str = "raw",
                    pairwise_deletion: bool = True) -> DistanceMatrix:
    """
    Pairwise distances between the encoded sequences.

    Args:
        encoded: Output of encode_alignment()
        model: One of DISTANCE_MODELS
        pairwise_deletion: Drop missing sites per pair (True) or drop every
            column with a missing site in any sequence (False)

    Returns:
        DistanceMatrix: Lower-triangular matrix; undefined distances are NaN
    """
    if model not in DISTANCE_MODELS:
        raise ValueError(f"Unknown distance model {model!r}; choose from {', '.join(DISTANCE_MODELS)}")

    codes = encoded.codes
    valid = codes != MISSING
    if not pairwise_deletion:
        complete = valid.all(axis=0)
        codes = codes[:, complete]
        valid = valid[:, complete]
        logger.debug(f"Kept {int(complete.sum())} complete sites out of {len(complete)}")

    freqs = _base_frequencies(codes, valid) if model == "F81" else None

    matrix = []
    for i in range(len(encoded.names)):
        row = [_pair_distance(codes[i], codes[j], valid[i] & valid[j], model, freqs) for j in range(i)]
        row.append(0.0)
        matrix.append(row)

    return DistanceMatrix(list(encoded.names), matrix)


def neighbor_join(dm: DistanceMatrix):
    """Build a neighbor-joining tree from a distance matrix."""
    if len(dm.names) < 3:
        raise ValueError("cannot build an NJ tree with less than 3 sequences")
    if any(np.isnan(value) for row in dm.matrix for value in row):
        raise ValueError("missing values are not allowed in the distance matrix")

    return DistanceTreeConstructor().nj(dm)


def build_nj_tree(msa, model: str = "raw", pairwise_deletion: bool = True):
    """
    Build a neighbor-joining tree from a multiple sequence alignment.

    Args:
        msa: MultipleSeqAlignment, e.g. from align_sequences(method="msa")
        model: Distance model passed to distance_matrix()
        pairwise_deletion: Whether missing sites are dropped per pair

    Returns:
        Bio.Phylo.BaseTree.Tree: Unrooted NJ tree
    """
    encoded = encode_alignment(msa)
    logger.info(f"Computing {model} distances for {len(encoded.names)} sequences "
                f"({encoded.codes.shape[1]} sites)")
    dm = distance_matrix(encoded, model=model, pairwise_deletion=pairwise_deletion)
    tree = neighbor_join(dm)
    logger.info(f"Built neighbor-joining tree with {len(tree.get_terminals())} tips")
    return tree


def write_tree(tree, output_file, fmt: str = "newick") -> int:
    count = Phylo.write(tree, output_file, fmt)
    logger.info(f"Saved tree to {output_file} ({fmt})")
    return count


def draw_tree(tree, output_file: str, title: Optional[str] = None):
    """Render a tree to an image file, labelling only the tips."""
    n_tips = len(tree.get_terminals())
    fig = plt.figure(figsize=(10, max(4, 0.4 * n_tips)))
    axes = fig.add_subplot(1, 1, 1)
    Phylo.draw(tree, axes=axes, do_show=False,
               label_func=lambda clade: clade.name if clade.is_terminal() else "")
    if title:
        axes.set_title(title)
    fig.savefig(output_file, dpi=300, bbox_inches='tight')
    plt.close(fig)

    logger.info(f"Saved tree plot to {output_file}")
