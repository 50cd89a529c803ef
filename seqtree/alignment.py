# seqtree/alignment.py

"""
Pairwise and multiple sequence alignment.

Pairwise alignments use Bio.Align.PairwiseAligner with the scoring that
Biostrings applies to DNA by default (match 1, mismatch 0, gap opening 10,
gap extension 4). Multiple alignments run an external aligner (Clustal
Omega, ClustalW or MUSCLE) on a temporary FASTA file.
"""

import os
import shutil
import logging
import tempfile
import subprocess
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from Bio import AlignIO, SeqIO
from Bio.Align import MultipleSeqAlignment, PairwiseAligner
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .exceptions import AlignerNotFoundError, AlignmentInputError

logger = logging.getLogger(__name__)

ALIGNMENT_METHODS = ("pairwise", "msa")
PAIRWISE_TYPES = ("global", "local", "overlap")

MSA_EXECUTABLES = {
    "ClustalOmega": "clustalo",
    "ClustalW": "clustalw2",
    "Muscle": "muscle",
}

MSA_INSTALL_HINTS = {
    "ClustalOmega": "conda install -c bioconda clustalo",
    "ClustalW": "conda install -c bioconda clustalw",
    "Muscle": "conda install -c bioconda muscle",
}


@dataclass
class PairwiseResult:
    """
    Result of a pairwise alignment.

    Attributes:
        alignment: Best-scoring Bio.Align.Alignment
        pid: Percent identity (0-100)
        ids: Labels of the two aligned sequences
    """
    alignment: Any
    pid: float
    ids: Tuple[str, str]


def _row_field(row: Any, name: str) -> Any:
    if isinstance(row, Mapping):
        return row.get(name)
    return getattr(row, name, None)


def rows_to_seqrecords(sequences: Sequence[Any]) -> List[SeqRecord]:
    """
    Convert table rows to SeqRecords.

    Rows may be mappings (CSV rows, dicts) or objects such as Record; each
    needs a 'sequence' field and may carry an 'accession' label.
    """
    records = []
    for i, row in enumerate(sequences):
        sequence = _row_field(row, "sequence")
        if sequence is None:
            raise AlignmentInputError(f"Input data must have a 'sequence' field (missing in row {i}).")
        label = _row_field(row, "accession") or f"seq{i + 1}"
        records.append(SeqRecord(Seq(str(sequence).upper()), id=str(label), description=""))
    return records


def make_pairwise_aligner(pairwise_type: str = "global") -> PairwiseAligner:
    """
    Build an aligner for the given topology.

    'global' is Needleman-Wunsch, 'local' is Smith-Waterman and 'overlap'
    is global alignment with free end gaps.
    """
    if pairwise_type not in PAIRWISE_TYPES:
        raise AlignmentInputError(
            f"pairwise_type must be one of {', '.join(PAIRWISE_TYPES)}; got {pairwise_type!r}"
        )

    aligner = PairwiseAligner()
    aligner.match_score = 1.0
    aligner.mismatch_score = 0.0
    # first gap position pays opening + extension
    aligner.open_gap_score = -14.0
    aligner.extend_gap_score = -4.0
    aligner.mode = "local" if pairwise_type == "local" else "global"
    if pairwise_type == "overlap":
        aligner.end_gap_score = 0.0
    return aligner


def percent_identity(alignment: Any) -> float:
    """
    Percent identity of the first two rows of an alignment.

    Identical positions divided by aligned positions plus internal gap
    positions; terminal gaps are not counted.
    """
    first = str(getattr(alignment[0], "seq", alignment[0]))
    second = str(getattr(alignment[1], "seq", alignment[1]))
    columns = list(zip(first, second))

    aligned = [i for i, (a, b) in enumerate(columns) if a != "-" and b != "-"]
    if not aligned:
        return 0.0

    inner = columns[aligned[0]:aligned[-1] + 1]
    identical = sum(1 for a, b in inner if a == b and a != "-")
    return 100.0 * identical / len(inner)


def pairwise_align(
    records: List[SeqRecord],
    pairwise_type: str = "global",
    seq_indices: Sequence[int] = (0, 1)
) -> PairwiseResult:
    """
    Align two of the given sequences.

    Args:
        records: Candidate sequences
        pairwise_type: 'global', 'local' or 'overlap'
        seq_indices: Exactly two 0-based indices into records

    Returns:
        PairwiseResult: Best alignment and its percent identity
    """
    seq_indices = list(seq_indices)
    if len(seq_indices) != 2:
        raise AlignmentInputError(
            f"`seq_indices` must contain exactly 2 indices for pairwise alignment; got {len(seq_indices)}."
        )
    for index in seq_indices:
        if not isinstance(index, int) or isinstance(index, bool) or not 0 <= index < len(records):
            raise AlignmentInputError(f"Sequence index {index!r} is out of range for {len(records)} sequences.")

    first, second = records[seq_indices[0]], records[seq_indices[1]]
    aligner = make_pairwise_aligner(pairwise_type)

    logger.info(f"Running {pairwise_type} pairwise alignment of {first.id} and {second.id}")
    alignment = aligner.align(first.seq, second.seq)[0]
    pid = percent_identity(alignment)
    logger.info(f"Alignment score {alignment.score:.1f}, identity {pid:.2f}%")

    return PairwiseResult(alignment=alignment, pid=pid, ids=(first.id, second.id))


def _msa_command(msa_method: str, executable: str, input_file: str, output_file: str) -> List[str]:
    if msa_method == "ClustalOmega":
        return [executable, "-i", input_file, "-o", output_file, "--outfmt=fasta", "--force"]
    if msa_method == "ClustalW":
        return [executable, f"-INFILE={input_file}", f"-OUTFILE={output_file}", "-OUTPUT=FASTA"]
    # MUSCLE 5 syntax
    return [executable, "-align", input_file, "-output", output_file]


def run_msa(
    records: List[SeqRecord],
    msa_method: str = "ClustalOmega",
    executable: Optional[str] = None
) -> MultipleSeqAlignment:
    """
    Align all sequences with an external multiple alignment tool.

    Args:
        records: Sequences to align (at least two)
        msa_method: 'ClustalOmega', 'ClustalW' or 'Muscle'
        executable: Override for the program name or path

    Returns:
        MultipleSeqAlignment: Aligned sequences in input order

    Raises:
        AlignerNotFoundError: If the aligner is not installed.
        subprocess.CalledProcessError: If the aligner exits with an error.
    """
    if msa_method not in MSA_EXECUTABLES:
        raise AlignmentInputError(
            f"msa_method must be one of {', '.join(MSA_EXECUTABLES)}; got {msa_method!r}"
        )
    if len(records) < 2:
        raise AlignmentInputError("Multiple sequence alignment needs at least two sequences.")

    program = executable or MSA_EXECUTABLES[msa_method]
    program_path = shutil.which(program)
    if program_path is None:
        raise AlignerNotFoundError(
            f"Multiple sequence alignment with {msa_method} requires the '{program}' executable on PATH.\n"
            f"Install it with:\n  {MSA_INSTALL_HINTS[msa_method]}"
        )

    with tempfile.TemporaryDirectory(prefix="seqtree_msa_") as tmp_dir:
        input_file = os.path.join(tmp_dir, "input.fasta")
        output_file = os.path.join(tmp_dir, "aligned.fasta")
        SeqIO.write(records, input_file, "fasta")

        cmd = _msa_command(msa_method, program_path, input_file, output_file)
        logger.info(f"Aligning {len(records)} sequences with {msa_method}")
        logger.debug(f"Running: {' '.join(cmd)}")
        subprocess.run(cmd, check=True, capture_output=True, text=True)

        alignment = AlignIO.read(output_file, "fasta")

    # aligners may reorder their output
    order = {record.id: i for i, record in enumerate(records)}
    ordered = sorted(alignment, key=lambda rec: order.get(rec.id, len(order)))
    logger.info(f"Alignment length: {alignment.get_alignment_length()}")
    return MultipleSeqAlignment(ordered)


def align_sequences(
    sequences: Sequence[Any],
    method: str = "pairwise",
    pairwise_type: str = "global",
    msa_method: str = "ClustalOmega",
    seq_indices: Sequence[int] = (0, 1)
):
    """
    Align sequences pairwise or all together.

    Args:
        sequences: Rows with a 'sequence' field and optional 'accession'
            label (e.g. the Records returned by fetch_sequences)
        method: 'pairwise' or 'msa'
        pairwise_type: 'global', 'local' or 'overlap' (pairwise only)
        msa_method: 'ClustalOmega', 'ClustalW' or 'Muscle' (msa only)
        seq_indices: The two 0-based rows to align (pairwise only)

    Returns:
        PairwiseResult for 'pairwise', MultipleSeqAlignment for 'msa'

    Raises:
        AlignmentInputError: If a row lacks a sequence, pairwise mode gets
            other than two indices, or an option is not recognised.
    """
    if method not in ALIGNMENT_METHODS:
        raise AlignmentInputError(f"method must be one of {', '.join(ALIGNMENT_METHODS)}; got {method!r}")

    records = rows_to_seqrecords(sequences)

    if method == "pairwise":
        return pairwise_align(records, pairwise_type=pairwise_type, seq_indices=seq_indices)
    return run_msa(records, msa_method=msa_method)
