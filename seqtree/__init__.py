# seqtree/__init__.py

"""
seqtree

Fetch sequence records from NCBI by accession (optionally a sub-range per
accession), align them pairwise or all together, and build
neighbor-joining trees from the alignment.
"""

__version__ = '0.1.0'

from .exceptions import (
    SeqTreeError,
    InvalidRangeSpec,
    InvalidRange,
    InvalidDatabase,
    LookupMiss,
    FetchFailure,
    AlignmentInputError,
    AlignerNotFoundError
)

from .ranges import (
    Range,
    RangeSpec,
    FullSequence,
    GlobalRange,
    PerAccessionRanges,
    parse_range_spec
)

from .data_retrieval import (
    Record,
    FailedAccession,
    FetchReport,
    configure_entrez,
    fetch_sequences,
    fetch_sequences_report,
    fetch_sequence,
    records_to_seqrecords,
    write_records_fasta,
    write_records_csv,
    read_records_csv,
    load_local_fasta
)

from .cache_manager import RecordCacheManager

from .alignment import (
    PairwiseResult,
    align_sequences,
    percent_identity
)

from .phylogeny import (
    build_nj_tree,
    encode_alignment,
    distance_matrix,
    neighbor_join,
    write_tree,
    draw_tree
)

__all__ = [
    # Errors
    'SeqTreeError',
    'InvalidRangeSpec',
    'InvalidRange',
    'InvalidDatabase',
    'LookupMiss',
    'FetchFailure',
    'AlignmentInputError',
    'AlignerNotFoundError',

    # Ranges
    'Range',
    'RangeSpec',
    'FullSequence',
    'GlobalRange',
    'PerAccessionRanges',
    'parse_range_spec',

    # Data retrieval
    'Record',
    'FailedAccession',
    'FetchReport',
    'configure_entrez',
    'fetch_sequences',
    'fetch_sequences_report',
    'fetch_sequence',
    'records_to_seqrecords',
    'write_records_fasta',
    'write_records_csv',
    'read_records_csv',
    'load_local_fasta',
    'RecordCacheManager',

    # Alignment
    'PairwiseResult',
    'align_sequences',
    'percent_identity',

    # Phylogeny
    'build_nj_tree',
    'encode_alignment',
    'distance_matrix',
    'neighbor_join',
    'write_tree',
    'draw_tree'
]
