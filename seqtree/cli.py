# seqtree/cli.py

import argparse
import logging
import os
import subprocess
import sys
from typing import Dict, List, Optional, Tuple

from Bio import AlignIO, SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .alignment import (
    ALIGNMENT_METHODS,
    MSA_EXECUTABLES,
    PAIRWISE_TYPES,
    PairwiseResult,
    align_sequences
)
from .cache_manager import RecordCacheManager
from .data_retrieval import (
    SUPPORTED_DATABASES,
    fetch_sequences_report,
    load_local_fasta,
    read_records_csv,
    write_records_csv,
    write_records_fasta
)
from .exceptions import SeqTreeError
from .phylogeny import DISTANCE_MODELS, build_nj_tree, draw_tree, write_tree

# Set up logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def parse_accession_range(value: str) -> Tuple[str, Tuple[int, int]]:
    """Parse 'ACCESSION:START-END' into (accession, (start, end))."""
    accession, sep, span = value.rpartition(":")
    start, dash, end = span.partition("-")
    if not sep or not dash:
        raise argparse.ArgumentTypeError(f"expected ACCESSION:START-END, got {value!r}")
    try:
        return accession, (int(start), int(end))
    except ValueError:
        raise argparse.ArgumentTypeError(f"range bounds must be integers in {value!r}")


def read_accession_file(path: str) -> List[str]:
    """Read accessions from a text file, one per line; blank lines and '#' comments are skipped."""
    with open(path, 'r') as f:
        lines = [line.strip() for line in f]
    return [line for line in lines if line and not line.startswith('#')]


def create_parser():
    """Create an argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        description='Fetch sequences from NCBI, align them and build neighbor-joining trees',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fetch two genomes in full
  seqtree fetch NC_045512.2 MN908947.3 --email user@example.com --output genomes.csv

  # Fetch positions 21563-25384 (spike) of every accession as FASTA
  seqtree fetch NC_045512.2 MN908947.3 --range 21563 25384 --email user@example.com --format fasta --output spike.fasta

  # Per-accession ranges; accessions without one are fetched in full
  seqtree fetch NC_045512.2 MN908947.3 --ranges NC_045512.2:1-500 --email user@example.com --output part.csv

  # Align the fetched sequences with Clustal Omega and build a K80 tree
  seqtree align part.csv --method msa --output aligned.fasta
  seqtree tree aligned.fasta --model K80 --output tree.newick --plot tree.png
"""
    )
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable debug logging'
    )
    parser.add_argument(
        '--log-file',
        type=str,
        help='Also write log messages to this file'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    # fetch
    fetch_parser = subparsers.add_parser('fetch', help='Fetch sequence records from NCBI by accession')
    fetch_parser.add_argument(
        'accessions',
        nargs='*',
        help='Accessions to fetch'
    )
    fetch_parser.add_argument(
        '--accession-file',
        type=str,
        help='Text file with one accession per line (added to any positional accessions)'
    )
    fetch_parser.add_argument(
        '--db',
        type=str,
        choices=SUPPORTED_DATABASES,
        default='nucleotide',
        help='NCBI database (default: nucleotide)'
    )
    range_group = fetch_parser.add_mutually_exclusive_group()
    range_group.add_argument(
        '--range',
        type=int,
        nargs=2,
        metavar=('START', 'END'),
        help='1-based inclusive range applied to every accession'
    )
    range_group.add_argument(
        '--ranges',
        type=parse_accession_range,
        nargs='+',
        metavar='ACCESSION:START-END',
        help='Per-accession ranges; accessions without one are fetched in full'
    )
    fetch_parser.add_argument(
        '--email',
        type=str,
        default=os.environ.get('NCBI_EMAIL'),
        help='Your email for NCBI queries (default: $NCBI_EMAIL)'
    )
    fetch_parser.add_argument(
        '--api-key',
        type=str,
        default=os.environ.get('NCBI_API_KEY'),
        help='NCBI API key (default: $NCBI_API_KEY)'
    )
    fetch_parser.add_argument(
        '--workers',
        type=int,
        default=1,
        help='Number of accessions to fetch concurrently (default: 1)'
    )
    fetch_parser.add_argument(
        '--cache-dir',
        type=str,
        help='Cache fetched records in this directory'
    )
    fetch_parser.add_argument(
        '--cache-max-age',
        type=int,
        default=30,
        help='Maximum age of cached records in days (default: 30)'
    )
    fetch_parser.add_argument(
        '--output',
        type=str,
        required=True,
        help='Output file'
    )
    fetch_parser.add_argument(
        '--format',
        type=str,
        choices=['csv', 'fasta'],
        default='csv',
        help='Output format (default: csv)'
    )
    fetch_parser.set_defaults(func=run_fetch)

    # align
    align_parser = subparsers.add_parser('align', help='Align sequences pairwise or all together')
    align_parser.add_argument(
        'input',
        help='FASTA file, or CSV with a "sequence" column (as written by fetch)'
    )
    align_parser.add_argument(
        '--method',
        type=str,
        choices=ALIGNMENT_METHODS,
        default='pairwise',
        help='Alignment method (default: pairwise)'
    )
    align_parser.add_argument(
        '--pairwise-type',
        type=str,
        choices=PAIRWISE_TYPES,
        default='global',
        help='Pairwise topology: global (Needleman-Wunsch), local (Smith-Waterman) or overlap (default: global)'
    )
    align_parser.add_argument(
        '--msa-method',
        type=str,
        choices=list(MSA_EXECUTABLES),
        default='ClustalOmega',
        help='Multiple alignment program (default: ClustalOmega)'
    )
    align_parser.add_argument(
        '--indices',
        type=int,
        nargs=2,
        default=[0, 1],
        metavar=('I', 'J'),
        help='0-based indices of the two sequences to align pairwise (default: 0 1)'
    )
    align_parser.add_argument(
        '--output',
        type=str,
        help='Write the aligned sequences to this FASTA file'
    )
    align_parser.set_defaults(func=run_align)

    # tree
    tree_parser = subparsers.add_parser('tree', help='Build a neighbor-joining tree from an alignment')
    tree_parser.add_argument(
        'alignment',
        help='Multiple sequence alignment file'
    )
    tree_parser.add_argument(
        '--alignment-format',
        type=str,
        default='fasta',
        help='Alignment file format understood by Bio.AlignIO (default: fasta)'
    )
    tree_parser.add_argument(
        '--model',
        type=str,
        choices=DISTANCE_MODELS,
        default='raw',
        help='Distance model (default: raw)'
    )
    tree_parser.add_argument(
        '--no-pairwise-deletion',
        action='store_true',
        help='Drop sites with gaps or ambiguous bases in any sequence instead of per pair'
    )
    tree_parser.add_argument(
        '--output',
        type=str,
        help='Write the tree in Newick format to this file (default: stdout)'
    )
    tree_parser.add_argument(
        '--plot',
        type=str,
        help='Also render the tree to this image file'
    )
    tree_parser.set_defaults(func=run_tree)

    return parser


def build_range_argument(args: argparse.Namespace):
    """Translate --range / --ranges into the seq_range argument of fetch_sequences."""
    if args.range:
        return tuple(args.range)
    if args.ranges:
        ranges: Dict[str, Tuple[int, int]] = {}
        for accession, span in args.ranges:
            ranges[accession] = span
        return ranges
    return None


def run_fetch(args: argparse.Namespace) -> int:
    accessions = list(args.accessions)
    if args.accession_file:
        accessions.extend(read_accession_file(args.accession_file))
    if not accessions:
        logger.error("No accessions given")
        return 1

    cache = None
    if args.cache_dir:
        cache = RecordCacheManager(args.cache_dir, max_age_days=args.cache_max_age)

    report = fetch_sequences_report(
        accessions,
        email=args.email,
        db=args.db,
        seq_range=build_range_argument(args),
        api_key=args.api_key,
        max_workers=args.workers,
        cache=cache
    )

    if args.format == 'fasta':
        write_records_fasta(report.records, args.output)
    else:
        write_records_csv(report.records, args.output)

    print(f"Fetched {len(report.records)} of {len(accessions)} records")
    for failure in report.failures:
        print(f"  skipped {failure.accession}: {failure.message}")
    return 0


def load_alignment_input(path: str) -> List:
    """Rows for align_sequences() from a CSV table or a FASTA file."""
    if path.lower().endswith('.csv'):
        return read_records_csv(path)
    return [{"accession": record.id, "sequence": str(record.seq)} for record in load_local_fasta(path)]


def run_align(args: argparse.Namespace) -> int:
    rows = load_alignment_input(args.input)
    result = align_sequences(
        rows,
        method=args.method,
        pairwise_type=args.pairwise_type,
        msa_method=args.msa_method,
        seq_indices=args.indices
    )

    if isinstance(result, PairwiseResult):
        print(result.alignment)
        print(f"Percent identity: {result.pid:.2f}%")
        if args.output:
            aligned = [
                SeqRecord(Seq(result.alignment[0]), id=result.ids[0], description=""),
                SeqRecord(Seq(result.alignment[1]), id=result.ids[1], description="")
            ]
            SeqIO.write(aligned, args.output, "fasta")
            logger.info(f"Saved pairwise alignment to {args.output}")
    else:
        if args.output:
            AlignIO.write(result, args.output, "fasta")
            logger.info(f"Saved alignment of {len(result)} sequences to {args.output}")
        else:
            print(format(result, "fasta"))
    return 0


def run_tree(args: argparse.Namespace) -> int:
    msa = AlignIO.read(args.alignment, args.alignment_format)
    tree = build_nj_tree(msa, model=args.model, pairwise_deletion=not args.no_pairwise_deletion)

    write_tree(tree, args.output if args.output else sys.stdout, "newick")
    if args.plot:
        draw_tree(tree, args.plot, title=f"Neighbor-joining tree ({args.model})")
    return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.log_file:
        file_handler = logging.FileHandler(args.log_file)
        file_handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
        logging.getLogger().addHandler(file_handler)

    try:
        exit_code = args.func(args)
    except (SeqTreeError, ValueError, OSError) as e:
        logger.error(str(e))
        exit_code = 1
    except subprocess.CalledProcessError as e:
        logger.error(f"{str(e)} {(e.stderr or '').strip()}".rstrip())
        exit_code = 1

    if exit_code:
        sys.exit(exit_code)


if __name__ == '__main__':
    main()
