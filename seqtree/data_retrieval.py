# seqtree/data_retrieval.py

"""
Fetch sequence records from NCBI by accession.

Each accession is handled independently: its effective sub-range is
resolved from the range argument, the accession is looked up with esearch,
metadata comes from esummary and the sequence from efetch (FASTA text).
A lookup miss or a failed request only drops that accession; the batch
carries on and the failure is logged as a warning.
"""

import os
import csv
import time
import logging
import threading
from dataclasses import dataclass, asdict
from functools import partial
from multiprocessing.pool import ThreadPool
from typing import List, Optional, Dict, Any, Iterable

from Bio import Entrez, SeqIO
from Bio.Seq import Seq
from Bio.SeqRecord import SeqRecord

from .cache_manager import RecordCacheManager
from .exceptions import FetchFailure, InvalidDatabase, LookupMiss
from .ranges import Range, RangeSpec, parse_range_spec

logger = logging.getLogger(__name__)

SUPPORTED_DATABASES = ("nucleotide", "protein")
RECORD_FIELDS = ("accession", "accession_version", "title", "organism", "sequence")

# NCBI allows 3 requests per second, 10 with an API key
MIN_REQUEST_INTERVAL = 1.0 / 3
MIN_REQUEST_INTERVAL_API_KEY = 0.1

_request_lock = threading.Lock()
_last_request = 0.0


@dataclass
class Record:
    """One fetched sequence with its NCBI summary metadata."""
    accession: str
    accession_version: str
    title: str
    organism: str
    sequence: str


@dataclass
class FailedAccession:
    """
    Diagnostic for an accession that produced no record.

    Attributes:
        accession: The accession as supplied by the caller
        reason: 'lookup_miss' or 'fetch_failure'
        message: Underlying error message
    """
    accession: str
    reason: str
    message: str


@dataclass
class FetchOutcome:
    accession: str
    record: Optional[Record] = None
    failure: Optional[FailedAccession] = None


@dataclass
class FetchReport:
    """Successful records in input order, plus one entry per failed accession."""
    records: List[Record]
    failures: List[FailedAccession]


def configure_entrez(email: Optional[str] = None, api_key: Optional[str] = None) -> str:
    """
    Set the NCBI contact email and optional API key used by Bio.Entrez.

    Falls back to the NCBI_EMAIL / NCBI_API_KEY environment variables, then
    to whatever Entrez.email is already set to.

    Returns:
        str: The email in use

    Raises:
        ValueError: If no email address is available.
    """
    email = email or os.environ.get("NCBI_EMAIL") or Entrez.email
    if not email:
        raise ValueError("You must provide a valid email address to comply with NCBI's usage policies.")
    Entrez.email = email

    api_key = api_key or os.environ.get("NCBI_API_KEY")
    if api_key:
        Entrez.api_key = api_key.strip()

    return email


def _entrez_request(func, **params):
    """
    Call an Entrez utility, spacing calls from all threads by the NCBI rate limit.

    Args:
        func: Entrez.esearch, Entrez.esummary or Entrez.efetch
        **params: Keyword arguments for func

    Returns:
        The handle returned by func
    """
    global _last_request
    interval = MIN_REQUEST_INTERVAL_API_KEY if Entrez.api_key else MIN_REQUEST_INTERVAL
    with _request_lock:
        wait = _last_request + interval - time.monotonic()
        if wait > 0:
            time.sleep(wait)
        try:
            return func(**params)
        finally:
            _last_request = time.monotonic()


def search_ids(db: str, accession: str) -> List[str]:
    """Look up an accession and return the matching NCBI ids."""
    handle = _entrez_request(Entrez.esearch, db=db, term=accession)
    try:
        search_results = Entrez.read(handle)
    finally:
        handle.close()
    return [str(uid) for uid in search_results.get("IdList", [])]


def fetch_summary(db: str, uid: str) -> Dict[str, str]:
    """
    Retrieve summary metadata for one NCBI id.

    Returns:
        Dict[str, str]: accession_version, title and organism
    """
    handle = _entrez_request(Entrez.esummary, db=db, id=uid, version="2.0")
    try:
        summary = Entrez.read(handle)
    finally:
        handle.close()

    docs = summary["DocumentSummarySet"]["DocumentSummary"]
    if not docs:
        raise RuntimeError(f"Empty summary returned for id {uid}")
    doc = docs[0]

    return {
        "accession_version": str(doc.get("AccessionVersion", "")),
        "title": str(doc.get("Title", "")),
        "organism": str(doc.get("Organism", "")),
    }


def fetch_sequence_text(db: str, uid: str, seq_range: Optional[Range] = None) -> str:
    """Download FASTA text for one id, restricted to seq_range when given."""
    params = {"db": db, "id": uid, "rettype": "fasta", "retmode": "text"}
    if seq_range is not None:
        params["seq_start"] = seq_range.start
        params["seq_stop"] = seq_range.end

    handle = _entrez_request(Entrez.efetch, **params)
    try:
        text = handle.read()
    finally:
        handle.close()

    if isinstance(text, bytes):
        text = text.decode("utf-8")
    return text


def parse_sequence_text(text: str) -> str:
    """Drop the FASTA header line and join the remaining lines into one sequence."""
    lines = text.splitlines()
    return "".join(line.strip() for line in lines[1:])


def _cache_params(db: str, accession: str, seq_range: Optional[Range]) -> Dict[str, Any]:
    return {
        "db": db,
        "accession": accession,
        "range": list(seq_range.as_tuple()) if seq_range else None,
    }


def _fetch_record(
    accession: str,
    db: str,
    seq_range: Optional[Range],
    cache: Optional[RecordCacheManager] = None
) -> Record:
    if cache is not None:
        try:
            cached = cache.get_cached_record(_cache_params(db, accession, seq_range),
                                             expected_fields=RECORD_FIELDS)
            if cached is not None:
                return Record(**cached)
        except Exception as e:
            logger.warning(f"Ignoring unreadable cache entry for {accession}: {str(e)}")

    try:
        ids = search_ids(db, accession)
    except Exception as e:
        raise FetchFailure(accession, str(e)) from e

    if not ids:
        raise LookupMiss(accession, db)
    if len(ids) > 1:
        logger.debug(f"Accession {accession} matched {len(ids)} ids, using {ids[0]}")
    uid = ids[0]

    try:
        summary = fetch_summary(db, uid)
        sequence = parse_sequence_text(fetch_sequence_text(db, uid, seq_range))
    except Exception as e:
        raise FetchFailure(accession, str(e)) from e

    if not sequence:
        raise FetchFailure(accession, "no sequence data in response")

    record = Record(accession=accession, sequence=sequence, **summary)

    if cache is not None:
        cache.cache_record(_cache_params(db, accession, seq_range), asdict(record))

    return record


def _fetch_one(
    accession: str,
    db: str,
    range_spec: RangeSpec,
    cache: Optional[RecordCacheManager] = None
) -> FetchOutcome:
    seq_range = range_spec.resolve(accession)
    if seq_range is not None:
        logger.info(f"Fetching {accession} positions {seq_range.start}-{seq_range.end} from NCBI {db}")
    else:
        logger.info(f"Fetching {accession} from NCBI {db}")

    try:
        record = _fetch_record(accession, db, seq_range, cache)
    except LookupMiss as e:
        logger.warning(str(e))
        return FetchOutcome(accession, failure=FailedAccession(accession, "lookup_miss", str(e)))
    except FetchFailure as e:
        logger.warning(str(e))
        return FetchOutcome(accession, failure=FailedAccession(accession, "fetch_failure", str(e)))

    logger.debug(f"Retrieved {record.accession_version}, length: {len(record.sequence)}")
    return FetchOutcome(accession, record=record)


def _validate_db(db: str):
    if db not in SUPPORTED_DATABASES:
        raise InvalidDatabase(f"db must be one of {', '.join(SUPPORTED_DATABASES)}; got {db!r}")


def fetch_sequences_report(
    accessions: Iterable[str],
    email: Optional[str] = None,
    db: str = "nucleotide",
    seq_range: Any = None,
    api_key: Optional[str] = None,
    max_workers: int = 1,
    cache: Optional[RecordCacheManager] = None
) -> FetchReport:
    """
    Fetch records for a batch of accessions and report per-accession failures.

    Args:
        accessions: Accessions to fetch (e.g. ['NC_045512.2', 'MN908947.3'])
        email: Contact email for NCBI (falls back to NCBI_EMAIL)
        db: 'nucleotide' or 'protein'
        seq_range: None for full sequences, a (start, end) pair applied to
            every accession, or a mapping of accession -> (start, end).
            Positions are 1-based and inclusive.
        api_key: Optional NCBI API key (falls back to NCBI_API_KEY)
        max_workers: Number of accessions fetched concurrently
        cache: Optional RecordCacheManager consulted before NCBI

    Returns:
        FetchReport: records in input order and the failed accessions

    Raises:
        InvalidDatabase: If db is not supported.
        InvalidRangeSpec: If seq_range has an unsupported shape.
        InvalidRange: If any range is invalid.
        ValueError: If no email address is available.
    """
    _validate_db(db)
    range_spec = parse_range_spec(seq_range)

    if isinstance(accessions, str):
        accessions = [accessions]
    accessions = list(accessions)

    configure_entrez(email, api_key)

    logger.info(f"Fetching {len(accessions)} accessions from NCBI {db} database")
    task = partial(_fetch_one, db=db, range_spec=range_spec, cache=cache)

    if max_workers > 1 and len(accessions) > 1:
        with ThreadPool(processes=min(max_workers, len(accessions))) as pool:
            outcomes = pool.map(task, accessions)
    else:
        outcomes = [task(accession) for accession in accessions]

    records = [outcome.record for outcome in outcomes if outcome.record is not None]
    failures = [outcome.failure for outcome in outcomes if outcome.failure is not None]

    logger.info(f"Fetched {len(records)} of {len(accessions)} records")
    if failures:
        logger.info(f"Skipped {len(failures)} accessions: {', '.join(f.accession for f in failures)}")

    return FetchReport(records=records, failures=failures)


def fetch_sequences(
    accessions: Iterable[str],
    email: Optional[str] = None,
    db: str = "nucleotide",
    seq_range: Any = None,
    api_key: Optional[str] = None,
    max_workers: int = 1,
    cache: Optional[RecordCacheManager] = None
) -> List[Record]:
    """
    Fetch records for a batch of accessions.

    Accessions that cannot be found or fetched are logged and left out, so
    the result may be shorter than the input. Use fetch_sequences_report()
    to get the failures as well.

    Returns:
        List[Record]: One record per successfully fetched accession, in input order
    """
    report = fetch_sequences_report(
        accessions,
        email=email,
        db=db,
        seq_range=seq_range,
        api_key=api_key,
        max_workers=max_workers,
        cache=cache
    )
    return report.records


def fetch_sequence(
    accession: str,
    email: Optional[str] = None,
    db: str = "nucleotide",
    seq_range: Any = None,
    api_key: Optional[str] = None,
    cache: Optional[RecordCacheManager] = None
) -> Record:
    """
    Fetch a single record, raising instead of skipping on failure.

    Raises:
        LookupMiss: If the accession matches no NCBI id.
        FetchFailure: If summary, fetch or parsing fails.
    """
    _validate_db(db)
    range_spec = parse_range_spec(seq_range)
    configure_entrez(email, api_key)
    return _fetch_record(accession, db, range_spec.resolve(accession), cache)


def records_to_seqrecords(records: List[Record]) -> List[SeqRecord]:
    """Convert records to Biopython SeqRecords keyed by versioned accession."""
    return [
        SeqRecord(
            Seq(record.sequence),
            id=record.accession_version or record.accession,
            description=record.title
        )
        for record in records
    ]


def write_records_fasta(records: List[Record], output_file: str) -> int:
    count = SeqIO.write(records_to_seqrecords(records), output_file, "fasta")
    logger.info(f"Saved {count} records to {output_file}")
    return count


def write_records_csv(records: List[Record], output_file: str) -> int:
    with open(output_file, 'w', newline='') as f:
        writer = csv.DictWriter(f, fieldnames=RECORD_FIELDS)
        writer.writeheader()
        for record in records:
            writer.writerow(asdict(record))
    logger.info(f"Saved {len(records)} records to {output_file}")
    return len(records)


def read_records_csv(input_file: str) -> List[Dict[str, str]]:
    """Read a table written by write_records_csv (or any CSV with a 'sequence' column)."""
    with open(input_file, 'r', newline='') as f:
        rows = list(csv.DictReader(f))
    logger.info(f"Loaded {len(rows)} rows from {input_file}")
    return rows


def load_local_fasta(fasta_path: str) -> List[SeqRecord]:
    """
    Load sequences from a local FASTA file.

    Args:
        fasta_path (str): Path to the FASTA file

    Returns:
        List[SeqRecord]: Sequences in file order
    """
    logger.info(f"Loading local FASTA file from {fasta_path}")
    seq_records = list(SeqIO.parse(fasta_path, "fasta"))
    logger.info(f"Loaded {len(seq_records)} sequences from {fasta_path}")
    return seq_records
