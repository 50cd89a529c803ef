# seqtree/cache_manager.py

import os
import json
import logging
import hashlib
import datetime
from typing import Dict, Any, Iterable, Optional

logger = logging.getLogger(__name__)

class RecordCacheManager:
    """Keeps fetched sequence records on disk to avoid repeated NCBI requests."""

    def __init__(self, cache_dir: str = None, max_age_days: int = 30):
        """
        Initialize the cache manager.

        Args:
            cache_dir: Directory to store cached records (default: ~/.seqtree/cache)
            max_age_days: Entries older than this are treated as missing
        """
        if cache_dir is None:
            home_dir = os.path.expanduser("~")
            cache_dir = os.path.join(home_dir, ".seqtree", "cache")

        self.cache_dir = cache_dir
        self.record_dir = os.path.join(cache_dir, "records")
        self.max_age_days = max_age_days

        os.makedirs(self.record_dir, exist_ok=True)

        logger.info(f"Initialized record cache at {cache_dir}")

    def _generate_cache_key(self, params: Dict[str, Any]) -> str:
        """
        Generate a unique cache key from the request parameters.

        Args:
            params: Parameters that define the request (db, accession, range)

        Returns:
            Hex digest used as the file name of the entry
        """
        param_str = json.dumps(params, sort_keys=True)
        return hashlib.md5(param_str.encode()).hexdigest()

    def _entry_path(self, cache_key: str) -> str:
        return os.path.join(self.record_dir, f"{cache_key}.json")

    def get_cached_record(self, params: Dict[str, Any],
                          expected_fields: Optional[Iterable[str]] = None) -> Optional[Dict[str, Any]]:
        """
        Get a record from the cache if present and not expired.

        Args:
            params: Parameters used for the request
            expected_fields: If given, the stored record must have exactly these keys

        Returns:
            The cached record fields, or None if missing, expired or unreadable
        """
        cache_key = self._generate_cache_key(params)
        entry_path = self._entry_path(cache_key)
        if not os.path.exists(entry_path):
            logger.debug(f"No cache entry for key {cache_key}")
            return None

        try:
            with open(entry_path, 'r') as f:
                entry = json.load(f)

            cache_date = datetime.datetime.fromisoformat(entry['timestamp'])
            age = datetime.datetime.now() - cache_date
            if age.days > self.max_age_days:
                logger.info(f"Cache entry {cache_key} expired (age: {age.days} days, max: {self.max_age_days})")
                return None

            record = entry['record']
            if not isinstance(record, dict):
                logger.error(f"Malformed cache entry {cache_key}: record is {type(record).__name__}")
                return None
            if expected_fields is not None and set(record) != set(expected_fields):
                logger.error(f"Malformed cache entry {cache_key}: unexpected fields {sorted(record)}")
                return None

            logger.debug(f"Loaded record {params.get('accession')} from cache (key: {cache_key})")
            return record

        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.error(f"Error reading cache entry {cache_key}: {str(e)}")
            return None

    def cache_record(self, params: Dict[str, Any], record: Dict[str, Any]) -> str:
        """
        Save a record to the cache.

        Args:
            params: Parameters used for the request
            record: Record fields to store

        Returns:
            Cache key used for storage, or "" if the write failed
        """
        cache_key = self._generate_cache_key(params)
        entry = {
            'params': params,
            'timestamp': datetime.datetime.now().isoformat(),
            'source': 'NCBI',
            'record': record
        }

        try:
            with open(self._entry_path(cache_key), 'w') as f:
                json.dump(entry, f, indent=2)
            logger.debug(f"Cached record {params.get('accession')} with key {cache_key}")
            return cache_key
        except OSError as e:
            logger.error(f"Error caching record {params.get('accession')}: {str(e)}")
            return ""

    def clear_cache(self, older_than_days: Optional[int] = None) -> int:
        """
        Clear the cache, optionally only entries older than the given age.

        Args:
            older_than_days: If provided, only clear entries older than this many days

        Returns:
            Number of cache entries cleared
        """
        cleared_count = 0
        cutoff_date = None
        if older_than_days is not None:
            cutoff_date = datetime.datetime.now() - datetime.timedelta(days=older_than_days)

        for filename in os.listdir(self.record_dir):
            if not filename.endswith('.json'):
                continue
            entry_path = os.path.join(self.record_dir, filename)

            if cutoff_date is not None:
                try:
                    with open(entry_path, 'r') as f:
                        timestamp = json.load(f).get('timestamp')
                    if datetime.datetime.fromisoformat(timestamp) >= cutoff_date:
                        continue
                except (OSError, ValueError, TypeError) as e:
                    logger.error(f"Error processing cache file {filename}: {str(e)}")
                    continue

            os.remove(entry_path)
            cleared_count += 1

        logger.info(f"Cleared {cleared_count} cache entries")
        return cleared_count

    def get_cache_info(self) -> Dict[str, Any]:
        """
        Get information about the current cache state.

        Returns:
            Dictionary with cache statistics
        """
        entry_files = [f for f in os.listdir(self.record_dir) if f.endswith('.json')]

        total_size = 0
        ages = []
        for filename in entry_files:
            entry_path = os.path.join(self.record_dir, filename)
            total_size += os.path.getsize(entry_path)
            try:
                with open(entry_path, 'r') as f:
                    timestamp = json.load(f).get('timestamp')
                ages.append((datetime.datetime.now() - datetime.datetime.fromisoformat(timestamp)).days)
            except (OSError, ValueError, TypeError):
                continue

        return {
            'entry_count': len(entry_files),
            'total_size_mb': total_size / (1024 * 1024),
            'oldest_entry_days': max(ages) if ages else 0,
            'newest_entry_days': min(ages) if ages else 0,
            'average_age_days': sum(ages) / len(ages) if ages else 0,
            'cache_dir': self.cache_dir
        }
