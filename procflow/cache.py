"""
Incremental analysis cache for the disassembler.

Uses SHA-256 hashing to detect when the input binary or the run
parameters have changed, allowing fast re-runs when nothing has changed.
"""

import hashlib
import json
import os
import time
from pathlib import Path
from typing import Optional

from . import config


class AnalysisCache:
    """
    SHA-256 based cache for disassembly results.

    Stores a hash of the input binary, the parameters of the run and the
    id of the saved procedure. On subsequent runs, if everything matches,
    the procedure can be loaded from the store instead of re-analyzing.
    """

    def __init__(self, output_dir: str):
        self.output_dir = Path(output_dir)
        self.cache_file = self.output_dir / config.CACHE_FILENAME
        self._cache_data: Optional[dict] = None

    def _load_cache(self) -> Optional[dict]:
        """Load existing cache data."""
        if self._cache_data is not None:
            return self._cache_data

        if not self.cache_file.exists():
            return None

        try:
            with open(self.cache_file) as f:
                data = json.load(f)
            if data.get("version") != config.CACHE_VERSION:
                return None
            self._cache_data = data
            return data
        except (json.JSONDecodeError, KeyError):
            return None

    def _hash_file(self, filepath: str) -> str:
        """Compute SHA-256 hash of a file."""
        sha256 = hashlib.sha256()
        with open(filepath, 'rb') as f:
            while True:
                chunk = f.read(65536)
                if not chunk:
                    break
                sha256.update(chunk)
        return sha256.hexdigest()

    def is_valid(self, binary_path: str, params: dict) -> bool:
        """
        Check if cached results are still valid.

        Returns True if the cache exists, the binary hasn't changed, the
        run parameters are the same and the store still exists.
        """
        cache = self._load_cache()
        if cache is None:
            return False

        if cache.get("binary_hash") != self._hash_file(binary_path):
            return False

        # Round-trip so tuples and lists compare equal
        if cache.get("params") != json.loads(json.dumps(params)):
            return False

        if not (self.output_dir / config.STORE_FILENAME).exists():
            return False

        return cache.get("procedure_id") is not None

    @property
    def procedure_id(self) -> Optional[str]:
        """Store id of the procedure saved by the last run."""
        cache = self._load_cache()
        if cache:
            return cache.get("procedure_id")
        return None

    def save(self, binary_path: str, params: dict, procedure_id: str,
             elapsed_seconds: float) -> None:
        """
        Save cache metadata after a successful analysis run.
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)

        cache_data = {
            "version": config.CACHE_VERSION,
            "binary_hash": self._hash_file(binary_path),
            "params": json.loads(json.dumps(params)),
            "procedure_id": procedure_id,
            "timestamp": time.time(),
            "elapsed_seconds": elapsed_seconds,
        }

        with open(self.cache_file, 'w') as f:
            json.dump(cache_data, f, indent=2)

        self._cache_data = cache_data

    def get_last_run_time(self) -> Optional[float]:
        """Get the elapsed time from the last cached run."""
        cache = self._load_cache()
        if cache:
            return cache.get("elapsed_seconds")
        return None

    def invalidate(self) -> None:
        """Delete the cache file."""
        if self.cache_file.exists():
            os.remove(self.cache_file)
        self._cache_data = None
