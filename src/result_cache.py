"""
In-memory classification cache

Bounded LRU keyed by the digest of the normalized analysis inputs. Passed
explicitly to the analyzer; nothing here is module state.
"""

import copy
import hashlib
import json
from collections import OrderedDict


def cache_key(manifest=None, scripts=None, package_bytes=None):
    """
    SHA-256 over the normalized inputs

    Args:
        manifest: manifest mapping (or any JSON-serializable value)
        scripts: list of (name, text) pairs
        package_bytes: raw container bytes

    Returns:
        str: hex digest
    """
    digest = hashlib.sha256()
    digest.update(b'manifest\0')
    digest.update(json.dumps(manifest, sort_keys=True, default=str).encode('utf-8'))
    for name, text in scripts or []:
        digest.update(b'\0script\0')
        digest.update(str(name).encode('utf-8'))
        digest.update(b'\0')
        digest.update(text.encode('utf-8', errors='surrogatepass'))
    if package_bytes is not None:
        digest.update(b'\0package\0')
        digest.update(package_bytes)
    return digest.hexdigest()


class ResultCache:
    """Least-recently-used cache with a fixed capacity

    Values are copied in and out, so callers never share a stored result.
    """

    def __init__(self, capacity=128, verbose=False):
        if capacity < 0:
            raise ValueError('Cache capacity must not be negative')
        self.capacity = capacity
        self.verbose = verbose
        self._entries = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, key):
        if key not in self._entries:
            self.misses += 1
            return None
        self._entries.move_to_end(key)
        self.hits += 1
        if self.verbose:
            print(f"[CACHE] Hit {key[:12]}")
        return copy.deepcopy(self._entries[key])

    def put(self, key, value):
        if self.capacity == 0:
            return
        self._entries[key] = copy.deepcopy(value)
        self._entries.move_to_end(key)
        while len(self._entries) > self.capacity:
            evicted, _ = self._entries.popitem(last=False)
            if self.verbose:
                print(f"[CACHE] Evicted {evicted[:12]}")

    def clear(self):
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def stats(self):
        return {
            'size': len(self._entries),
            'capacity': self.capacity,
            'hits': self.hits,
            'misses': self.misses,
        }

    def __contains__(self, key):
        return key in self._entries

    def __len__(self):
        return len(self._entries)
