"""
Runtime settings

Values come from the process environment, optionally seeded from a .env file,
and weight tables can be tuned through a YAML file without touching code.
"""

import os
from pathlib import Path

import yaml
from dotenv import load_dotenv

from weights import WEIGHTS_VERSION, default_table, merge_table

DEFAULTS = {
    'max_script_bytes': 10 * 1024 * 1024,
    'max_package_bytes': 50 * 1024 * 1024,
    'max_uncompressed_bytes': 200 * 1024 * 1024,
    'cache_capacity': 128,
}

ENV_PREFIX = 'EXT_ANALYZER_'


def _default_if_none(value, name):
    return DEFAULTS[name] if value is None else value


class Settings:
    """Resolved analyzer settings"""

    def __init__(self, max_script_bytes=None, max_package_bytes=None,
                 max_uncompressed_bytes=None, cache_capacity=None,
                 weights_file=None, reports_dir='reports'):
        self.max_script_bytes = _default_if_none(max_script_bytes, 'max_script_bytes')
        self.max_package_bytes = _default_if_none(max_package_bytes, 'max_package_bytes')
        self.max_uncompressed_bytes = _default_if_none(max_uncompressed_bytes, 'max_uncompressed_bytes')
        self.cache_capacity = _default_if_none(cache_capacity, 'cache_capacity')
        self.weights_file = weights_file
        self.reports_dir = Path(reports_dir)
        self._overrides = None

    def weight_overrides(self):
        """Load the YAML weight overrides once; a broken file means no overrides."""
        if self._overrides is not None:
            return self._overrides

        self._overrides = {}
        if not self.weights_file:
            return self._overrides

        path = Path(self.weights_file)
        if not path.exists():
            print(f"[!] Warning: weights file not found: {path}")
            return self._overrides

        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            print(f"[!] Error loading weights file {path}: {e}")
            return self._overrides

        if not isinstance(data, dict):
            print(f"[!] Warning: weights file {path} is not a mapping, ignoring it")
            return self._overrides

        version = data.get('version')
        if version and str(version) != WEIGHTS_VERSION:
            print(f"[!] Warning: weights file version {version} differs from built-in {WEIGHTS_VERSION}")

        self._overrides = {k: v for k, v in data.items() if k != 'version' and isinstance(v, dict)}
        return self._overrides

    def weight_table(self, name):
        return merge_table(default_table(name), self.weight_overrides().get(name))


def _int_from_env(name, default):
    raw = os.getenv(ENV_PREFIX + name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        print(f"[!] Warning: {ENV_PREFIX + name}={raw!r} is not an integer, using {default}")
        return default
    if value < 0:
        print(f"[!] Warning: {ENV_PREFIX + name} must not be negative, using {default}")
        return default
    return value


def load_settings(env_file=None):
    """
    Build Settings from the environment

    Args:
        env_file: optional path to a .env file (defaults to searching upwards from cwd)

    Returns:
        Settings
    """
    load_dotenv(dotenv_path=env_file, override=False)

    return Settings(
        max_script_bytes=_int_from_env('MAX_SCRIPT_BYTES', DEFAULTS['max_script_bytes']),
        max_package_bytes=_int_from_env('MAX_PACKAGE_BYTES', DEFAULTS['max_package_bytes']),
        max_uncompressed_bytes=_int_from_env('MAX_UNCOMPRESSED_BYTES', DEFAULTS['max_uncompressed_bytes']),
        cache_capacity=_int_from_env('CACHE_CAPACITY', DEFAULTS['cache_capacity']),
        weights_file=os.getenv(ENV_PREFIX + 'WEIGHTS_FILE') or None,
        reports_dir=os.getenv(ENV_PREFIX + 'REPORTS_DIR') or 'reports',
    )
