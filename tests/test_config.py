"""
Tests for settings, weight tables and the result cache
"""

import os
import sys

import pytest
import yaml

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from analyzer import ExtensionThreatAnalyzer
from config import DEFAULTS, Settings, load_settings
from errors import InputTooLarge
from result_cache import ResultCache, cache_key
from weights import WEIGHTS_VERSION, default_table, merge_table, table_names


def test_default_tables():
    assert table_names() == ['classifier', 'heuristic', 'manifest', 'network', 'obfuscation', 'package', 'static']
    components = default_table('classifier')['components']
    assert sum(components.values()) == pytest.approx(1.0)

    with pytest.raises(KeyError):
        default_table('nope')


def test_default_table_is_a_copy():
    table = default_table('static')
    table['eval_usage'] = 0
    assert default_table('static')['eval_usage'] == 25


def test_merge_table_is_recursive():
    merged = merge_table({'a': {'x': 1, 'y': 2}, 'b': 3}, {'a': {'y': 20}, 'c': 4})
    assert merged == {'a': {'x': 1, 'y': 20}, 'b': 3, 'c': 4}


def test_yaml_weight_overrides(tmp_path):
    weights_file = tmp_path / 'weights.yaml'
    weights_file.write_text(yaml.safe_dump({
        'version': WEIGHTS_VERSION,
        'static': {'eval_usage': 50},
        'classifier': {'heuristic_category': {'score_above': 50}},
    }))
    settings = Settings(weights_file=str(weights_file))

    static = settings.weight_table('static')
    assert static['eval_usage'] == 50
    assert static['keylogging'] == 20
    rule = settings.weight_table('classifier')['heuristic_category']
    assert rule == {'score_above': 50, 'indicators_above': 2}


def test_broken_or_missing_weights_file(tmp_path):
    broken = tmp_path / 'broken.yaml'
    broken.write_text('static: [unclosed')

    assert Settings(weights_file=str(broken)).weight_table('static') == default_table('static')
    assert Settings(weights_file=str(tmp_path / 'absent.yaml')).weight_overrides() == {}


def test_environment_settings(monkeypatch, tmp_path):
    monkeypatch.setenv('EXT_ANALYZER_MAX_SCRIPT_BYTES', '2048')
    monkeypatch.setenv('EXT_ANALYZER_CACHE_CAPACITY', '0')
    monkeypatch.setenv('EXT_ANALYZER_MAX_PACKAGE_BYTES', 'lots')
    monkeypatch.setenv('EXT_ANALYZER_REPORTS_DIR', str(tmp_path / 'out'))

    settings = load_settings(env_file=str(tmp_path / 'missing.env'))

    assert settings.max_script_bytes == 2048
    assert settings.cache_capacity == 0
    assert settings.max_package_bytes == DEFAULTS['max_package_bytes']
    assert settings.reports_dir == tmp_path / 'out'


def test_explicit_zero_limits_are_kept():
    settings = Settings(max_script_bytes=0, max_package_bytes=0, max_uncompressed_bytes=0, cache_capacity=0)

    assert settings.max_script_bytes == 0
    assert settings.max_package_bytes == 0
    assert settings.max_uncompressed_bytes == 0
    assert settings.cache_capacity == 0
    assert Settings().max_script_bytes == DEFAULTS['max_script_bytes']


def test_zero_script_limit_rejects_any_script(monkeypatch, tmp_path):
    monkeypatch.setenv('EXT_ANALYZER_MAX_SCRIPT_BYTES', '0')
    settings = load_settings(env_file=str(tmp_path / 'missing.env'))

    with pytest.raises(InputTooLarge):
        ExtensionThreatAnalyzer(settings, verbose=False).analyze(scripts='var a = 1;')


def test_env_file_is_read(monkeypatch, tmp_path):
    monkeypatch.delenv('EXT_ANALYZER_MAX_UNCOMPRESSED_BYTES', raising=False)
    env_file = tmp_path / '.env'
    env_file.write_text('EXT_ANALYZER_MAX_UNCOMPRESSED_BYTES=4096\n')

    try:
        assert load_settings(env_file=str(env_file)).max_uncompressed_bytes == 4096
    finally:
        os.environ.pop('EXT_ANALYZER_MAX_UNCOMPRESSED_BYTES', None)


def test_cache_key_normalizes_inputs():
    assert cache_key({'b': 1, 'a': 2}) == cache_key({'a': 2, 'b': 1})
    assert cache_key(scripts=[('a.js', 'x')]) != cache_key(scripts=[('b.js', 'x')])
    assert cache_key(package_bytes=b'') != cache_key()


def test_cache_evicts_least_recently_used():
    cache = ResultCache(capacity=2)
    cache.put('a', 1)
    cache.put('b', 2)
    assert cache.get('a') == 1
    cache.put('c', 3)

    assert 'b' not in cache
    assert 'a' in cache and 'c' in cache
    assert len(cache) == 2


def test_zero_capacity_cache_stores_nothing():
    cache = ResultCache(capacity=0)
    cache.put('a', 1)

    assert cache.get('a') is None
    assert cache.stats()['misses'] == 1

    with pytest.raises(ValueError):
        ResultCache(capacity=-1)
