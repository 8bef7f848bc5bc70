"""
End-to-end classification through ExtensionThreatAnalyzer
"""

import random

import pytest

from builders import BENIGN_MANIFEST, KEYLOGGER_SCRIPT, RISKY_MANIFEST, build_crx, build_zip

from analyzer import ExtensionThreatAnalyzer, ScriptBundle, ScriptSource
from config import Settings
from errors import InputTooLarge
from result_cache import ResultCache


def _engine(cache=None, **settings):
    return ExtensionThreatAnalyzer(Settings(**settings), cache=cache, verbose=False)


def test_benign_manifest_without_scripts_is_safe():
    result = _engine().analyze(manifest=BENIGN_MANIFEST)

    assert result['mode'] == 'manifest_only'
    assert result['level'] == 'safe'
    assert result['score'] < 20
    assert result['name'] == 'Page Notes'
    assert result['details']['static'] is None


def test_risky_manifest_without_scripts_is_critical():
    result = _engine().analyze(manifest=RISKY_MANIFEST)

    assert result['level'] == 'critical'
    names = {c['name'] for c in result['categories']}
    assert 'Excessive Permissions' in names
    assert 'Arbitrary Code Execution' in names
    assert result['recommendations'][0]['recommendation'] == 'Uninstall this extension immediately.'


def test_keylogger_script_without_manifest():
    result = _engine().analyze(scripts=[('content.js', KEYLOGGER_SCRIPT)])

    assert result['mode'] == 'full'
    assert result['component_scores']['manifest'] is None
    assert 'manifest' not in result['weights']
    assert result['details']['heuristic']['heuristic_score'] >= 40
    names = {c['name'] for c in result['categories']}
    assert {'Data Theft', 'Heuristic Threats'} <= names
    assert result['level'] in ('medium', 'high', 'critical')


def test_unparseable_script_is_reported_not_raised():
    result = _engine().analyze(manifest=BENIGN_MANIFEST, scripts='eval(payload; }}}')

    assert result['details']['static']['analysis_mode'] == 'regex'
    assert [e['type'] for e in result['errors']] == ['ParseFailure']


def test_package_uses_declared_scripts():
    manifest = dict(RISKY_MANIFEST, background={'scripts': ['background.js'], 'persistent': True})
    package = build_crx(build_zip({
        'manifest.json': manifest,
        'inject.js': KEYLOGGER_SCRIPT,
        'background.js': 'chrome.runtime.onInstalled.addListener(function () {});',
        'lib/util.js': 'function noop() {}',
    }))
    result = _engine().analyze(package_bytes=package, artifact_id='sample')

    assert result['artifact_id'] == 'sample'
    assert result['name'] == 'Super Helper'
    assert [(s['name'], s['provenance']) for s in result['scripts']] == [
        ('inject.js', 'declared'), ('background.js', 'declared'), ('lib/util.js', 'discovered'),
    ]
    assert result['details']['package']['format'] == 'crx3'
    assert all('content' not in f for f in result['details']['package']['files'])
    assert 'Data Theft' in {c['name'] for c in result['categories']}
    assert result['level'] in ('medium', 'high', 'critical')


@pytest.mark.parametrize('content_scripts', [5, 'inject.js', [{'matches': ['<all_urls>'], 'js': 'inject.js'}]])
def test_malformed_script_declarations_fall_back_to_discovery(content_scripts):
    manifest = dict(RISKY_MANIFEST, content_scripts=content_scripts, background={'scripts': 'background.js'})
    package = build_crx(build_zip({
        'manifest.json': manifest,
        'inject.js': KEYLOGGER_SCRIPT,
        'background.js': 'var ready = true;',
    }))
    result = _engine().analyze(package_bytes=package)

    assert [(s['name'], s['provenance']) for s in result['scripts']] == [
        ('background.js', 'discovered'), ('inject.js', 'discovered'),
    ]
    assert result['mode'] == 'full'


def test_unreadable_package_fails_safe():
    result = _engine().analyze(package_bytes=b'Cr')

    assert result['errors'][0]['type'] == 'MalformedContainer'
    assert result['details']['package']['mode'] == 'failed'
    assert result['component_scores']['manifest'] == 100
    assert result['level'] in ('high', 'critical')


def test_nothing_to_analyze():
    with pytest.raises(ValueError):
        _engine().analyze()


def test_oversized_script_propagates():
    with pytest.raises(InputTooLarge):
        _engine(max_script_bytes=100).analyze(scripts='x' * 101)


def test_results_are_cached():
    cache = ResultCache(capacity=4)
    engine = _engine(cache=cache)

    first = engine.analyze(manifest=RISKY_MANIFEST)
    second = engine.analyze(manifest=dict(RISKY_MANIFEST))
    third = engine.analyze(manifest=BENIGN_MANIFEST)

    assert second == first
    assert second is not first
    assert third['cache_key'] != first['cache_key']
    assert cache.stats() == {'size': 2, 'capacity': 4, 'hits': 1, 'misses': 2}


def test_cache_hits_are_independent_copies():
    engine = _engine(cache=ResultCache(capacity=4))

    first = engine.analyze(manifest=RISKY_MANIFEST, artifact_id='first')
    first['recommendations'].clear()
    first['level'] = 'safe'
    second = engine.analyze(manifest=RISKY_MANIFEST, artifact_id='second')
    third = engine.analyze(manifest=RISKY_MANIFEST)

    assert second['level'] == 'critical'
    assert second['recommendations']
    assert second['artifact_id'] == 'second'
    assert third['artifact_id'] == third['cache_key'][:16]
    assert second['analyzed_at'] == third['analyzed_at']


def test_same_input_same_verdict_without_cache():
    engine = _engine()
    first = engine.analyze(manifest=RISKY_MANIFEST, scripts=KEYLOGGER_SCRIPT)
    second = engine.analyze(manifest=RISKY_MANIFEST, scripts=KEYLOGGER_SCRIPT)

    for key in ('level', 'score', 'categories', 'summary', 'recommendations', 'component_scores'):
        assert first[key] == second[key]


def test_scores_stay_in_range_for_noise():
    rng = random.Random(1234)
    engine = _engine()
    alphabet = 'abcdefxyz(){}[];=+-*/!"\'`\\ \n\t.,<>?:0123456789'
    for _ in range(15):
        code = ''.join(rng.choice(alphabet) for _ in range(rng.randint(1, 400)))
        result = engine.analyze(scripts=code)
        assert 0 <= result['score'] <= 100
        for score in result['component_scores'].values():
            assert score is None or 0 <= score <= 100


def test_script_bundle_coercion():
    bundle = ScriptBundle.coerce([
        ScriptSource('a.js', 'var a;'),
        {'name': 'b.js', 'text': 'var b;'},
        ('c.js', 'var c;'),
    ])
    assert [s.name for s in bundle] == ['a.js', 'b.js', 'c.js']
    assert bundle.joined_text() == 'var a;\n\nvar b;\n\nvar c;'

    with pytest.raises(TypeError):
        ScriptBundle.coerce([42])
    with pytest.raises(TypeError):
        ScriptSource('x.js', b'bytes')


if __name__ == '__main__':
    test_benign_manifest_without_scripts_is_safe()
    test_risky_manifest_without_scripts_is_critical()
    test_keylogger_script_without_manifest()
    print("\n[OK] End-to-end tests passed")
