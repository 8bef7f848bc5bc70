"""
Tests for the cross-signal heuristic layer
"""

import pytest

from builders import BENIGN_MANIFEST, KEYLOGGER_SCRIPT, RISKY_MANIFEST

from heuristic_analyzer import HeuristicAnalyzer, archive_malware_findings
from manifest_analyzer import ManifestAnalyzer
from network_analyzer import NetworkAnalyzer
from obfuscation_detector import ObfuscationDetector
from static_analyzer import StaticAnalyzer


def _types(result):
    return {h['type'] for h in result['detected_heuristics']}


def test_manifest_only_indicators():
    manifest_result = ManifestAnalyzer().analyze(RISKY_MANIFEST)
    result = HeuristicAnalyzer().analyze(manifest_result)

    types = _types(result)
    assert {'dangerous_permissions', 'broad_host_permissions', 'suspicious_content_scripts',
            'broad_early_injection', 'suspicious_file_names', 'unreadable_files'} <= types
    assert result['heuristic_score'] == 100
    assert result['threat_level'] == 'critical'


def test_benign_manifest_only():
    result = HeuristicAnalyzer().analyze(ManifestAnalyzer().analyze(BENIGN_MANIFEST))

    # nothing to read is still worth a mention
    assert _types(result) == {'unreadable_files'}
    assert result['heuristic_score'] == 15
    assert result['threat_level'] == 'safe'


def test_keylogger_with_code():
    code = KEYLOGGER_SCRIPT
    result = HeuristicAnalyzer().analyze(
        None,
        StaticAnalyzer().analyze_code(code),
        ObfuscationDetector().analyze_code(code),
        NetworkAnalyzer().analyze_code(code),
        code=code,
    )

    types = _types(result)
    assert {'keylogging', 'data_exfiltration', 'c2_communication', 'persistence_mechanisms'} <= types
    assert 'unreadable_files' not in types
    assert result['heuristic_score'] >= 40


def test_archive_malware_and_unreadable_members():
    package_result = {
        'per_file_findings': [
            {'path': 'bg.js', 'threats': [{'type': 'eval', 'severity': 'high', 'count': 1}], 'risk_score': 15},
            {'path': 'ok.js', 'threats': [{'type': 'storage_access', 'severity': 'low', 'count': 1}],
             'risk_score': 5},
        ],
        'unreadable_files': ['broken.js'],
    }
    assert [f['path'] for f in archive_malware_findings(package_result)] == ['bg.js']

    static_result = StaticAnalyzer().analyze_code('var a = 1;')
    result = HeuristicAnalyzer().analyze(static_result=static_result, package_result=package_result)
    assert {'archive_malware', 'unreadable_files'} <= _types(result)


def test_regex_mode_markers():
    # unparseable code still yields anti-debugging and persistence markers
    static_result = StaticAnalyzer().analyze_code("debugger; localStorage.x = 1; }}}")
    assert static_result['analysis_mode'] == 'regex'

    result = HeuristicAnalyzer().analyze(static_result=static_result)
    assert {'anti_debugging', 'persistence_mechanisms'} <= _types(result)


def test_code_statistics():
    analyzer = HeuristicAnalyzer()

    assert analyzer.calculate_nesting_depth('{{}}{') == 2
    assert analyzer.calculate_cyclomatic_complexity('if (a && b) { x ? 1 : 2 }') == 4

    result = analyzer.analyze_code('chrome.history.search({text: ""}, cb);', {'permissions': ['storage']})
    mismatches = result['detailed_analysis']['contextual']['context']['permission_mismatches']
    assert [m['value']['api'] for m in mismatches] == ['chrome.history']


def test_timing_anomalies():
    code = "setTimeout(run, 86400000);\nsetTimeout(run, Math.random() * 1000);\n"
    anomalies = HeuristicAnalyzer.detect_timing_anomalies(code)

    assert {a['description'] for a in anomalies} == {
        'Suspicious timing pattern detected: very long delays',
        'Suspicious timing pattern detected: random delays',
    }


def test_empty_code():
    result = HeuristicAnalyzer().analyze_code('')

    assert result['heuristic_score'] == 0
    assert result['threat_level'] == 'safe'


def test_non_string_code_rejected():
    with pytest.raises(TypeError):
        HeuristicAnalyzer().analyze_code(None)


@pytest.mark.parametrize('score,level', [
    (0, 'safe'), (29, 'safe'), (30, 'suspicious'), (59, 'suspicious'),
    (60, 'malicious'), (80, 'critical'), (100, 'critical'),
])
def test_threat_levels(score, level):
    assert HeuristicAnalyzer().determine_threat_level(score) == level


if __name__ == '__main__':
    test_manifest_only_indicators()
    test_keylogger_with_code()
    print("\n[OK] Heuristic analyzer tests passed")
