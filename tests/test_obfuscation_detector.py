"""
Tests for obfuscation scoring
"""

from builders import KEYLOGGER_SCRIPT

from obfuscation_detector import ObfuscationDetector

READABLE = """
function greet(name) {
    return 'Hello, ' + name;
}

console.log(greet('world'));
"""

PACKED_CHUNK = ("var _0x1f2e=['\\x61\\x62\\x63'];"
                "_0x1f2e[0]=atob('YWJj')+String.fromCharCode(0x61)+'a'+'b';"
                "x=~~y>>>0;(0,1);['k'].join('');")


def test_readable_code_is_not_obfuscated():
    result = ObfuscationDetector().analyze_code(READABLE)

    assert result['obfuscation_detected'] is False
    assert result['obfuscation_score'] < 20
    assert result['is_minified'] is False
    assert 'No significant obfuscation' in result['explanation']


def test_packed_code_is_obfuscated():
    result = ObfuscationDetector().analyze_code(PACKED_CHUNK * 20)

    assert result['is_minified'] is True
    assert result['obfuscation_detected'] is True
    assert result['obfuscation_score'] > 50
    assert result['pattern_counts']['escape_sequences'] == 60
    assert result['specific_techniques']['variable_names']['detected'] is True
    names = {t['name'] for t in result['techniques']}
    assert {'Minification', 'Uncommon JS Features', 'Hex/Unicode Escaping'} <= names
    assert result['explanation'].startswith('Obfuscation detected')


def test_empty_and_whitespace_input():
    detector = ObfuscationDetector()
    for code in ('', '   \n\t  '):
        result = detector.analyze_code(code)
        assert result['obfuscation_score'] == 0
        assert result['obfuscation_detected'] is False
        assert all(count == 0 for count in result['pattern_counts'].values())


def test_density_not_raw_count():
    # the same handful of matches spread through a large readable file weighs less
    detector = ObfuscationDetector()
    dense = detector.analyze_code("var s = atob('YWJj');\n")
    diluted = detector.analyze_code("var s = atob('YWJj');\n" + READABLE * 40)

    assert dense['pattern_counts']['encoding'] == diluted['pattern_counts']['encoding'] == 1
    assert diluted['obfuscation_score'] < dense['obfuscation_score']


def test_high_entropy_strings():
    blob = 'QmFzZTY0IGVuY29kZWQgcGF5bG9hZCB3aXRoIG1peGVkIENBU0UgYW5kIGRpZ2l0cyAxMjM0NTY3ODkw'
    result = ObfuscationDetector().analyze_code(f"var payload = '{blob}';\nrun(payload);\n")

    assert len(result['high_entropy_strings']) == 1
    assert result['high_entropy_strings'][0]['is_base64_like'] is True


def test_anti_debugging_technique():
    code = "setInterval(function() { debugger; }, 100);\nconsole.clear();\n"
    specific = ObfuscationDetector().analyze_code(code)['specific_techniques']

    assert specific['anti_debugging']['detected'] is True
    assert specific['anti_debugging']['matches'] >= 2


def test_repeat_analysis_is_identical():
    detector = ObfuscationDetector()
    assert detector.analyze_code(KEYLOGGER_SCRIPT) == detector.analyze_code(KEYLOGGER_SCRIPT)


if __name__ == '__main__':
    test_readable_code_is_not_obfuscated()
    test_packed_code_is_obfuscated()
    print("\n[OK] Obfuscation detector tests passed")
