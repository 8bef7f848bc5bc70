"""
Tests for CRX/zip container parsing and per-file scoring
"""

import struct
import zipfile

import pytest

from builders import BENIGN_MANIFEST, RISKY_MANIFEST, build_crx, build_zip

from errors import InputTooLarge, MalformedContainer
from package_analyzer import PackageAnalyzer, detect_file_type


def _analyzer(**kwargs):
    return PackageAnalyzer(verbose=False, **kwargs)


def _members():
    return {
        'manifest.json': RISKY_MANIFEST,
        'background.js': 'var x = 1;\neval(atob(payload));\n',
        'inject.js': "document.addEventListener('keydown', function (e) { buf += e.key; });",
        'icons/icon.png': b'\x89PNG\r\n\x1a\n' + b'\x00' * 32,
    }


def test_crx3_round_trip():
    payload = build_zip(_members())
    result = _analyzer().analyze(build_crx(payload))

    assert result['format'] == 'crx3'
    assert result['version'] == 3
    assert result['header_size'] == 0
    assert result['mode'] == 'full'
    assert result['parse_error'] is None
    assert result['manifest'] == RISKY_MANIFEST
    assert {f['path'] for f in result['files']} == set(_members())
    assert result['file_types'] == {'json': 1, 'javascript': 2, 'image': 1}


def test_crx3_header_is_skipped():
    header = b'\x0a\x10' + b'signed-header-bytes' * 3
    result = _analyzer().analyze(build_crx(build_zip({'manifest.json': BENIGN_MANIFEST}), header=header))

    assert result['header_size'] == len(header)
    assert result['manifest'] == BENIGN_MANIFEST


def test_legacy_magic_uses_same_layout():
    header = b'k' * 16 + b's' * 8
    data = build_crx(build_zip({'manifest.json': BENIGN_MANIFEST}), version=2, header=header, magic=b'Cr23')
    result = _analyzer().analyze(data)

    assert result['format'] == 'crx2'
    assert result['version'] == 2
    assert result['header_size'] == 24
    assert result['mode'] == 'full'
    assert result['manifest'] == BENIGN_MANIFEST


@pytest.mark.parametrize('version', [0, 2, 3, 7])
def test_payload_offset_ignores_version(version):
    payload = build_zip({'manifest.json': RISKY_MANIFEST, 'inject.js': 'var a = 1;'})
    analyzer = _analyzer()

    header = analyzer.parse_container(build_crx(payload, version=version))
    result = analyzer.analyze(build_crx(payload, version=version))

    assert header['payload_offset'] == 12
    assert header['version'] == version
    assert result['mode'] == 'full'
    assert result['parse_error'] is None
    assert len(result['files']) == 2


def test_bare_zip():
    result = _analyzer().analyze(build_zip({'manifest.json': BENIGN_MANIFEST}))

    assert result['format'] == 'zip'
    assert result['version'] is None
    assert result['manifest']['name'] == 'Page Notes'


def test_binary_members_have_no_content():
    result = _analyzer().analyze(build_crx(build_zip(_members())))
    icon = next(f for f in result['files'] if f['path'] == 'icons/icon.png')

    assert icon['type'] == 'image'
    assert icon['content'] is None


def test_per_file_findings_and_score():
    result = _analyzer().analyze(build_crx(build_zip(_members())))
    by_path = {entry['path']: entry for entry in result['per_file_findings']}

    assert set(by_path) == {'background.js', 'inject.js'}
    assert {t['type'] for t in by_path['background.js']['threats']} == {'eval'}
    assert by_path['inject.js']['threats'][0]['severity'] == 'critical'
    assert by_path['inject.js']['risk_score'] == 25
    assert {t['type'] for t in result['manifest_threats']} == {'dangerous_permission', 'broad_host_permission'}
    # 0.3 * mean(15, 25) + 0.7 * 73
    assert result['risk_score'] == 57


@pytest.mark.parametrize('data', [b'', b'C', b'Cr2'])
def test_too_short_for_magic(data):
    with pytest.raises(MalformedContainer):
        _analyzer().parse_container(data)

    result = _analyzer().analyze(data)
    assert result['parse_error']['type'] == 'MalformedContainer'
    assert 'minimum 4 bytes' in result['parse_error']['message']
    assert result['mode'] == 'failed'
    assert result['manifest_analysis']['risk_score'] == 100


def test_bad_magic():
    result = _analyzer().analyze(b'MZ\x90\x00' + b'\x00' * 64)

    assert result['parse_error']['type'] == 'MalformedContainer'
    assert "got b'MZ" in result['parse_error']['message']
    assert result['mode'] == 'failed'


def test_truncated_header():
    with pytest.raises(MalformedContainer):
        _analyzer().parse_container(b'Cr24' + struct.pack('<I', 3))


def test_header_length_past_end():
    data = b'Cr24' + struct.pack('<II', 3, 1000) + b'short'
    with pytest.raises(MalformedContainer) as info:
        _analyzer().parse_container(data)
    assert 'past the end' in info.value.message


def test_manifest_recovered_from_damaged_archive():
    payload = build_zip({'manifest.json': RISKY_MANIFEST, 'background.js': 'eval(x);'})
    # drop the end-of-central-directory record
    damaged = build_crx(payload[:-22])
    result = _analyzer().analyze(damaged)

    assert result['parse_error']['type'] == 'MalformedContainer'
    assert result['mode'] == 'manifest_only'
    assert result['manifest'] == RISKY_MANIFEST
    assert result['files'] == []
    assert result['manifest_analysis']['risk_score'] == 73


def test_manifest_recovered_from_stored_member():
    payload = build_zip({'manifest.json': BENIGN_MANIFEST}, compression=zipfile.ZIP_STORED)
    assert _analyzer().recover_manifest(payload) == BENIGN_MANIFEST
    assert _analyzer().recover_manifest(b'no headers here') is None


def test_invalid_manifest_json():
    result = _analyzer().analyze(build_zip({'manifest.json': '{"name": "broken",'}))

    assert result['parse_error']['type'] == 'InvalidManifest'
    assert result['manifest'] is None
    assert result['manifest_analysis']['risk_score'] == 100


@pytest.mark.parametrize('value', [7, 'tabs', {'tabs': True}])
def test_malformed_manifest_lists_in_package(value):
    manifest = dict(RISKY_MANIFEST, permissions=value, host_permissions=value, content_scripts=value)
    result = _analyzer().analyze(build_crx(build_zip({'manifest.json': manifest, 'inject.js': 'var a = 1;'})))

    assert result['mode'] == 'full'
    assert result['parse_error'] is None
    assert result['manifest_threats'] == []
    assert 'error' not in result['manifest_analysis']
    assert result['manifest_analysis']['permissions']['total'] == 0


def test_missing_manifest():
    result = _analyzer().analyze(build_zip({'background.js': 'var a = 1;'}))

    assert result['manifest'] is None
    assert result['parse_error'] is None
    assert result['manifest_analysis']['error']['type'] == 'InvalidManifest'


def test_package_size_limit():
    with pytest.raises(InputTooLarge) as info:
        _analyzer(max_package_bytes=16).analyze(b'Cr24' + b'\x00' * 16)
    assert info.value.limit == 16


def test_uncompressed_size_limit():
    payload = build_zip({'manifest.json': BENIGN_MANIFEST, 'big.js': 'a' * 5000})
    with pytest.raises(InputTooLarge):
        _analyzer(max_uncompressed_bytes=1000).analyze(payload)


def test_non_bytes_rejected():
    with pytest.raises(TypeError):
        _analyzer().parse_container('Cr24')


def test_detect_file_type():
    assert detect_file_type('lib/jquery.min.js', 'x') == 'javascript'
    assert detect_file_type('popup.HTML', '') == 'html'
    assert detect_file_type('LICENSE', 'function f() {}') == 'javascript'
    assert detect_file_type('data.bin', None) == 'unknown'


if __name__ == '__main__':
    test_crx3_round_trip()
    test_manifest_recovered_from_damaged_archive()
    print("\n[OK] Package analyzer tests passed")
