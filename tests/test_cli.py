"""
Tests for the command line entry point
"""

import json

from builders import BENIGN_MANIFEST, RISKY_MANIFEST, build_crx, build_zip

import analyzer


def _unpacked(tmp_path, manifest, scripts):
    root = tmp_path / 'unpacked'
    root.mkdir()
    (root / 'manifest.json').write_text(json.dumps(manifest))
    for name, text in scripts.items():
        (root / name).write_text(text)
    return root


def test_benign_directory_exits_zero(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    root = _unpacked(tmp_path, BENIGN_MANIFEST, {
        'content.js': "function highlight(note) {\n    note.classList.add('active');\n}\n",
    })

    assert analyzer.main([str(root), '--quiet']) == 0


def test_risky_package_exit_code_and_reports(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    crx = tmp_path / 'helper.crx'
    crx.write_bytes(build_crx(build_zip({'manifest.json': RISKY_MANIFEST})))
    out_dir = tmp_path / 'out'

    code = analyzer.main([str(crx), '--json', '--html', '--output-dir', str(out_dir), '--quiet'])

    assert code == analyzer.EXIT_CODES['critical']
    assert 'VERDICT: CRITICAL' in capsys.readouterr().out
    report = json.loads((out_dir / 'helper_threat_report.json').read_text())
    assert report['level'] == 'critical'
    assert (out_dir / 'helper_threat_report.html').exists()


def test_manifest_file_input(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    path = tmp_path / 'manifest.json'
    path.write_text(json.dumps(RISKY_MANIFEST))

    assert analyzer.main([str(path), '--quiet']) == 3


def test_unsupported_or_missing_input(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    other = tmp_path / 'notes.txt'
    other.write_text('hello')

    assert analyzer.main([str(other), '--quiet']) == analyzer.EXIT_FAILURE
    assert analyzer.main([str(tmp_path / 'absent.crx'), '--quiet']) == analyzer.EXIT_FAILURE
