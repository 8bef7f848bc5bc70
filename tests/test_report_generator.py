"""
Tests for HTML and JSON report output
"""

import json

from builders import KEYLOGGER_SCRIPT, RISKY_MANIFEST

from analyzer import ExtensionThreatAnalyzer
from config import Settings
from report_generator import ReportGenerator, safe_filename


def _result(**kwargs):
    return ExtensionThreatAnalyzer(Settings(), verbose=False).analyze(**kwargs)


def test_html_report_contents(tmp_path):
    result = _result(manifest=RISKY_MANIFEST, scripts=KEYLOGGER_SCRIPT, artifact_id='helper')
    html = ReportGenerator(tmp_path).render_html(result)

    assert '<strong>Excessive Permissions</strong>' in html
    assert f'<div class="level">{result["level"]}</div>' in html
    assert '<td>keylogging</td>' in html
    assert 'Super Helper' in html


def test_critical_report_leads_with_uninstall(tmp_path):
    result = _result(manifest=RISKY_MANIFEST, artifact_id='helper')
    html = ReportGenerator(tmp_path).render_html(result)

    assert result['level'] == 'critical'
    assert 'Uninstall this extension immediately.' in html
    assert html.index('Uninstall this extension immediately.') < html.index('Review the permissions')


def test_report_escapes_untrusted_text(tmp_path):
    manifest = dict(RISKY_MANIFEST, name='<script>alert(1)</script>')
    html = ReportGenerator(tmp_path).render_html(_result(manifest=manifest))

    assert '<script>alert(1)</script>' not in html
    assert '&lt;script&gt;' in html


def test_save_reports(tmp_path):
    result = _result(manifest=RISKY_MANIFEST, artifact_id='odd name!')
    reporter = ReportGenerator(tmp_path / 'reports')

    json_path = reporter.save_json(result)
    html_path = reporter.save_html(result)

    assert json_path.parent == tmp_path / 'reports'
    assert json.loads(json_path.read_text())['score'] == result['score']
    assert html_path.name == 'odd_name_threat_report.html'


def test_safe_filename():
    assert safe_filename('a/b c.crx') == 'a_b_c.crx'
    assert safe_filename('///') == 'artifact'
