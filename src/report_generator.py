"""
Report Generator
Renders a threat classification as a standalone HTML page or a JSON document
"""

import re
from pathlib import Path

import markdown
from jinja2 import Environment, select_autoescape

from utils import save_json

LEVEL_COLORS = {
    'critical': '#dc2626',
    'high': '#ea580c',
    'medium': '#f59e0b',
    'low': '#84cc16',
    'safe': '#22c55e',
}

PRIORITY_ORDER = {'critical': 0, 'high': 1, 'medium': 2, 'low': 3}

REPORT_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Threat Assessment - {{ title }}</title>
    <style>
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
               background: #f3f4f6; color: #111827; line-height: 1.5; }
        .container { max-width: 960px; margin: 0 auto; padding: 32px 16px; }
        .card { background: #fff; border-radius: 8px; padding: 24px; margin-bottom: 16px;
                box-shadow: 0 1px 3px rgba(0, 0, 0, 0.1); }
        .verdict { border-left: 8px solid {{ color }}; }
        .level { color: {{ color }}; font-size: 28px; font-weight: 700; text-transform: uppercase; }
        .score { font-size: 18px; color: #4b5563; }
        h2 { font-size: 18px; margin-bottom: 12px; }
        table { width: 100%; border-collapse: collapse; }
        th, td { text-align: left; padding: 6px 8px; border-bottom: 1px solid #e5e7eb; font-size: 14px; }
        .tag { display: inline-block; padding: 2px 8px; border-radius: 4px; font-size: 12px;
               color: #fff; text-transform: uppercase; }
        .tag-critical { background: #dc2626; } .tag-high { background: #ea580c; }
        .tag-medium { background: #f59e0b; } .tag-low { background: #84cc16; }
        code { background: #f3f4f6; padding: 1px 4px; border-radius: 3px; font-size: 12px; }
        .muted { color: #6b7280; font-size: 13px; }
    </style>
</head>
<body>
<div class="container">
    <div class="card verdict">
        <div class="level">{{ result.level }}</div>
        <div class="score">Overall score {{ result.score }}/100 &middot; {{ result.mode }} analysis</div>
        <p class="muted">{{ title }}{% if result.version %} {{ result.version }}{% endif %}
            &middot; analyzed {{ result.analyzed_at }} &middot; weights {{ result.weights_version }}</p>
    </div>

    <div class="card">
        <h2>Summary</h2>
        {{ summary_html | safe }}
    </div>

    {% if result.categories %}
    <div class="card">
        <h2>Threat Categories</h2>
        <table>
            <tr><th>Category</th><th>Severity</th><th>Description</th></tr>
            {% for category in result.categories %}
            <tr>
                <td>{{ category.name }}</td>
                <td><span class="tag tag-{{ category.severity }}">{{ category.severity }}</span></td>
                <td>{{ category.description }}</td>
            </tr>
            {% endfor %}
        </table>
    </div>
    {% endif %}

    <div class="card">
        <h2>Recommendations</h2>
        <table>
            {% for rec in recommendations %}
            <tr>
                <td><span class="tag tag-{{ rec.priority }}">{{ rec.priority }}</span></td>
                <td>{{ rec.recommendation }}</td>
            </tr>
            {% endfor %}
        </table>
    </div>

    <div class="card">
        <h2>Component Scores</h2>
        <table>
            <tr><th>Analyzer</th><th>Score</th><th>Weight</th></tr>
            {% for name, score in result.component_scores.items() %}
            <tr>
                <td>{{ name }}</td>
                <td>{{ 'not run' if score is none else score }}</td>
                <td>{{ '%.3f' % result.weights[name] if name in result.weights else '-' }}</td>
            </tr>
            {% endfor %}
        </table>
    </div>

    {% if findings %}
    <div class="card">
        <h2>Code Findings</h2>
        <table>
            <tr><th>Category</th><th>Severity</th><th>Line</th><th>Evidence</th></tr>
            {% for finding in findings %}
            <tr>
                <td>{{ finding.category }}</td>
                <td><span class="tag tag-{{ finding.severity }}">{{ finding.severity }}</span></td>
                <td>{{ finding.line }}</td>
                <td><code>{{ finding.snippet or finding.match }}</code></td>
            </tr>
            {% endfor %}
        </table>
    </div>
    {% endif %}

    {% if heuristics %}
    <div class="card">
        <h2>Heuristic Indicators</h2>
        <table>
            {% for indicator in heuristics %}
            <tr><td>{{ indicator.type }}</td><td>&times;{{ indicator.count }}</td><td>{{ indicator.description }}</td></tr>
            {% endfor %}
        </table>
    </div>
    {% endif %}

    {% if result.errors %}
    <div class="card">
        <h2>Analysis Errors</h2>
        <ul>
            {% for error in result.errors %}
            <li><strong>{{ error.type }}</strong>: {{ error.message }}</li>
            {% endfor %}
        </ul>
    </div>
    {% endif %}
</div>
</body>
</html>
"""


def safe_filename(name):
    return re.sub(r'[^A-Za-z0-9._-]+', '_', str(name)).strip('_') or 'artifact'


class ReportGenerator:
    """Writes HTML and JSON threat reports"""

    def __init__(self, reports_dir='reports'):
        self.reports_dir = Path(reports_dir)
        self.env = Environment(autoescape=select_autoescape(default=True, default_for_string=True))
        self.template = self.env.from_string(REPORT_TEMPLATE)

    def render_html(self, result):
        """
        Render a classification to HTML

        Args:
            result (dict): ExtensionThreatAnalyzer.analyze() output

        Returns:
            str: complete HTML document
        """
        details = result.get('details') or {}
        static = details.get('static') or {}
        findings = []
        for key, value in static.items():
            if isinstance(value, list):
                findings.extend(value)
        findings.sort(key=lambda f: (f.get('line') or 0, f.get('category') or ''))

        heuristic = details.get('heuristic') or {}

        return self.template.render(
            result=result,
            title=result.get('name') or result.get('artifact_id') or 'Extension',
            color=LEVEL_COLORS.get(result['level'], '#6b7280'),
            summary_html=markdown.markdown(result['summary']),
            recommendations=sorted(result['recommendations'],
                                   key=lambda r: PRIORITY_ORDER.get(r['priority'], 9)),
            findings=findings,
            heuristics=heuristic.get('detected_heuristics') or [],
        )

    def save_html(self, result):
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        path = self.reports_dir / f"{safe_filename(result['artifact_id'])}_threat_report.html"
        path.write_text(self.render_html(result), encoding='utf-8')
        return path

    def save_json(self, result):
        path = self.reports_dir / f"{safe_filename(result['artifact_id'])}_threat_report.json"
        save_json(result, path)
        return path
