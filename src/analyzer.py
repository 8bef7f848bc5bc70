"""
Extension Threat Analyzer - main orchestrator and CLI
Runs every analyzer over a manifest, a bundle of scripts or a packed
extension and returns the final threat classification
"""

import argparse
import json
import sys
from pathlib import Path

from colorama import Fore, Style, init as colorama_init
from tqdm import tqdm

from config import load_settings
from errors import AnalysisError
from heuristic_analyzer import HeuristicAnalyzer
from manifest_analyzer import ManifestAnalyzer
from network_analyzer import NetworkAnalyzer
from obfuscation_detector import ObfuscationDetector
from package_analyzer import PackageAnalyzer, decode_text, detect_file_type
from report_generator import ReportGenerator
from result_cache import ResultCache, cache_key
from static_analyzer import StaticAnalyzer
from threat_classifier import ThreatClassifier
from utils import dict_list, get_timestamp, string_list

EXIT_CODES = {'critical': 3, 'high': 2, 'medium': 1, 'low': 0, 'safe': 0}
EXIT_FAILURE = 4

LEVEL_COLORS = {
    'critical': Fore.RED + Style.BRIGHT,
    'high': Fore.RED,
    'medium': Fore.YELLOW,
    'low': Fore.CYAN,
    'safe': Fore.GREEN,
}

PACKAGE_SUFFIXES = {'.crx', '.zip'}


def _member_path(path):
    if path.startswith('./'):
        path = path[2:]
    return path.lstrip('/')


class ScriptSource:
    """One script handed to the engine"""

    def __init__(self, name, text, provenance='supplied'):
        if not isinstance(text, str):
            raise TypeError('Script text must be a string')
        self.name = name
        self.text = text
        self.provenance = provenance

    def to_dict(self):
        return {'name': self.name, 'provenance': self.provenance, 'size': len(self.text)}


class ScriptBundle:
    """Ordered collection of ScriptSource objects"""

    def __init__(self, sources=None):
        self.sources = list(sources or [])

    @classmethod
    def coerce(cls, scripts):
        """Accept a bundle, a single string, or a list of sources / (name, text) pairs / dicts"""
        if scripts is None:
            return cls()
        if isinstance(scripts, ScriptBundle):
            return scripts
        if isinstance(scripts, str):
            return cls([ScriptSource('script.js', scripts)])

        sources = []
        for index, item in enumerate(scripts):
            if isinstance(item, ScriptSource):
                sources.append(item)
            elif isinstance(item, dict):
                sources.append(ScriptSource(item.get('name') or f'script_{index}.js', item.get('text'),
                                            item.get('provenance', 'supplied')))
            elif isinstance(item, (tuple, list)) and len(item) == 2:
                sources.append(ScriptSource(item[0], item[1]))
            else:
                raise TypeError(f'Unsupported script entry: {type(item).__name__}')
        return cls(sources)

    @classmethod
    def from_package(cls, files, manifest=None):
        """
        Build a bundle from extracted package files

        Scripts the manifest declares come first (provenance 'declared'),
        then every other JavaScript member (provenance 'discovered').
        """
        by_path = {_member_path(f['path']): f for f in files if f.get('content') is not None}

        declared = []
        if isinstance(manifest, dict):
            for script in dict_list(manifest.get('content_scripts')):
                declared.extend(string_list(script.get('js')))
            background = manifest.get('background')
            if isinstance(background, dict):
                declared.extend(string_list(background.get('scripts')))
                if isinstance(background.get('service_worker'), str):
                    declared.append(background['service_worker'])

        sources = []
        seen = set()
        for path in declared:
            path = _member_path(path)
            if path in seen or path not in by_path:
                continue
            seen.add(path)
            sources.append(ScriptSource(path, by_path[path]['content'], 'declared'))

        for path in sorted(by_path):
            if path in seen or by_path[path]['type'] != 'javascript':
                continue
            seen.add(path)
            sources.append(ScriptSource(path, by_path[path]['content'], 'discovered'))

        return cls(sources)

    def pairs(self):
        return [(s.name, s.text) for s in self.sources]

    def joined_text(self):
        return '\n\n'.join(s.text for s in self.sources)

    def __iter__(self):
        return iter(self.sources)

    def __len__(self):
        return len(self.sources)


class ExtensionThreatAnalyzer:
    """Main analyzer orchestrator"""

    def __init__(self, settings=None, cache=None, verbose=True):
        self.settings = settings or load_settings()
        self.cache = cache
        self.verbose = verbose

        limit = self.settings.max_script_bytes
        self.manifest_analyzer = ManifestAnalyzer(self.settings.weight_table('manifest'))
        self.static_analyzer = StaticAnalyzer(self.settings.weight_table('static'), max_script_bytes=limit)
        self.obfuscation_detector = ObfuscationDetector(self.settings.weight_table('obfuscation'),
                                                        max_script_bytes=limit)
        self.network_analyzer = NetworkAnalyzer(self.settings.weight_table('network'), max_script_bytes=limit)
        self.package_analyzer = PackageAnalyzer(
            self.settings.weight_table('package'),
            manifest_analyzer=self.manifest_analyzer,
            static_analyzer=self.static_analyzer,
            max_package_bytes=self.settings.max_package_bytes,
            max_uncompressed_bytes=self.settings.max_uncompressed_bytes,
            verbose=verbose,
        )
        self.heuristic_analyzer = HeuristicAnalyzer(self.settings.weight_table('heuristic'), max_script_bytes=limit)
        self.classifier = ThreatClassifier(self.settings.weight_table('classifier'))

    def _log(self, message):
        if self.verbose:
            print(message)

    def analyze(self, manifest=None, scripts=None, package_bytes=None, artifact_id=None):
        """
        Classify one extension artifact

        Args:
            manifest (dict): parsed manifest.json; ignored when the package carries one
            scripts: ScriptBundle, a script string, or a list of sources
            package_bytes (bytes): packed .crx / .zip
            artifact_id (str): caller label, defaults to the cache key prefix

        Returns:
            dict: the threat classification (level, score, categories, summary,
            recommendations) plus per-analyzer details and any typed errors

        Raises:
            InputTooLarge: script text or package bytes exceed the configured ceilings
            ValueError: no manifest, scripts or package were supplied
        """
        bundle = ScriptBundle.coerce(scripts)
        if manifest is None and not len(bundle) and package_bytes is None:
            raise ValueError('Nothing to analyze: supply a manifest, scripts or package bytes')

        key = cache_key(manifest, bundle.pairs(), package_bytes)
        artifact_id = artifact_id or key[:16]
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                # analyzed_at stays the time the verdict was computed
                cached['artifact_id'] = artifact_id
                return cached

        self._log(f"[+] Analyzing {artifact_id}")
        errors = []

        package_result = None
        if package_bytes is not None:
            package_result = self.package_analyzer.analyze(package_bytes)
            if package_result['parse_error']:
                errors.append(package_result['parse_error'])
            if package_result['manifest'] is not None or manifest is None:
                manifest = package_result['manifest']
                manifest_result = package_result['manifest_analysis']
            else:
                manifest_result = self.manifest_analyzer.analyze(manifest)
            if not len(bundle):
                bundle = ScriptBundle.from_package(package_result['files'], manifest)
        elif manifest is not None:
            manifest_result = self.manifest_analyzer.analyze(manifest)
        else:
            manifest_result = None

        if manifest_result and manifest_result.get('error'):
            errors.append(manifest_result['error'])

        code = bundle.joined_text()
        static_result = obfuscation_result = network_result = None
        if code.strip():
            static_result = self.static_analyzer.analyze_code(code)
            if static_result.get('parse_error'):
                errors.append(static_result['parse_error'])
                self._log(f"[AST] Parse failed, using regex fallback: {static_result['parse_error']['message']}")
            obfuscation_result = self.obfuscation_detector.analyze_code(code)
            network_result = self.network_analyzer.analyze_code(code)
        else:
            self._log("[!] No readable script, running manifest-only analysis")

        heuristic_result = self.heuristic_analyzer.analyze(
            manifest_result, static_result, obfuscation_result, network_result,
            package_result=package_result,
            code=code if code.strip() else None,
            manifest=manifest,
        )

        classification = self.classifier.classify(
            manifest_result, static_result, obfuscation_result, network_result,
            heuristic_result, package_result=package_result,
        )

        classification.update({
            'artifact_id': artifact_id,
            'name': manifest.get('name') if isinstance(manifest, dict) else None,
            'version': manifest.get('version') if isinstance(manifest, dict) else None,
            'analyzed_at': get_timestamp(),
            'cache_key': key,
            'scripts': [s.to_dict() for s in bundle],
            'errors': errors,
            'details': {
                'manifest': manifest_result,
                'static': static_result,
                'static_summary': self.static_analyzer.summarize_findings(static_result) if static_result else [],
                'obfuscation': obfuscation_result,
                'network': network_result,
                'heuristic': heuristic_result,
                'package': strip_file_contents(package_result),
            },
        })

        self._log(f"[OK] {artifact_id}: {classification['level'].upper()} ({classification['score']}/100)")

        if self.cache is not None:
            self.cache.put(key, classification)
        return classification


def strip_file_contents(package_result):
    """Package result without member bodies, for reports and API payloads"""
    if package_result is None:
        return None
    stripped = dict(package_result)
    stripped['files'] = [{k: v for k, v in f.items() if k != 'content'} for f in package_result['files']]
    return stripped


def load_directory(path):
    """Read an unpacked extension directory into (manifest, files)"""
    manifest_path = path / 'manifest.json'
    manifest = json.loads(manifest_path.read_text(encoding='utf-8-sig'))

    files = []
    for file_path in sorted(path.rglob('*')):
        if not file_path.is_file():
            continue
        relative = file_path.relative_to(path).as_posix()
        content = decode_text(file_path.read_bytes())
        files.append({
            'path': relative,
            'name': file_path.name,
            'size': file_path.stat().st_size,
            'type': detect_file_type(relative, content),
            'content': content,
        })
    return manifest, files


def analyze_path(analyzer, path):
    """Dispatch a CLI path to the right analyze() call"""
    path = Path(path)
    if path.is_dir():
        manifest, files = load_directory(path)
        return analyzer.analyze(manifest=manifest, scripts=ScriptBundle.from_package(files, manifest),
                                artifact_id=path.name)
    if path.suffix.lower() in PACKAGE_SUFFIXES:
        return analyzer.analyze(package_bytes=path.read_bytes(), artifact_id=path.stem)
    if path.name == 'manifest.json':
        manifest = json.loads(path.read_text(encoding='utf-8-sig'))
        return analyzer.analyze(manifest=manifest, artifact_id=path.parent.name or 'manifest')
    raise ValueError(f'Unsupported input: {path} (expected .crx, .zip, a directory or manifest.json)')


def print_verdict(result):
    color = LEVEL_COLORS.get(result['level'], '')
    print(f"\n{'=' * 80}")
    print(f"{color}VERDICT: {result['level'].upper()} ({result['score']}/100){Style.RESET_ALL}"
          f" - {result['artifact_id']}")
    if result.get('name'):
        print(f"   Extension: {result['name']} {result.get('version') or ''}".rstrip())
    for category in result['categories']:
        print(f"   - {category['name']} [{category['severity']}]")
    for error in result['errors']:
        print(f"   {Fore.YELLOW}[!] {error['type']}: {error['message']}{Style.RESET_ALL}")
    for rec in result['recommendations'][:5]:
        print(f"   > ({rec['priority']}) {rec['recommendation']}")
    print('=' * 80)


def main(argv=None):
    """CLI entry point"""
    parser = argparse.ArgumentParser(
        description='Offline threat analysis for browser extensions',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python src/analyzer.py suspicious.crx
  python src/analyzer.py ./unpacked-extension --html
  python src/analyzer.py a.crx b.zip --json --output-dir out/
        """,
    )
    parser.add_argument('paths', nargs='+', help='.crx/.zip file, unpacked extension directory or manifest.json')
    parser.add_argument('--json', action='store_true', help='Write a JSON report per artifact')
    parser.add_argument('--html', action='store_true', help='Write an HTML report per artifact')
    parser.add_argument('--output-dir', default=None, help='Output directory for reports (default: reports/)')
    parser.add_argument('--quiet', action='store_true', help='Only print verdicts')
    args = parser.parse_args(argv)

    colorama_init()
    settings = load_settings()
    if args.output_dir:
        settings.reports_dir = Path(args.output_dir)

    analyzer = ExtensionThreatAnalyzer(settings, cache=ResultCache(settings.cache_capacity),
                                       verbose=not args.quiet)
    reporter = ReportGenerator(settings.reports_dir)

    results = []
    failed = False
    paths = tqdm(args.paths, desc='Analyzing', unit='artifact') if len(args.paths) > 1 else args.paths
    for path in paths:
        try:
            result = analyze_path(analyzer, path)
        except (AnalysisError, ValueError, OSError) as e:
            print(f"{Fore.RED}[X] {path}: {e}{Style.RESET_ALL}")
            failed = True
            continue

        results.append(result)
        print_verdict(result)
        if args.json:
            print(f"[+] JSON report: {reporter.save_json(result)}")
        if args.html:
            print(f"[+] HTML report: {reporter.save_html(result)}")

    if failed or not results:
        return EXIT_FAILURE
    return max(EXIT_CODES[r['level']] for r in results)


if __name__ == '__main__':
    sys.exit(main())
