"""
Heuristic Analyzer

Combines the manifest, static, obfuscation, network and package results into
cross-signal indicators. Some combinations are only suspicious together, so this
layer is evaluated after, and in addition to, each analyzer's own score.

Also carries a code-level statistical pass (complexity, naming, character and
structure distribution, permission/API mismatches, timing) used when script
text is available.
"""

import re
from collections import Counter

from utils import check_script_text, clamp_score, shannon_entropy
from weights import default_table

ANTI_DEBUG_TYPES = {'debugger_statement', 'console_clear'}
PERSISTENCE_TYPES = {'storage_access', 'chrome_storage'}
ENVIRONMENT_TYPES = {'chrome_detection', 'webdriver_detection'}

# Fallback findings only carry the matched text
ANTI_DEBUG_TOKENS = ('debugger', 'console.clear')
PERSISTENCE_TOKENS = ('localStorage', 'sessionStorage', 'indexedDB', 'chrome.storage')
ENVIRONMENT_TOKENS = ('webdriver', 'window.chrome')
LONG_DELAY_TOKENS = ('setTimeout', 'setInterval')

ARCHIVE_MALWARE_TYPES = {'eval', 'dynamic_code', 'keylogging'}

BEHAVIOR_INDICATORS = [
    ('bulk', 'bulk_requests', 'Bulk network requests detected.'),
    ('stealth', 'stealth_requests', 'Stealthy network requests detected.'),
    ('exfiltration', 'data_exfiltration', 'Network-based data exfiltration detected.'),
    ('c2', 'c2_communication', 'Command and control (C2) communication patterns detected.'),
    ('evasion', 'evasion_techniques', 'Network evasion techniques detected.'),
]

SUSPICIOUS_NAMES = [
    'steal', 'hack', 'exploit', 'backdoor', 'trojan', 'malware',
    'keylog', 'spy', 'track', 'monitor', 'harvest', 'collect',
    'exfiltrate', 'inject', 'payload', 'botnet', 'c2', 'command',
    'control', 'bypass', 'evade', 'hide', 'obfuscate', 'encode',
    'decode', 'crypt', 'mine', 'coin', 'bitcoin', 'monero',
]
SUSPICIOUS_NAME_RES = [(name, re.compile(rf'\b{name}\w*\b', re.IGNORECASE)) for name in SUSPICIOUS_NAMES]

OBFUSCATED_NAME_RES = [
    re.compile(r'[a-z]\d+'),
    re.compile(r'[a-z]{1,2}[0-9]{3,}'),
    re.compile(r'_[a-z0-9]{8,}'),
]

COMPLEXITY_KEYWORD_RE = re.compile(r'\b(?:if|else|while|for|switch|case|catch)\b')
COMPLEXITY_OPERATOR_RE = re.compile(r'&&|\|\||\?')

EVAL_LIKE_RES = [
    re.compile(r'eval\s*\('),
    re.compile(r'new\s+Function\s*\('),
    re.compile(r'setTimeout\s*\(\s*[\'"`]'),
    re.compile(r'setInterval\s*\(\s*[\'"`]'),
]
STRING_MANIPULATION_RES = [
    re.compile(r'String\.fromCharCode'),
    re.compile(r'\.charCodeAt'),
    re.compile(r'atob\s*\('),
    re.compile(r'btoa\s*\('),
]
PROPERTY_ACCESS_RES = [
    re.compile(r'\[[\'"`][^\'"`\n]+[\'"`]\]'),
    re.compile(r'\.\w+\s*\['),
]
ENVIRONMENT_RES = [
    re.compile(r'navigator\.webdriver'),
    re.compile(r'window\.chrome'),
    re.compile(r'typeof\s+\w+\s*===?\s*[\'"`]undefined[\'"`]'),
]
STORAGE_RES = [
    re.compile(r'localStorage'),
    re.compile(r'sessionStorage'),
    re.compile(r'chrome\.storage'),
    re.compile(r'indexedDB'),
]
UNLOAD_LISTENER_RE = re.compile(r'addEventListener\s*\(\s*[\'"`](?:beforeunload|unload|pagehide)[\'"`]')
FUNCTION_REDEFINITION_RE = re.compile(r'function\s+\w+\s*\([^)]*\)\s*\{[^}]*\w+\s*=\s*function')

API_PERMISSIONS = {
    'chrome.tabs': ['tabs'],
    'chrome.history': ['history'],
    'chrome.bookmarks': ['bookmarks'],
    'chrome.cookies': ['cookies'],
    'chrome.downloads': ['downloads'],
    'chrome.notifications': ['notifications'],
    'chrome.storage': ['storage'],
    'chrome.management': ['management'],
}

FUNCTIONALITY_PATTERNS = [
    (re.compile(r'keylog|steal|harvest|collect'), 'data theft'),
    (re.compile(r'mining|coin|crypto|bitcoin'), 'cryptocurrency mining'),
    (re.compile(r'backdoor|trojan|malware'), 'malicious behavior'),
    (re.compile(r'spy|track|monitor'), 'surveillance'),
]

TIMING_PATTERNS = [
    (re.compile(r'setTimeout\s*\([^,\n]{0,500},\s*\d{5,}'), 'very long delays'),
    (re.compile(r'setInterval\s*\([^,\n]{0,500},\s*\d{4,}'), 'long intervals'),
    (re.compile(r'setTimeout\s*\([^,\n]{0,500},\s*Math\.random'), 'random delays'),
]

# Share of each character in ordinary hand-written JavaScript
EXPECTED_CHARACTER_FREQUENCIES = {
    ' ': 0.15, '\n': 0.05, '\t': 0.02,
    '(': 0.03, ')': 0.03,
    '{': 0.02, '}': 0.02,
    '[': 0.01, ']': 0.01,
    ';': 0.02, ':': 0.01,
    ',': 0.01, '.': 0.01,
    '=': 0.01, '+': 0.005, '-': 0.005,
    '*': 0.002, '/': 0.002,
    '!': 0.001, '?': 0.001,
    '&': 0.001, '|': 0.001,
}

DISTRIBUTION_RES = {
    'functions': re.compile(r'function\s+\w+\s*\('),
    'variables': re.compile(r'\b(?:var|let|const)\s+\w+'),
    'strings': re.compile(r'[\'"`][^\'"`]*[\'"`]'),
    'numbers': re.compile(r'\b\d+(?:\.\d+)?\b'),
    'operators': re.compile(r'[+\-*/=<>!&|]'),
    'brackets': re.compile(r'[{}()\[\]]'),
}
EXPECTED_DISTRIBUTION = {
    'functions': 0.1,
    'variables': 0.15,
    'strings': 0.25,
    'numbers': 0.1,
    'operators': 0.2,
    'brackets': 0.2,
}


def count_matches(patterns, code):
    return sum(len(p.findall(code)) for p in patterns)


def archive_malware_findings(package_result):
    """Per-file archive threats that indicate dynamic execution or input capture"""
    found = []
    for entry in (package_result or {}).get('per_file_findings') or []:
        for threat in entry['threats']:
            if threat['type'] in ARCHIVE_MALWARE_TYPES:
                found.append({'path': entry['path'], **threat})
    return found


def _has_marker(findings, types, tokens):
    for finding in findings or []:
        if finding.get('type') in types:
            return True
        if finding.get('type') == 'regex' and any(t in (finding.get('match') or '') for t in tokens):
            return True
    return False


class HeuristicAnalyzer:
    """Cross-signal indicator table plus statistical code heuristics"""

    def __init__(self, weights=None, max_script_bytes=10 * 1024 * 1024):
        self.weights = weights or default_table('heuristic')
        self.indicator_weights = self.weights['indicators']
        self.thresholds = self.weights['thresholds']
        self.statistics = self.weights['statistics']
        self.max_script_bytes = max_script_bytes

    def analyze(self, manifest_result=None, static_result=None, obfuscation_result=None,
                network_result=None, package_result=None, code=None, manifest=None):
        """
        Derive the heuristic score from the other analyzers' results

        Args:
            manifest_result (dict): ManifestAnalyzer output
            static_result (dict): StaticAnalyzer output, None in manifest-only mode
            obfuscation_result (dict): ObfuscationDetector output
            network_result (dict): NetworkAnalyzer output
            package_result (dict): PackageAnalyzer output when a package was analyzed
            code (str): joined script text, enables the statistical indicators
            manifest (dict): raw manifest, used for permission/API mismatches

        Returns:
            dict: heuristic_score, detected_heuristics, threat_level
        """
        detected = []
        score = 0

        def add(indicator, count, description):
            nonlocal score
            if count <= 0:
                return
            score += self.indicator_weights[indicator] * count
            detected.append({'type': indicator, 'count': count, 'description': description})

        if manifest_result:
            permissions = manifest_result['permissions']
            add('dangerous_permissions', permissions['dangerous']['count'],
                f"Dangerous permissions requested: {', '.join(permissions['dangerous']['permissions'])}")
            broad_hosts = manifest_result['host_permissions']['broad']
            add('broad_host_permissions', broad_hosts['count'],
                f"Broad host permissions: {', '.join(broad_hosts['permissions'])}")
            scripts = manifest_result['content_scripts']
            add('suspicious_content_scripts', scripts['suspicious']['count'],
                'Suspicious content script patterns detected.')
            add('broad_early_injection', scripts['broad_and_early']['count'],
                'Content scripts inject into every site at document_start.')
            names = manifest_result['suspicious_file_names']
            add('suspicious_file_names', len(names), f"Suspicious filenames in manifest: {', '.join(names)}")

        if static_result:
            add('dynamic_code_execution', len(static_result['eval_usage']),
                'Dynamic code execution (eval, new Function) detected.')
            add('remote_code_loading', len(static_result['remote_code_loading']), 'Remote code loading detected.')
            add('keylogging', len(static_result['keylogging']), 'Keylogging patterns detected.')
            add('data_exfiltration', len(static_result['data_exfiltration']), 'Data exfiltration patterns detected.')
            add('fingerprinting', len(static_result['fingerprinting']), 'Browser fingerprinting detected.')

            malware = static_result['malware']
            behavioral = static_result['behavioral']
            if _has_marker(malware, ANTI_DEBUG_TYPES, ANTI_DEBUG_TOKENS):
                add('anti_debugging', 1, 'Anti-debugging techniques detected.')
            if _has_marker(malware, PERSISTENCE_TYPES, PERSISTENCE_TOKENS):
                add('persistence_mechanisms', 1, 'Persistence mechanisms (storage access) detected.')
            if _has_marker(behavioral, ENVIRONMENT_TYPES, ENVIRONMENT_TOKENS):
                add('environment_detection', 1, 'Environment detection (anti-analysis) detected.')
            if _has_marker(behavioral, {'long_timeout'}, LONG_DELAY_TOKENS):
                add('long_delays', 1, 'Suspiciously long delays detected.')

        if obfuscation_result and obfuscation_result['obfuscation_detected']:
            add('high_obfuscation', 1,
                f"High level of code obfuscation detected (Score: {obfuscation_result['obfuscation_score']}).")

        if network_result:
            add('suspicious_network_endpoints', len(network_result['endpoints']['suspicious']),
                'Suspicious network endpoints detected.')
            behaviors = network_result['behavior_patterns']
            for kind, indicator, description in BEHAVIOR_INDICATORS:
                add(indicator, len(behaviors.get(kind) or []), description)

        if package_result:
            malware = archive_malware_findings(package_result)
            add('archive_malware', len(malware),
                f"Archive members with dynamic execution or input capture: "
                f"{', '.join(sorted({m['path'] for m in malware}))}")

        unreadable = (package_result or {}).get('unreadable_files') or []
        if static_result is None or unreadable:
            add('unreadable_files', 1, 'JavaScript files could not be read, relying on manifest analysis.')

        if code:
            statistics = self.analyze_code(code, manifest)['detailed_analysis']
            complexity = [i for i in statistics['complexity']['indicators']
                          if i['type'] in ('high_complexity', 'deep_nesting')]
            add('high_complexity', len(complexity), 'High code complexity or deep nesting detected.')
            naming = [i for i in statistics['complexity']['indicators'] if i['type'] == 'suspicious_naming']
            add('suspicious_naming', len(naming), 'Suspicious identifier names detected.')

            for indicator in statistics['statistical']['indicators']:
                add(indicator['indicator'], 1, indicator['description'])

            contextual = statistics['contextual']['context']
            add('permission_mismatch', len(contextual['permission_mismatches']),
                'APIs used without the matching manifest permission.')
            add('timing_anomalies', len(contextual['timing_anomalies']), 'Suspicious timing patterns detected.')

        heuristic_score = clamp_score(score)
        return {
            'heuristic_score': heuristic_score,
            'detected_heuristics': detected,
            'threat_level': self.determine_threat_level(heuristic_score),
        }

    def analyze_code(self, code, manifest=None):
        """
        Statistical and contextual heuristics over raw script text

        Args:
            code (str): JavaScript source
            manifest (dict): extension manifest, optional

        Returns:
            dict: heuristic_score, threat_level, indicators, anomalies,
            recommendations and detailed_analysis
        """
        check_script_text(code, self.max_script_bytes)
        manifest = manifest if isinstance(manifest, dict) else {}

        if not code:
            return {
                'heuristic_score': 0,
                'threat_level': 'safe',
                'indicators': [],
                'anomalies': [],
                'recommendations': [],
                'detailed_analysis': None,
            }

        analyses = {
            'complexity': self.analyze_complexity(code),
            'behavioral': self.analyze_behavior(code),
            'statistical': self.analyze_statistics(code),
            'contextual': self.analyze_context(code, manifest),
        }

        score = clamp_score(sum(a['score'] for a in analyses.values()))
        anomalies = []
        for analysis in analyses.values():
            anomalies.extend(analysis['indicators'])

        return {
            'heuristic_score': score,
            'threat_level': self.determine_threat_level(score),
            'indicators': self.extract_indicators(score),
            'anomalies': anomalies,
            'recommendations': self.generate_recommendations(score, analyses),
            'detailed_analysis': analyses,
        }

    def analyze_complexity(self, code):
        metrics = {
            'lines_of_code': code.count('\n') + 1,
            'cyclomatic_complexity': self.calculate_cyclomatic_complexity(code),
            'nesting_depth': self.calculate_nesting_depth(code),
            'function_count': len(re.findall(r'function\s+\w+\s*\(|\b(?:const|let|var)\s+\w+\s*=\s*function|=>', code)),
            'variable_count': len(DISTRIBUTION_RES['variables'].findall(code)),
            'string_literals': len(DISTRIBUTION_RES['strings'].findall(code)),
            'numeric_literals': len(DISTRIBUTION_RES['numbers'].findall(code)),
        }

        score = 0
        indicators = []
        if metrics['cyclomatic_complexity'] > self.statistics['cyclomatic_complexity']:
            score += self.indicator_weights['high_complexity']
            indicators.append({
                'type': 'high_complexity',
                'severity': 'medium',
                'description': f"High cyclomatic complexity ({metrics['cyclomatic_complexity']})",
                'value': metrics['cyclomatic_complexity'],
            })
        if metrics['nesting_depth'] > self.statistics['nesting_depth']:
            score += self.indicator_weights['high_complexity']
            indicators.append({
                'type': 'deep_nesting',
                'severity': 'medium',
                'description': f"Deep code nesting ({metrics['nesting_depth']} levels)",
                'value': metrics['nesting_depth'],
            })

        unusual = self.detect_unusual_patterns(code)
        score += self.indicator_weights['unusual_patterns'] * len(unusual)
        indicators.extend(unusual)

        naming = self.detect_suspicious_naming(code)
        score += self.indicator_weights['suspicious_naming'] * len(naming)
        indicators.extend(naming)

        return {'score': score, 'indicators': indicators, 'metrics': metrics}

    def analyze_behavior(self, code):
        stealth = self.detect_stealth_behaviors(code)
        evasion = self.detect_evasion_techniques(code)
        persistence = self.detect_persistence_mechanisms(code)

        score = (self.indicator_weights['stealth_behavior'] * len(stealth)
                 + self.indicator_weights['evasion_techniques'] * len(evasion)
                 + self.indicator_weights['persistence_mechanisms'] * len(persistence))

        return {
            'score': score,
            'indicators': stealth + evasion + persistence,
            'behaviors': {'stealth': stealth, 'evasion': evasion, 'persistence': persistence},
        }

    def analyze_statistics(self, code):
        entropy = shannon_entropy(code)
        frequency = self.analyze_character_frequency(code)
        distribution = self.analyze_code_distribution(code)

        score = 0
        indicators = []
        if entropy > self.statistics['entropy']:
            score += self.indicator_weights['entropy_anomalies']
            indicators.append({
                'type': 'high_entropy',
                'indicator': 'entropy_anomalies',
                'severity': 'high',
                'description': f'High entropy detected ({entropy:.2f}) - possible obfuscation',
                'value': entropy,
            })
        if frequency['anomaly_score'] > self.statistics['frequency_anomaly']:
            score += self.indicator_weights['frequency_anomalies']
            indicators.append({
                'type': 'frequency_anomaly',
                'indicator': 'frequency_anomalies',
                'severity': 'medium',
                'description': 'Unusual character frequency distribution detected',
                'value': frequency['anomaly_score'],
            })
        if distribution['anomaly_score'] > self.statistics['distribution_anomaly']:
            score += self.indicator_weights['distribution_anomalies']
            indicators.append({
                'type': 'distribution_anomaly',
                'indicator': 'distribution_anomalies',
                'severity': 'medium',
                'description': 'Unusual code structure distribution detected',
                'value': distribution['anomaly_score'],
            })

        return {
            'score': score,
            'indicators': indicators,
            'statistics': {'entropy': entropy, 'frequency': frequency, 'distribution': distribution},
        }

    def analyze_context(self, code, manifest):
        permission_mismatches = self.detect_permission_mismatches(code, manifest)
        functionality_mismatches = self.detect_functionality_mismatches(code)
        timing_anomalies = self.detect_timing_anomalies(code)

        score = (self.indicator_weights['permission_mismatch'] * len(permission_mismatches)
                 + self.indicator_weights['functionality_mismatch'] * len(functionality_mismatches)
                 + self.indicator_weights['timing_anomalies'] * len(timing_anomalies))

        return {
            'score': score,
            'indicators': permission_mismatches + functionality_mismatches + timing_anomalies,
            'context': {
                'permission_mismatches': permission_mismatches,
                'functionality_mismatches': functionality_mismatches,
                'timing_anomalies': timing_anomalies,
            },
        }

    @staticmethod
    def calculate_cyclomatic_complexity(code):
        return 1 + len(COMPLEXITY_KEYWORD_RE.findall(code)) + len(COMPLEXITY_OPERATOR_RE.findall(code))

    @staticmethod
    def calculate_nesting_depth(code):
        depth = 0
        deepest = 0
        for char in code:
            if char == '{':
                depth += 1
                deepest = max(deepest, depth)
            elif char == '}':
                depth -= 1
        return deepest

    def detect_unusual_patterns(self, code):
        patterns = []

        eval_count = count_matches(EVAL_LIKE_RES, code)
        if eval_count > 3:
            patterns.append({
                'type': 'excessive_eval',
                'severity': 'high',
                'description': f'Excessive use of dynamic code execution ({eval_count} instances)',
                'value': eval_count,
            })

        manipulation_count = count_matches(STRING_MANIPULATION_RES, code)
        if manipulation_count > 5:
            patterns.append({
                'type': 'excessive_string_manipulation',
                'severity': 'medium',
                'description': f'Excessive string manipulation ({manipulation_count} instances)',
                'value': manipulation_count,
            })

        access_count = count_matches(PROPERTY_ACCESS_RES, code)
        if access_count > 10:
            patterns.append({
                'type': 'excessive_property_access',
                'severity': 'low',
                'description': f'Excessive dynamic property access ({access_count} instances)',
                'value': access_count,
            })

        return patterns

    def detect_suspicious_naming(self, code):
        patterns = []
        for name, pattern in SUSPICIOUS_NAME_RES:
            matches = pattern.findall(code)
            if matches:
                patterns.append({
                    'type': 'suspicious_naming',
                    'severity': 'high',
                    'description': f"Suspicious naming pattern detected: {', '.join(sorted(set(matches))[:5])}",
                    'value': name,
                })

        for pattern in OBFUSCATED_NAME_RES:
            matches = pattern.findall(code)
            if len(matches) > 5:
                patterns.append({
                    'type': 'obfuscated_naming',
                    'severity': 'medium',
                    'description': f'Obfuscated naming pattern detected ({len(matches)} instances)',
                    'value': matches[:5],
                })

        return patterns

    def detect_stealth_behaviors(self, code):
        behaviors = []

        if re.search(r'console\.clear\s*\(', code):
            behaviors.append({
                'type': 'console_clearing',
                'severity': 'medium',
                'description': 'Console clearing detected - potential anti-debugging technique',
            })
        if re.search(r'debugger\s*;', code):
            behaviors.append({
                'type': 'debugger_statements',
                'severity': 'high',
                'description': 'Debugger statements detected - anti-debugging technique',
            })

        environment_count = count_matches(ENVIRONMENT_RES, code)
        if environment_count > 2:
            behaviors.append({
                'type': 'environment_detection',
                'severity': 'high',
                'description': f'Environment detection detected ({environment_count} instances)',
                'value': environment_count,
            })

        if re.search(r'Math\.random\s*\(\s*\)', code) and re.search(r'setTimeout|setInterval', code):
            behaviors.append({
                'type': 'stealth_timing',
                'severity': 'medium',
                'description': 'Random timing patterns detected - potential stealth behavior',
            })

        return behaviors

    def detect_evasion_techniques(self, code):
        techniques = []

        try_count = len(re.findall(r'try\s*\{', code))
        if try_count > 5:
            techniques.append({
                'type': 'excessive_try_catch',
                'severity': 'medium',
                'description': f'Excessive try-catch blocks ({try_count}) - potential error hiding',
                'value': try_count,
            })

        access_count = count_matches(PROPERTY_ACCESS_RES, code)
        if access_count > 8:
            techniques.append({
                'type': 'dynamic_property_access',
                'severity': 'medium',
                'description': f'Excessive dynamic property access ({access_count}) - potential evasion',
                'value': access_count,
            })

        if FUNCTION_REDEFINITION_RE.search(code):
            techniques.append({
                'type': 'function_redefinition',
                'severity': 'high',
                'description': 'Function redefinition detected - potential API hooking',
            })

        return techniques

    def detect_persistence_mechanisms(self, code):
        mechanisms = []

        storage_count = count_matches(STORAGE_RES, code)
        if storage_count > 3:
            mechanisms.append({
                'type': 'excessive_storage_usage',
                'severity': 'medium',
                'description': f'Excessive storage usage ({storage_count} instances) - potential persistence',
                'value': storage_count,
            })

        listener_count = len(UNLOAD_LISTENER_RE.findall(code))
        if listener_count:
            mechanisms.append({
                'type': 'persistence_event_listeners',
                'severity': 'medium',
                'description': f'Persistence event listeners detected ({listener_count})',
                'value': listener_count,
            })

        return mechanisms

    @staticmethod
    def analyze_character_frequency(code):
        counts = Counter(code)
        length = len(code)
        anomaly = sum(abs(expected - counts.get(char, 0) / length)
                      for char, expected in EXPECTED_CHARACTER_FREQUENCIES.items())
        return {'anomaly_score': min(1.0, anomaly)}

    @staticmethod
    def analyze_code_distribution(code):
        counts = {key: len(pattern.findall(code)) for key, pattern in DISTRIBUTION_RES.items()}
        total = sum(counts.values())
        normalized = {key: (count / total if total else 0) for key, count in counts.items()}
        anomaly = sum(abs(expected - normalized[key]) for key, expected in EXPECTED_DISTRIBUTION.items())
        return {'distribution': normalized, 'anomaly_score': min(1.0, anomaly)}

    @staticmethod
    def detect_permission_mismatches(code, manifest):
        """APIs referenced in code whose permission the manifest does not request"""
        permissions = manifest.get('permissions')
        if not isinstance(permissions, list):
            return []

        mismatches = []
        for api, required in API_PERMISSIONS.items():
            if api in code and not any(p in permissions for p in required):
                mismatches.append({
                    'type': 'permission_mismatch',
                    'severity': 'high',
                    'description': f'API {api} used without required permissions',
                    'value': {'api': api, 'required_permissions': required},
                })
        return mismatches

    @staticmethod
    def detect_functionality_mismatches(code):
        mismatches = []
        for pattern, description in FUNCTIONALITY_PATTERNS:
            if pattern.search(code):
                mismatches.append({
                    'type': 'functionality_mismatch',
                    'severity': 'critical',
                    'description': f"Code contains {description} patterns but manifest doesn't indicate this functionality",
                    'value': description,
                })
        return mismatches

    @staticmethod
    def detect_timing_anomalies(code):
        anomalies = []
        for pattern, description in TIMING_PATTERNS:
            matches = pattern.findall(code)
            if matches:
                anomalies.append({
                    'type': 'timing_anomaly',
                    'severity': 'medium',
                    'description': f'Suspicious timing pattern detected: {description}',
                    'value': len(matches),
                })
        return anomalies

    def determine_threat_level(self, score):
        if score >= self.thresholds['critical']:
            return 'critical'
        if score >= self.thresholds['malicious']:
            return 'malicious'
        if score >= self.thresholds['suspicious']:
            return 'suspicious'
        return 'safe'

    def extract_indicators(self, score):
        level = self.determine_threat_level(score)
        return {
            'critical': ['Critical threat indicators detected'],
            'malicious': ['Malicious behavior patterns detected'],
            'suspicious': ['Suspicious patterns detected'],
        }.get(level, [])

    def generate_recommendations(self, score, analyses):
        recommendations = []
        level = self.determine_threat_level(score)
        if level == 'critical':
            recommendations += ['CRITICAL: Immediate removal recommended',
                                'This extension exhibits multiple critical threat indicators']
        elif level == 'malicious':
            recommendations += ['HIGH RISK: Strongly consider removal',
                                'Multiple malicious behavior patterns detected']
        elif level == 'suspicious':
            recommendations += ['SUSPICIOUS: Review extension carefully',
                                'Several suspicious patterns detected']

        if analyses['complexity']['score'] > 20:
            recommendations.append('High code complexity detected - review for obfuscation')
        if analyses['behavioral']['score'] > 15:
            recommendations.append('Suspicious behavioral patterns detected')
        if analyses['statistical']['score'] > 10:
            recommendations.append('Statistical anomalies suggest possible obfuscation')
        if analyses['contextual']['score'] > 20:
            recommendations.append('Contextual mismatches detected - verify extension legitimacy')

        return recommendations
