"""
Threat Classifier
Combines the component scores into one overall verdict with categories,
recommendations and a summary
"""

from heuristic_analyzer import archive_malware_findings
from weights import WEIGHTS_VERSION, default_table

THREAT_CATEGORIES = {
    'data_theft': {
        'name': 'Data Theft',
        'description': 'The extension may attempt to steal sensitive user data such as cookies, '
                       'browsing history, or form inputs.',
    },
    'privacy_invasion': {
        'name': 'Privacy Invasion',
        'description': 'The extension may track user behavior, collect browsing history, or fingerprint the browser.',
    },
    'code_execution': {
        'name': 'Arbitrary Code Execution',
        'description': 'The extension may execute arbitrary or remote code, which could be used to run '
                       'malicious commands.',
    },
    'excessive_permissions': {
        'name': 'Excessive Permissions',
        'description': 'The extension requests more permissions than necessary for its stated functionality.',
    },
    'obfuscation': {
        'name': 'Code Obfuscation',
        'description': 'The extension uses obfuscation techniques that may hide malicious functionality.',
    },
    'network_abuse': {
        'name': 'Network Abuse',
        'description': 'The extension communicates with suspicious domains or uses unusual network patterns.',
    },
    'advanced_malware': {
        'name': 'Advanced Malware',
        'description': 'The extension exhibits sophisticated malware behaviors such as cryptocurrency mining, '
                       'form hijacking, or anti-debugging techniques.',
    },
    'behavioral_threats': {
        'name': 'Behavioral Threats',
        'description': 'The extension shows suspicious behavioral patterns such as environment detection, '
                       'stealth techniques, or unusual communication patterns.',
    },
    'heuristic_threats': {
        'name': 'Heuristic Threats',
        'description': 'The extension exhibits multiple suspicious indicators that, when combined, suggest '
                       'malicious intent based on behavioral analysis.',
    },
}

CRITICAL_MALWARE_TYPES = {'crypto_mining', 'form_submit_listener', 'debugger_statement'}
STEALTH_BEHAVIOR_TYPES = {'chrome_detection', 'webdriver_detection', 'long_timeout'}
PACKAGE_DATA_THEFT_TYPES = {'cookie_access', 'history_access', 'bookmark_access'}
CRITICAL_HEURISTICS = ('keylogging', 'data_exfiltration', 'c2_communication', 'dynamic_code_execution')


def _count(result, key):
    return len((result or {}).get(key) or [])


class ThreatClassifier:
    """Weighted aggregation of all analyzer scores"""

    def __init__(self, weights=None):
        self.weights = weights or default_table('classifier')

    def classify(self, manifest_result=None, static_result=None, obfuscation_result=None,
                 network_result=None, heuristic_result=None, package_result=None):
        """
        Classify an artifact from its analyzer results

        Analyzers that did not run (None) are left out of the weighted
        combination and the remaining weights are rescaled to sum to one.

        Returns:
            dict: level, score, categories, summary, recommendations,
            component_scores and the effective weights
        """
        results = {
            'manifest': manifest_result,
            'static': static_result,
            'obfuscation': obfuscation_result,
            'network': network_result,
            'heuristic': heuristic_result,
            'package': package_result,
        }

        component_scores = {
            'manifest': manifest_result['risk_score'] if manifest_result else None,
            'static': static_result['risk_score'] if static_result else None,
            'obfuscation': obfuscation_result['obfuscation_score'] if obfuscation_result else None,
            'network': network_result['risk_score'] if network_result else None,
            'heuristic': heuristic_result['heuristic_score'] if heuristic_result else None,
        }

        weights = self.effective_weights(component_scores)
        score = self.calculate_overall_score(component_scores, weights)
        level = self.determine_threat_level(score)
        categories = self.identify_threat_categories(results)

        return {
            'level': level,
            'score': score,
            'categories': categories,
            'summary': self.generate_summary(level, categories, results),
            'recommendations': self.generate_recommendations(level, categories, results),
            'component_scores': component_scores,
            'weights': weights,
            'mode': 'full' if static_result is not None else 'manifest_only',
            'weights_version': WEIGHTS_VERSION,
        }

    def effective_weights(self, component_scores):
        """Component weights restricted to the analyses that ran, renormalized"""
        base = self.weights['components']
        present = {name: weight for name, weight in base.items() if component_scores.get(name) is not None}
        total = sum(present.values())
        if not total:
            return {}
        return {name: weight / total for name, weight in present.items()}

    @staticmethod
    def calculate_overall_score(component_scores, weights):
        weighted = sum(component_scores[name] * weight for name, weight in weights.items())
        return min(100, max(0, int(round(weighted))))

    def determine_threat_level(self, score):
        for threshold, level in self.weights['levels']:
            if score >= threshold:
                return level
        return 'safe'

    def identify_threat_categories(self, results):
        checks = [
            ('data_theft', self.has_data_theft_indicators),
            ('privacy_invasion', self.has_privacy_invasion_indicators),
            ('code_execution', self.has_code_execution_indicators),
            ('excessive_permissions', self.has_excessive_permissions),
            ('obfuscation', self.has_obfuscation),
            ('network_abuse', self.has_network_abuse),
            ('advanced_malware', self.has_advanced_malware),
            ('behavioral_threats', self.has_behavioral_threats),
            ('heuristic_threats', self.has_heuristic_threats),
        ]

        categories = []
        for key, check in checks:
            if check(results):
                categories.append({
                    'key': key,
                    **THREAT_CATEGORIES[key],
                    'severity': self.get_category_severity(results, key),
                })
        return categories

    # -- category triggers ---------------------------------------------------

    @staticmethod
    def _network_exfiltration(results):
        network = results['network'] or {}
        return len((network.get('behavior_patterns') or {}).get('exfiltration') or [])

    @staticmethod
    def _package_data_theft(results):
        found = 0
        for entry in (results['package'] or {}).get('per_file_findings') or []:
            found += sum(1 for t in entry['threats'] if t['type'] in PACKAGE_DATA_THEFT_TYPES)
        return found

    def has_data_theft_indicators(self, results):
        return bool(_count(results['static'], 'cookie_access')
                    or _count(results['static'], 'data_exfiltration')
                    or self._network_exfiltration(results)
                    or self._package_data_theft(results))

    @staticmethod
    def has_privacy_invasion_indicators(results):
        dangerous = ((results['manifest'] or {}).get('permissions') or {}).get('dangerous') or {}
        requested = dangerous.get('permissions') or []
        return bool(_count(results['static'], 'fingerprinting') or 'history' in requested or 'tabs' in requested)

    @staticmethod
    def _csp_allows_eval(results):
        csp = (results['manifest'] or {}).get('csp') or {}
        return 'unsafe-eval' in (csp.get('suspicious_directives') or [])

    def has_code_execution_indicators(self, results):
        return bool(_count(results['static'], 'eval_usage')
                    or _count(results['static'], 'remote_code_loading')
                    or self._csp_allows_eval(results))

    @staticmethod
    def has_excessive_permissions(results):
        permissions = (results['manifest'] or {}).get('permissions')
        if not permissions:
            return False
        return permissions['dangerous']['count'] > 2 or permissions['critical']['count'] > 0

    @staticmethod
    def has_obfuscation(results):
        return bool((results['obfuscation'] or {}).get('obfuscation_detected'))

    @staticmethod
    def has_network_abuse(results):
        network = results['network'] or {}
        return bool(network.get('suspicious_domains') or network.get('suspicious_urls'))

    @staticmethod
    def has_advanced_malware(results):
        return bool(_count(results['static'], 'malware') or archive_malware_findings(results['package']))

    @staticmethod
    def has_behavioral_threats(results):
        return bool(_count(results['static'], 'behavioral'))

    def has_heuristic_threats(self, results):
        heuristic = results['heuristic']
        if not heuristic:
            return False
        rule = self.weights['heuristic_category']
        return (heuristic['heuristic_score'] > rule['score_above']
                and len(heuristic['detected_heuristics']) > rule['indicators_above'])

    # -- category severity ---------------------------------------------------

    def get_category_severity(self, results, category):
        """Each category's own count/threshold rule, independent of the overall score"""
        static = results['static'] or {}

        if category == 'data_theft':
            cookie_count = _count(static, 'cookie_access')
            exfil_count = _count(static, 'data_exfiltration') + self._network_exfiltration(results)
            if cookie_count > 2 or exfil_count > 2:
                return 'high'
            if cookie_count > 0 or exfil_count > 0:
                return 'medium'
            return 'low'

        if category == 'privacy_invasion':
            fingerprinting = _count(static, 'fingerprinting')
            if fingerprinting > 3:
                return 'high'
            if fingerprinting > 0:
                return 'medium'
            return 'low'

        if category == 'code_execution':
            if _count(static, 'remote_code_loading') > 0:
                return 'high'
            if _count(static, 'eval_usage') > 1 or self._csp_allows_eval(results):
                return 'medium'
            return 'low'

        if category == 'excessive_permissions':
            permissions = results['manifest']['permissions']
            if permissions['critical']['count'] > 0:
                return 'high'
            if permissions['dangerous']['count'] > 4:
                return 'medium'
            return 'low'

        if category == 'obfuscation':
            score = results['obfuscation']['obfuscation_score']
            if score > 70:
                return 'high'
            if score > 40:
                return 'medium'
            return 'low'

        if category == 'network_abuse':
            suspicious = len(((results['network'] or {}).get('endpoints') or {}).get('suspicious') or [])
            if suspicious > 3:
                return 'high'
            if suspicious > 0:
                return 'medium'
            return 'low'

        if category == 'advanced_malware':
            malware = static.get('malware') or []
            critical = [m for m in malware if m['type'] in CRITICAL_MALWARE_TYPES]
            if critical or archive_malware_findings(results['package']):
                return 'high'
            if len(malware) > 2:
                return 'medium'
            return 'low'

        if category == 'behavioral_threats':
            behavioral = static.get('behavioral') or []
            stealth = [b for b in behavioral if b['type'] in STEALTH_BEHAVIOR_TYPES]
            if len(stealth) > 1:
                return 'high'
            if len(behavioral) > 2:
                return 'medium'
            return 'low'

        if category == 'heuristic_threats':
            heuristic = results['heuristic']
            score = heuristic['heuristic_score']
            count = len(heuristic['detected_heuristics'])
            if score > 60 or count > 5:
                return 'high'
            if score > 40 or count > 3:
                return 'medium'
            return 'low'

        return 'low'

    # -- text ------------------------------------------------------------------

    @staticmethod
    def generate_summary(level, categories, results):
        lines = [f'The extension poses a {level} threat.']
        if not categories:
            lines.append('No significant threats detected.')

        for category in categories:
            description = category['description']
            explanation = (results['obfuscation'] or {}).get('explanation')
            if category['key'] == 'obfuscation' and explanation:
                description += f' {explanation}'
            lines.append(f"- **{category['name']}**: {description}")

        return '\n'.join(lines)

    @staticmethod
    def generate_recommendations(level, categories, results):
        recommendations = []

        def add(text, priority):
            recommendations.append({'recommendation': text, 'priority': priority})

        if level == 'critical':
            add('Uninstall this extension immediately.', 'critical')

        static = results['static'] or {}
        for category in categories:
            key = category['key']

            if key == 'data_theft':
                add('Review code that accesses cookies or browsing history. Ensure data is handled securely '
                    'and not sent to unauthorized domains.', 'high')

            elif key == 'privacy_invasion':
                add('Minimize the collection of user data and avoid browser fingerprinting techniques.', 'medium')

            elif key == 'code_execution':
                add('Remove all uses of eval(), new Function(), and other dynamic code execution methods. '
                    'Avoid loading code from remote sources and drop unsafe-eval from the CSP.', 'critical')

            elif key == 'excessive_permissions':
                add('Review the permissions requested in the manifest.json file. Only request permissions '
                    'that are essential for the extension to function.', 'medium')

            elif key == 'obfuscation':
                add('If you are the developer, provide the original, unobfuscated source code for analysis. '
                    'Obfuscated code is often used to hide malicious behavior.', 'high')

            elif key == 'network_abuse':
                domains = ', '.join((results['network'] or {}).get('suspicious_domains') or [])
                if domains:
                    add(f'The extension communicates with the following suspicious domains: {domains}. '
                        'Investigate these network requests to ensure they are legitimate.', 'high')
                else:
                    add('The extension builds suspicious-looking URLs. Investigate its network requests.', 'medium')

            elif key == 'advanced_malware':
                types = [m['type'] for m in static.get('malware') or []]
                if 'crypto_mining' in types:
                    add('CRITICAL: Cryptocurrency mining detected. This extension may be using your device to '
                        'mine cryptocurrency without permission.', 'critical')
                if 'form_submit_listener' in types:
                    add('HIGH RISK: Form hijacking detected. This extension may be intercepting and stealing '
                        'form data including passwords.', 'critical')
                if 'debugger_statement' in types:
                    add('SUSPICIOUS: Anti-debugging techniques detected. This extension may be trying to hide '
                        'its malicious behavior from analysis.', 'high')
                if archive_malware_findings(results['package']):
                    add('HIGH RISK: Packaged scripts use dynamic code execution or capture keystrokes. '
                        'Review every flagged file before installing.', 'critical')

            elif key == 'behavioral_threats':
                types = [b['type'] for b in static.get('behavioral') or []]
                if 'chrome_detection' in types or 'webdriver_detection' in types:
                    add('SUSPICIOUS: Environment detection detected. This extension may be trying to detect '
                        'analysis tools or security software.', 'high')
                if 'long_timeout' in types:
                    add('SUSPICIOUS: Unusual timing patterns detected. This extension may be using delays to '
                        'avoid detection or perform stealth operations.', 'medium')

            elif key == 'heuristic_threats':
                heuristic = results['heuristic']
                score = heuristic['heuristic_score']
                if score > 60:
                    add('CRITICAL: Multiple suspicious indicators detected. This extension exhibits a combination '
                        'of behaviors that strongly suggest malicious intent.', 'critical')
                elif score > 40:
                    add('HIGH RISK: Multiple suspicious patterns detected. This extension shows several '
                        'indicators of potentially malicious behavior.', 'high')
                else:
                    add('SUSPICIOUS: Several suspicious indicators detected. Review the extension carefully '
                        'before use.', 'medium')

                critical = sorted({h['type'] for h in heuristic['detected_heuristics']
                                   if h['type'] in CRITICAL_HEURISTICS})
                if critical:
                    add(f"CRITICAL: High-risk behaviors detected: {', '.join(critical)}. "
                        'This extension poses a significant security risk.', 'critical')

        if not recommendations:
            add('This extension appears safe to use.', 'low')

        return recommendations
