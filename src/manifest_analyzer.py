"""
Manifest Analyzer
Scores the permissions and entry points declared in an extension manifest
"""

import re

from errors import InvalidManifest
from utils import dict_list, string_list
from weights import default_table

DANGEROUS_PERMISSIONS = frozenset([
    'tabs', 'webRequest', 'cookies', '<all_urls>', 'bookmarks', 'history', 'management',
])

CRITICAL_PERMISSIONS = frozenset([
    'declarativeNetRequest', 'debugger', 'proxy', 'privacy', 'contentSettings',
])

MODERATE_PERMISSIONS = frozenset([
    'storage', 'notifications', 'contextMenus', 'webNavigation', 'activeTab',
])

SUSPICIOUS_CSP_DIRECTIVES = ('unsafe-eval', 'unsafe-inline', 'data:', 'blob:', 'filesystem:')

# Match patterns that cover every host on every scheme
BROAD_MATCH_PATTERNS = frozenset(['<all_urls>', '*://*/*', 'http://*/*', 'https://*/*'])

SUSPICIOUS_FILE_NAME_RE = re.compile(
    r'(keylog|steal|grab|inject|payload|hook|miner|crypt0|backdoor|exfil|spy)', re.IGNORECASE
)


class ManifestAnalyzer:
    """Analyze an extension manifest for risky declarations"""

    def __init__(self, weights=None):
        self.weights = weights or default_table('manifest')

    def analyze(self, manifest):
        """
        Analyze a manifest document

        Args:
            manifest (dict): Parsed manifest.json

        Returns:
            dict: Section results plus 'risk_score' in [0, 100]. A non-mapping
            manifest yields an 'error' marker and the maximum score.
        """
        if not isinstance(manifest, dict):
            return self._invalid_result(
                InvalidManifest(f'Manifest must be a key/value document, got {type(manifest).__name__}')
            )

        warnings = []
        if not isinstance(manifest.get('name'), str) or not manifest.get('name'):
            warnings.append('Manifest missing required field: name')
        if not isinstance(manifest.get('version'), str) or not manifest.get('version'):
            warnings.append('Manifest missing required field: version')
        manifest_version = manifest.get('manifest_version')
        if not isinstance(manifest_version, int) or isinstance(manifest_version, bool):
            warnings.append('Manifest missing required field: manifest_version')
            manifest_version = 2

        results = {
            'manifest_version': manifest_version,
            'permissions': self.analyze_permissions(manifest),
            'content_scripts': self.analyze_content_scripts(manifest),
            'csp': self.analyze_csp(manifest),
            'external_connections': self.analyze_external_connections(manifest),
            'background_persistence': self.check_background_persistence(manifest, manifest_version),
            'host_permissions': self.analyze_host_permissions(manifest),
            'suspicious_file_names': self.find_suspicious_file_names(manifest),
            'warnings': warnings,
        }

        results['risk_score'] = self.calculate_risk_score(results)
        results['findings'] = self._build_findings(results)
        return results

    def _invalid_result(self, error):
        empty = self.analyze({})
        empty['error'] = error.to_dict()
        empty['risk_score'] = self.weights['invalid_manifest_score']
        empty['findings'] = [{
            'category': 'invalid_manifest',
            'severity': 'critical',
            'description': error.message,
            'match': None,
        }]
        return empty

    def analyze_permissions(self, manifest):
        """Partition granted and optional permissions into the fixed tiers"""
        permissions = string_list(manifest.get('permissions'))
        optional = string_list(manifest.get('optional_permissions'))

        def tier(names, table):
            found = [p for p in names if p in table]
            return {'count': len(found), 'permissions': found}

        weights = self.weights['permissions']
        dangerous = tier(permissions, DANGEROUS_PERMISSIONS)
        critical = tier(permissions, CRITICAL_PERMISSIONS)
        moderate = tier(permissions, MODERATE_PERMISSIONS)

        raw = (dangerous['count'] * weights['dangerous']
               + critical['count'] * weights['critical']
               + moderate['count'] * weights['moderate'])

        return {
            'total': len(permissions),
            'dangerous': dangerous,
            'critical': critical,
            'moderate': moderate,
            # Not granted yet, so reported but never scored
            'optional': {
                'dangerous': tier(optional, DANGEROUS_PERMISSIONS),
                'critical': tier(optional, CRITICAL_PERMISSIONS),
                'moderate': tier(optional, MODERATE_PERMISSIONS),
            },
            'score': min(weights['cap'], raw),
        }

    def analyze_content_scripts(self, manifest):
        """Flag content scripts with unrestricted matches and/or earliest injection"""
        scripts = manifest.get('content_scripts')
        if not isinstance(scripts, list):
            scripts = []

        details = []
        for index, script in enumerate(scripts):
            if not isinstance(script, dict):
                continue
            matches = string_list(script.get('matches'))
            broad = any(m in BROAD_MATCH_PATTERNS for m in matches)
            early = script.get('run_at') == 'document_start'

            if broad and early:
                risk = 'high'
            elif broad or early:
                risk = 'medium'
            else:
                risk = 'low'

            details.append({
                'index': index,
                'matches': matches,
                'run_at': script.get('run_at', 'document_idle'),
                'all_frames': script.get('all_frames') is True,
                'js': string_list(script.get('js')),
                'broad': broad,
                'early': early,
                'risk': risk,
            })

        broad_count = sum(1 for d in details if d['broad'])
        early_count = sum(1 for d in details if d['early'])
        suspicious = [d for d in details if d['risk'] != 'low']
        broad_and_early = [d for d in details if d['risk'] == 'high']

        weights = self.weights['content_scripts']
        raw = len(details) * weights['per_script']
        if broad_count:
            raw += weights['broad']
        if early_count:
            raw += weights['early']

        return {
            'count': len(details),
            'scripts': details,
            'broad_match_count': broad_count,
            'document_start_count': early_count,
            'suspicious': {'count': len(suspicious), 'indexes': [d['index'] for d in suspicious]},
            'broad_and_early': {'count': len(broad_and_early), 'indexes': [d['index'] for d in broad_and_early]},
            'risk': _max_risk([d['risk'] for d in details]),
            'score': min(weights['cap'], raw),
        }

    def analyze_csp(self, manifest):
        """Scan the content security policy for unsafe directive substrings"""
        raw = manifest.get('content_security_policy')
        # MV2 uses a string, MV3 a dict of extension_pages / sandbox policies
        if isinstance(raw, dict):
            policy = '; '.join(v for v in raw.values() if isinstance(v, str))
        elif isinstance(raw, str):
            policy = raw
        else:
            policy = ''

        found = [d for d in SUSPICIOUS_CSP_DIRECTIVES if d in policy]
        weights = self.weights['csp']

        if 'unsafe-eval' in found:
            risk = 'high'
        elif found:
            risk = 'medium'
        else:
            risk = 'low'

        return {
            'policy': policy,
            'suspicious_directives': found,
            'has_suspicious_directives': bool(found),
            'risk': risk,
            'score': min(weights['cap'], len(found) * weights['per_directive']),
        }

    def analyze_external_connections(self, manifest):
        """Assess which outside origins may message the extension"""
        connectable = manifest.get('externally_connectable')
        if not isinstance(connectable, dict):
            connectable = {}
        matches = string_list(connectable.get('matches'))
        broad = [m for m in matches if m in BROAD_MATCH_PATTERNS or '*.' in m]

        weights = self.weights['external_connections']
        raw = 0
        if matches:
            raw += weights['enabled']
            if broad:
                raw += weights['broad']

        return {
            'enabled': bool(matches),
            'match_count': len(matches),
            'broad_matches': broad,
            'broad_match_count': len(broad),
            'accepts_tls_channel_id': connectable.get('accepts_tls_channel_id') is True,
            'risk': 'high' if broad else ('medium' if matches else 'low'),
            'score': min(weights['cap'], raw),
        }

    def check_background_persistence(self, manifest, manifest_version):
        background = manifest.get('background')
        if not isinstance(background, dict):
            background = {}
        persistent = manifest_version == 2 and background.get('persistent') is True

        weights = self.weights['background_persistence']
        return {
            'persistent': persistent,
            'service_worker': isinstance(background.get('service_worker'), str),
            'risk': 'medium' if persistent else 'low',
            'score': min(weights['cap'], weights['persistent'] if persistent else 0),
        }

    def analyze_host_permissions(self, manifest):
        """Collect host patterns from both permission schemas"""
        hosts = [p for p in string_list(manifest.get('permissions'))
                 if '://' in p or p == '<all_urls>']
        hosts.extend(string_list(manifest.get('host_permissions')))
        broad = [h for h in hosts if h in BROAD_MATCH_PATTERNS]

        weights = self.weights['host_permissions']
        raw = min(weights['per_host_cap'], len(hosts) * weights['per_host'])
        if broad:
            raw += weights['broad']

        if broad:
            risk = 'high'
        elif len(hosts) > weights['medium_count']:
            risk = 'medium'
        else:
            risk = 'low'

        return {
            'count': len(hosts),
            'permissions': hosts,
            'broad': {'count': len(broad), 'permissions': broad},
            'risk': risk,
            'score': min(weights['cap'], raw),
        }

    def find_suspicious_file_names(self, manifest):
        """Script files declared by the manifest whose names suggest intent"""
        names = []
        for script in dict_list(manifest.get('content_scripts')):
            names.extend(string_list(script.get('js')))
        background = manifest.get('background')
        if isinstance(background, dict):
            names.extend(string_list(background.get('scripts')))
            if isinstance(background.get('service_worker'), str):
                names.append(background['service_worker'])
        return sorted({n for n in names if SUSPICIOUS_FILE_NAME_RE.search(n)})

    def calculate_risk_score(self, results):
        score = (results['permissions']['score']
                 + results['content_scripts']['score']
                 + results['csp']['score']
                 + results['external_connections']['score']
                 + results['background_persistence']['score']
                 + results['host_permissions']['score'])
        return min(100, score)

    def _build_findings(self, results):
        findings = []

        for name in results['permissions']['critical']['permissions']:
            findings.append(_finding('permissions', 'high', f'Critical permission requested: {name}', name))
        for name in results['permissions']['dangerous']['permissions']:
            findings.append(_finding('permissions', 'medium', f'Dangerous permission requested: {name}', name))

        for script in results['content_scripts']['scripts']:
            if script['risk'] == 'low':
                continue
            reasons = []
            if script['broad']:
                reasons.append('matches every site')
            if script['early']:
                reasons.append('runs at document_start')
            findings.append(_finding(
                'content_scripts', script['risk'],
                f"Content script #{script['index']} " + ' and '.join(reasons),
                ', '.join(script['matches']),
            ))

        for directive in results['csp']['suspicious_directives']:
            severity = 'high' if directive == 'unsafe-eval' else 'medium'
            findings.append(_finding('csp', severity, f'CSP allows {directive}', directive))

        external = results['external_connections']
        if external['enabled']:
            findings.append(_finding(
                'external_connections', external['risk'],
                f"Externally connectable from {external['match_count']} pattern(s)",
                ', '.join(external['broad_matches']) or None,
            ))

        if results['background_persistence']['persistent']:
            findings.append(_finding('background_persistence', 'medium',
                                     'Persistent background page (manifest v2)', None))

        for host in results['host_permissions']['broad']['permissions']:
            findings.append(_finding('host_permissions', 'high', f'Broad host permission: {host}', host))

        for name in results['suspicious_file_names']:
            findings.append(_finding('file_names', 'low', f'Suspicious script file name: {name}', name))

        return findings


def _max_risk(risks):
    order = {'low': 0, 'medium': 1, 'high': 2}
    if not risks:
        return 'low'
    return max(risks, key=lambda r: order[r])


def _finding(category, severity, description, match):
    return {'category': category, 'severity': severity, 'description': description, 'match': match}
