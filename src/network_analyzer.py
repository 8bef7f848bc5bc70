"""
Network Analyzer
Finds the endpoints a script talks to, grades the hosts and URL shapes, and
classifies how network calls are driven (loops, timers, stolen data, beacons).
"""

import re
from urllib.parse import urlparse

from static_analyzer import (
    arguments_of,
    iter_nodes,
    node_location,
    node_name,
    node_source,
    parse_script,
    property_name,
    string_value,
)
from utils import check_script_text, clamp_score, line_number, truncate_snippet
from weights import default_table

# Registered domains, matched on the hostname itself or any subdomain of it
SUSPICIOUS_DOMAINS = {
    'high': {
        # crypto miners
        'coin-hive.com', 'coinhive.com', 'cryptoloot.pro', 'crypto-loot.com', 'minero.cc',
        'ppoi.org', 'browsermine.com', 'webmine.pro', 'monero-miner.com',
        # paste sites
        'pastebin.com', 'paste.ee', 'ghostbin.co', 'hastebin.com', 'rentry.co',
        'dpaste.com', 'pastebin.ir',
    },
    'medium': {
        # shorteners
        'bit.ly', 'goo.gl', 'tinyurl.com', 't.co', 'is.gd', 'short.link', 'cutt.ly', 'rebrand.ly',
        # ephemeral hosting
        'herokuapp.com', 'glitch.me', 'repl.co', 'netlify.app', 'vercel.app',
        'github.io', 'firebaseapp.com',
    },
    'low': {
        # analytics
        'mixpanel.com', 'amplitude.com', 'segment.io', 'segment.com',
        # dynamic dns
        'noip.com', 'duckdns.org', 'freedns.afraid.org', 'dynu.com',
        # anonymity
        'onion', 'tor2web.org', 'torproject.org',
        # file sharing
        'dropbox.com', 'drive.google.com', 'onedrive.live.com', 'mega.nz', 'wetransfer.com',
        # social
        'twitter.com', 'facebook.com', 'instagram.com', 'telegram.org', 'discord.com',
        # email
        'gmail.com', 'outlook.com', 'yahoo.com', 'protonmail.com',
    },
}

# Hostname labels (any position but the TLD) that suggest a role
SUSPICIOUS_LABELS = {
    'medium': {'000webhost', 'freehostia'},
    'low': {
        'analytics', 'tracker', 'tracking', 'telemetry',
        'c2', 'command', 'control', 'botnet', 'malware', 'trojan', 'backdoor',
        'exfiltrator', 'stealer', 'keylogger', 'spy', 'harvester', 'collector',
    },
}

HOST = r'[^/\s\'"`]*'

# (pattern, reason, severity)
URL_SHAPE_PATTERNS = [
    (r'https?://\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}(?::\d+)?',
     'Uses IP address directly instead of domain name', 'medium'),
    (r'https?://' + HOST + r'base64',
     'Contains base64 in URL, possibly attempting to hide payload', 'high'),
    (r'https?://' + HOST + r'[A-Za-z0-9+]{20,}={1,2}',
     'Contains an encoded blob in the host part', 'high'),
    (r'https?://' + HOST + r':(?:2121|8118|6666|1337|31337|4444|8888|9999)\b',
     'Uses suspicious port number often associated with malware', 'high'),
    (r'https?://[a-z0-9]{25,}\.[a-z]{2,}',
     'Unusually long domain name, possibly algorithmically generated', 'medium'),
    (r'https?://[a-z0-9-]{30,}\.[a-z]{2,}',
     'Unusually long hyphenated domain name, possibly algorithmically generated', 'medium'),
    (r'https?://' + HOST + r'\.(?:xyz|top|club|gq|tk|ml|ga|cf|click|download)\b',
     'Uses uncommon TLD often associated with malicious campaigns', 'low'),
    (r'https?://[a-z0-9-]*\.(?:c2|command|control|botnet|malware|trojan|backdoor)\.[a-z]{2,}',
     'Suspicious subdomain naming', 'low'),
    (r'https?://' + HOST + r'\.(?:no-ip|duckdns|freedns|dynu|myq-see|ddns)\.[a-z]{2,}',
     'Dynamic DNS host', 'low'),
    (r'https?://[a-z2-7]{16,56}\.onion',
     'Tor hidden service', 'high'),
    (r'https?://' + HOST + r'%[0-9A-Fa-f]{2}',
     'Percent-encoded characters in host part', 'low'),
    (r'https?://[^\s\'"`]*\?[^\s\'"`&]*(?:cmd|exec|eval|shell|system|download|payload)',
     'Suspicious query parameter', 'low'),
    (r'https?://' + HOST + r'/(?:admin|wp-admin|phpmyadmin|backup|config|debug)\b',
     'Suspicious path', 'low'),
    (r'https?://[^\s\'"`]*[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}',
     'UUID-like token in URL', 'low'),
]

COMPILED_URL_PATTERNS = [(re.compile(p), reason, sev) for p, reason, sev in URL_SHAPE_PATTERNS]

REQUEST_PATTERNS = [
    re.compile(r'fetch\s*\(\s*[\'"`][^\'"`]+[\'"`]'),
    re.compile(r'new\s+XMLHttpRequest\s*\(\s*\)'),
    re.compile(r'\.open\s*\(\s*[\'"`](?:GET|POST)[\'"`]'),
    re.compile(r'\$\.(?:ajax|get|post)\s*\('),
    re.compile(r'new\s+WebSocket\s*\(\s*[\'"`][^\'"`]+[\'"`]'),
]

URL_RE = re.compile(r'https?://[^\s\'"`)]+')
TRAILING_PUNCTUATION_RE = re.compile(r'[.,;:)}\\\'"]$')

BEHAVIOR_KINDS = ('bulk', 'stealth', 'exfiltration', 'c2', 'evasion')

NETWORK_CALLS = {
    'fetch', 'window.fetch', 'navigator.sendBeacon', '$.ajax', '$.get', '$.post',
    'jQuery.ajax', 'jQuery.get', 'jQuery.post', 'axios', 'axios.get', 'axios.post',
}
NETWORK_CONSTRUCTORS = {'XMLHttpRequest', 'WebSocket', 'EventSource'}
ITERATION_METHODS = {'forEach', 'map', 'filter', 'reduce', 'some', 'every', 'flatMap'}
LOOP_TYPES = {'ForStatement', 'ForInStatement', 'ForOfStatement', 'WhileStatement', 'DoWhileStatement'}
TIMERS = {'setTimeout', 'setInterval', 'window.setTimeout', 'window.setInterval'}
SPOOFED_HEADERS = {'user-agent', 'referer', 'origin'}
PROXY_KEYS = {'proxy', 'socks', 'tunnel'}
BEACON_TOKENS = re.compile(r'ping|heartbeat|beacon|status|report|cmd|command|exec|task|checkin', re.IGNORECASE)
ALTERNATE_PROTOCOL_RE = re.compile(r'^(?:wss?|ftp)://', re.IGNORECASE)

# Sliding-window fallback when the script does not parse
BEHAVIOR_REGEX = {
    'bulk': [
        r'for\s*\([^)]*\)\s*\{[^}]{0,500}fetch\s*\(',
        r'while\s*\([^)]*\)\s*\{[^}]{0,500}XMLHttpRequest',
        r'setInterval\s*\([^,]{0,500},\s*\d+\)[^}]{0,500}fetch',
        r'\.(?:forEach|map|filter)\s*\([^)]{0,500}fetch',
    ],
    'stealth': [
        r'set(?:Timeout|Interval)\s*\([^,]{0,500},\s*Math\.random',
        r'headers\s*:\s*\{[^}]{0,500}User-Agent',
        r'setRequestHeader\s*\(\s*[\'"`](?:User-Agent|Referer)[\'"`]',
        r'referrer\s*:\s*[\'"`]',
    ],
    'exfiltration': [
        r'fetch\s*\([^)]{0,500}JSON\.stringify\s*\(',
        r'XMLHttpRequest[^}]{0,500}send\s*\([^)]{0,500}document\.cookie',
        r'fetch\s*\([^)]{0,500}(?:localStorage|sessionStorage|document\.cookie)',
        r'FormData\s*\([^)]{0,500}fetch',
        r'new\s+FormData[^}]{0,500}send',
    ],
    'c2': [
        r'setInterval\s*\([\s\S]{0,500}?(?:fetch|sendBeacon|\.open)\s*\(\s*(?:[\'"`][A-Z]+[\'"`]\s*,\s*)?'
        r'[\'"`][^\'"`]{0,200}(?:ping|heartbeat|beacon|status|report|cmd|command|exec|task|checkin)'
        r'[\s\S]{0,500}?,\s*\d{4,}\s*\)',
    ],
    'evasion': [
        r'\b(?:proxy|socks|tunnel)\s*:',
        r'headers\s*:\s*\{[^}]{0,500}[\'"`]?X-',
        r'setRequestHeader\s*\(\s*[\'"`]X-',
        r'wss?://',
        r'ftp://',
    ],
}

COMPILED_BEHAVIOR_REGEX = {
    kind: [re.compile(p) for p in patterns] for kind, patterns in BEHAVIOR_REGEX.items()
}

BEHAVIOR_SEVERITY = {'bulk': 'high', 'stealth': 'medium', 'exfiltration': 'high', 'c2': 'high', 'evasion': 'medium'}


class NetworkAnalyzer:
    """Endpoint extraction, host grading and network behavior classification"""

    def __init__(self, weights=None, max_script_bytes=10 * 1024 * 1024):
        self.weights = weights or default_table('network')
        self.max_script_bytes = max_script_bytes

    def analyze_code(self, code):
        """
        Analyze JavaScript code for network endpoints and behavior

        Args:
            code (str): JavaScript source

        Returns:
            dict: endpoints, suspicious_urls, request_patterns, behavior_patterns,
            risk_score and a one-line summary
        """
        check_script_text(code, self.max_script_bytes)

        if not code:
            behaviors = {kind: [] for kind in BEHAVIOR_KINDS}
            return self._build_result([], [], [], [], behaviors, 'ast')

        urls = self.extract_urls(code)
        suspicious_domains = self.detect_suspicious_domains(urls)
        suspicious_urls = self.detect_suspicious_url_patterns(code)
        request_patterns = self.detect_request_patterns(code)
        behaviors, mode = self.analyze_network_behavior(code)

        return self._build_result(urls, suspicious_domains, suspicious_urls, request_patterns, behaviors, mode)

    def _build_result(self, urls, suspicious_domains, suspicious_urls, request_patterns, behaviors, mode):
        result = {
            'endpoints': {
                'total': len(urls),
                'unique': len(set(urls)),
                'urls': sorted(set(urls)),
                'suspicious': suspicious_domains,
            },
            'suspicious_domains': sorted({d['domain'] for d in suspicious_domains}),
            'suspicious_urls': suspicious_urls,
            'request_patterns': request_patterns,
            'behavior_patterns': behaviors,
            'analysis_mode': mode,
            'risk_score': self.calculate_risk_score(suspicious_domains, suspicious_urls, request_patterns),
        }
        result['summary'] = self.generate_summary(result)
        return result

    def extract_urls(self, code):
        return [TRAILING_PUNCTUATION_RE.sub('', url) for url in URL_RE.findall(code)]

    def detect_suspicious_domains(self, urls):
        suspicious = []
        for url in urls:
            try:
                domain = (urlparse(url).hostname or '').lower()
            except ValueError:
                # e.g. a malformed IPv6 literal; nothing to grade
                continue
            if not domain:
                continue
            match = classify_domain(domain)
            if match:
                pattern, severity = match
                suspicious.append({
                    'url': url,
                    'domain': domain,
                    'reason': f'Contains suspicious pattern: {pattern}',
                    'severity': severity,
                })
        return suspicious

    def detect_suspicious_url_patterns(self, code):
        suspicious = []
        for pattern, reason, severity in COMPILED_URL_PATTERNS:
            for match in pattern.finditer(code):
                suspicious.append({
                    'pattern': pattern.pattern,
                    'match': truncate_snippet(match.group(0)),
                    'reason': reason,
                    'severity': severity,
                    'line': line_number(code, match.start()),
                })
        return suspicious

    def detect_request_patterns(self, code):
        found = []
        for pattern in REQUEST_PATTERNS:
            for match in pattern.finditer(code):
                found.append({
                    'pattern': pattern.pattern,
                    'match': truncate_snippet(match.group(0)),
                    'reason': 'Suspicious network request API used',
                    'line': line_number(code, match.start()),
                })
        return found

    def analyze_network_behavior(self, code):
        """
        Classify how network calls are driven

        Returns:
            tuple: (behaviors keyed by kind, 'ast' or 'regex')
        """
        outcome = parse_script(code)
        if outcome.ok:
            return BehaviorScanner(code, outcome.tree).scan(), 'ast'
        return self._behavior_regex_fallback(code), 'regex'

    def _behavior_regex_fallback(self, code):
        behaviors = {kind: [] for kind in BEHAVIOR_KINDS}
        for kind, patterns in COMPILED_BEHAVIOR_REGEX.items():
            for pattern in patterns:
                for match in pattern.finditer(code):
                    behaviors[kind].append({
                        'type': kind,
                        'severity': BEHAVIOR_SEVERITY[kind],
                        'description': f'Pattern match for {kind} behavior',
                        'match': truncate_snippet(match.group(0)),
                        'line': line_number(code, match.start()),
                    })
        return behaviors

    def calculate_risk_score(self, suspicious_domains, suspicious_urls, request_patterns):
        score = 0
        for domain in suspicious_domains:
            score += self.weights['domain'][domain['severity']]
        for url in suspicious_urls:
            score += self.weights['url'][url['severity']]
        score += len(request_patterns) * self.weights['request_pattern']
        return clamp_score(score)

    @staticmethod
    def generate_summary(result):
        total = result['endpoints']['total']
        suspicious = len(result['endpoints']['suspicious'])
        behavior_count = sum(len(v) for v in result['behavior_patterns'].values())

        if total == 0 and behavior_count == 0:
            return 'No network activity detected.'

        summary = f'Network analysis found {total} endpoints'
        if suspicious > 0:
            summary += f', {suspicious} suspicious'
        if behavior_count > 0:
            summary += f', and {behavior_count} suspicious behaviors'
        return summary + '.'


def classify_domain(domain):
    """Return (matched pattern, severity) for the worst table entry a hostname hits"""
    labels = domain.split('.')
    for severity in ('high', 'medium', 'low'):
        for suffix in sorted(SUSPICIOUS_DOMAINS.get(severity, ())):
            if domain == suffix or domain.endswith('.' + suffix):
                return suffix, severity
        for label in sorted(SUSPICIOUS_LABELS.get(severity, ())):
            if label in labels[:-1]:
                return label + '.', severity
    return None


class BehaviorScanner:
    """Structural network-behavior detection over one syntax tree"""

    def __init__(self, code, tree):
        self.code = code
        self.tree = tree
        self.behaviors = {kind: [] for kind in BEHAVIOR_KINDS}
        self.tainted = set()

    def scan(self):
        self.tainted = self._collect_tainted_names()
        for node in iter_nodes(self.tree):
            node_type = node.type
            if node_type in LOOP_TYPES:
                self._check_loop(node)
            elif node_type == 'CallExpression':
                self._check_call(node)
            elif node_type == 'Property':
                self._check_property(node)
            elif node_type == 'Literal':
                self._check_literal(node)
        return self.behaviors

    def _add(self, kind, node, description):
        line, _ = node_location(node)
        self.behaviors[kind].append({
            'type': kind,
            'severity': BEHAVIOR_SEVERITY[kind],
            'description': description,
            'match': truncate_snippet(node_source(self.code, node)),
            'line': line,
        })

    # sensitive data sources

    def _is_sensitive(self, node):
        node_type = getattr(node, 'type', '')
        if node_type == 'MemberExpression':
            name = node_name(node)
            obj = node_name(getattr(node, 'object', None))
            if name == 'document.cookie' or obj in ('localStorage', 'sessionStorage'):
                return True
            if name.startswith(('chrome.cookies', 'chrome.storage', 'chrome.history')):
                return True
            if property_name(node) in ('files', 'password'):
                return True
        elif node_type == 'NewExpression':
            return node_name(getattr(node, 'callee', None)) == 'FormData'
        elif node_type == 'Identifier':
            return node.name in self.tainted
        return False

    def _contains_sensitive(self, root):
        return any(self._is_sensitive(n) for n in iter_nodes(root))

    def _collect_tainted_names(self):
        """Variables initialised or assigned from cookie/storage/form data"""
        tainted = set()
        for node in iter_nodes(self.tree):
            if node.type == 'VariableDeclarator' and getattr(node, 'init', None) is not None:
                target, value = getattr(node, 'id', None), node.init
            elif node.type == 'AssignmentExpression':
                target, value = getattr(node, 'left', None), getattr(node, 'right', None)
            else:
                continue
            if getattr(target, 'type', '') != 'Identifier' or value is None:
                continue
            if self._contains_sensitive(value):
                tainted.add(target.name)
        return tainted

    # network calls

    def _is_network_call(self, node):
        node_type = getattr(node, 'type', '')
        callee = getattr(node, 'callee', None)
        if node_type == 'CallExpression':
            if node_name(callee) in NETWORK_CALLS:
                return True
            if getattr(callee, 'type', '') == 'MemberExpression' and property_name(callee) == 'send':
                return True
        elif node_type == 'NewExpression':
            return node_name(callee) in NETWORK_CONSTRUCTORS
        return False

    def _network_calls_in(self, root):
        return [n for n in iter_nodes(root) if self._is_network_call(n)]

    def _request_url(self, call):
        args = arguments_of(call)
        return string_value(args[0]) if args else None

    def _check_loop(self, node):
        if self._network_calls_in(getattr(node, 'body', None) or node):
            self._add('bulk', node, 'Network request issued inside a loop')

    def _check_call(self, node):
        callee = getattr(node, 'callee', None)
        name = node_name(callee)
        method = property_name(callee) if getattr(callee, 'type', '') == 'MemberExpression' else ''
        args = arguments_of(node)

        if method in ITERATION_METHODS and any(self._network_calls_in(a) for a in args):
            self._add('bulk', node, f'Network request issued from Array.{method} callback')

        if name in TIMERS and args:
            self._check_timer(node, name, args)

        if method == 'setRequestHeader' and args:
            header = (string_value(args[0]) or '').lower()
            if header in SPOOFED_HEADERS:
                self._add('stealth', node, f'Spoofs the {string_value(args[0])} request header')
            elif header.startswith('x-'):
                self._add('evasion', node, f'Adds custom header {string_value(args[0])}')

        if name.startswith('chrome.proxy') or name.startswith('browser.proxy'):
            self._add('evasion', node, 'Changes browser proxy configuration')

        if self._is_network_call(node):
            if any(self._contains_sensitive(a) for a in args):
                self._add('exfiltration', node, 'Request body built from cookie, storage or form data')

    def _check_timer(self, node, name, args):
        delay = args[1] if len(args) > 1 else None
        if delay is not None and any(
            node_name(getattr(n, 'callee', None)) == 'Math.random'
            for n in iter_nodes(delay) if n.type == 'CallExpression'
        ):
            self._add('stealth', node, 'Timer with randomized delay')

        callback_calls = self._network_calls_in(args[0])
        if not callback_calls:
            return
        periodic = name.endswith('setInterval')
        if periodic:
            self._add('bulk', node, 'Network request repeated by setInterval')
        fixed_delay = getattr(delay, 'type', '') == 'Literal' and isinstance(getattr(delay, 'value', None), (int, float))
        if not (periodic and fixed_delay and delay.value >= 1000):
            return
        # C2 needs both the fixed cadence and a ping/heartbeat/status style endpoint
        beacon_urls = [url for url in map(self._request_url, callback_calls) if url and BEACON_TOKENS.search(url)]
        if beacon_urls:
            self._add('c2', node, f'Fixed-interval beacon to {beacon_urls[0]} every {int(delay.value)}ms')

    def _check_property(self, node):
        key = getattr(node, 'key', None)
        key_name = getattr(key, 'name', None) if getattr(key, 'type', '') == 'Identifier' else string_value(key)
        if not key_name:
            return
        lowered = key_name.lower()
        if lowered in PROXY_KEYS:
            self._add('evasion', node, f'Proxy/tunnel option "{key_name}"')
        elif lowered == 'referrer':
            self._add('stealth', node, 'Overrides the request referrer')
        elif lowered == 'headers' and getattr(node.value, 'type', '') == 'ObjectExpression':
            for prop in getattr(node.value, 'properties', None) or []:
                header_key = getattr(prop, 'key', None)
                header = (getattr(header_key, 'name', None) or string_value(header_key) or '').lower()
                if header in SPOOFED_HEADERS:
                    self._add('stealth', prop, f'Spoofs the {header} request header')

    def _check_literal(self, node):
        value = string_value(node)
        if value and ALTERNATE_PROTOCOL_RE.match(value):
            self._add('evasion', node, f"Switches protocol to {value.split(':', 1)[0].lower()}")
