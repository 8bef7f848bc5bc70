"""
Static Analyzer
Parses extension JavaScript with esprima and matches a fixed taxonomy of
suspicious node shapes. Falls back to regex scanning when the code does not parse.
"""

import re
from collections import namedtuple

import esprima

from errors import ParseFailure
from utils import check_script_text, clamp_score, column_number, line_number, truncate_snippet
from weights import default_table

# Max depth in AST traversal to prevent runaway walks on pathological input
MAX_TRAVERSE_DEPTH = 10000

# Strict parsing; a syntax error falls through to parseModule, then to the regex scan
PARSE_OPTIONS = {'loc': True, 'range': True}

CATEGORIES = (
    'eval_usage',
    'remote_code_loading',
    'cookie_access',
    'data_exfiltration',
    'keylogging',
    'fingerprinting',
    'malware',
    'behavioral',
)

CATEGORY_NAMES = {
    'eval_usage': 'Dynamic Code Execution',
    'remote_code_loading': 'Remote Code Loading',
    'cookie_access': 'Cookie Access',
    'data_exfiltration': 'Data Exfiltration',
    'keylogging': 'Keylogging',
    'fingerprinting': 'Browser Fingerprinting',
    'malware': 'Advanced Malware',
    'behavioral': 'Behavioral Analysis',
}

CATEGORY_SEVERITY = {
    'eval_usage': 'high',
    'remote_code_loading': 'high',
    'cookie_access': 'high',
    'data_exfiltration': 'high',
    'keylogging': 'high',
    'fingerprinting': 'low',
    'malware': 'medium',
    'behavioral': 'low',
}


class ParseOutcome:
    """Result of parsing script text: either a syntax tree or a ParseFailure"""

    def __init__(self, tree=None, error=None, source_type=None):
        self.tree = tree
        self.error = error
        self.source_type = source_type

    @property
    def ok(self):
        return self.tree is not None

    @classmethod
    def success(cls, tree, source_type):
        return cls(tree=tree, source_type=source_type)

    @classmethod
    def failure(cls, error):
        return cls(error=error)


def parse_script(code):
    """
    Parse JavaScript as a classic script, then as a module

    Returns:
        ParseOutcome: never raises for bad syntax
    """
    errors = []
    for source_type, parser in (('script', esprima.parseScript), ('module', esprima.parseModule)):
        try:
            return ParseOutcome.success(parser(code, PARSE_OPTIONS), source_type)
        except Exception as e:
            errors.append(f'{source_type}: {e}')
    return ParseOutcome.failure(ParseFailure('AST parsing failed: ' + '; '.join(errors)))


def is_node(value):
    return isinstance(getattr(value, 'type', None), str)


def child_nodes(node):
    """Direct syntax-tree children of a node, in source order"""
    children = []
    for key, value in vars(node).items():
        if key in ('loc', 'range', 'type'):
            continue
        if isinstance(value, list):
            children.extend(item for item in value if is_node(item))
        elif is_node(value):
            children.append(value)
    return children


def iter_nodes(root, max_depth=MAX_TRAVERSE_DEPTH):
    """Pre-order walk over a syntax tree without recursion"""
    stack = [(root, 0)]
    while stack:
        node, depth = stack.pop()
        yield node
        if depth >= max_depth:
            continue
        for child in reversed(child_nodes(node)):
            stack.append((child, depth + 1))


def node_name(node):
    """Dotted name of an identifier or member chain (e.g. chrome.cookies.getAll)"""
    if node is None:
        return ''

    node_type = getattr(node, 'type', '')

    if node_type == 'Identifier':
        return getattr(node, 'name', '') or ''

    elif node_type == 'ThisExpression':
        return 'this'

    elif node_type == 'MemberExpression':
        obj = node_name(getattr(node, 'object', None))
        prop = property_name(node)
        return f"{obj}.{prop}" if obj and prop else ''

    return ''


def property_name(member):
    """Name of a member's property for dot access or string-literal bracket access"""
    prop = getattr(member, 'property', None)
    if prop is None:
        return ''
    if not getattr(member, 'computed', False) and getattr(prop, 'type', '') == 'Identifier':
        return prop.name
    if getattr(prop, 'type', '') == 'Literal' and isinstance(getattr(prop, 'value', None), str):
        return prop.value
    return ''


def string_value(node):
    if getattr(node, 'type', '') == 'Literal' and isinstance(getattr(node, 'value', None), str):
        return node.value
    return None


def number_value(node):
    if getattr(node, 'type', '') != 'Literal':
        return None
    value = getattr(node, 'value', None)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    return None


def is_null_literal(node):
    return getattr(node, 'type', '') == 'Literal' and getattr(node, 'raw', None) == 'null'


def arguments_of(node):
    return list(getattr(node, 'arguments', None) or [])


def node_location(node):
    loc = getattr(node, 'loc', None)
    if loc is None or loc.start is None:
        return None, None
    try:
        return int(loc.start.line), int(loc.start.column)
    except (TypeError, ValueError):
        return None, None


def node_source(code, node):
    node_range = getattr(node, 'range', None)
    if not node_range:
        return ''
    return code[int(node_range[0]):int(node_range[1])]


# ---------------------------------------------------------------------------
# Node-shape predicates
# ---------------------------------------------------------------------------

TIMER_NAMES = {'setTimeout', 'setInterval', 'window.setTimeout', 'window.setInterval'}
KEY_EVENTS = {'keydown', 'keyup', 'keypress'}
KEY_HANDLERS = {'onkeydown', 'onkeyup', 'onkeypress'}
NAVIGATOR_PROPERTIES = {'userAgent', 'platform', 'language', 'languages', 'plugins', 'mimeTypes'}
SCREEN_PROPERTIES = {'width', 'height', 'colorDepth', 'pixelDepth', 'availWidth', 'availHeight'}
NETWORK_CONSTRUCTORS = {'XMLHttpRequest', 'WebSocket', 'EventSource'}


def _callee(node):
    return node_name(getattr(node, 'callee', None))


def _callee_property(node):
    callee = getattr(node, 'callee', None)
    if getattr(callee, 'type', '') != 'MemberExpression':
        return ''
    return property_name(callee)


def _first_arg_string(node):
    args = arguments_of(node)
    return string_value(args[0]) if args else None


def _listener_event(node):
    if _callee_property(node) != 'addEventListener':
        return None
    return _first_arg_string(node)


def _timer_with_string(node):
    if _callee(node) not in TIMER_NAMES:
        return False
    args = arguments_of(node)
    if not args:
        return False
    return string_value(args[0]) is not None or getattr(args[0], 'type', '') == 'TemplateLiteral'


def _timer_delay(node):
    if _callee(node) not in TIMER_NAMES:
        return None
    args = arguments_of(node)
    return number_value(args[1]) if len(args) >= 2 else None


def _function_apply_null(node):
    args = arguments_of(node)
    return _callee_property(node) == 'apply' and bool(args) and is_null_literal(args[0])


def _script_creation(node):
    value = _first_arg_string(node)
    return _callee(node) == 'document.createElement' and value is not None and value.lower() == 'script'


def _assigned_property(node):
    left = getattr(node, 'left', None)
    if getattr(left, 'type', '') != 'MemberExpression':
        return ''
    return property_name(left)


def _inner_html_script(node):
    if _assigned_property(node) not in ('innerHTML', 'outerHTML'):
        return False
    value = string_value(getattr(node, 'right', None))
    return value is not None and '<script' in value.lower()


def _member_object(node):
    return node_name(getattr(node, 'object', None))


Rule = namedtuple('Rule', ['category', 'type', 'severity', 'test', 'describe'])


def _fixed(text):
    return lambda node: text


# Closed set of node kinds, each with its own typed predicates
NODE_RULES = {
    'CallExpression': [
        Rule('eval_usage', 'eval_call', 'high',
             lambda n: _callee(n) in ('eval', 'window.eval'),
             _fixed('Direct call to eval()')),
        Rule('eval_usage', 'timer_with_string', 'high',
             _timer_with_string,
             _fixed('setTimeout/setInterval with string argument')),
        Rule('eval_usage', 'document_write', 'medium',
             lambda n: _callee(n) in ('document.write', 'document.writeln'),
             _fixed('document.write() injects markup at parse time')),
        Rule('eval_usage', 'string_from_char_code', 'medium',
             lambda n: _callee(n) == 'String.fromCharCode',
             _fixed('String.fromCharCode obfuscation detected')),
        Rule('eval_usage', 'base64_functions', 'low',
             lambda n: _callee(n) in ('atob', 'btoa', 'window.atob', 'window.btoa'),
             _fixed('Base64 encoding/decoding function')),
        Rule('eval_usage', 'function_apply', 'medium',
             _function_apply_null,
             _fixed('Function.apply with null context')),
        Rule('remote_code_loading', 'script_creation', 'high',
             _script_creation,
             _fixed('Dynamic script element creation and src assignment')),
        Rule('data_exfiltration', 'chrome_tabs_query', 'medium',
             lambda n: _callee(n) in ('chrome.tabs.query', 'browser.tabs.query'),
             _fixed('Access to chrome.tabs.query')),
        Rule('keylogging', 'keyboard_event_listener', 'high',
             lambda n: _listener_event(n) in KEY_EVENTS,
             _fixed('Keyboard event listener attached')),
        Rule('malware', 'form_submit_listener', 'high',
             lambda n: _listener_event(n) == 'submit',
             _fixed('Form submission hijacking detected')),
        Rule('malware', 'alert_call', 'low',
             lambda n: _callee(n) in ('alert', 'confirm', 'prompt'),
             lambda n: f'Social engineering: {_callee(n)}() call'),
        Rule('malware', 'window_open', 'medium',
             lambda n: _callee(n) == 'window.open',
             _fixed('Window.open() call - potential popup abuse')),
        Rule('malware', 'fetch_call', 'medium',
             lambda n: _callee(n) in ('fetch', 'window.fetch'),
             _fixed('Fetch API call - potential data exfiltration')),
        Rule('malware', 'console_clear', 'high',
             lambda n: _callee(n) == 'console.clear',
             _fixed('Console.clear() - anti-debugging technique')),
        Rule('behavioral', 'long_timeout', 'medium',
             lambda n: (_timer_delay(n) or 0) > 10000,
             lambda n: f'Suspicious long delay: {int(_timer_delay(n))}ms'),
        Rule('behavioral', 'post_message', 'low',
             lambda n: _callee_property(n) == 'postMessage',
             _fixed('PostMessage communication')),
        Rule('behavioral', 'chrome_runtime_message', 'low',
             lambda n: _callee(n) in ('chrome.runtime.sendMessage', 'browser.runtime.sendMessage'),
             _fixed('Chrome runtime message passing')),
    ],
    'NewExpression': [
        Rule('eval_usage', 'function_constructor', 'high',
             lambda n: _callee(n) in ('Function', 'window.Function'),
             _fixed('new Function() constructor')),
        Rule('malware', 'network_request', 'medium',
             lambda n: _callee(n) in NETWORK_CONSTRUCTORS,
             lambda n: f'Network request: {_callee(n)}'),
    ],
    'AssignmentExpression': [
        Rule('remote_code_loading', 'inner_html_script', 'high',
             _inner_html_script,
             _fixed('innerHTML assignment with script tag')),
        Rule('keylogging', 'keyboard_event_property', 'high',
             lambda n: _assigned_property(n) in KEY_HANDLERS,
             _fixed('Assignment to onkeydown/onkeyup/onkeypress')),
    ],
    'MemberExpression': [
        Rule('cookie_access', 'document_cookie', 'high',
             lambda n: _member_object(n) == 'document' and property_name(n) == 'cookie',
             _fixed('Access to document.cookie')),
        Rule('cookie_access', 'chrome_cookies', 'high',
             lambda n: _member_object(n) in ('chrome.cookies', 'browser.cookies'),
             _fixed('Access to chrome.cookies API')),
        Rule('data_exfiltration', 'chrome_history', 'high',
             lambda n: _member_object(n) in ('chrome.history', 'browser.history'),
             _fixed('Access to chrome.history API')),
        Rule('data_exfiltration', 'chrome_bookmarks', 'high',
             lambda n: _member_object(n) in ('chrome.bookmarks', 'browser.bookmarks'),
             _fixed('Access to chrome.bookmarks API')),
        Rule('fingerprinting', 'navigator_properties', 'low',
             lambda n: _member_object(n) == 'navigator' and property_name(n) in NAVIGATOR_PROPERTIES,
             lambda n: f'Navigator property accessed: {property_name(n)}'),
        Rule('fingerprinting', 'screen_properties', 'low',
             lambda n: _member_object(n) == 'screen' and property_name(n) in SCREEN_PROPERTIES,
             lambda n: f'Screen property accessed: {property_name(n)}'),
        Rule('malware', 'crypto_mining', 'critical',
             lambda n: _member_object(n) in ('crypto', 'window.crypto') and property_name(n) == 'getRandomValues',
             _fixed('Cryptocurrency mining detected')),
        Rule('malware', 'storage_access', 'low',
             lambda n: _member_object(n) in ('localStorage', 'sessionStorage'),
             lambda n: f'Storage access: {_member_object(n)}'),
        Rule('malware', 'chrome_storage', 'low',
             lambda n: _member_object(n) in ('chrome.storage', 'browser.storage'),
             _fixed('Chrome storage API access')),
        Rule('behavioral', 'chrome_detection', 'low',
             lambda n: _member_object(n) == 'window' and property_name(n) == 'chrome',
             _fixed('Chrome environment detection')),
        Rule('behavioral', 'webdriver_detection', 'medium',
             lambda n: _member_object(n) == 'navigator' and property_name(n) == 'webdriver',
             _fixed('WebDriver detection (anti-automation)')),
    ],
    'Identifier': [
        Rule('malware', 'web_assembly', 'high',
             lambda n: getattr(n, 'name', None) == 'WebAssembly',
             _fixed('WebAssembly usage detected')),
    ],
    'DebuggerStatement': [
        Rule('malware', 'debugger_statement', 'high',
             lambda n: True,
             _fixed('Debugger statement - anti-debugging technique')),
    ],
}


# ---------------------------------------------------------------------------
# Regex fallback, used only when the code cannot be parsed
# ---------------------------------------------------------------------------

REGEX_PATTERNS = {
    'eval_usage': [
        r'eval\s*\(',
        r'new\s+Function\s*\(',
        r'setTimeout\s*\(\s*[\'"`]',
        r'setInterval\s*\(\s*[\'"`]',
        r'document\.write\s*\(',
        r'String\.fromCharCode',
        r'atob\s*\(',
        r'btoa\s*\(',
        r'\.apply\s*\(\s*null\s*,',
        r"\['[^'\n]*'\]\s*\+\s*\['[^'\n]*'\]",
    ],
    'remote_code_loading': [
        r'\.appendChild\s*\(\s*document\.createElement\s*\(\s*[\'"`]script[\'"`]\s*\)\s*\)',
        r'document\.createElement\s*\(\s*[\'"`]script[\'"`]\s*\)[\s\S]{0,50}\.src\s*=',
        r'\.innerHTML\s*=\s*[\'"`]<script',
    ],
    'cookie_access': [
        r'document\.cookie',
        r'chrome\.cookies\.get(?!All)',
        r'chrome\.cookies\.getAll',
    ],
    'data_exfiltration': [
        r'chrome\.history\.',
        r'chrome\.bookmarks\.',
        r'chrome\.tabs\.query',
    ],
    'keylogging': [
        r'addEventListener\s*\(\s*[\'"`]keydown[\'"`]',
        r'addEventListener\s*\(\s*[\'"`]keyup[\'"`]',
        r'addEventListener\s*\(\s*[\'"`]keypress[\'"`]',
        r'onkeydown',
        r'onkeyup',
        r'onkeypress',
    ],
    'fingerprinting': [
        r'navigator\.userAgent',
        r'navigator\.platform',
        r'navigator\.languages?\b',
        r'screen\.width',
        r'screen\.height',
        r'screen\.colorDepth',
        r'navigator\.plugins',
        r'navigator\.mimeTypes',
    ],
    'malware': [
        # crypto mining
        r'crypto\s*\.\s*getRandomValues',
        r'WebAssembly',
        r'worker\s*\.\s*postMessage',
        # form hijacking
        r'addEventListener\s*\(\s*[\'"`]submit[\'"`]',
        r'form\s*\.\s*addEventListener',
        r'input\s*\[[^\]\n]*type[^\]\n]*password[^\]\n]*\]',
        # clickjacking
        r'pointer-events\s*:\s*none',
        r'opacity\s*:\s*0(?![.\d])',
        r'visibility\s*:\s*hidden',
        # social engineering
        r'\balert\s*\(',
        r'\bconfirm\s*\(',
        r'\bprompt\s*\(',
        r'window\s*\.\s*open',
        # network
        r'XMLHttpRequest',
        r'\bfetch\s*\(',
        r'WebSocket',
        r'EventSource',
        # anti-debugging
        r'debugger\s*;',
        r'console\s*\.\s*clear',
        # persistence
        r'localStorage',
        r'sessionStorage',
        r'indexedDB',
        r'chrome\s*\.\s*storage',
        # injection
        r'innerHTML\s*=',
        r'outerHTML\s*=',
        r'insertAdjacentHTML',
    ],
    'behavioral': [
        r'setTimeout\s*\(\s*[^,]*,\s*[0-9]{4,}',
        r'setInterval\s*\(\s*[^,]*,\s*[0-9]{4,}',
        r'typeof\s*[a-zA-Z_$][a-zA-Z0-9_$]*\s*===?\s*[\'"`]undefined[\'"`]',
        r'window\s*\.\s*chrome',
        r'navigator\s*\.\s*webdriver',
        r'window\s*\.\s*phantom',
        r'postMessage\s*\(',
        r'addEventListener\s*\(\s*[\'"`]message[\'"`]',
        r'chrome\s*\.\s*runtime\s*\.\s*sendMessage',
        r'chrome\s*\.\s*runtime\s*\.\s*onMessage',
    ],
}

COMPILED_REGEX_PATTERNS = {
    category: [re.compile(p) for p in patterns]
    for category, patterns in REGEX_PATTERNS.items()
}


# Per-file taxonomy used for archive members
FILE_PATTERNS = [
    (re.compile(r'eval\s*\('), 'eval', 'dynamic_execution', 'high'),
    (re.compile(r'new\s+Function\s*\('), 'dynamic_code', 'dynamic_execution', 'high'),
    (re.compile(r'document\.cookie'), 'cookie_access', 'state_access', 'medium'),
    (re.compile(r'addEventListener\s*\(\s*[\'"`]keydown[\'"`]'), 'keylogging', 'input_capture', 'critical'),
    (re.compile(r'XMLHttpRequest|fetch\s*\('), 'network_request', 'network_call', 'medium'),
    (re.compile(r'chrome\.tabs\.query'), 'tab_access', 'state_access', 'medium'),
    (re.compile(r'chrome\.history\.'), 'history_access', 'state_access', 'high'),
    (re.compile(r'chrome\.bookmarks\.'), 'bookmark_access', 'state_access', 'high'),
    (re.compile(r'localStorage|sessionStorage'), 'storage_access', 'state_access', 'low'),
    (re.compile(r'innerHTML\s*='), 'dom_manipulation', 'structured_data', 'medium'),
]


def empty_results():
    results = {category: [] for category in CATEGORIES}
    results['risk_score'] = 0
    results['analysis_mode'] = 'ast'
    return results


class StaticAnalyzer:
    """Pattern matcher over the JavaScript syntax tree"""

    def __init__(self, weights=None, max_script_bytes=10 * 1024 * 1024):
        self.weights = weights or default_table('static')
        self.max_script_bytes = max_script_bytes

    def analyze_code(self, code):
        """
        Analyze JavaScript code for suspicious patterns

        Args:
            code (str): JavaScript source

        Returns:
            dict: Finding lists keyed by category, 'risk_score' and 'analysis_mode'.
            When parsing fails 'analysis_mode' is 'regex' and 'parse_error' is set.

        Raises:
            TypeError: code is not a string
            InputTooLarge: code exceeds the configured ceiling
        """
        check_script_text(code, self.max_script_bytes)

        results = empty_results()
        if not code:
            return results

        outcome = parse_script(code)
        if outcome.ok:
            self.analyze_ast(outcome.tree, code, results)
        else:
            results['analysis_mode'] = 'regex'
            results['parse_error'] = outcome.error.to_dict()
            for category in CATEGORIES:
                results[category] = self.detect_patterns(code, category)

        results['risk_score'] = self.calculate_risk_score(results)
        return results

    def analyze_ast(self, tree, code, results):
        """Walk the tree and record one finding per matching rule"""
        for node in iter_nodes(tree):
            for rule in NODE_RULES.get(node.type, ()):
                if not rule.test(node):
                    continue
                line, column = node_location(node)
                results[rule.category].append({
                    'category': rule.category,
                    'type': rule.type,
                    'severity': rule.severity,
                    'description': rule.describe(node),
                    'line': line,
                    'column': column,
                    'snippet': truncate_snippet(node_source(code, node)),
                })

    def detect_patterns(self, code, category):
        """Regex fallback for one category"""
        found = []
        for pattern in COMPILED_REGEX_PATTERNS[category]:
            for match in pattern.finditer(code):
                found.append({
                    'category': category,
                    'type': 'regex',
                    'severity': CATEGORY_SEVERITY[category],
                    'description': f'{CATEGORY_NAMES[category]} pattern: {pattern.pattern}',
                    'match': truncate_snippet(match.group(0)),
                    'line': line_number(code, match.start()),
                    'column': column_number(code, match.start()),
                })
        return found

    def analyze_file_patterns(self, content):
        """
        Count the per-file taxonomy in one archive member

        Returns:
            list: one threat entry per pattern type that matched
        """
        threats = []
        for pattern, threat_type, category, severity in FILE_PATTERNS:
            matches = [m.group(0) for m in pattern.finditer(content)]
            if matches:
                threats.append({
                    'type': threat_type,
                    'category': category,
                    'severity': severity,
                    'count': len(matches),
                    'matches': matches[:5],
                })
        return threats

    def calculate_risk_score(self, results):
        score = 0
        for category, weight in self.weights.items():
            score += weight * len(results.get(category) or [])
        return clamp_score(score)

    def summarize_findings(self, results):
        """Per-category counts with the first few snippets"""
        summary = []
        for category in CATEGORIES:
            findings = results.get(category) or []
            if findings:
                summary.append({
                    'category': CATEGORY_NAMES[category],
                    'count': len(findings),
                    'snippets': [f.get('match') or f.get('snippet') or '' for f in findings[:3]],
                })
        return summary
