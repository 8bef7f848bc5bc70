"""
Obfuscation Detector
Scores how deliberately a script has been made hard to read: character entropy,
pattern density per 1,000 characters and minification signals.
"""

import re
from typing import Dict, List

from utils import check_script_text, clamp_score, shannon_entropy
from weights import default_table

# Lazy spans are bounded so adversarial input can't trigger quadratic scans
SPAN = r'[\s\S]{0,500}?'

OBFUSCATION_PATTERNS = {
    'string_concatenation': [
        r'[\'"`]\s*\+\s*[\'"`]',
        r'String\.fromCharCode\s*\(',
        r'\.charCodeAt\s*\(',
        r'\.charAt\s*\(',
        r'\.substring\s*\(',
        r'\.substr\s*\(',
        r'\.slice\s*\(',
    ],
    'encoding': [
        r'\batob\s*\(',
        r'\bbtoa\s*\(',
        r'decodeURIComponent\s*\(',
        r'encodeURIComponent\s*\(',
        r'\bunescape\s*\(',
        r'\bescape\s*\(',
    ],
    'array_manipulation': [
        r'\[\s*[\'"`][^\'"`\n]+[\'"`]\s*\]',
        r'\.join\s*\(\s*[\'"`]\s*[\'"`]\s*\)',
        r'\.split\s*\(\s*[\'"`]\s*[\'"`]\s*\)',
    ],
    'uncommon_features': [
        r'\(\s*\+\s*\+\s*!',
        r'!\s*\+\s*\[\]',
        r'\[\]\s*\[\s*\+\s*\[\]\s*\]',
        r'\(\s*\d+\s*,\s*\d+\s*\)',
        r'~~[^;\n]+',
        r'>>>\s*0',
    ],
    'escape_sequences': [
        r'\\x[0-9a-fA-F]{2}',
        r'\\u[0-9a-fA-F]{4}',
        r'\\[0-7]{3}',
    ],
    'hex_literals': [
        r'\b0x[0-9a-fA-F]+',
    ],
}

COMPILED_PATTERNS = {
    category: [re.compile(p) for p in patterns]
    for category, patterns in OBFUSCATION_PATTERNS.items()
}

TECHNIQUE_PATTERNS = {
    'jsfuck': [
        r'\[\]\[\s*\+\s*\[\]\s*\]',
        r'!\s*\+\s*\[\]',
        r'\(\s*\+\s*\+\s*!',
        r'\[\]\s*\[\s*!\s*\+\s*\[\]\s*\]',
        r'\[\]\s*\[\s*\+\s*!\s*\[\]\s*\]',
        r'\+\s*\[\]\s*\+\s*\[\]',
        r'\[\]\s*\+\s*\[\]\s*\+\s*\[\]',
    ],
    'aaencode': [
        r'ﾟωﾟﾉ\s*=\s*/[^/\n]+/',
        r'ﾟДﾟ\s*\[ﾟωﾟﾉ\]',
        r'ﾟΘﾟﾉ\s*=\s*[\'"`][^\'"`]*[\'"`]',
        r'ﾟｰﾟﾉ\s*=\s*[\'"`][^\'"`]*[\'"`]',
    ],
    'control_flow': [
        r'switch\s*\(\s*[^)]+\s*\)\s*\{' + SPAN + r'case\s+\d+:',
        r'while\s*\(\s*(?:true|!0|1)\s*\)\s*\{' + SPAN + r'break\s*;',
        r'for\s*\(\s*[^;]*;\s*[^;]*;\s*[^)]*\)\s*\{' + SPAN + r'continue\s*;',
        r'if\s*\(\s*Math\.random\s*\(\s*\)\s*>\s*0\.5\s*\)',
    ],
    'dead_code': [
        r'if\s*\(\s*(?:false|0|!1|null|undefined)\s*\)\s*\{',
    ],
    'variable_names': [
        r'var\s+[a-zA-Z_$][\w$]*\s*=\s*[a-zA-Z_$][\w$]*\s*\+\s*[\'"`][^\'"`]*[\'"`]',
        r'var\s+[a-zA-Z_$][\w$]{15,}\s*=',
        r'function\s+[a-zA-Z_$][\w$]{15,}\s*\(',
        r'\b_0x[0-9a-f]{4,}\b',
    ],
    'function_calls': [
        r'window\s*\[\s*[\'"`][^\'"`]*[\'"`]\s*\]\s*\(',
        r'this\s*\[\s*[\'"`][^\'"`]*[\'"`]\s*\]\s*\(',
        r'eval\s*\(\s*[\'"`][^\'"`]*[\'"`]\s*\+\s*[^)]+\)',
        r'new\s+Function\s*\(\s*[\'"`][^\'"`]*[\'"`]\s*\)',
    ],
    'strings': [
        r'String\.fromCharCode\s*\(\s*\d+\s*,\s*\d+',
        r'[\'"`][^\'"`\n]*[\'"`]\s*\.\s*split\s*\(\s*[\'"`]\s*[\'"`]\s*\)\s*\.\s*map\s*\(',
        r'[\'"`][^\'"`\n]*[\'"`]\s*\.\s*replace\s*\(\s*/[^/\n]+/[^)]*\)',
        r'atob\s*\(\s*[\'"`][^\'"`]*[\'"`]\s*\)',
        r'btoa\s*\(\s*[\'"`][^\'"`]*[\'"`]\s*\)',
    ],
    'anti_debugging': [
        r'set(?:Interval|Timeout)\s*\(\s*function\s*\(\s*\)\s*\{' + SPAN + r'debugger',
        r'console\.clear\s*\(\s*\)',
        r'\bdebugger\s*;',
    ],
}

COMPILED_TECHNIQUES = {
    name: [re.compile(p) for p in patterns]
    for name, patterns in TECHNIQUE_PATTERNS.items()
}

# (minimum matches, display name, severity, description when detected)
TECHNIQUE_RULES = {
    'jsfuck': (6, 'JSFuck Obfuscation', 'high',
               'JSFuck obfuscation detected - code uses only 6 characters: []()!+'),
    'aaencode': (1, 'AAEncode Obfuscation', 'high',
                 'AAEncode obfuscation detected - code uses Japanese characters to hide functionality'),
    'control_flow': (3, 'Control Flow Obfuscation', 'medium',
                     'Control flow obfuscation detected - code uses complex branching to hide execution path'),
    'dead_code': (1, 'Dead Code', 'medium',
                  'Dead code detected - code contains unreachable blocks that may hide malicious functionality'),
    'variable_names': (4, 'Variable Name Obfuscation', 'low',
                       'Variable name obfuscation detected - code uses obfuscated or very long variable/function names'),
    'function_calls': (3, 'Function Call Obfuscation', 'medium',
                       'Function call obfuscation detected - code uses dynamic function calls to hide behavior'),
    'strings': (4, 'String Obfuscation', 'low',
                'String obfuscation detected - code uses complex string manipulation to hide data'),
    'anti_debugging': (1, 'Anti-Debugging', 'high',
                       'Anti-debugging techniques detected - code may be trying to prevent analysis'),
}

STRING_LITERAL_RE = re.compile(r'["\']([^"\'\n]{50,})["\']')


class ObfuscationDetector:
    """Entropy and pattern-density based obfuscation scoring"""

    def __init__(self, weights=None, max_script_bytes=10 * 1024 * 1024):
        self.weights = weights or default_table('obfuscation')
        self.max_script_bytes = max_script_bytes

    def analyze_code(self, code: str) -> Dict:
        """
        Analyze code for obfuscation

        Args:
            code: JavaScript source

        Returns:
            dict with obfuscation_detected, obfuscation_score, entropy,
            is_minified, techniques and supporting context
        """
        check_script_text(code, self.max_script_bytes)

        if not code.strip():
            return {
                'obfuscation_detected': False,
                'obfuscation_score': 0,
                'entropy': 0.0,
                'is_minified': False,
                'techniques': [],
                'specific_techniques': {},
                'high_entropy_strings': [],
                'pattern_counts': {category: 0 for category in OBFUSCATION_PATTERNS},
                'context': [],
                'suspicious_patterns': [],
                'code_length': len(code),
                'explanation': self.generate_explanation(False, 0, [], False),
            }

        entropy = shannon_entropy(code)
        pattern_counts = self.detect_obfuscation_patterns(code)
        is_minified = self.is_code_minified(code)
        specific = self.detect_specific_techniques(code)

        score, context, suspicious_patterns = self.calculate_obfuscation_score(
            entropy, pattern_counts, is_minified, len(code)
        )
        detected = score > self.weights['detection_threshold']

        for info in specific.values():
            if info['detected']:
                context.append(info['description'])

        return {
            'obfuscation_detected': detected,
            'obfuscation_score': score,
            'entropy': round(entropy, 4),
            'is_minified': is_minified,
            'techniques': self.summarize_techniques(pattern_counts, entropy, is_minified, specific),
            'specific_techniques': specific,
            'high_entropy_strings': self.detect_high_entropy_strings(code),
            'pattern_counts': pattern_counts,
            'context': context,
            'suspicious_patterns': suspicious_patterns,
            'code_length': len(code),
            'explanation': self.generate_explanation(detected, score, context, is_minified),
        }

    def detect_obfuscation_patterns(self, code: str) -> Dict[str, int]:
        return {
            category: sum(len(p.findall(code)) for p in patterns)
            for category, patterns in COMPILED_PATTERNS.items()
        }

    def is_code_minified(self, code: str) -> bool:
        """Two of three signals: few newlines, little whitespace, mostly long lines"""
        length = len(code)
        newline_ratio = code.count('\n') / length
        whitespace_ratio = sum(1 for c in code if c.isspace()) / length
        lines = code.split('\n')
        long_line_ratio = sum(1 for line in lines if len(line) > 100) / max(1, len(lines))

        indicators = 0
        if newline_ratio < 0.01:
            indicators += 1
        if whitespace_ratio < 0.15:
            indicators += 1
        if long_line_ratio > 0.5:
            indicators += 1
        return indicators >= 2

    def calculate_obfuscation_score(self, entropy, pattern_counts, is_minified, code_length):
        score = 0
        context = []

        for breakpoint, points in self.weights['entropy_breakpoints']:
            if entropy > breakpoint:
                score += points
                context.append(f'Entropy {entropy:.2f} exceeds {breakpoint}')
                break

        pattern_score = 0
        suspicious_patterns = []
        pattern_weights = self.weights['patterns']
        for category, count in pattern_counts.items():
            if count <= 0:
                continue
            density = count * 1000 / code_length
            for floor, factor in self.weights['density_tiers']:
                if density > floor:
                    pattern_score += pattern_weights[category] * factor
                    suspicious_patterns.append(
                        f'{category}: {density:.1f} matches/1k chars (x{factor})'
                    )
                    break

        score += min(self.weights['pattern_cap'], pattern_score)

        if is_minified:
            score += self.weights['minification_bonus']
            context.append('Code appears to be minified')

        return clamp_score(score), context, suspicious_patterns

    def detect_specific_techniques(self, code: str) -> Dict[str, Dict]:
        techniques = {}
        for name, patterns in COMPILED_TECHNIQUES.items():
            minimum, _, _, description = TECHNIQUE_RULES[name]
            matches = sum(len(p.findall(code)) for p in patterns)
            detected = matches >= minimum
            techniques[name] = {
                'detected': detected,
                'matches': matches,
                'description': description if detected else f'No {name.replace("_", " ")} pattern detected',
            }
        return techniques

    def summarize_techniques(self, pattern_counts, entropy, is_minified, specific) -> List[Dict]:
        techniques = []

        if entropy > 5.5:
            techniques.append({
                'name': 'High Entropy',
                'description': 'Code has high entropy, suggesting it may be packed or encrypted.',
                'severity': 'high',
            })

        if pattern_counts['encoding'] > 3:
            techniques.append({
                'name': 'Encoding/Decoding',
                'description': f"Uses encoding/decoding functions ({pattern_counts['encoding']} matches).",
                'severity': 'medium',
            })

        if pattern_counts['string_concatenation'] > 10:
            techniques.append({
                'name': 'String Manipulation',
                'description': 'Builds strings from smaller parts, possibly to hide URLs or keywords '
                               f"({pattern_counts['string_concatenation']} matches).",
                'severity': 'low',
            })

        if pattern_counts['array_manipulation'] > 1:
            techniques.append({
                'name': 'Array Manipulation',
                'description': f"Uses array manipulation patterns ({pattern_counts['array_manipulation']} matches).",
                'severity': 'medium',
            })

        if pattern_counts['uncommon_features'] > 0:
            techniques.append({
                'name': 'Uncommon JS Features',
                'description': f"Uses uncommon JavaScript constructs ({pattern_counts['uncommon_features']} matches).",
                'severity': 'high',
            })

        if pattern_counts['escape_sequences'] > 5:
            techniques.append({
                'name': 'Hex/Unicode Escaping',
                'description': f"Uses hex or unicode escape sequences ({pattern_counts['escape_sequences']} matches).",
                'severity': 'medium',
            })

        if pattern_counts['hex_literals'] > 0:
            techniques.append({
                'name': 'Hexadecimal Literals',
                'description': f"Uses hexadecimal number literals ({pattern_counts['hex_literals']} matches).",
                'severity': 'low',
            })

        if is_minified:
            techniques.append({
                'name': 'Minification',
                'description': 'Code is minified, which can make it harder to analyze.',
                'severity': 'low',
            })

        for name, info in specific.items():
            if info['detected']:
                _, display, severity, description = TECHNIQUE_RULES[name]
                techniques.append({'name': display, 'description': description, 'severity': severity})

        return techniques

    @staticmethod
    def detect_high_entropy_strings(code: str, threshold: float = 4.5) -> List[Dict]:
        """Long string literals whose entropy suggests encoded payloads"""
        findings = []
        for match in STRING_LITERAL_RE.finditer(code):
            value = match.group(1)
            entropy = shannon_entropy(value)
            if entropy < threshold:
                continue
            findings.append({
                'entropy': round(entropy, 2),
                'length': len(value),
                'is_base64_like': bool(re.fullmatch(r'[A-Za-z0-9+/=]+', value)),
                'is_hex_like': bool(re.fullmatch(r'[0-9a-fA-F]+', value)),
                'preview': value[:100] + '...' if len(value) > 100 else value,
                'position': match.start(),
                'severity': 'high' if entropy >= 5.5 else 'medium',
            })
        return findings

    @staticmethod
    def generate_explanation(detected, score, context, is_minified):
        if not detected:
            if is_minified:
                return (f'Code appears to be minified but not obfuscated (score: {score}/100). '
                        'Minification is common in production extensions and is not inherently suspicious.')
            return (f'No significant obfuscation detected (score: {score}/100). '
                    'Code appears to be in normal, readable format.')

        explanation = f'Obfuscation detected (score: {score}/100). '
        if is_minified:
            explanation += ('While the code is minified (common in production), '
                            'it also shows signs of deliberate obfuscation: ')
        else:
            explanation += 'The code shows signs of deliberate obfuscation: '
        if context:
            explanation += ', '.join(context) + '. '
        explanation += 'This may indicate an attempt to hide malicious functionality.'
        return explanation
