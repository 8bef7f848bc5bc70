"""
Utility functions for the analyzer
"""

import json
import math
import hashlib
from pathlib import Path
from datetime import datetime

from errors import InputTooLarge

SNIPPET_LIMIT = 100


def clamp_score(value):
    """Round and clamp a score to the 0-100 integer range"""
    return int(min(100, max(0, round(value))))


def string_list(value):
    """Manifest list field reduced to its string entries; anything else is empty"""
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


def dict_list(value):
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


def shannon_entropy(text):
    """Shannon entropy in bits per character"""
    if not text:
        return 0.0

    counts = {}
    for char in text:
        counts[char] = counts.get(char, 0) + 1

    length = len(text)
    entropy = 0.0
    for count in counts.values():
        p = count / length
        entropy -= p * math.log2(p)

    return entropy


def truncate_snippet(text, limit=SNIPPET_LIMIT):
    if len(text) > limit:
        return text[:limit - 3] + '...'
    return text


def line_number(text, index):
    """1-based line of a character offset"""
    return text.count('\n', 0, index) + 1


def column_number(text, index):
    """0-based column of a character offset"""
    return index - (text.rfind('\n', 0, index) + 1)


def check_script_text(code, limit):
    """Validate script input shared by the text analyzers"""
    if not isinstance(code, str):
        raise TypeError('Code must be a string')
    if len(code) > limit:
        raise InputTooLarge(len(code), limit, what='Code')


def sha256_bytes(data):
    return hashlib.sha256(data).hexdigest()


def save_json(data, file_path):
    """Save data to JSON file"""
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)


def get_timestamp():
    """Get current timestamp"""
    return datetime.now().isoformat()


def format_bytes(bytes_size):
    """Format bytes to human readable"""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if bytes_size < 1024:
            return f"{bytes_size:.2f} {unit}"
        bytes_size /= 1024
    return f"{bytes_size:.2f} TB"
