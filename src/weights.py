"""
Scoring tables for every analyzer

Absolute values are calibration constants; only their relative ordering and
cap behaviour matter. Bump WEIGHTS_VERSION whenever a value changes so stored
results can be traced back to the table that produced them.
"""

import copy

WEIGHTS_VERSION = '2024.1'

MANIFEST_WEIGHTS = {
    'permissions': {'dangerous': 10, 'critical': 15, 'moderate': 2, 'cap': 40},
    'content_scripts': {'per_script': 2, 'broad': 10, 'early': 5, 'cap': 20},
    'csp': {'per_directive': 5, 'cap': 15},
    'external_connections': {'enabled': 5, 'broad': 5, 'cap': 10},
    'background_persistence': {'persistent': 5, 'cap': 5},
    'host_permissions': {'per_host': 1, 'per_host_cap': 5, 'broad': 5, 'cap': 10, 'medium_count': 5},
    'invalid_manifest_score': 100,
}

STATIC_WEIGHTS = {
    'eval_usage': 25,
    'remote_code_loading': 25,
    'cookie_access': 10,
    'data_exfiltration': 15,
    'keylogging': 20,
    'fingerprinting': 5,
    'malware': 30,
    'behavioral': 15,
}

OBFUSCATION_WEIGHTS = {
    'entropy_breakpoints': [(5.5, 40), (5.0, 25), (4.5, 10)],
    'patterns': {
        'string_concatenation': 5,
        'encoding': 15,
        'array_manipulation': 8,
        'uncommon_features': 15,
        'escape_sequences': 12,
        'hex_literals': 2,
    },
    'density_tiers': [(5, 1.0), (1, 0.7), (0, 0.3)],
    'pattern_cap': 50,
    'minification_bonus': 10,
    'detection_threshold': 50,
}

NETWORK_WEIGHTS = {
    'domain': {'high': 25, 'medium': 15, 'low': 5},
    'url': {'high': 20, 'medium': 10, 'low': 5},
    'request_pattern': 5,
}

PACKAGE_WEIGHTS = {
    'severity': {'critical': 25, 'high': 15, 'medium': 10, 'low': 5},
    'file_factor': 0.3,
    'manifest_factor': 0.7,
}

HEURISTIC_WEIGHTS = {
    'indicators': {
        # manifest
        'dangerous_permissions': 20,
        'broad_host_permissions': 15,
        'suspicious_content_scripts': 25,
        'suspicious_file_names': 10,
        'broad_early_injection': 30,
        # static
        'dynamic_code_execution': 35,
        'remote_code_loading': 30,
        'keylogging': 40,
        'data_exfiltration': 30,
        'fingerprinting': 10,
        'anti_debugging': 25,
        'persistence_mechanisms': 15,
        'environment_detection': 10,
        'long_delays': 5,
        # obfuscation
        'high_obfuscation': 30,
        # network
        'suspicious_network_endpoints': 20,
        'bulk_requests': 20,
        'stealth_requests': 15,
        'c2_communication': 35,
        'evasion_techniques': 20,
        # package
        'archive_malware': 25,
        'unreadable_files': 15,
        # code statistics
        'high_complexity': 15,
        'unusual_patterns': 20,
        'suspicious_naming': 25,
        'stealth_behavior': 30,
        'entropy_anomalies': 35,
        'frequency_anomalies': 20,
        'distribution_anomalies': 15,
        'permission_mismatch': 40,
        'functionality_mismatch': 35,
        'timing_anomalies': 25,
    },
    'thresholds': {'suspicious': 30, 'malicious': 60, 'critical': 80},
    'statistics': {
        'entropy': 7.5,
        'frequency_anomaly': 0.7,
        'distribution_anomaly': 0.6,
        'cyclomatic_complexity': 20,
        'nesting_depth': 8,
    },
}

CLASSIFIER_WEIGHTS = {
    'components': {
        'manifest': 0.20,
        'static': 0.30,
        'obfuscation': 0.20,
        'network': 0.15,
        'heuristic': 0.15,
    },
    # Checked top-down; a score equal to a boundary takes the worse level.
    'levels': [(80, 'critical'), (60, 'high'), (40, 'medium'), (20, 'low'), (0, 'safe')],
    'heuristic_category': {'score_above': 30, 'indicators_above': 2},
}

_TABLES = {
    'manifest': MANIFEST_WEIGHTS,
    'static': STATIC_WEIGHTS,
    'obfuscation': OBFUSCATION_WEIGHTS,
    'network': NETWORK_WEIGHTS,
    'package': PACKAGE_WEIGHTS,
    'heuristic': HEURISTIC_WEIGHTS,
    'classifier': CLASSIFIER_WEIGHTS,
}


def table_names():
    return sorted(_TABLES)


def default_table(name):
    """Return a private copy of a default table so callers can't mutate it."""
    if name not in _TABLES:
        raise KeyError(f'Unknown weight table: {name}')
    return copy.deepcopy(_TABLES[name])


def merge_table(base, override):
    """Recursively merge override values into a copy of base."""
    merged = copy.deepcopy(base)
    for key, value in (override or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_table(merged[key], value)
        else:
            merged[key] = value
    return merged
