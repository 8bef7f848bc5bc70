"""
Package Analyzer
Parses packed extension containers (.crx / .zip) entirely in memory and scores
the manifest and every script member
"""

import io
import json
import struct
import zipfile
import zlib
from pathlib import PurePosixPath

from errors import InputTooLarge, MalformedContainer
from manifest_analyzer import BROAD_MATCH_PATTERNS, ManifestAnalyzer
from static_analyzer import StaticAnalyzer
from utils import clamp_score, format_bytes, sha256_bytes, string_list
from weights import default_table

CRX3_MAGIC = b'Cr24'
CRX2_MAGIC = b'Cr23'
ZIP_MAGICS = (b'PK\x03\x04', b'PK\x05\x06')

LOCAL_HEADER = struct.Struct('<4sHHHHHIIIHH')

EXTENSION_TYPES = {
    'js': 'javascript',
    'mjs': 'javascript',
    'html': 'html',
    'htm': 'html',
    'css': 'css',
    'json': 'json',
    'png': 'image',
    'jpg': 'image',
    'jpeg': 'image',
    'gif': 'image',
    'svg': 'image',
    'ico': 'image',
    'woff': 'font',
    'woff2': 'font',
    'ttf': 'font',
    'otf': 'font',
}

BINARY_TYPES = {'image', 'font'}

PACKAGE_DANGEROUS_PERMISSIONS = {
    'tabs', 'cookies', 'history', 'bookmarks', 'downloads', 'management',
    'debugger', 'proxy', 'webRequest', 'webRequestBlocking', 'declarativeNetRequest',
}


def detect_file_type(path, content):
    """Sniff a member's type by extension first, then by content"""
    suffix = PurePosixPath(path).suffix.lower().lstrip('.')
    if suffix in EXTENSION_TYPES:
        return EXTENSION_TYPES[suffix]

    if content is None:
        return 'unknown'
    head = content[:4096]
    if '<html' in head.lower() or '<!DOCTYPE' in head:
        return 'html'
    if 'function' in content or 'var ' in content or 'const ' in content:
        return 'javascript'
    if '{' in content and '}' in content and '"' in content:
        return 'json'
    return 'unknown'


def decode_text(raw):
    for encoding in ('utf-8', 'latin-1'):
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError:
            continue
    return None


class PackageAnalyzer:
    """Reads CRX/zip containers and runs the per-file taxonomy over their scripts"""

    def __init__(self, weights=None, manifest_analyzer=None, static_analyzer=None,
                 max_package_bytes=50 * 1024 * 1024, max_uncompressed_bytes=200 * 1024 * 1024,
                 verbose=True):
        self.weights = weights or default_table('package')
        self.manifest_analyzer = manifest_analyzer or ManifestAnalyzer()
        self.static_analyzer = static_analyzer or StaticAnalyzer()
        self.max_package_bytes = max_package_bytes
        self.max_uncompressed_bytes = max_uncompressed_bytes
        self.verbose = verbose

    def _log(self, message):
        if self.verbose:
            print(f"[PKG] {message}")

    def parse_container(self, data):
        """
        Validate the container header and locate the archive payload

        Args:
            data (bytes): raw container bytes

        Returns:
            dict: format, version, header_size, payload_offset

        Raises:
            InputTooLarge: container exceeds the byte ceiling
            MalformedContainer: short buffer, unknown magic or truncated header
        """
        if not isinstance(data, (bytes, bytearray, memoryview)):
            raise TypeError('Package data must be bytes')
        data = bytes(data)
        if len(data) > self.max_package_bytes:
            raise InputTooLarge(len(data), self.max_package_bytes, what='Package')

        if len(data) < 4:
            raise MalformedContainer(
                f'Container too small to contain magic number ({len(data)} bytes, minimum 4 bytes required)'
            )

        magic = data[:4]
        if magic in ZIP_MAGICS:
            return {'format': 'zip', 'version': None, 'header_size': 0, 'payload_offset': 0}

        if magic not in (CRX3_MAGIC, CRX2_MAGIC):
            raise MalformedContainer(f"Invalid container format. Expected 'Cr24' or 'Cr23', got {magic!r}")

        if len(data) < 12:
            raise MalformedContainer(f'Container header truncated ({len(data)} bytes)')

        # Same layout for every version: the header length is followed by the opaque header
        version, header_size = struct.unpack_from('<II', data, 4)
        payload_offset = 12 + header_size
        container_format = 'crx3' if magic == CRX3_MAGIC else 'crx2'

        if payload_offset > len(data):
            raise MalformedContainer(
                f'Header length {header_size} points past the end of the container ({len(data)} bytes)'
            )

        return {
            'format': container_format,
            'version': version,
            'header_size': header_size,
            'payload_offset': payload_offset,
        }

    def extract_files(self, payload):
        """
        Expand the archive payload into PackageFile dicts

        Returns:
            tuple: (files, unreadable) where unreadable lists members that failed to read

        Raises:
            MalformedContainer: the archive directory cannot be read
            InputTooLarge: declared uncompressed size exceeds the ceiling
        """
        try:
            archive = zipfile.ZipFile(io.BytesIO(payload))
        except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError, OSError) as e:
            raise MalformedContainer(f'Archive could not be read: {e}') from e

        with archive:
            members = [info for info in archive.infolist() if not info.is_dir()]
            declared = sum(info.file_size for info in members)
            if declared > self.max_uncompressed_bytes:
                raise InputTooLarge(declared, self.max_uncompressed_bytes, what='Uncompressed archive')

            files = []
            unreadable = []
            for info in members:
                try:
                    with archive.open(info) as member:
                        raw = member.read(self.max_uncompressed_bytes + 1)
                except (zipfile.BadZipFile, zlib.error, NotImplementedError, RuntimeError, OSError, EOFError) as e:
                    unreadable.append({'path': info.filename, 'error': str(e)})
                    continue

                if len(raw) > self.max_uncompressed_bytes:
                    raise InputTooLarge(len(raw), self.max_uncompressed_bytes, what=f'Archive member {info.filename}')

                suffix_type = EXTENSION_TYPES.get(PurePosixPath(info.filename).suffix.lower().lstrip('.'))
                content = None if suffix_type in BINARY_TYPES else decode_text(raw)
                files.append({
                    'path': info.filename,
                    'name': PurePosixPath(info.filename).name,
                    'size': len(raw),
                    'type': detect_file_type(info.filename, content),
                    'content': content,
                })

        return files, unreadable

    def recover_manifest(self, data):
        """
        Walk local file headers looking for manifest.json when the archive
        directory is unusable

        Returns:
            dict or None
        """
        offset = data.find(b'PK\x03\x04')
        while offset != -1 and offset + LOCAL_HEADER.size <= len(data):
            (_, _, flags, method, _, _, _, compressed_size, _,
             name_length, extra_length) = LOCAL_HEADER.unpack_from(data, offset)
            name_start = offset + LOCAL_HEADER.size
            name = data[name_start:name_start + name_length]
            body_start = name_start + name_length + extra_length

            if name == b'manifest.json':
                # Sizes live in a trailing descriptor when bit 3 is set
                body_end = len(data) if (flags & 0x08 or compressed_size == 0) else body_start + compressed_size
                raw = data[body_start:body_end]
                manifest = self._inflate_manifest(raw, method)
                if manifest is not None:
                    self._log('Recovered manifest.json from local file header')
                    return manifest

            offset = data.find(b'PK\x03\x04', offset + 4)
        return None

    def _inflate_manifest(self, raw, method):
        try:
            if method == 0:
                text = raw
            elif method == 8:
                text = zlib.decompressobj(-15).decompress(raw, self.max_uncompressed_bytes)
            else:
                return None
            manifest = json.loads(decode_text(text) or '')
        except (zlib.error, ValueError):
            return None
        return manifest if isinstance(manifest, dict) else None

    def analyze(self, data):
        """
        Analyze a packed extension

        Args:
            data (bytes): raw .crx or .zip bytes

        Returns:
            dict: manifest, files, per_file_findings, risk_score and parse_error
            (None unless the container or archive was unreadable)

        Raises:
            InputTooLarge: the container or its expanded archive exceed the ceilings
        """
        data = bytes(data) if isinstance(data, (bytearray, memoryview)) else data
        self._log(f"Parsing container ({format_bytes(len(data)) if isinstance(data, bytes) else '?'})")

        result = {
            'format': None,
            'version': None,
            'header_size': None,
            'size': len(data) if isinstance(data, bytes) else 0,
            'sha256': sha256_bytes(data) if isinstance(data, bytes) else None,
            'manifest': None,
            'manifest_analysis': None,
            'manifest_threats': [],
            'files': [],
            'file_types': {},
            'unreadable_files': [],
            'per_file_findings': [],
            'mode': 'full',
            'parse_error': None,
            'risk_score': 0,
        }

        try:
            header = self.parse_container(data)
            result.update({
                'format': header['format'],
                'version': header['version'],
                'header_size': header['header_size'],
            })
            files, unreadable = self.extract_files(data[header['payload_offset']:])
        except MalformedContainer as e:
            print(f"[!] {e.message}")
            result['parse_error'] = e.to_dict()
            result['manifest'] = self.recover_manifest(data)
            result['mode'] = 'manifest_only' if result['manifest'] is not None else 'failed'
            return self._finish(result)

        result['files'] = files
        result['unreadable_files'] = unreadable
        result['manifest'] = self._read_manifest(files, result)
        self._log(f"Extracted {len(files)} file(s), {len(unreadable)} unreadable")

        for file in files:
            result['file_types'][file['type']] = result['file_types'].get(file['type'], 0) + 1

        for file in files:
            if file['type'] != 'javascript' or file['content'] is None:
                continue
            threats = self.static_analyzer.analyze_file_patterns(file['content'])
            result['per_file_findings'].append({
                'path': file['path'],
                'threats': threats,
                'risk_score': self.calculate_file_risk_score(threats),
            })

        return self._finish(result)

    def _read_manifest(self, files, result):
        for file in files:
            if file['path'] != 'manifest.json':
                continue
            try:
                manifest = json.loads((file['content'] or '').lstrip('﻿'))
            except ValueError as e:
                print(f"[!] manifest.json is not valid JSON: {e}")
                result['parse_error'] = {'type': 'InvalidManifest', 'message': f'manifest.json is not valid JSON: {e}'}
                return None
            return manifest
        print("[!] manifest.json not found in package")
        return None

    def _finish(self, result):
        manifest = result['manifest']
        result['manifest_analysis'] = self.manifest_analyzer.analyze(manifest)
        if isinstance(manifest, dict):
            result['manifest_threats'] = self.analyze_manifest_threats(manifest)
        result['risk_score'] = self.calculate_overall_risk_score(result)
        return result

    def analyze_manifest_threats(self, manifest):
        """Package-level permission threats: dangerous = high, all-host = critical"""
        threats = []
        permissions = string_list(manifest.get('permissions'))
        hosts = string_list(manifest.get('host_permissions'))

        for permission in permissions:
            if permission in PACKAGE_DANGEROUS_PERMISSIONS:
                threats.append({'type': 'dangerous_permission', 'severity': 'high', 'permission': permission})

        for host in hosts + [p for p in permissions if p in BROAD_MATCH_PATTERNS]:
            if host in ('<all_urls>', '*://*/*'):
                threats.append({'type': 'broad_host_permission', 'severity': 'critical', 'permission': host})

        return threats

    def calculate_file_risk_score(self, threats):
        points = self.weights['severity']
        return clamp_score(sum(points.get(t['severity'], 0) for t in threats))

    def calculate_overall_risk_score(self, result):
        per_file = result['per_file_findings']
        mean_file = sum(f['risk_score'] for f in per_file) / len(per_file) if per_file else 0
        manifest_score = result['manifest_analysis']['risk_score'] if result['manifest_analysis'] else 0
        return clamp_score(self.weights['file_factor'] * mean_file + self.weights['manifest_factor'] * manifest_score)
