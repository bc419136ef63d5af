"""Cache-busting helpers shared by the build tasks.

Stylesheet and script tasks call :func:`add_hash` on each minified output.
The hashed filename is recorded in the build's manifest under the logical
name both with and without its extension. The markup task then runs
:func:`update_html_references` so that ``href="css/..."`` and ``src="js/..."``
attributes point at the hashed files.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
from typing import Dict

logger = logging.getLogger(__name__)

HASH_LENGTH = 8
MANIFEST_NAME = "manifest.json"

_CSS_REF = re.compile(r'href="css/([^"]+)"')
_JS_REF = re.compile(r'src="js/([^"]+)"')


def content_hash(content: bytes, length: int = HASH_LENGTH) -> str:
    """Return a short hex digest of ``content``."""
    return hashlib.md5(content).hexdigest()[:length]


def add_hash(ctx, out_name: str, content: bytes | str) -> str:
    """Return the hashed form of ``out_name`` and record it in ``ctx.manifest``.

    ``main.min.css`` becomes ``main.min.<hex>.css``. Two manifest entries are
    written, ``main.min.css`` and ``main.min``. A later asset with the same
    logical name replaces the earlier entries.
    """

    if isinstance(content, str):
        content = content.encode()
    digest = content_hash(content)
    base, ext = os.path.splitext(out_name)
    hashed = f"{base}.{digest}{ext}"
    ctx.manifest[out_name] = hashed
    ctx.manifest[base] = hashed
    logger.debug("Hashed %s -> %s", out_name, hashed)
    return hashed


def update_html_references(content: str, manifest: Dict[str, str]) -> str:
    """Point ``css/`` and ``js/`` references in ``content`` at hashed files.

    Only ``href="css/<name>"`` and ``src="js/<name>"`` are rewritten. Names
    missing from ``manifest`` are left as they are.
    """

    def _css(match: re.Match) -> str:
        name = match.group(1)
        if name in manifest:
            return f'href="css/{manifest[name]}"'
        return match.group(0)

    def _js(match: re.Match) -> str:
        name = match.group(1)
        if name in manifest:
            return f'src="js/{manifest[name]}"'
        return match.group(0)

    content = _CSS_REF.sub(_css, content)
    return _JS_REF.sub(_js, content)


def write_manifest(ctx) -> str:
    """Write ``ctx.manifest`` to ``manifest.json`` in the output tree."""
    os.makedirs(ctx.dist_dir, exist_ok=True)
    path = os.path.join(ctx.dist_dir, MANIFEST_NAME)
    with open(path, "w") as f:
        json.dump(ctx.manifest, f, indent=2, sort_keys=True)
    return path
