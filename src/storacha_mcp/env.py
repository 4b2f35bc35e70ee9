""".env support for the storage settings.

Values are applied to the environment without overriding it:
1. Existing environment variables always win
2. .env in the current working directory
3. .env in the config directory (~/.config/storacha-mcp/.env)

Delegation proofs are long base64 blobs and are often pasted wrapped, so a
quoted value may span several lines:

    DELEGATION="mAYIEAJMO...
    ...EaGNhbg"

The line breaks are kept; the delegation parser drops whitespace.
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Dict, Iterator, List, Tuple

logger = logging.getLogger(__name__)

_KEY = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_QUOTES = ("'", '"')


def _strip_inline_comment(value: str) -> str:
    # "#" only starts a comment after whitespace, base64 never contains one
    match = re.search(r"\s#", value)
    return value[: match.start()].rstrip() if match else value


def _entries(path: Path) -> Iterator[Tuple[int, str, str]]:
    """Yield (line number, key, raw value) with quoted values still joined."""
    lines = path.read_text(encoding="utf-8").splitlines()
    i = 0
    while i < len(lines):
        lineno, line = i + 1, lines[i].strip()
        i += 1
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export "):].lstrip()

        key, sep, value = line.partition("=")
        key, value = key.strip(), value.strip()
        if not sep or not _KEY.match(key):
            logger.debug("%s:%d: skipping malformed line", path, lineno)
            continue

        quote = value[:1]
        if quote in _QUOTES and not (len(value) >= 2 and value.endswith(quote)):
            parts: List[str] = [value]
            while i < len(lines):
                parts.append(lines[i].rstrip())
                i += 1
                if parts[-1].endswith(quote):
                    break
            else:
                logger.warning("%s:%d: unterminated quoted value for %s", path, lineno, key)
                continue
            value = "\n".join(parts)

        yield lineno, key, value


def parse_env_file(path: Path) -> Dict[str, str]:
    """Parse a .env file into key-value pairs.

    Supports comments, blank lines, `export KEY=value`, inline `# comments`
    after unquoted values and single or double quoted values, which may span
    lines. Malformed lines are skipped.
    """
    result: Dict[str, str] = {}
    if not path.is_file():
        return result

    for _, key, value in _entries(path):
        if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
            value = value[1:-1]
        else:
            value = _strip_inline_comment(value)
        result[key] = value

    return result


def load_env_files(config_dir: Path) -> None:
    """Load .env files into the environment without overriding it."""
    combined: Dict[str, str] = {}
    for env_file in (config_dir / ".env", Path.cwd() / ".env"):
        combined.update(parse_env_file(env_file))

    for key, value in combined.items():
        if key not in os.environ:
            os.environ[key] = value
