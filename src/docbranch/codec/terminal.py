"""Cleanup of decorated Dolt CLI output.

Dolt colours hashes and branch names even when stdout is a pipe on some
platforms.  The escape sequences show up either in full (``ESC[33m``) or
with the ESC byte already lost (``[33m``), and ``dolt log`` appends ref
annotations such as ``(HEAD -> main)`` after a hash.
"""

from __future__ import annotations

import re

# ESC-prefixed CSI sequences plus two-byte ESC sequences like ESC ( B
_ESC_SEQUENCE = re.compile(r"\x1b(?:\[[0-9;?]*[ -/]*[@-~]|[()][A-Za-z0-9]|[@-Z\\-_])")
# CSI remains after the ESC byte was stripped; only SGR ("m") is safe to match
_BARE_SGR = re.compile(r"\[(?:\d{1,3}(?:;\d{1,3})*)?m")
# Ref annotation right after the hash that opens a log line; hashes are
# base32 and carry at least one digit, plain words do not
_REF_ANNOTATION = re.compile(
    r"^((?:commit[ \t]+)?(?=[0-9a-v]*[0-9])[0-9a-v]{7,40})[ \t]+\([^()\n]*\)",
    re.MULTILINE,
)


def strip_control_sequences(text: str) -> str:
    """Remove colour codes and hash ref annotations from CLI output.

    Examples:
        >>> strip_control_sequences("\\x1b[33mabcd1234\\x1b[m")
        'abcd1234'
        >>> strip_control_sequences("abcd1234 (HEAD -> main) Initial commit")
        'abcd1234 Initial commit'
    """
    if not text:
        return text

    cleaned = _ESC_SEQUENCE.sub("", text)
    cleaned = _BARE_SGR.sub("", cleaned)
    cleaned = _REF_ANNOTATION.sub(r"\1", cleaned)
    return cleaned
