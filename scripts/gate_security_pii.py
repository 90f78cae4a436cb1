#!/usr/bin/env python3
"""Security & PII gate for source files.

Fails if:
- print( found in runtime code (src/**)
- Logging calls mention reply tokens, user ids, bodies, message text or
  credentials without going through redaction

Usage:
    python scripts/gate_security_pii.py
"""

import re
import sys
from pathlib import Path

# Keywords that must not appear in logger calls without redaction
SENSITIVE_KEYWORDS = (
    "raw_body",
    "body_bytes",
    "reply_token",
    "reply_handle.token",
    "user_id",
    "access_token",
    "credential.token",
    "channel_secret",
    "content.body",
    "payloads",
)

# Pattern for print statements
PRINT_PATTERN = re.compile(r"\bprint\s*\(")

# Pattern for logger calls: logger.info/debug/warning/error/critical(...)
LOGGER_CALL_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\("
)

# Patterns that indicate proper redaction usage
REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
    "hash_identifier",
)


def _logger_call_text(lines: list[str], start: int) -> str:
    """Join a logger call spanning several lines, up to its closing paren."""
    depth = 0
    parts = []
    for line in lines[start:]:
        code = line.split("#")[0]
        parts.append(code)
        depth += code.count("(") - code.count(")")
        if depth <= 0:
            break
    return "\n".join(parts)


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    errors = []
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []  # Skip binary files

    lines = content.splitlines()

    for index, line in enumerate(lines):
        lineno = index + 1
        stripped = line.lstrip()

        # Skip comments
        if stripped.startswith("#"):
            continue

        code_part = line.split("#")[0]
        if PRINT_PATTERN.search(code_part):
            errors.append(f"{filepath}:{lineno}: print() not allowed in runtime code")

        if LOGGER_CALL_PATTERN.search(code_part):
            call_text = _logger_call_text(lines, index)
            call_lower = call_text.lower()
            has_redaction = any(rp in call_text for rp in REDACTION_PATTERNS)
            for keyword in SENSITIVE_KEYWORDS:
                if keyword in call_lower and not has_redaction:
                    errors.append(
                        f"{filepath}:{lineno}: logger call with '{keyword}' "
                        "must use redaction (safe_log_context/hash_identifier)"
                    )

    return errors


def main() -> int:
    """Run gate check on src directory."""
    src_dir = Path("src")

    if not src_dir.exists():
        # Try from project root
        src_dir = Path(__file__).parent.parent / "src"

    if not src_dir.exists():
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []

    for pyfile in src_dir.rglob("*.py"):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("PII gate FAILED - violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED - no violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
