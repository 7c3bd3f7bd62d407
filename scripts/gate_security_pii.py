#!/usr/bin/env python3
"""Security & PII gate for source files.

Fails if:
- print( found in runtime code (src/**)
- Logging calls mention message text, sender addresses or pairing codes
  without going through redaction

Usage:
    python scripts/gate_security_pii.py
"""

import re
import sys
from pathlib import Path

# Keywords that must not appear in logger calls without redaction
SENSITIVE_KEYWORDS = (
    "payload",
    "request.body",
    "body_bytes",
    "request.json",
    "msg.text",
    "content.text",
    "push_name",
    "remote_jid",
    "chat_id",
    "sender",
    "phone",
    "pairing_token",
)

PRINT_PATTERN = re.compile(r"\bprint\s*\(")

# logger.info/debug/warning/error/critical/exception(...)
LOGGER_CALL_PATTERN = re.compile(
    r"logger\.(debug|info|warning|error|critical|exception)\s*\("
)

REDACTION_PATTERNS = (
    "safe_log_context",
    "redact_value",
    "redact_string",
    "id_prefix",
)


def check_file(filepath: Path) -> list[str]:
    """Check a single file for violations. Returns list of error messages."""
    errors = []
    try:
        content = filepath.read_text(encoding="utf-8")
    except UnicodeDecodeError:
        return []

    for lineno, line in enumerate(content.splitlines(), start=1):
        stripped = line.lstrip()
        if stripped.startswith("#"):
            continue

        code_part = line.split("#")[0] if "#" in line else line
        if PRINT_PATTERN.search(code_part):
            errors.append(f"{filepath}:{lineno}: print() not allowed in runtime code")

        if LOGGER_CALL_PATTERN.search(line):
            line_lower = line.lower()
            for keyword in SENSITIVE_KEYWORDS:
                if keyword in line_lower and not any(rp in line for rp in REDACTION_PATTERNS):
                    errors.append(
                        f"{filepath}:{lineno}: logger call with '{keyword}' "
                        "must use redaction (safe_log_context/redact_value)"
                    )

    return errors


def find_src_dir() -> Path | None:
    src_dir = Path("src")
    if not src_dir.exists():
        src_dir = Path(__file__).parent.parent / "src"
    return src_dir if src_dir.exists() else None


def main() -> int:
    """Run gate check on src directory."""
    src_dir = find_src_dir()
    if src_dir is None:
        sys.stderr.write("Error: src directory not found\n")
        return 1

    all_errors: list[str] = []
    for pyfile in sorted(src_dir.rglob("*.py")):
        all_errors.extend(check_file(pyfile))

    if all_errors:
        sys.stderr.write("PII gate FAILED - Security/PII violations found:\n")
        for err in all_errors:
            sys.stderr.write(f"  {err}\n")
        return 1

    sys.stdout.write("PII gate PASSED - No security/PII violations found\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
