from __future__ import annotations

import re

_FILE_HEADER_RE = re.compile(r"^diff --git a/(\S+) b/(\S+)")

NON_CODE_EXTENSIONS = {
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".zip",
    ".gz",
    ".lock",
}


def is_code_file(file_name: str) -> bool:
    return not any(file_name.lower().endswith(ext) for ext in NON_CODE_EXTENSIONS)


def extract_added_code(diff_text: str) -> str:
    """Return the lines a unified diff adds, grouped under a header per file.

    Removed lines, hunk headers and files that are not code (images, fonts,
    lock files) are dropped.
    """
    out: list[str] = []
    current: str | None = None
    skip = False

    for line in (diff_text or "").splitlines():
        header = _FILE_HEADER_RE.match(line)
        if header:
            current = header.group(2)
            skip = not is_code_file(current)
            if not skip:
                out.append(f"\n// File: {current}")
            continue
        if skip or current is None:
            continue
        if line.startswith("+") and not line.startswith("+++"):
            out.append(line[1:])

    return "\n".join(out).strip("\n")


def truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "\n... [code truncated]"
