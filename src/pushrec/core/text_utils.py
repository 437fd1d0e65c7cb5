"""Text helpers for prompt segmentation and push-safe content."""

from __future__ import annotations

import re

_ENGLISH_WORD_RE = re.compile(r"[A-Za-z]+")
_KEEP_PUNCTUATION = frozenset("，。！？：；、（）【】《》—,.!?:;\"'()[]{}<>-_+=/\\| \n\r\t")
_LABEL_PREFIXES = ("标题：", "内容：")


def _is_cjk(ch: str) -> bool:
    return "\u4e00" <= ch <= "\u9fa5"


def dedupe_strings(values: list[str]) -> list[str]:
    """Trim, drop blanks and keep the first occurrence of each value."""
    seen: set[str] = set()
    out: list[str] = []
    for raw in values:
        if not isinstance(raw, str):
            continue
        value = raw.strip()
        if value and value not in seen:
            seen.add(value)
            out.append(value)
    return out


def estimate_tokens(text: str) -> int:
    """CJK characters count as two tokens, English words as one."""
    if not text:
        return 0
    cjk = sum(1 for ch in text if _is_cjk(ch))
    words = len(_ENGLISH_WORD_RE.findall(text))
    return cjk * 2 + words


def split_text_by_tokens(text: str, max_tokens: int) -> list[str]:
    """Group lines into segments whose estimated size stays under `max_tokens`.

    A single line larger than the budget becomes its own segment.
    """
    segments: list[str] = []
    current: list[str] = []
    count = 0
    for line in text.split("\n"):
        line_tokens = estimate_tokens(line)
        if current and count + line_tokens > max_tokens:
            segments.append("\n".join(current))
            current = []
            count = 0
        current.append(line)
        count += line_tokens
    if current:
        segments.append("\n".join(current))
    return segments


def filter_special_symbols(text: str) -> str:
    """Keep CJK, ASCII letters, digits and common punctuation only."""
    return "".join(
        ch
        for ch in text
        if _is_cjk(ch) or ("a" <= ch <= "z") or ("A" <= ch <= "Z") or ("0" <= ch <= "9") or ch in _KEEP_PUNCTUATION
    )


def remove_markdown_headers(text: str) -> str:
    """Flatten `##` headings and `标题：`/`内容：` labels into plain lines."""
    out: list[str] = []
    for line in text.split("\n"):
        stripped = line.strip()
        if not stripped:
            continue
        if stripped.startswith("##"):
            heading = stripped.lstrip("#").strip()
            if heading:
                out.append(heading)
            continue
        label = next((p for p in _LABEL_PREFIXES if stripped.startswith(p)), None)
        if label is not None:
            rest = stripped[len(label):].strip()
            if rest:
                out.append(rest)
            continue
        out.append(line)
    return "\n".join(out).strip()


def extract_json_object(text: str) -> str:
    """Return the outermost `{...}` span, else a fenced json block, else the text."""
    start = text.find("{")
    end = text.rfind("}")
    if start >= 0 and end > start:
        return text[start : end + 1]
    fence = text.find("```json")
    if fence >= 0:
        body_start = fence + len("```json")
        body_end = text.find("```", body_start)
        if body_end > body_start:
            return text[body_start:body_end].strip()
    return text
