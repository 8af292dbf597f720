# Copyright (c) 2025 sprouee
import html
from typing import List, Optional


def levenshtein_distance(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def calculate_string_similarity(a: Optional[str], b: Optional[str]) -> float:
    """Похожесть строк 0..1 без учёта регистра; пустая строка с любой даёт 0."""
    if a is None or b is None:
        return 0.0
    a, b = a.strip().lower(), b.strip().lower()
    if not a or not b:
        return 0.0
    max_len = max(len(a), len(b))
    return 1.0 - levenshtein_distance(a, b) / max_len


def full_name(first_name: Optional[str], last_name: Optional[str]) -> str:
    return " ".join(part.strip() for part in (first_name, last_name) if part and part.strip())


def calculate_name_similarity(
    first_name: Optional[str],
    last_name: Optional[str],
    other_first_name: Optional[str],
    other_last_name: Optional[str],
) -> float:
    return calculate_string_similarity(
        full_name(first_name, last_name),
        full_name(other_first_name, other_last_name),
    )


def escape(text: Optional[str]) -> str:
    return html.escape(text or "")


def split_long_message(text: str, max_length: int = 4096) -> List[str]:
    if len(text) <= max_length:
        return [text]
    parts, current = [], ""
    for line in text.split("\n"):
        if len(current) + len(line) + 1 <= max_length:
            current += line + "\n"
        else:
            if current.strip():
                parts.append(current.strip())
            # Строка длиннее лимита режется по символам
            while len(line) > max_length:
                parts.append(line[:max_length])
                line = line[max_length:]
            current = line + "\n"
    if current.strip():
        parts.append(current.strip())
    return parts
