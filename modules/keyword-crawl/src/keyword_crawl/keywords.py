from __future__ import annotations

import re
import unicodedata

DEFAULT_KEYWORDS = (
    "react js",
    "javascript",
    "python",
    "java",
    "node.js",
    "angular",
    "frontend developer",
    "backend developer",
    "full stack developer",
    "software engineer",
    "mern stack",
    "react native",
    "flutter",
    "devops",
    "aws",
    "cloud",
    "data science",
    "machine learning",
    "php developer",
    "laravel",
    ".net core",
    "c#",
    "android developer",
    "ios developer",
    "ui ux designer",
    "web developer",
    "django",
    "spring boot",
    "ruby on rails",
    "wordpress",
    "shopify",
    "fresher",
    "intern",
    "trainee",
    "entry level",
    "junior developer",
)

# Empty string means "all levels": the bare keyword.
EXPERIENCE_LEVELS = (
    "",
    "fresher",
    "0-1 years",
    "1-3 years",
    "3-5 years",
    "5+ years",
)

_CATEGORY_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Frontend", ("react", "angular", "vue", "javascript", "typescript", "frontend")),
    ("Backend", ("node", "python", "java", "php", "backend", ".net")),
    ("Full Stack", ("full stack", "mern", "mean")),
    ("DevOps", ("devops", "aws", "docker")),
    ("Data Science", ("data", "machine", "ai")),
    ("Mobile", ("mobile", "android", "ios")),
    ("Design", ("ui", "ux", "design")),
    ("Entry Level", ("fresher", "intern", "trainee")),
)


def normalize_text(value: str) -> str:
    normalized = unicodedata.normalize("NFKC", value or "").casefold()
    normalized = re.sub(r"[\W_]+", " ", normalized)
    normalized = re.sub(r"\s+", " ", normalized).strip()
    return normalized


def parse_keywords_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


def build_keyword_list(extra_csv: str | None = None, override_csv: str | None = None) -> list[str]:
    """Keyword list in first-seen order, duplicates (by normalized form) dropped.

    ``override_csv`` replaces the defaults; ``extra_csv`` is appended.
    """
    base = parse_keywords_csv(override_csv) or list(DEFAULT_KEYWORDS)
    combined = base + parse_keywords_csv(extra_csv)

    keywords: list[str] = []
    seen: set[str] = set()
    for word in combined:
        key = normalize_text(word)
        if not key or key in seen:
            continue
        seen.add(key)
        keywords.append(word.strip())
    return keywords


def build_experience_levels(levels_csv: str | None = None) -> list[str]:
    if levels_csv is None:
        return list(EXPERIENCE_LEVELS)
    # The bare keyword always comes first.
    return [""] + [level for level in parse_keywords_csv(levels_csv) if level]


def _has_token(text: str, words: set[str], token: str) -> bool:
    # Two-letter tokens ("ai", "ui") must be whole words: "trainee" is not AI.
    if len(token) <= 2:
        return token in words
    return token in text


def category_for_keyword(keyword: str) -> str:
    lowered = (keyword or "").casefold()
    words = set(normalize_text(lowered).split())
    for category, tokens in _CATEGORY_RULES:
        if any(_has_token(lowered, words, token) for token in tokens):
            return category
    return "General"
