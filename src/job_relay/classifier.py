from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Mapping, Sequence

from job_relay.models import Accepted, ClassificationResult, Rejected

CATEGORIES = ("strong", "weak", "nonJobStrong", "nonJobWeak")

DEFAULT_PATTERNS: dict[str, tuple[str, ...]] = {
    "strong": (
        r"\bwe(?:'re| are) hiring\b",
        r"\bnow hiring\b",
        r"\bjob opening\b",
        r"\bvacanc(?:y|ies)\b",
        r"\bposition available\b",
        r"\brole available\b",
        r"\bapply\b",
        r"\brequirements?\b",
        r"\bresponsibilities\b",
        r"\bqualifications\b",
        r"\bsalary\b",
        r"\bcompensation\b",
        r"\bbenefits?\b",
        r"\[hiring\]",
    ),
    "weak": (
        r"\bremote\b",
        r"\bfull[- ]?time\b",
        r"\bpart[- ]?time\b",
        r"\bcontract\b",
        r"\bfreelance\b",
        r"\b\d+\+?\s*(?:years?|yrs?)(?: of)? experience\b",
        r"\b(?:engineer|developer|designer|manager|analyst|assistant|writer)s?\b",
        r"\brecruit(?:er|ing|ment)?\b",
        r"\bcareers?\b",
        r"\bopportunit(?:y|ies)\b",
    ),
    "nonJobStrong": (
        r"\blooking for (?:work|a job|job|employment|clients)\b",
        r"\bhire me\b",
        r"\bmy (?:resume|cv|portfolio)\b",
        r"\bopen to work\b",
        r"\bavailable for (?:hire|work)\b",
        r"\bseeking (?:a )?(?:job|work|employment)\b",
        r"\[for hire\]",
    ),
    "nonJobWeak": (
        r"\bi(?:'m| am) an?\b",
        r"\bconsulting\b",
        r"\badvertis(?:e|ement|ing)\b",
        r"\bfor sale\b",
        r"\bwebinar\b",
        r"\bcourses?\b",
        r"\bdiscount\b",
        r"\bpromo(?:tion)? code\b",
    ),
}

TITLE_MAX_LENGTH = 120
PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-]{7,}")


@dataclass(frozen=True)
class PatternRules:
    strong: tuple[re.Pattern[str], ...]
    weak: tuple[re.Pattern[str], ...]
    non_job_strong: tuple[re.Pattern[str], ...]
    non_job_weak: tuple[re.Pattern[str], ...]
    strong_weight: int = 2
    weak_weight: int = 1
    non_job_weak_weight: int = -1


@dataclass(frozen=True)
class ClassifierOptions:
    min_words: int = 6
    language_gate: bool = True
    strong_threshold: int = 1
    weak_only_threshold: int = 3


def _compile_all(patterns: Sequence[str], category: str) -> tuple[re.Pattern[str], ...]:
    compiled = []
    for pattern in patterns:
        try:
            compiled.append(re.compile(pattern, re.IGNORECASE))
        except re.error as exc:
            raise ValueError(f"invalid {category} pattern {pattern!r}: {exc}") from exc
    return tuple(compiled)


def build_pattern_rules(overrides: Mapping[str, Sequence[str]] | None = None) -> PatternRules:
    """Compile the rule table, replacing whole categories named in ``overrides``."""
    overrides = overrides or {}
    unknown = sorted(set(overrides) - set(CATEGORIES))
    if unknown:
        raise ValueError(f"unknown pattern categories: {', '.join(unknown)}")

    merged = {category: overrides.get(category, DEFAULT_PATTERNS[category]) for category in CATEGORIES}
    return PatternRules(
        strong=_compile_all(merged["strong"], "strong"),
        weak=_compile_all(merged["weak"], "weak"),
        non_job_strong=_compile_all(merged["nonJobStrong"], "nonJobStrong"),
        non_job_weak=_compile_all(merged["nonJobWeak"], "nonJobWeak"),
    )


DEFAULT_RULES = build_pattern_rules()
DEFAULT_OPTIONS = ClassifierOptions()


def prepare_text(value: str) -> str:
    normalized = unicodedata.normalize("NFKC", value or "")
    return normalized.replace("’", "'").replace("‘", "'")


def _is_latin(char: str) -> bool:
    try:
        return unicodedata.name(char).startswith("LATIN")
    except ValueError:
        return False


def count_letters(text: str) -> tuple[int, int]:
    """Return ``(ascii_letters, non_latin_letters)``."""
    ascii_letters = 0
    non_latin = 0
    for char in text:
        if char.isascii():
            if char.isalpha():
                ascii_letters += 1
        elif char.isalpha() and not _is_latin(char):
            non_latin += 1
    return ascii_letters, non_latin


def fails_language_gate(text: str) -> bool:
    # Script-ratio heuristic only; it does not identify the language.
    ascii_letters, non_latin = count_letters(text)
    if non_latin == 0:
        return False
    return ascii_letters < 15 or non_latin > ascii_letters / 2


def _matches(patterns: Sequence[re.Pattern[str]], text: str) -> int:
    return sum(1 for pattern in patterns if pattern.search(text))


def score_text(text: str, rules: PatternRules = DEFAULT_RULES) -> tuple[int, bool]:
    strong_hits = _matches(rules.strong, text)
    weak_hits = _matches(rules.weak, text)
    negative_hits = _matches(rules.non_job_weak, text)
    score = (
        strong_hits * rules.strong_weight
        + weak_hits * rules.weak_weight
        + negative_hits * rules.non_job_weak_weight
    )
    return score, strong_hits > 0


def extract_title(text: str) -> str:
    first_line = next((line.strip() for line in text.splitlines() if line.strip()), text.strip())
    return first_line[:TITLE_MAX_LENGTH]


def extract_phone(text: str) -> str | None:
    match = PHONE_PATTERN.search(text or "")
    return match.group(0).strip() if match else None


def classify(
    text: str,
    rules: PatternRules = DEFAULT_RULES,
    options: ClassifierOptions = DEFAULT_OPTIONS,
) -> ClassificationResult:
    prepared = prepare_text(text)
    if not prepared.strip() or len(prepared.split()) < options.min_words:
        return Rejected("too short")

    if options.language_gate and fails_language_gate(prepared):
        return Rejected("language gate")

    if any(pattern.search(prepared) for pattern in rules.non_job_strong):
        return Rejected("job seeker")

    score, strong_seen = score_text(prepared, rules)
    accepted = (strong_seen and score >= options.strong_threshold) or score >= options.weak_only_threshold
    if not accepted:
        return Rejected(f"score {score}")

    body = text.strip()
    return Accepted(title=extract_title(body), body=body, phone=extract_phone(body))
