"""Match explanation parsing using a header vocabulary + rapidfuzz.

Turns the backend's semi-structured explanation text into explicit and
inferred evidence per source (LinkedIn, Crosslake) plus integer sub-scores.
Text that cannot be segmented comes back marked unparsed so callers show it
verbatim instead of guessing at its structure.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable

from rapidfuzz import fuzz, process

from client.config import settings
from config.explanation_headers import EXPLANATION_HEADERS, PLACEHOLDER_PATTERNS

logger = logging.getLogger(__name__)

SOURCES = ("linkedin", "crosslake")
KINDS = ("explicit", "inferred", "score")

_BULLET_RE = re.compile(r"^(?:[-•]|\*(?!\*))\s*")
_INTEGER_RE = re.compile(r"\b(\d+)\b")
_WORD_RE = re.compile(r"[a-z]+")
_CAPITALIZED_SPLIT_RE = re.compile(r"\n(?=[A-Z])")

# Longest label accepted as a section header
_MAX_HEADER_WORDS = 6


class HeaderVocabularyError(Exception):
    """Raised for an invalid header vocabulary entry."""
    pass


@dataclass
class HeaderRule:
    """One recognized section header."""
    source: str
    kind: str
    aliases: list[str] = field(default_factory=list)
    keywords: list[list[str]] = field(default_factory=list)  # all words of a group must appear


@dataclass
class EvidenceBucket:
    """Evidence for one source."""
    explicit: list[str] = field(default_factory=list)
    inferred: list[str] = field(default_factory=list)
    score: int = 0
    has_score: bool = False

    @property
    def has_evidence(self) -> bool:
        return bool(self.explicit or self.inferred)


@dataclass
class ParsedExplanation:
    """Structured view of an explanation."""
    linkedin: EvidenceBucket = field(default_factory=EvidenceBucket)
    crosslake: EvidenceBucket = field(default_factory=EvidenceBucket)
    parsed: bool = True
    raw_text: str = ""

    @classmethod
    def unparsed(cls, raw_text: str) -> ParsedExplanation:
        return cls(parsed=False, raw_text=raw_text)

    def bucket(self, source: str) -> EvidenceBucket:
        if source == "linkedin":
            return self.linkedin
        if source == "crosslake":
            return self.crosslake
        raise KeyError(source)

    @property
    def is_usable(self) -> bool:
        return any(b.has_evidence or b.has_score for b in (self.linkedin, self.crosslake))

    @property
    def combined_score(self) -> int:
        """Mean of the two sub-scores, rounded half up."""
        return (self.linkedin.score + self.crosslake.score + 1) // 2


def match_quality(score: int) -> str:
    """Label for a 0-10 score."""
    if score >= 8:
        return "Excellent Match"
    if score >= 5:
        return "Good Match"
    return "Fair Match"


def _normalize_label(text: str) -> str:
    label = text.split(":", 1)[0]
    label = label.strip().strip("#*_").strip().lower()
    return " ".join(label.split())


class HeaderVocabulary:
    """Recognizes section headers by alias, fuzzy alias, or keywords."""

    def __init__(
        self,
        rules: Iterable[HeaderRule] | None = None,
        *,
        fuzzy_threshold: int | None = None,
    ) -> None:
        self.rules: list[HeaderRule] = list(rules) if rules is not None else self._load_default_rules()
        self.fuzzy_threshold = (
            fuzzy_threshold if fuzzy_threshold is not None else settings.explanation.fuzzy_threshold
        )
        self._alias_map: dict[str, HeaderRule] = {}
        for rule in self.rules:
            self._index(rule)

    def _load_default_rules(self) -> list[HeaderRule]:
        return [
            HeaderRule(
                source=entry["source"],
                kind=entry["kind"],
                aliases=list(entry.get("aliases", [])),
                keywords=[list(group) for group in entry.get("keywords", [])],
            )
            for entry in EXPLANATION_HEADERS
        ]

    def _index(self, rule: HeaderRule) -> None:
        if rule.source not in SOURCES:
            raise HeaderVocabularyError(f"Unknown evidence source: {rule.source}")
        if rule.kind not in KINDS:
            raise HeaderVocabularyError(f"Unknown section kind: {rule.kind}")
        for alias in rule.aliases:
            self._alias_map[_normalize_label(alias)] = rule

    def extend(
        self,
        source: str,
        kind: str,
        aliases: Iterable[str] = (),
        keywords: Iterable[Iterable[str]] = (),
    ) -> HeaderRule:
        """Register another header spelling.

        Args:
            source: "linkedin" or "crosslake"
            kind: "explicit", "inferred" or "score"
            aliases: Exact header labels (case-insensitive, text before ':')
            keywords: Word groups; a label containing every word of a group matches

        Returns:
            The new HeaderRule

        Raises:
            HeaderVocabularyError: If source or kind is unknown
        """
        rule = HeaderRule(
            source=source,
            kind=kind,
            aliases=list(aliases),
            keywords=[[w.lower() for w in group] for group in keywords],
        )
        self._index(rule)
        self.rules.append(rule)
        logger.info(f"Added header rule {source}/{kind} with {len(rule.aliases)} aliases")
        return rule

    def match(self, title: str, *, fuzzy: bool = True, keywords: bool = True) -> HeaderRule | None:
        """Classify a header line, or return None if it is not a known header.

        Args:
            title: Header line; only the label before the first ':' is compared
            fuzzy: Try rapidfuzz similarity after the exact alias lookup
            keywords: Try keyword groups as the last tier
        """
        label = _normalize_label(title)
        if not label:
            return None

        # 1. Exact alias
        rule = self._alias_map.get(label)
        if rule is not None:
            return rule

        # 2. Fuzzy alias
        if fuzzy:
            best = process.extractOne(
                label,
                list(self._alias_map),
                scorer=fuzz.ratio,
                score_cutoff=self.fuzzy_threshold,
            )
            if best is not None:
                logger.debug(f"Header {label!r} fuzzy-matched {best[0]!r} ({best[1]:.0f})")
                return self._alias_map[best[0]]

        # 3. Keywords
        if keywords:
            words = set(_WORD_RE.findall(label))
            for rule in self.rules:
                for group in rule.keywords:
                    if group and all(w in words for w in group):
                        return rule

        return None


class ExplanationParser:
    """Parses explanation text into a ParsedExplanation."""

    def __init__(
        self,
        vocabulary: HeaderVocabulary | None = None,
        *,
        delimiter: str | None = None,
    ) -> None:
        self.vocabulary = vocabulary or HeaderVocabulary()
        self.delimiter = delimiter or settings.explanation.section_delimiter
        self._delimiter_re = re.compile(rf"(?m)^[ \t]*(?:{re.escape(self.delimiter)})+")
        self._placeholders = [re.compile(p, re.IGNORECASE) for p in PLACEHOLDER_PATTERNS]

    def parse(self, raw_text: str | None) -> ParsedExplanation:
        raw_text = raw_text or ""
        if not raw_text.strip():
            return ParsedExplanation.unparsed(raw_text)

        result = self._parse_blocks(self._split_delimited(raw_text), raw_text)
        if result.is_usable:
            return result

        logger.debug("No usable sections after delimiter split, trying capitalized-line split")
        result = self._parse_blocks(_CAPITALIZED_SPLIT_RE.split(raw_text), raw_text)
        if result.is_usable:
            return result

        logger.info(f"Explanation not recognized ({len(raw_text)} chars), falling back to raw text")
        return ParsedExplanation.unparsed(raw_text)

    def _split_delimited(self, text: str) -> list[str]:
        # Only a delimiter at line start opens a section, so "C#" stays intact
        return self._delimiter_re.split(text)

    def _is_placeholder(self, line: str) -> bool:
        return any(p.search(line) for p in self._placeholders)

    def _sections(self, block: str) -> list[tuple[str, list[str]]]:
        """Split a block into (title, body lines), opening a new section at inner headers."""
        lines = [line.strip() for line in block.split("\n")]
        lines = [line for line in lines if line]
        if not lines:
            return []

        sections: list[tuple[str, list[str]]] = [(lines[0], [])]
        for line in lines[1:]:
            if not _BULLET_RE.match(line) and self._match_header(line, inner=True) is not None:
                sections.append((line, []))
            else:
                sections[-1][1].append(line)
        return sections

    def _match_header(self, line: str, *, inner: bool = False) -> HeaderRule | None:
        """Match a line that could open a section.

        Only short labels qualify. A label ending in ':' may use every matching
        tier. Without a colon a block title must match an alias exactly or
        fuzzily, and a line inside a block must match an alias exactly.
        """
        label = _normalize_label(line)
        if len(label.split()) > _MAX_HEADER_WORDS:
            return None
        if ":" in line:
            return self.vocabulary.match(line)
        return self.vocabulary.match(line, fuzzy=not inner, keywords=False)

    def _parse_blocks(self, blocks: Iterable[str], raw_text: str) -> ParsedExplanation:
        result = ParsedExplanation(raw_text=raw_text)

        for block in blocks:
            for title, body in self._sections(block):
                rule = self._match_header(title)
                if rule is None:
                    logger.debug(f"Skipping unrecognized section: {title[:60]!r}")
                    continue

                bucket = result.bucket(rule.source)
                if rule.kind == "score":
                    self._apply_score(bucket, title, body)
                else:
                    evidence = bucket.explicit if rule.kind == "explicit" else bucket.inferred
                    evidence.extend(self._evidence_lines(body))

        return result

    def _evidence_lines(self, body: list[str]) -> list[str]:
        evidence = []
        for line in body:
            marker = _BULLET_RE.match(line)
            if not marker:
                continue
            content = line[marker.end():].strip()
            if content and not self._is_placeholder(content):
                evidence.append(content)
        return evidence

    @staticmethod
    def _apply_score(bucket: EvidenceBucket, title: str, body: list[str]) -> None:
        _, sep, rest = title.partition(":")
        text = "\n".join([rest if sep else title, *body])
        match = _INTEGER_RE.search(text)
        if match:
            bucket.score = int(match.group(1))
            bucket.has_score = True


_default_parser: ExplanationParser | None = None


def parse(raw_text: str | None) -> ParsedExplanation:
    """Parse with a shared default ExplanationParser."""
    global _default_parser
    if _default_parser is None:
        _default_parser = ExplanationParser()
    return _default_parser.parse(raw_text)
