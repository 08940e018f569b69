"""Parses question papers and answer keys into aligned QuestionRecords.

OCR text uses inconsistent headings and numbering, so both section and question
detection are expressed as ordered lists of strategies. Section detectors are
tried until one finds sections; within each section, question boundary
detectors are tried until one agrees with the count the section declares.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import config
from core.models import MAIN_SECTION, QuestionRecord
from utils.error_handler import AlignmentError
from utils.logger import get_logger

logger = get_logger()

PAGE_MARKER = re.compile(r"^\s*===\s*PAGE\s+\d+\s*===\s*$", re.IGNORECASE)

_SECTION_HEADING = re.compile(
    r"^\s*(?P<kind>section|sec\.?|part)\s+(?P<label>[A-Z]|[IVX]+|\d{1,2})\b\s*[:.\-]?\s*(?P<rest>.*)$",
    re.IGNORECASE,
)
_DECLARED_COUNT = re.compile(r"\(\s*[^)]*?(\d+)\s+questions?\b[^)]*\)", re.IGNORECASE)
_MARKS_EACH = re.compile(r"(\d+(?:\.\d+)?)\s*marks?\s+each", re.IGNORECASE)
_INLINE_MARKS = re.compile(r"[\[(]\s*(\d+(?:\.\d+)?)\s*marks?\s*[\])]\s*$", re.IGNORECASE)

_NUMERIC_BOUNDARY = re.compile(
    r"^\s*(?:(?:Q|Question)\s*\.?\s*(?P<qnum>\d{1,3})\s*[.):\-]?|(?P<num>\d{1,3})\s*[.)])(?:\s+(?P<text>.*))?$",
    re.IGNORECASE,
)
_LETTER_BOUNDARY = re.compile(r"^\s*\(?(?P<label>[A-Za-z])[.)]\s+(?P<text>.*)$")
_ROMAN_BOUNDARY = re.compile(r"^\s*\(?(?P<label>[ivxlcdmIVXLCDM]+)[.)]\s+(?P<text>.*)$")
_ROMAN_STRICT = re.compile(r"^M{0,3}(CM|CD|D?C{0,3})(XC|XL|L?X{0,3})(IX|IV|V?I{0,3})$")
_ROMAN_VALUES = {"I": 1, "V": 5, "X": 10, "L": 50, "C": 100, "D": 500, "M": 1000}


@dataclass
class SectionSpan:
    name: str
    lines: List[str] = field(default_factory=list)
    declared_count: Optional[int] = None
    marks_each: Optional[float] = None


@dataclass
class Boundary:
    number: int
    line_index: int
    text: str


@dataclass
class ParsedQuestion:
    section: str
    number: int
    text: str
    max_marks: Optional[float]


def roman_to_int(label: str) -> Optional[int]:
    """Converts a roman numeral to an int, or None if it is not a canonical numeral."""
    upper = label.upper()
    if not upper or not _ROMAN_STRICT.match(upper):
        return None
    total = 0
    for i, ch in enumerate(upper):
        value = _ROMAN_VALUES[ch]
        if i + 1 < len(upper) and _ROMAN_VALUES[upper[i + 1]] > value:
            total -= value
        else:
            total += value
    return total


def normalize_section_name(kind: str, label: str) -> str:
    prefix = "Part" if kind.lower().startswith("part") else "Section"
    return f"{prefix} {label.upper()}"


def _section_key(name: str) -> str:
    return " ".join(name.split()).casefold()


# --- Section detection ---

class SectionDetector:
    """Splits document lines into labelled sections. Returns [] when it finds none."""

    def detect(self, lines: Sequence[str]) -> List[SectionSpan]:
        raise NotImplementedError


class HeadingSectionDetector(SectionDetector):
    """Detects "SECTION A" / "Part II" style heading lines.

    A declared question count and per-question marks are read from a
    parenthetical such as "(20 Questions - 1 mark each)" on the heading line or
    the first non-blank line after it. Text before the first heading becomes an
    implicit "Main Section"; repeated headings (e.g. on a new page) are merged.
    """

    def detect(self, lines: Sequence[str]) -> List[SectionSpan]:
        spans: List[SectionSpan] = []
        by_key: Dict[str, SectionSpan] = {}
        current = SectionSpan(name=MAIN_SECTION)
        found_heading = False
        pending_instruction = False

        for line in lines:
            match = _SECTION_HEADING.match(line)
            if match:
                found_heading = True
                if current.lines or current.name != MAIN_SECTION:
                    if _section_key(current.name) not in by_key:
                        spans.append(current)
                        by_key[_section_key(current.name)] = current
                name = normalize_section_name(match.group("kind"), match.group("label"))
                current = by_key.get(_section_key(name)) or SectionSpan(name=name)
                pending_instruction = not self._read_instruction(current, match.group("rest"))
                continue

            if pending_instruction and line.strip():
                if line.strip().startswith("("):
                    self._read_instruction(current, line)
                pending_instruction = False
            current.lines.append(line)

        if not found_heading:
            return []
        if _section_key(current.name) not in by_key:
            spans.append(current)
        return [s for s in spans if s.name != MAIN_SECTION or any(l.strip() for l in s.lines)]

    @staticmethod
    def _read_instruction(span: SectionSpan, text: str) -> bool:
        """Reads "(N Questions - M marks each)" into the span. Returns True if anything was found."""
        found = False
        count = _DECLARED_COUNT.search(text)
        if count and span.declared_count is None:
            span.declared_count = int(count.group(1))
            found = True
        marks = _MARKS_EACH.search(text)
        if marks and span.marks_each is None:
            span.marks_each = float(marks.group(1))
            found = True
        return found


class ImplicitSectionDetector(SectionDetector):
    """Fallback: the whole document is one "Main Section"."""

    def detect(self, lines: Sequence[str]) -> List[SectionSpan]:
        return [SectionSpan(name=MAIN_SECTION, lines=list(lines))]


# --- Question boundary detection ---

class QuestionBoundaryDetector:
    """Finds the lines where questions start inside one section."""
    name = "base"

    def find(self, lines: Sequence[str]) -> List[Boundary]:
        raise NotImplementedError


class NumericBoundaryDetector(QuestionBoundaryDetector):
    """``1.``, ``2)``, ``Q3.``, ``Question 4`` at the start of a line."""
    name = "numeric"

    def find(self, lines: Sequence[str]) -> List[Boundary]:
        boundaries = []
        for i, line in enumerate(lines):
            match = _NUMERIC_BOUNDARY.match(line)
            if match:
                number = int(match.group("qnum") or match.group("num"))
                boundaries.append(Boundary(number, i, (match.group("text") or "").strip()))
        return boundaries


class LetterBoundaryDetector(QuestionBoundaryDetector):
    """``a.``, ``(b)``, ``C)``; numbered by alphabet position."""
    name = "letter"

    def find(self, lines: Sequence[str]) -> List[Boundary]:
        boundaries = []
        for i, line in enumerate(lines):
            match = _LETTER_BOUNDARY.match(line)
            if match:
                number = ord(match.group("label").lower()) - ord("a") + 1
                boundaries.append(Boundary(number, i, match.group("text").strip()))
        return boundaries


class RomanBoundaryDetector(QuestionBoundaryDetector):
    """``i.``, ``(iv)``, ``XII)``."""
    name = "roman"

    def find(self, lines: Sequence[str]) -> List[Boundary]:
        boundaries = []
        for i, line in enumerate(lines):
            match = _ROMAN_BOUNDARY.match(line)
            if not match:
                continue
            number = roman_to_int(match.group("label"))
            if number:
                boundaries.append(Boundary(number, i, match.group("text").strip()))
        return boundaries


DEFAULT_SECTION_DETECTORS: Tuple[SectionDetector, ...] = (
    HeadingSectionDetector(),
    ImplicitSectionDetector(),
)
DEFAULT_BOUNDARY_DETECTORS: Tuple[QuestionBoundaryDetector, ...] = (
    NumericBoundaryDetector(),
    LetterBoundaryDetector(),
    RomanBoundaryDetector(),
)


class QuestionAligner:
    """Builds the ordered QuestionRecord list for one (question paper, answer key) pair."""

    def __init__(
        self,
        section_detectors: Sequence[SectionDetector] = DEFAULT_SECTION_DETECTORS,
        boundary_detectors: Sequence[QuestionBoundaryDetector] = DEFAULT_BOUNDARY_DETECTORS,
        default_max_marks: float = config.DEFAULT_MAX_MARKS,
    ):
        self.section_detectors = list(section_detectors)
        self.boundary_detectors = list(boundary_detectors)
        self.default_max_marks = default_max_marks

    def detect_sections(self, text: str) -> List[SectionSpan]:
        lines = [line for line in text.splitlines() if not PAGE_MARKER.match(line)]
        for detector in self.section_detectors:
            spans = detector.detect(lines)
            if spans:
                logger.debug(f"{type(detector).__name__} found sections: {[s.name for s in spans]}")
                return spans
        return []

    def _select_boundaries(self, span: SectionSpan) -> List[Boundary]:
        first_non_empty: Optional[Tuple[str, List[Boundary]]] = None
        for detector in self.boundary_detectors:
            boundaries = detector.find(span.lines)
            if not boundaries:
                continue
            if span.declared_count is None or len(boundaries) == span.declared_count:
                return boundaries
            if first_non_empty is None:
                first_non_empty = (detector.name, boundaries)
        if first_non_empty is None:
            return []
        name, boundaries = first_non_empty
        logger.warning(
            f"{span.name} declares {span.declared_count} questions but no numbering scheme matched; "
            f"using {name} numbering with {len(boundaries)} questions."
        )
        return boundaries

    def parse_document(self, text: str) -> List[ParsedQuestion]:
        """Splits one document into (section, number, text) entries, in document order."""
        parsed: List[ParsedQuestion] = []
        seen: Dict[Tuple[str, int], ParsedQuestion] = {}
        for span in self.detect_sections(text):
            boundaries = self._select_boundaries(span)
            for idx, boundary in enumerate(boundaries):
                end = boundaries[idx + 1].line_index if idx + 1 < len(boundaries) else len(span.lines)
                parts = [boundary.text] + [l.strip() for l in span.lines[boundary.line_index + 1:end]]
                body = "\n".join(p for p in parts if p)
                key = (_section_key(span.name), boundary.number)
                if key in seen:
                    logger.warning(
                        f"Duplicate question {boundary.number} in {span.name}; keeping the first occurrence."
                    )
                    continue
                marks = span.marks_each
                inline = _INLINE_MARKS.search(body)
                if marks is None and inline:
                    marks = float(inline.group(1))
                entry = ParsedQuestion(span.name, boundary.number, body, marks)
                seen[key] = entry
                parsed.append(entry)
        return parsed

    def align(self, question_paper_text: str, answer_key_text: str) -> List[QuestionRecord]:
        """Parses both documents and joins them by (section, number).

        Raises:
            AlignmentError: If no question is detected in the question paper.
        """
        questions = self.parse_document(question_paper_text or "")
        if not questions:
            raise AlignmentError("No questions could be detected in the question paper text.")

        key_entries = self.parse_document(answer_key_text or "")
        by_key = {(_section_key(e.section), e.number): e for e in key_entries}
        by_number: Dict[int, List[ParsedQuestion]] = {}
        for entry in key_entries:
            by_number.setdefault(entry.number, []).append(entry)

        records: List[QuestionRecord] = []
        unmatched = 0
        for q in questions:
            warnings: List[str] = []
            match = by_key.get((_section_key(q.section), q.number))
            if match is None and len(by_number.get(q.number, [])) == 1:
                match = by_number[q.number][0]
            if match is None:
                unmatched += 1
                warnings.append(f"No answer-key entry found for question {q.number} ({q.section}).")
            records.append(QuestionRecord(
                number=q.number,
                section=q.section,
                text=q.text,
                expected_answer=match.text if match else "",
                max_marks=q.max_marks if q.max_marks is not None else self.default_max_marks,
                marks_declared=q.max_marks is not None,
                warnings=tuple(warnings),
            ))

        if unmatched:
            logger.warning(f"{unmatched} of {len(records)} questions have no matching answer-key entry.")
        logger.info(
            f"Aligned {len(records)} questions across "
            f"{len({r.section for r in records})} sections ({len(key_entries)} answer-key entries)."
        )
        return records


_default_aligner = QuestionAligner()


def align(question_paper_text: str, answer_key_text: str) -> List[QuestionRecord]:
    """Aligns a question paper with its answer key using the default strategies."""
    return _default_aligner.align(question_paper_text, answer_key_text)
