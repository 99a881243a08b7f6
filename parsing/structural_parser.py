"""
Structural Pre-Pass — Step 2 of the Exam Pipeline
Locates question boundaries, section headers, marks, MCQ options and image
references purely from OCR text layout.

CONSTRAINTS:
- Deterministic: same pages → same StructuralResult
- Isolated: no external API calls, no LLM, no DB writes
- Never raises on unmatched content: anything not matching a rule is prose
  inside the current question span

Pages are concatenated with a "--- Page N ---" marker line so every fact can
be traced back to a (page, global line) coordinate.
"""

import logging
import re
from typing import Callable, Dict, List, Optional, Tuple

from ingestion.schemas import OcrPage
from parsing.markdown import IMAGE_PATTERN, image_id_from_src
from parsing.schemas import (
    ExamMetadataGuess,
    ImagePosition,
    McqOption,
    SectionMarker,
    StructuralQuestion,
    StructuralResult,
)

log = logging.getLogger(__name__)

PAGE_MARKER_TEMPLATE = "--- Page {} ---"
PAGE_MARKER_PATTERN = re.compile(r"^---\s*Page\s+\d+\s*---$", re.MULTILINE)

MIN_QUESTION_LINE_LENGTH = 5

QuestionRule = Tuple[str, "re.Pattern[str]", Callable[["re.Match[str]"], str]]


class StructuralParser:
    """
    Ordered rule list, first match wins.
    The false-positive gate is a pre-condition checked before any rule.
    """

    # (rule name, pattern, question-number builder)
    QUESTION_RULES: List[QuestionRule] = [
        ("dot", re.compile(r"^(\d{1,2})\.\s+"), lambda m: m.group(1)),
        ("paren", re.compile(r"^(\d{1,2})\)\s+"), lambda m: m.group(1)),
        ("q_prefix", re.compile(r"^(?:question|qn|q)\s*\.?\s*(\d{1,2})[\.\):\s]+", re.IGNORECASE), lambda m: m.group(1)),
        ("letter_paren", re.compile(r"^(\d{1,2})([a-z])\)\s*"), lambda m: f"{m.group(1)}{m.group(2)}"),
        ("letter_wrapped", re.compile(r"^(\d{1,2})\s*\(([a-z])\)\s*"), lambda m: f"{m.group(1)}({m.group(2)})"),
        ("roman_wrapped", re.compile(r"^(\d{1,2})\s*\(([ivx]+)\)\s*", re.IGNORECASE), lambda m: f"{m.group(1)}({m.group(2).lower()})"),
    ]

    FALSE_POSITIVE_MARKERS = ("DATE:", "NAME:", "CLASS:", "TOTAL:")
    YEAR_PATTERN = re.compile(r"^(?:19|20)\d{2}\b")

    # Prioritized: first pattern that matches gives the marks
    MARKS_PATTERNS = [
        re.compile(r"\((\d+)\s*marks?\)", re.IGNORECASE),
        re.compile(r"\[(\d+)\]"),
        re.compile(r"\((\d+)\s*m\)", re.IGNORECASE),
        re.compile(r"(\d+)\s*marks?\s*$", re.IGNORECASE | re.MULTILINE),
    ]

    SECTION_PATTERN = re.compile(r"^(section|part)\s+([a-z]|\d{1,2}|[ivx]+)\b[\s:.\-–]*(.*)$", re.IGNORECASE)

    # "A. text", "A) text", "(A) text" at line start or after whitespace
    OPTION_TOKEN = re.compile(r"(?:^|(?<=\s))(?:\(([A-D])\)|([A-D])[\.\)])\s+")
    MIN_OPTIONS = 2

    TOTAL_MARKS_PATTERNS = [
        re.compile(r"total\s*(?:marks?)?\s*[:\-]?\s*(\d+)", re.IGNORECASE),
        re.compile(r"(?<![\d/])/\s*(\d{1,3})\s*$", re.MULTILINE),
    ]

    SUBJECT_KEYWORDS = [
        ("mathematics", "Math"),
        ("maths", "Math"),
        ("math", "Math"),
        ("english", "English"),
        ("chinese", "Chinese"),
        ("华文", "Chinese"),
        ("science", "Science"),
        ("malay", "Malay"),
        ("bahasa", "Malay"),
        ("tamil", "Tamil"),
    ]

    GRADE_PATTERNS = [
        re.compile(r"\b(?:primary|p)\s*(\d)\b", re.IGNORECASE),
        re.compile(r"\b(?:grade|g)\s*(\d)\b", re.IGNORECASE),
    ]

    SCHOOL_PATTERN = re.compile(r"^#*\s*([A-Z][A-Za-z\s]+(?:School|Academy|Institute))", re.MULTILINE)

    # ── Line helpers ──────────────────────────────────────────────────────

    @staticmethod
    def normalize_line(line: str) -> str:
        """Drop markdown heading/quote/bold decoration so rules see plain text."""
        line = line.replace("**", "").replace("__", "")
        return re.sub(r"^[#>\s]+", "", line).rstrip()

    @staticmethod
    def is_page_marker(line: str) -> bool:
        return bool(PAGE_MARKER_PATTERN.match(line.strip()))

    @classmethod
    def is_false_positive(cls, line: str) -> bool:
        # Answer-key lines such as "2. 24 cm" pass this gate and become extra
        # questions that share the linked answer of their number.
        if len(line) < MIN_QUESTION_LINE_LENGTH:
            return True
        upper = line.upper()
        if any(marker in upper for marker in cls.FALSE_POSITIVE_MARKERS):
            return True
        return bool(cls.YEAR_PATTERN.match(line))

    @classmethod
    def match_question(cls, line: str) -> Optional[Tuple[str, str, int]]:
        """
        Returns (rule name, question number, prefix length) for a boundary line,
        or None when the line is prose.
        """
        if cls.is_false_positive(line):
            return None
        for name, pattern, build in cls.QUESTION_RULES:
            m = pattern.match(line)
            if m:
                return name, build(m), m.end()
        return None

    @classmethod
    def match_section(cls, line: str) -> Optional[Tuple[str, str]]:
        """Returns (section name, rest of header line) for 'Section X' / 'Part N' headers."""
        m = cls.SECTION_PATTERN.match(line)
        if not m:
            return None
        name = f"{m.group(1).capitalize()} {m.group(2).upper()}"
        return name, m.group(3).strip()

    # ── Field extraction ──────────────────────────────────────────────────

    @classmethod
    def extract_marks(cls, text: str) -> Optional[int]:
        text = IMAGE_PATTERN.sub("", text)
        for pattern in cls.MARKS_PATTERNS:
            m = pattern.search(text)
            if m:
                return int(m.group(1))
        return None

    @classmethod
    def split_options(cls, line: str) -> Tuple[str, List[Tuple[str, str]]]:
        """
        Split one line into (stem, [(label, text)]).

        A line starting with an option token is all options. Otherwise inline
        options are accepted only as an A, B, ... run of at least two tokens.
        """
        tokens = list(cls.OPTION_TOKEN.finditer(line))
        if not tokens:
            return line, []

        def _label(m: "re.Match[str]") -> str:
            return m.group(1) or m.group(2)

        if tokens[0].start() != 0:
            first_a = next((i for i, t in enumerate(tokens) if _label(t) == "A"), None)
            if first_a is None:
                return line, []
            run = [tokens[first_a]]
            for t in tokens[first_a + 1:]:
                if ord(_label(t)) == ord(_label(run[-1])) + 1:
                    run.append(t)
                else:
                    break
            if len(run) < cls.MIN_OPTIONS:
                return line, []
            tokens = run

        options = []
        for i, t in enumerate(tokens):
            end = tokens[i + 1].start() if i + 1 < len(tokens) else len(line)
            options.append((_label(t), line[t.end():end].strip()))
        return line[:tokens[0].start()].rstrip(), options

    @classmethod
    def clean_question_text(cls, text: str) -> str:
        """Strip image markdown, mark annotations, page markers and excess blank lines."""
        text = IMAGE_PATTERN.sub("", text)
        text = PAGE_MARKER_PATTERN.sub("", text)
        for pattern in cls.MARKS_PATTERNS:
            text = pattern.sub("", text)
        text = re.sub(r"[ \t]+\n", "\n", text)
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()

    @classmethod
    def extract_metadata(cls, first_page: str) -> ExamMetadataGuess:
        """Regex-sniff subject, grade, school and total marks from page 1 text only."""
        guess = ExamMetadataGuess()
        if not first_page:
            return guess
        lower = first_page.lower()

        for keyword, canonical in cls.SUBJECT_KEYWORDS:
            if keyword.isascii():
                if re.search(rf"\b{keyword}\b", lower):
                    guess.possible_subject = canonical
                    break
            elif keyword in first_page:
                guess.possible_subject = canonical
                break

        for pattern in cls.GRADE_PATTERNS:
            m = pattern.search(first_page)
            if m:
                guess.possible_grade = f"Primary {m.group(1)}"
                break

        m = cls.SCHOOL_PATTERN.search(first_page)
        if m:
            guess.possible_school = re.sub(r"\s+", " ", m.group(1)).strip()

        for pattern in cls.TOTAL_MARKS_PATTERNS:
            m = pattern.search(first_page)
            if m:
                guess.total_marks = int(m.group(1))
                break

        return guess

    # ── Main entry ────────────────────────────────────────────────────────

    @classmethod
    def parse(cls, pages: List[OcrPage]) -> StructuralResult:
        ordered = sorted(pages, key=lambda p: p.page_number)

        lines: List[str] = []
        line_pages: List[int] = []
        image_positions: List[ImagePosition] = []

        for page in ordered:
            offset = len(lines)
            lines.append(PAGE_MARKER_TEMPLATE.format(page.page_number))
            line_pages.append(page.page_number)
            page_lines = (page.markdown or "").split("\n")
            for i, line in enumerate(page_lines):
                for m in IMAGE_PATTERN.finditer(line):
                    image_positions.append(ImagePosition(
                        image_id=image_id_from_src(m.group(2)),
                        page_number=page.page_number,
                        line_number=offset + 1 + i,
                        alt_text=m.group(1),
                    ))
            lines.extend(page_lines)
            line_pages.extend([page.page_number] * len(page_lines))

        boundaries: List[Tuple[int, str, int]] = []   # (line, number, prefix length)
        section_lines: Dict[int, Tuple[str, str]] = {}
        for idx, raw in enumerate(lines):
            if cls.is_page_marker(raw):
                continue
            line = cls.normalize_line(raw)
            section = cls.match_section(line)
            if section:
                section_lines[idx] = section
                continue
            hit = cls.match_question(line)
            if hit:
                boundaries.append((idx, hit[1], hit[2]))

        boundary_lines = [b[0] for b in boundaries]
        section_markers = cls._build_section_markers(lines, line_pages, section_lines, boundary_lines)

        questions: List[StructuralQuestion] = []
        for qi, (start, number, prefix_len) in enumerate(boundaries):
            end = boundaries[qi + 1][0] if qi + 1 < len(boundaries) else len(lines)
            content_end = next((s for s in sorted(section_lines) if start < s < end), end)
            questions.append(cls._build_question(
                lines, line_pages, image_positions, section_markers,
                start, end, content_end, number, prefix_len,
            ))

        first_page = ordered[0].markdown if ordered else ""
        result = StructuralResult(
            questions=questions,
            metadata=cls.extract_metadata(first_page or ""),
            image_positions=image_positions,
            section_markers=section_markers,
            full_document="\n".join(lines),
            total_lines=len(lines),
        )
        log.info(
            "Step 2 (structure): done pages=%s questions=%s sections=%s images=%s",
            len(ordered), len(questions), len(section_markers), len(image_positions),
        )
        return result

    @classmethod
    def _build_section_markers(
        cls,
        lines: List[str],
        line_pages: List[int],
        section_lines: Dict[int, Tuple[str, str]],
        boundary_lines: List[int],
    ) -> List[SectionMarker]:
        stops = sorted(set(boundary_lines) | set(section_lines))
        markers = []
        for idx in sorted(section_lines):
            name, rest = section_lines[idx]
            stop = next((s for s in stops if s > idx), len(lines))
            body = [rest] if rest else []
            body.extend(l for l in lines[idx + 1:stop] if not cls.is_page_marker(l))
            instructions = re.sub(r"\n{3,}", "\n\n", "\n".join(body)).strip()
            markers.append(SectionMarker(
                name=name,
                instructions=instructions or None,
                line_number=idx,
                page_number=line_pages[idx],
            ))
        return markers

    @classmethod
    def _build_question(
        cls,
        lines: List[str],
        line_pages: List[int],
        image_positions: List[ImagePosition],
        section_markers: List[SectionMarker],
        start: int,
        end: int,
        content_end: int,
        number: str,
        prefix_len: int,
    ) -> StructuralQuestion:
        content = list(lines[start:content_end])
        content[0] = cls.normalize_line(content[0])[prefix_len:]
        content_text = "\n".join(content)

        options: Dict[str, str] = {}
        kept: List[str] = []
        for line in content:
            stem, found = cls.split_options(cls.normalize_line(line))
            if not found:
                kept.append(line)
                continue
            for label, text in found:
                options.setdefault(label, text)
            if stem:
                kept.append(stem)

        section = None
        for marker in section_markers:
            if marker.line_number < start:
                section = marker.name

        return StructuralQuestion(
            question_number=number,
            raw_text="\n".join(lines[start:end]),
            text=cls.clean_question_text("\n".join(kept)),
            page_number=line_pages[start],
            marks=cls.extract_marks(content_text),
            section=section,
            options=(
                [McqOption(label=l, text=options[l]) for l in sorted(options)]
                if len(options) >= cls.MIN_OPTIONS else None
            ),
            nearby_image_ids=[
                p.image_id for p in image_positions if start <= p.line_number < content_end
            ],
            start_line=start,
            end_line=end,
        )


def parse_structure(pages: List[OcrPage]) -> StructuralResult:
    """Convenience wrapper used by the pipeline."""
    return StructuralParser.parse(pages)
