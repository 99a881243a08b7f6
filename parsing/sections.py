"""
Section assignment

Groups questions under the section header that precedes them. Questions with
no preceding header land in the default section (empty name), which is only
created when needed. Every question appears in exactly one section.
"""

from typing import Iterable, List, Optional, Sequence, Set

from parsing.markdown import find_image_refs
from parsing.schemas import Section, SectionMarker

DEFAULT_SECTION_NAME = ""


def build_sections(questions: Sequence, markers: Optional[List[SectionMarker]] = None) -> List[Section]:
    """
    Build ordered sections from questions carrying a `section` name and a
    `question_number`. Works for structural and enriched questions alike.

    Sections are ordered by first appearance among the questions; markers
    with no questions are dropped.
    """
    instructions_by_name = {}
    for marker in markers or []:
        # a repeated header (e.g. "Section A" on a continuation page) keeps its first instructions
        if marker.name not in instructions_by_name or not instructions_by_name[marker.name]:
            instructions_by_name[marker.name] = marker.instructions

    sections: List[Section] = []
    by_name = {}
    for question in questions:
        name = question.section or DEFAULT_SECTION_NAME
        section = by_name.get(name)
        if section is None:
            section = Section(name=name, instructions=instructions_by_name.get(name))
            by_name[name] = section
            sections.append(section)
        section.question_numbers.append(question.question_number)
    return sections


def section_image_refs(sections: Iterable[Section]) -> Set[str]:
    """Image ids referenced inside section instructions (always-required content)."""
    refs: Set[str] = set()
    for section in sections:
        refs.update(image_id for image_id, _ in find_image_refs(section.instructions or ""))
    return refs
