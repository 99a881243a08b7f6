#!/usr/bin/env python3
"""
One-off script to check what the structural pre-pass extracts from an OCR payload.
Usage:
  python scripts/check_structure.py /path/to/ocr.json
The JSON is the OCR response (or an exam's raw_ocr_result column). No API calls are made.
"""
import json
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from ingestion.ocr import parse_ocr_response
from parsing.sections import build_sections
from parsing.structural_parser import parse_structure


def main():
    if len(sys.argv) < 2:
        print("Usage: python check_structure.py <ocr.json>")
        sys.exit(1)
    path = Path(sys.argv[1])
    if not path.exists():
        print(f"File not found: {path}")
        sys.exit(1)

    payload = json.loads(path.read_text(encoding="utf-8"))
    ocr = parse_ocr_response(payload)
    result = parse_structure(ocr.pages)

    meta = result.metadata
    print(f"Pages: {len(ocr.pages)}  Lines: {result.total_lines}")
    print(f"Subject: {meta.possible_subject}  Grade: {meta.possible_grade}  "
          f"School: {meta.possible_school}  Total marks: {meta.total_marks}\n")

    print(f"Questions: {len(result.questions)}")
    for q in result.questions:
        text = q.text[:60].replace("\n", " ")
        opts = ",".join(o.label for o in q.options) if q.options else "-"
        print(f"  {q.question_number:>6} p={q.page_number} lines=[{q.start_line},{q.end_line}) "
              f"marks={q.marks} opts={opts} imgs={len(q.nearby_image_ids)} | {text}")

    print("\nSections:")
    for s in build_sections(result.questions, result.section_markers):
        print(f"  {s.name or '(default)'}: {', '.join(s.question_numbers)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
