"""
Markdown image-reference helpers shared by the parser, the image classifier
and the read side.
"""

import re
from typing import Dict, List, Tuple

IMAGE_PATTERN = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")


def image_id_from_src(src: str) -> str:
    """OCR references images by file name; the id is the last path segment."""
    src = src.strip()
    return src.rstrip("/").split("/")[-1]


def find_image_refs(text: str) -> List[Tuple[str, str]]:
    """Return [(image_id, alt_text)] in order of appearance."""
    if not text:
        return []
    return [(image_id_from_src(m.group(2)), m.group(1)) for m in IMAGE_PATTERN.finditer(text)]


def strip_image_refs(text: str) -> str:
    return IMAGE_PATTERN.sub("", text or "")


def surrounding_text(markdown: str, image_id: str, window: int = 300) -> str:
    """
    Text around the first reference to image_id, image syntax removed.
    Empty string when the image is not referenced.
    """
    if not markdown:
        return ""
    for m in IMAGE_PATTERN.finditer(markdown):
        if image_id_from_src(m.group(2)) == image_id:
            before = markdown[max(0, m.start() - window):m.start()]
            after = markdown[m.end():m.end() + window]
            context = strip_image_refs(before + " " + after)
            return re.sub(r"\s+", " ", context).strip()
    return ""


def replace_markdown_image_urls(text: str, url_map: Dict[str, str]) -> str:
    """
    Point image references at resolvable URLs.

    References whose id has no entry in url_map are dropped, and the blank
    lines they leave behind are collapsed.
    """
    if not text:
        return text

    def _swap(match: re.Match) -> str:
        image_id = image_id_from_src(match.group(2))
        url = url_map.get(image_id)
        if not url:
            return ""
        return f"![{match.group(1)}]({url})"

    replaced = IMAGE_PATTERN.sub(_swap, text)
    return re.sub(r"\n{3,}", "\n\n", replaced).strip()
