"""
Image Classification — Step 5 of the Exam Pipeline

Decides per image whether it is exam CONTENT or ADMINISTRATIVE clutter
(logo, score box, header, watermark).

1. Position heuristic (always, free):
     area < 1% of page                         → administrative / high
     area < 3% and in a bottom corner           → administrative / high  (score box)
     area < 3% and in the top 5% of the page    → administrative / medium (header)
     no usable position data                    → content / low
     anything else                              → content / high
2. Vision fallback: only when the heuristic is below "high". Any error or
   unusable reply keeps the position verdict.

Images referenced inside section instructions skip both steps and are always
content.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set

from enrichment.llm_client import VISION_MODEL, LLMClient
from enrichment.outcome import Confirmed, Fallback, Outcome
from enrichment.schemas import ImageClassification, VisionVerdict
from ingestion.schemas import OcrImage, OcrPage
from parsing.markdown import surrounding_text

log = logging.getLogger(__name__)

# ── Thresholds (fractions of the page) ───────────────────────────────────────
VERY_SMALL_AREA = 0.01
SMALL_AREA = 0.03
BOTTOM_EDGE = 0.8
RIGHT_EDGE = 0.7
LEFT_EDGE = 0.3
TOP_MARGIN = 0.05

CONTEXT_WINDOW_CHARS = 300

_VISION_PROMPT = """This image was extracted from a school exam paper.

Classify it:
- "content": needed to answer a question (diagram, chart, graph, table, picture, map, number line)
- "administrative": not exam content (school logo, crest, score/marks box, barcode, header, watermark,
  page decoration, signature line)

Give your confidence (high | medium | low) and a short reason."""


def classify_by_position(image: OcrImage) -> ImageClassification:
    """Cheap size/position heuristic. Pure; never raises."""
    if not image.has_position():
        return ImageClassification(
            image_id=image.id, classification="content", confidence="low",
            reason="no position data", source="position",
        )

    width = image.bottom_right_x - image.top_left_x
    height = image.bottom_right_y - image.top_left_y
    if width <= 0 or height <= 0:
        return ImageClassification(
            image_id=image.id, classification="content", confidence="low",
            reason="degenerate bounding box", source="position",
        )

    page_w, page_h = image.page_width, image.page_height
    area_ratio = (width * height) / (page_w * page_h)
    rel_left = image.top_left_x / page_w
    rel_right = image.bottom_right_x / page_w
    rel_top = image.top_left_y / page_h
    rel_bottom = image.bottom_right_y / page_h

    if area_ratio < VERY_SMALL_AREA:
        return ImageClassification(
            image_id=image.id, classification="administrative", confidence="high",
            reason=f"very small image ({area_ratio:.2%} of page)", source="position",
        )

    if area_ratio < SMALL_AREA:
        in_bottom = rel_bottom > BOTTOM_EDGE
        if in_bottom and rel_right > RIGHT_EDGE:
            return ImageClassification(
                image_id=image.id, classification="administrative", confidence="high",
                reason="small image in bottom-right corner (score box)", source="position",
            )
        if in_bottom and rel_left < LEFT_EDGE:
            return ImageClassification(
                image_id=image.id, classification="administrative", confidence="high",
                reason="small image in bottom-left corner", source="position",
            )
        if rel_top < TOP_MARGIN:
            return ImageClassification(
                image_id=image.id, classification="administrative", confidence="medium",
                reason="small image in top margin (header/watermark)", source="position",
            )

    return ImageClassification(
        image_id=image.id, classification="content", confidence="high",
        reason=f"regular image ({area_ratio:.2%} of page)", source="position",
    )


async def classify_with_vision(
    image: OcrImage,
    llm: LLMClient,
    context: Optional[str] = None,
) -> Optional[ImageClassification]:
    """
    Vision-model verdict, or None when unavailable (no bitmap, error, no output).
    """
    if not image.image_base64:
        return None

    prompt = _VISION_PROMPT
    if context:
        prompt += f"\n\nText around the image on the page:\n{context}"

    try:
        verdict = await llm.generate(
            prompt,
            VisionVerdict,
            model=VISION_MODEL,
            image_data_url=f"data:{image.mime_type};base64,{image.image_base64}",
        )
    except Exception as e:
        log.warning("Step 5 (images): vision call failed for %s: %s", image.id, e)
        return None

    if verdict is None:
        return None
    return ImageClassification(
        image_id=image.id,
        classification=verdict.classification,
        confidence=verdict.confidence,
        reason=verdict.reason,
        source="vision",
    )


async def classify_image(
    image: OcrImage,
    llm: LLMClient,
    context: Optional[str] = None,
) -> Outcome[ImageClassification]:
    position = classify_by_position(image)
    if position.confidence == "high":
        return Confirmed(position, position.confidence)

    vision = await classify_with_vision(image, llm, context)
    if vision is None:
        return Fallback(position, f"vision unavailable, kept position verdict ({position.reason})")
    return Confirmed(vision, vision.confidence)


def instruction_override(image_id: str) -> ImageClassification:
    return ImageClassification(
        image_id=image_id, classification="content", confidence="high",
        reason="referenced in section instructions", source="instructions",
    )


async def classify_images(
    pages: List[OcrPage],
    llm: LLMClient,
    required_ids: Optional[Iterable[str]] = None,
) -> Dict[str, ImageClassification]:
    """Classify every OCR image; ids in required_ids bypass classification."""
    required: Set[str] = set(required_ids or [])
    results: Dict[str, ImageClassification] = {}
    ambiguous = 0

    for page in pages:
        for image in page.images:
            if image.id in required:
                results[image.id] = instruction_override(image.id)
                continue
            context = surrounding_text(page.markdown, image.id, CONTEXT_WINDOW_CHARS)
            outcome = await classify_image(image, llm, context or None)
            if outcome.is_fallback or outcome.value.source == "vision":
                ambiguous += 1
            results[image.id] = outcome.value

    administrative = sum(1 for c in results.values() if c.classification == "administrative")
    log.info(
        "Step 5 (images): done images=%s administrative=%s ambiguous=%s",
        len(results), administrative, ambiguous,
    )
    return results
