"""
Pydantic schemas for OCR output
Pages are produced once per processing run and never mutated afterwards.
"""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any


class OcrImage(BaseModel):
    """
    Embedded image extracted by OCR.

    Bounding box and page dimensions are in the same unit (pixels);
    any of them may be missing depending on the provider response.
    """
    id: str = Field(..., description="Provider-assigned image id, e.g. 'img-0.jpeg'")
    image_base64: Optional[str] = Field(None, description="Raw bitmap, base64 without data-URL prefix")
    mime_type: str = Field("image/jpeg")
    page_number: int = Field(..., ge=1)
    top_left_x: Optional[float] = None
    top_left_y: Optional[float] = None
    bottom_right_x: Optional[float] = None
    bottom_right_y: Optional[float] = None
    page_width: Optional[float] = None
    page_height: Optional[float] = None

    def has_position(self) -> bool:
        values = (
            self.top_left_x, self.top_left_y, self.bottom_right_x,
            self.bottom_right_y, self.page_width, self.page_height,
        )
        if any(v is None for v in values):
            return False
        return self.page_width > 0 and self.page_height > 0


class OcrPage(BaseModel):
    """One OCR page: markdown text plus its embedded images"""
    page_number: int = Field(..., ge=1)
    markdown: str = ""
    images: List[OcrImage] = Field(default_factory=list)
    width: Optional[float] = None
    height: Optional[float] = None

    class Config:
        json_schema_extra = {
            "example": {
                "page_number": 1,
                "markdown": "# Rosyth School\n\n1. What is 2+2? A. 3 B. 4 C. 5\n\n![img-0.jpeg](img-0.jpeg)",
                "images": [
                    {
                        "id": "img-0.jpeg",
                        "mime_type": "image/jpeg",
                        "page_number": 1,
                        "top_left_x": 1500, "top_left_y": 2100,
                        "bottom_right_x": 1600, "bottom_right_y": 2200,
                        "page_width": 1654, "page_height": 2339,
                    }
                ],
                "width": 1654,
                "height": 2339,
            }
        }


class OcrResult(BaseModel):
    """All pages of one document plus the provider payload (images stripped)"""
    pages: List[OcrPage] = Field(default_factory=list)
    model: Optional[str] = None
    raw_json: Dict[str, Any] = Field(default_factory=dict)

    def all_images(self) -> List[OcrImage]:
        return [img for page in self.pages for img in page.images]
