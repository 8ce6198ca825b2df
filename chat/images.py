from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union


DEFAULT_IMAGE_MIME_TYPE = "image/png"


@dataclass(frozen=True)
class ImagePart:
    """One inline image, numbered from 1 in the order it was supplied."""

    index: int
    data: bytes
    mime_type: str = DEFAULT_IMAGE_MIME_TYPE
    key: Optional[str] = None

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def to_content(self) -> Dict[str, Any]:
        return {
            "type": "image_url",
            "image_url": f"data:{self.mime_type};base64,{self.to_base64()}",
        }


def image_parts(
    pairs: Iterable[Tuple[str, Union[str, bytes]]],
    mime_type: str = DEFAULT_IMAGE_MIME_TYPE,
) -> List[ImagePart]:
    parts: List[ImagePart] = []
    for position, (key, value) in enumerate(pairs, start=1):
        data = value.encode("utf-8") if isinstance(value, str) else bytes(value)
        parts.append(ImagePart(index=position, data=data, mime_type=mime_type, key=key))
    return parts
