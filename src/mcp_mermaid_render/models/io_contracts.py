from __future__ import annotations

import base64
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from ..errors import ValidationError

SUPPORTED_FORMATS: List[str] = ["png", "svg"]

class DiagramFormat(str, Enum):
    PNG = "png"
    SVG = "svg"

    @classmethod
    def parse(cls, value: Any) -> "DiagramFormat":
        if isinstance(value, cls):
            return value
        v = str(value or "").strip().lower()
        try:
            return cls(v)
        except ValueError:
            raise ValidationError(
                'format must be either "png" or "svg"',
                data={"format": str(value)},
            ) from None

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self]

    @property
    def ink_path(self) -> str:
        """Path segment of the matching mermaid.ink endpoint."""
        return _INK_PATHS[self]

    @property
    def extension(self) -> str:
        return self.value

_CONTENT_TYPES: Dict[DiagramFormat, str] = {
    DiagramFormat.PNG: "image/png",
    DiagramFormat.SVG: "image/svg+xml",
}

_INK_PATHS: Dict[DiagramFormat, str] = {
    DiagramFormat.PNG: "img",
    DiagramFormat.SVG: "svg",
}

class DiagramRequest(BaseModel):
    """One render request; built once per call and consumed by the dispatcher."""

    model_config = ConfigDict(frozen=True)

    source_text: str = Field(min_length=1)
    format: DiagramFormat = DiagramFormat.PNG
    width: int = Field(default=1200, gt=0)
    height: int = Field(default=800, gt=0)

    @classmethod
    def build(
        cls,
        source_text: Optional[str],
        format: Any = None,
        width: Optional[int] = None,
        height: Optional[int] = None,
        *,
        default_width: int = 1200,
        default_height: int = 800,
    ) -> "DiagramRequest":
        if not isinstance(source_text, str) or not source_text.strip():
            raise ValidationError("mermaid code is required", data={"field": "source_text"})
        fmt = DiagramFormat.parse(format if format is not None else DiagramFormat.PNG)
        try:
            return cls(
                source_text=source_text,
                format=fmt,
                width=width if width is not None else default_width,
                height=height if height is not None else default_height,
            )
        except PydanticValidationError as e:
            msgs = []
            for err in e.errors()[:10]:
                loc = ".".join(str(p) for p in err.get("loc", ())) or "<root>"
                msgs.append(f"{loc}: {err.get('msg')}")
            raise ValidationError("invalid render request: " + "; ".join(msgs), data={"errors": msgs}) from None

class RenderResult(BaseModel):
    data: bytes
    content_type: str
    format: DiagramFormat
    backend: str

    @property
    def size(self) -> int:
        return len(self.data)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_url(self) -> str:
        return f"data:{self.content_type};base64,{self.to_base64()}"

class MermaidConfig(BaseModel):
    theme: str = "default"

class GraphEnvelope(BaseModel):
    """Structure that is serialized and compressed into a mermaid.ink token."""
    code: str
    mermaid: MermaidConfig = Field(default_factory=MermaidConfig)

class EncodedToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    prefix: str = "pako:"
    payload: str

    def __str__(self) -> str:
        return f"{self.prefix}{self.payload}"
