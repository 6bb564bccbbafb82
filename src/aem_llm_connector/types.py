"""Shared data types for the AEM LLM connector."""

from __future__ import annotations

import base64
import enum
import json
import mimetypes
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

from aem_llm_connector.errors import ConnectorError

if TYPE_CHECKING:
    from aem_llm_connector.components import ComponentSpec


# ---------------------------------------------------------------------------
# Request types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ImagePayload:
    """Binary image attached to a generation request."""

    data: bytes
    mime_type: str = "image/png"

    @classmethod
    def from_data_url(cls, data_url: str) -> ImagePayload:
        """Parse ``data:<mime>;base64,<payload>`` (or a bare base64 string)."""
        mime_type = "image/png"
        encoded = data_url
        if data_url.startswith("data:") and "," in data_url:
            header, encoded = data_url.split(",", 1)
            mime_type = header[len("data:"):].split(";", 1)[0] or mime_type
        return cls(data=base64.b64decode(encoded), mime_type=mime_type)

    @classmethod
    def from_path(cls, path: str | Path) -> ImagePayload:
        p = Path(path)
        mime_type = mimetypes.guess_type(p.name)[0] or "application/octet-stream"
        return cls(data=p.read_bytes(), mime_type=mime_type)

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


@dataclass(frozen=True)
class GenerationRequest:
    """A single component-generation request.  Immutable once created."""

    prompt: str
    image: ImagePayload | None = None
    requirements: str = ""
    component_type: str = "component"

    @property
    def has_image(self) -> bool:
        return self.image is not None and len(self.image.data) > 0


# ---------------------------------------------------------------------------
# Model catalog
# ---------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class ModelDescriptor:
    """An installed model as reported by the server's tags endpoint."""

    name: str

    @property
    def family(self) -> str:
        """Base name without the ``:tag`` suffix, lower-cased."""
        return self.name.split(":", 1)[0].lower()

    @classmethod
    def from_name(cls, name: str) -> ModelDescriptor:
        return cls(name=name.strip())


# ---------------------------------------------------------------------------
# Streaming / recovery
# ---------------------------------------------------------------------------

@dataclass
class StreamChunk:
    """One decoded NDJSON line of a streaming generation."""

    partial_text: str = ""
    is_final: bool = False
    error: str | None = None


@dataclass
class RecoveredDocument:
    """Outcome of the JSON recovery pipeline.

    ``text`` is ``None`` when no JSON object could be located at all.
    ``balanced`` is ``False`` when the quote-repair end-of-value heuristic
    disagrees with a string-aware balanced-brace scan of the result.
    """

    text: str | None
    valid: bool = False
    repaired: bool = False
    balanced: bool = True

    @property
    def found(self) -> bool:
        return self.text is not None

    def load(self) -> Any:
        if self.text is None:
            raise ValueError("No JSON document was recovered")
        return json.loads(self.text)


# ---------------------------------------------------------------------------
# Invocation state
# ---------------------------------------------------------------------------

class InvocationState(enum.Enum):
    IDLE = "idle"
    ATTEMPTING = "attempting"
    WARMING_UP = "warming_up"
    FALLBACK_ATTEMPTING = "fallback_attempting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class InvocationContext:
    """Mutable state of one orchestrator run.

    Created per call and never attached to shared objects, so a fallback
    substitution in one invocation cannot leak into another.
    """

    requested_model: str
    target_model: str
    max_attempts: int
    attempt: int = 0
    failures: int = 0
    warmed_up: bool = False
    state: InvocationState = InvocationState.IDLE
    backoff_delays: list[float] = field(default_factory=list)
    tried_models: list[str] = field(default_factory=list)
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @property
    def backoff_total(self) -> float:
        return sum(self.backoff_delays)

    def mark_tried(self, model: str) -> None:
        if model not in self.tried_models:
            self.tried_models.append(model)

    def has_tried(self, model: str) -> bool:
        candidates = {model}
        if ":" not in model:
            candidates.add(f"{model}:latest")
        elif model.endswith(":latest"):
            candidates.add(model.removesuffix(":latest"))
        return any(c in self.tried_models for c in candidates)


@dataclass
class InvocationOutcome:
    """Successful result of an orchestrator run."""

    document: RecoveredDocument
    model: str
    requested_model: str
    fallback_used: bool = False
    attempts: int = 1
    warmed_up: bool = False
    backoff_delays: list[float] = field(default_factory=list)
    latency_ms: float = 0
    raw_text: str = ""


# ---------------------------------------------------------------------------
# Results crossing the service boundary
# ---------------------------------------------------------------------------

@dataclass
class ErrorDetail:
    """Three-part, user-facing error description."""

    summary: str
    technical_detail: str = ""
    suggestion: str = ""

    @classmethod
    def from_exception(cls, exc: ConnectorError) -> ErrorDetail:
        return cls(
            summary=exc.summary,
            technical_detail=exc.technical_detail,
            suggestion=exc.suggestion,
        )

    @property
    def message(self) -> str:
        if self.suggestion:
            return f"{self.summary}. {self.suggestion}"
        return self.summary

    def to_dict(self) -> dict[str, str]:
        return {
            "error": self.message,
            "summary": self.summary,
            "modelError": self.technical_detail,
            "suggestion": self.suggestion,
        }


def _timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


@dataclass
class GenerationResult:
    """What ``ComponentGenerator.generate`` hands back to its caller."""

    status: str
    payload: ComponentSpec | None = None
    error: ErrorDetail | None = None
    model: str = ""
    fallback_used: bool = False
    attempts: int = 0
    timestamp: str = field(default_factory=_timestamp)

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, payload: ComponentSpec, outcome: InvocationOutcome) -> GenerationResult:
        return cls(
            status="success",
            payload=payload,
            model=outcome.model,
            fallback_used=outcome.fallback_used,
            attempts=outcome.attempts,
        )

    @classmethod
    def failure(cls, exc: ConnectorError, model: str = "") -> GenerationResult:
        return cls(status="error", error=ErrorDetail.from_exception(exc), model=model)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "status": self.status,
            "timestamp": self.timestamp,
            "model": self.model,
            "fallbackUsed": self.fallback_used,
            "attempts": self.attempts,
        }
        if self.payload is not None:
            data["componentName"] = self.payload.name
            data["componentDescription"] = self.payload.description
            data["generatedFiles"] = self.payload.generated_files()
            data["previewHtml"] = self.payload.render_preview()
            data["sampleData"] = self.payload.sample_data
        if self.error is not None:
            data.update(self.error.to_dict())
        return data
