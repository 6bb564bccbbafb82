"""Structured component payload parsed from a recovered model reply."""

from __future__ import annotations

import logging
import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from aem_llm_connector.errors import MalformedResponseError
from aem_llm_connector.types import RecoveredDocument

_logger = logging.getLogger(__name__)

_PROPERTIES_RE = re.compile(r"\$\{properties\.([^}]+)\}?")
_WCMMODE_RE = re.compile(r"\$\{wcmmode\.(?:edit|preview)\}")
_NO_PREVIEW = "<div>No HTML template available for preview</div>"
_FIELD_DEFAULTED = frozenset(
    {"name", "type", "label", "description", "required", "options"}
)
_SPEC_DEFAULTED = frozenset(
    {"name", "description", "fields", "sample_data", "sampleData"}
)


def _drop_nulls(data: Any, keys: frozenset[str]) -> Any:
    """Remove explicit nulls for *keys* so the field defaults apply."""
    if not isinstance(data, dict):
        return data
    return {k: v for k, v in data.items() if v is not None or k not in keys}


class ComponentField(BaseModel):
    """One authorable field of the generated component."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = ""
    type: str = "text"
    label: str = ""
    description: str = ""
    required: bool = False
    default_value: Any = Field(default=None, alias="defaultValue")
    sample: Any = None
    options: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def defaults_for_nulls(cls, data: Any) -> Any:
        return _drop_nulls(data, _FIELD_DEFAULTED)


class ComponentSpec(BaseModel):
    """The JSON object the model is asked to produce."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str = "component"
    description: str = ""
    fields: list[ComponentField] = Field(default_factory=list)
    html: str | None = None
    dialog: str | None = None
    js: str | None = None
    java: str | None = None
    content: str | None = None
    preview_html: str | None = Field(default=None, alias="previewHtml")
    sample_data: dict[str, Any] = Field(default_factory=dict, alias="sampleData")

    @model_validator(mode="before")
    @classmethod
    def defaults_for_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("name") is None:
            _logger.warning("Component name missing from LLM response, using default")
        return _drop_nulls(data, _SPEC_DEFAULTED)

    @classmethod
    def from_document(cls, document: RecoveredDocument) -> ComponentSpec:
        """Validate a recovered document.  Raises ``MalformedResponseError``."""
        try:
            data = document.load()
        except ValueError as e:
            raise MalformedResponseError(f"Recovered text is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise MalformedResponseError(
                f"Expected a JSON object, got {type(data).__name__}"
            )
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise MalformedResponseError(f"Unexpected component structure: {e}") from e

    @property
    def model_class_name(self) -> str:
        return self.name[:1].upper() + self.name[1:]

    def generated_files(self) -> dict[str, str]:
        """File name -> source for every source the model produced."""
        files: dict[str, str] = {}
        if self.dialog is not None:
            files["dialog.xml"] = self.dialog
        if self.html is not None:
            files[f"{self.name}.html"] = self.html
        if self.js is not None:
            files[f"{self.name}.js"] = self.js
        if self.java is not None:
            files[f"{self.model_class_name}Model.java"] = self.java
        if self.content is not None:
            files[".content.xml"] = self.content
        return files

    def render_preview(self) -> str:
        """Preview markup: the model's own, or the HTL template filled with samples."""
        if self.preview_html is not None:
            return self.preview_html
        if self.html is None:
            return _NO_PREVIEW

        html = self.html
        for key, value in self.sample_data.items():
            html = html.replace("${" + key + "}", "" if value is None else str(value))
        html = _PROPERTIES_RE.sub(r"Sample \1", html)
        return _WCMMODE_RE.sub("", html)
