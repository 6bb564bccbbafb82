"""Prompt text for component generation."""

from __future__ import annotations

from aem_llm_connector.types import GenerationRequest

IMAGE_NOTE = (
    "IMPORTANT: An image has been provided with this request. Analyze the "
    "visual content and incorporate relevant design elements, colors, layout, "
    "and content structure from the image into the AEM component. If the image "
    "shows UI elements, recreate them as appropriate AEM fields and styling."
)

RESPONSE_SHAPE = """\
{
  "name": "component-name",
  "description": "Component description",
  "fields": [
    {
      "name": "fieldName",
      "type": "text|richtext|image|link|select",
      "label": "Field Label",
      "description": "Field description",
      "required": false,
      "sample": "Sample value for preview"
    }
  ],
  "html": "HTL template code",
  "dialog": "Dialog XML code",
  "js": "JavaScript code",
  "java": "Sling Model Java code",
  "content": ".content.xml code",
  "previewHtml": "HTML for preview with sample data",
  "sampleData": {
    "fieldName": "sample value"
  }
}"""


def build_component_prompt(request: GenerationRequest) -> str:
    """Assemble the user prompt sent to the model for *request*."""
    parts = [
        f"Generate an AEM {request.component_type} based on the following requirements:",
        f"User Prompt: {request.prompt}",
    ]
    if request.has_image:
        parts.append(IMAGE_NOTE)
    if request.requirements.strip():
        parts.append(f"Additional Requirements: {request.requirements}")
    parts.append(
        "Please respond with a valid JSON object containing the following structure:\n"
        + RESPONSE_SHAPE
    )
    parts.append("Ensure all code follows AEM best practices and is production-ready.")
    return "\n\n".join(parts)
