"""AEM LLM connector: turns prompts into AEM component descriptions via a local or cloud LLM."""

__version__ = "0.1.0"
