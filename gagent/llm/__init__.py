"""Text generation backends."""

from gagent.llm.text_generator import (
    GeminiTextGenerator,
    TextGenerator,
    UnavailableTextGenerator,
    create_text_generator,
    extract_json_object,
)

__all__ = [
    "GeminiTextGenerator",
    "TextGenerator",
    "UnavailableTextGenerator",
    "create_text_generator",
    "extract_json_object",
]
