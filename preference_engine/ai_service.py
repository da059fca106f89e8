"""Claude API integration for reading uploaded documents.

Sends a prompt, optionally with one attached file, and returns the model's
raw text. The text is untrusted; callers parse and validate it.
"""

import base64
import logging
from dataclasses import dataclass
from typing import Protocol

import anthropic

from .config import Settings, get_settings
from .errors import AiServiceError

logger = logging.getLogger(__name__)

TEXT_MIME_TYPES = {"text/plain", "application/json"}
IMAGE_MIME_TYPES = {"image/png", "image/jpeg", "image/gif", "image/webp"}


@dataclass(frozen=True)
class FileInput:
    """A file handed to a multimodal model."""

    content: bytes
    mime_type: str


class AiTextGenerator(Protocol):
    def generate_text(self, prompt: str) -> str: ...

    def generate_text_with_file(self, prompt: str, file: FileInput) -> str: ...


# =============================================================================
# Content Blocks
# =============================================================================


def _file_block(file: FileInput) -> dict:
    """Build the Claude content block for an attached file."""
    if file.mime_type in TEXT_MIME_TYPES:
        return {
            "type": "document",
            "source": {
                "type": "text",
                "media_type": "text/plain",
                "data": file.content.decode("utf-8", errors="replace"),
            },
        }

    data = base64.standard_b64encode(file.content).decode("ascii")
    if file.mime_type == "application/pdf":
        return {
            "type": "document",
            "source": {"type": "base64", "media_type": "application/pdf", "data": data},
        }
    if file.mime_type in IMAGE_MIME_TYPES:
        return {
            "type": "image",
            "source": {"type": "base64", "media_type": file.mime_type, "data": data},
        }

    raise AiServiceError(f"Unsupported file type for AI analysis: {file.mime_type}")


def _extract_text_from_response(response) -> str:
    """Extract text content from Claude response."""
    parts = [block.text for block in response.content if hasattr(block, "text")]
    if not parts:
        block_types = [type(b).__name__ for b in response.content]
        logger.warning(f"No text in response, block types: {block_types}")
    return "".join(parts)


# =============================================================================
# Client
# =============================================================================


class ClaudeTextGenerator:
    """AiTextGenerator backed by the Anthropic Messages API."""

    def __init__(self, settings: Settings | None = None, client: anthropic.Anthropic | None = None):
        self.settings = settings or get_settings()
        if client is None:
            if not self.settings.ai_configured:
                raise AiServiceError("ANTHROPIC_API_KEY is not configured")
            client = anthropic.Anthropic(api_key=self.settings.anthropic_api_key)
        self.client = client

    def _create(self, content: list[dict]) -> str:
        try:
            response = self.client.messages.create(
                model=self.settings.anthropic_model,
                max_tokens=self.settings.ai_max_tokens,
                timeout=self.settings.ai_timeout_seconds,
                messages=[{"role": "user", "content": content}],
            )
        except anthropic.APIError as e:
            logger.error(f"Claude API error: {type(e).__name__}: {e}")
            raise AiServiceError(f"AI service request failed: {e}") from e

        logger.info(
            f"Claude response: stop_reason={response.stop_reason}, "
            f"{response.usage.input_tokens} in, {response.usage.output_tokens} out"
        )
        return _extract_text_from_response(response)

    def generate_text(self, prompt: str) -> str:
        return self._create([{"type": "text", "text": prompt}])

    def generate_text_with_file(self, prompt: str, file: FileInput) -> str:
        """Send the file first, then the prompt that refers to it."""
        return self._create([_file_block(file), {"type": "text", "text": prompt}])
