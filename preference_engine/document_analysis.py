"""Document analysis: turn an uploaded file into reconciled preference suggestions.

Flow:
1. Read the user's current ACTIVE preferences
2. Ask Claude to propose changes, giving it the catalog as the list of valid slugs
3. Parse and schema-validate the untrusted reply
4. Reconcile the proposals against stored state
5. Hand the result to the caller, who applies or stages the ones the user keeps
"""

import enum
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from .ai_service import AiTextGenerator, ClaudeTextGenerator, FileInput
from .catalog import Scope, export_prompt_schema, get_definition
from .config import Settings, get_settings
from .errors import AiResponseError, AiServiceError, PreferenceError, ValidationError
from .lifecycle import PreferenceManager
from .models import Preference
from .reconciliation import (
    MISSING,
    FilteredSuggestion,
    Operation,
    SourceMeta,
    Suggestion,
    reconcile_suggestions,
)

logger = logging.getLogger(__name__)


# =============================================================================
# AI Response Schema
# =============================================================================


class AiSourceMeta(BaseModel):
    page: float | None = None
    line: float | None = None


class AiSuggestion(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    slug: str
    operation: Literal["CREATE", "UPDATE"]
    old_value: Any = Field(default=None, alias="oldValue")
    new_value: Any = Field(default=None, alias="newValue")
    confidence: float = Field(ge=0, le=1, strict=True)
    source_snippet: str = Field(alias="sourceSnippet")
    source_meta: AiSourceMeta | None = Field(default=None, alias="sourceMeta")


class AiResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    suggestions: list[AiSuggestion]
    document_summary: str = Field(alias="documentSummary")


@dataclass
class ParsedAiResponse:
    suggestions: list[Suggestion]
    document_summary: str


def strip_code_fences(text: str) -> str:
    """Remove a leading ```json / ``` fence and a trailing ``` fence."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _error_path(loc: tuple) -> str:
    return ".".join(str(part) for part in loc)


def parse_ai_response(
    raw: str,
    analysis_id: str,
    max_suggestions: int,
    filename: str | None = None,
) -> ParsedAiResponse:
    """Parse Claude's reply into suggestions.

    Raises:
        AiResponseError: If the reply is not JSON or does not match the schema.
    """
    try:
        data = json.loads(strip_code_fences(raw))
    except json.JSONDecodeError:
        logger.error("[AI_PARSE_ERROR] json.loads failed - invalid JSON syntax")
        logger.debug(f"[AI_PARSE_ERROR] Raw response: {raw}")
        raise AiResponseError("Failed to parse AI response: invalid JSON")

    try:
        response = AiResponse.model_validate(data)
    except pydantic.ValidationError as e:
        issues = e.errors()
        logger.error(f"[AI_VALIDATION_ERROR] Schema validation failed with {len(issues)} issue(s)")
        for issue in issues:
            logger.error(
                f'[AI_VALIDATION_ERROR] Field "{_error_path(issue["loc"])}": '
                f'{issue["msg"]} (type: {issue["type"]})'
            )
        paths = [_error_path(issue["loc"]) for issue in issues]
        raise AiResponseError(
            f"Failed to parse AI response: validation failed at {', '.join(paths)}",
            paths=paths,
        )

    suggestions = []
    for index, item in enumerate(response.suggestions[:max_suggestions]):
        definition = get_definition(item.slug)
        source_meta = None
        if item.source_meta is not None or filename:
            meta = item.source_meta or AiSourceMeta()
            source_meta = SourceMeta(page=meta.page, line=meta.line, filename=filename)

        suggestions.append(Suggestion(
            id=f"{analysis_id}:{index}",
            slug=item.slug,
            operation=Operation(item.operation),
            old_value=item.old_value,
            new_value=item.new_value if "new_value" in item.model_fields_set else MISSING,
            confidence=item.confidence,
            source_snippet=item.source_snippet,
            source_meta=source_meta,
            category=definition.category if definition else None,
            description=definition.description if definition else None,
        ))

    logger.info(f"[AI_PARSE_SUCCESS] Parsed {len(suggestions)} suggestions from AI response")
    return ParsedAiResponse(suggestions=suggestions, document_summary=response.document_summary)


# =============================================================================
# Prompt
# =============================================================================


def build_extraction_prompt(
    current_preferences: list[dict], filename: str, max_suggestions: int
) -> str:
    """Build the extraction prompt; the catalog export is the only valid slug list."""
    schema_json = json.dumps(export_prompt_schema(), indent=2)
    current_json = json.dumps(current_preferences, indent=2)

    return f"""You are a data extraction assistant that reads documents and proposes preference changes for a user.

Here is the user's current preference schema (valid slugs):
{schema_json}

Here are the user's current preferences:
{current_json}

The document "{filename}" is attached above.

Task:
- Analyze the attached document for any information that indicates a new or updated preference.
- For each item, output a suggestion object using a valid slug from the schema.
- Only suggest changes with clear evidence in the document.
- Return at most {max_suggestions} suggestions, prioritizing higher-confidence items.
- Use ONLY slugs from the schema above. Invalid slugs will be rejected.
- If a preference already exists with the same value, do not include it.
- For UPDATE operations, include the oldValue from current preferences.

Respond with JSON only (no markdown code blocks):
{{
  "suggestions": [
    {{
      "slug": "string (from schema above, e.g. 'food.dietary_restrictions')",
      "operation": "CREATE" | "UPDATE",
      "oldValue": any | null,
      "newValue": any,
      "confidence": 0.0-1.0,
      "sourceSnippet": "string (quote from document)",
      "sourceMeta": {{ "page": number | null, "line": number | null }}
    }}
  ],
  "documentSummary": "Brief 1-2 sentence summary of what the document contains"
}}

If no preferences can be extracted, return:
{{
  "suggestions": [],
  "documentSummary": "Brief summary of document"
}}"""


def scoped_location(slug: str, location_id: str | None) -> str | None:
    """The location a suggestion is written to: only location-scoped slugs take one.

    An analysis run at a location yields both global and location slugs, so
    the batch location applies per slug rather than to every suggestion.
    """
    definition = get_definition(slug)
    if definition is not None and definition.scope == Scope.LOCATION:
        return location_id
    return None


def validate_upload(filename: str, mime_type: str, size: int, settings: Settings) -> None:
    """Check an upload against the configured type and size limits.

    Raises:
        ValidationError: If the file is empty, too large, or of a disallowed type.
    """
    if not filename:
        raise ValidationError("A filename is required")
    if size <= 0:
        raise ValidationError("File is empty")
    if size > settings.doc_upload_max_bytes:
        raise ValidationError(
            f"File exceeds maximum size of {settings.doc_upload_max_bytes} bytes"
        )
    if mime_type not in settings.doc_upload_allowed_mime_types:
        raise ValidationError(
            f"Unsupported file type: {mime_type}. Allowed: "
            f"{', '.join(settings.doc_upload_allowed_mime_types)}"
        )


# =============================================================================
# Results
# =============================================================================


class AnalysisStatus(str, enum.Enum):
    SUCCESS = "success"
    NO_MATCHES = "no_matches"
    PARSE_ERROR = "parse_error"
    AI_ERROR = "ai_error"


@dataclass
class DocumentAnalysisResult:
    analysis_id: str
    status: AnalysisStatus
    suggestions: list[Suggestion] = field(default_factory=list)
    filtered_suggestions: list[FilteredSuggestion] = field(default_factory=list)
    document_summary: str | None = None
    status_reason: str | None = None

    @property
    def filtered_count(self) -> int:
        return len(self.filtered_suggestions)

    def to_dict(self) -> dict:
        return {
            "analysis_id": self.analysis_id,
            "status": self.status.value,
            "status_reason": self.status_reason,
            "document_summary": self.document_summary,
            "suggestions": [s.to_dict() for s in self.suggestions],
            "filtered_suggestions": [s.to_dict() for s in self.filtered_suggestions],
            "filtered_count": self.filtered_count,
        }


@dataclass
class BatchOutcome:
    """What happened to each suggestion in an apply/stage batch."""

    applied: list[Preference] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "applied": [p.to_dict() for p in self.applied],
            "skipped": self.skipped,
            "failures": self.failures,
        }


# =============================================================================
# Analyzer
# =============================================================================


class DocumentAnalyzer:
    """Runs document analysis for a user and commits the suggestions they keep."""

    def __init__(
        self,
        manager: PreferenceManager,
        generator: AiTextGenerator | None = None,
        settings: Settings | None = None,
    ):
        self.manager = manager
        self.settings = settings or get_settings()
        self._generator = generator

    @property
    def generator(self) -> AiTextGenerator:
        if self._generator is None:
            self._generator = ClaudeTextGenerator(self.settings)
        return self._generator

    def analyze_document(
        self,
        user_id: str,
        content: bytes,
        mime_type: str,
        filename: str,
        location_id: str | None = None,
    ) -> DocumentAnalysisResult:
        """Analyze a document and return reconciled suggestions.

        AI failures are reported through ``status``; they are never raised.

        Raises:
            ValidationError: If the upload itself is not acceptable.
        """
        validate_upload(filename, mime_type, len(content), self.settings)

        analysis_id = str(uuid.uuid4())
        logger.info(f"Starting document analysis {analysis_id} for user {user_id}")

        snapshot = self.manager.get_active_snapshot(user_id, location_id)
        prompt = build_extraction_prompt(
            [{"slug": slug, "value": value} for slug, value in snapshot.items()],
            filename,
            self.settings.doc_upload_max_suggestions,
        )

        try:
            logger.info(f"Calling AI for preference extraction from {filename}")
            raw = self.generator.generate_text_with_file(prompt, FileInput(content, mime_type))
            parsed = parse_ai_response(
                raw, analysis_id, self.settings.doc_upload_max_suggestions, filename
            )
        except AiResponseError as e:
            logger.error(f"Analysis {analysis_id} failed: {e}")
            return DocumentAnalysisResult(
                analysis_id=analysis_id,
                status=AnalysisStatus.PARSE_ERROR,
                status_reason="AI response could not be parsed - please try again",
            )
        except AiServiceError as e:
            logger.error(f"Analysis {analysis_id} failed: {e}")
            return DocumentAnalysisResult(
                analysis_id=analysis_id,
                status=AnalysisStatus.AI_ERROR,
                status_reason="AI service unavailable - please try again later",
            )

        reconciled = reconcile_suggestions(parsed.suggestions, snapshot)

        if not reconciled.validated:
            logger.info(
                f"Analysis {analysis_id} completed with no matches found "
                f"(filtered: {reconciled.filtered_count})"
            )
            return DocumentAnalysisResult(
                analysis_id=analysis_id,
                status=AnalysisStatus.NO_MATCHES,
                status_reason="No preference-related information found in document",
                filtered_suggestions=reconciled.filtered,
                document_summary=parsed.document_summary,
            )

        logger.info(
            f"Analysis {analysis_id} completed with {len(reconciled.validated)} suggestions "
            f"(filtered: {reconciled.filtered_count})"
        )
        return DocumentAnalysisResult(
            analysis_id=analysis_id,
            status=AnalysisStatus.SUCCESS,
            suggestions=reconciled.validated,
            filtered_suggestions=reconciled.filtered,
            document_summary=parsed.document_summary,
        )

    def apply_suggestions(
        self,
        user_id: str,
        suggestions: list[Suggestion],
        location_id: str | None = None,
    ) -> BatchOutcome:
        """Write the suggestions the user accepted as ACTIVE preferences.

        Each suggestion is applied on its own; one failure does not stop the rest.
        """
        logger.info(f"Applying {len(suggestions)} suggestions for user {user_id}")
        outcome = BatchOutcome()

        for suggestion in suggestions:
            try:
                preference = self.manager.set_preference(
                    user_id,
                    suggestion.slug,
                    suggestion.new_value,
                    scoped_location(suggestion.slug, location_id),
                )
            except PreferenceError as e:
                logger.error(f"Failed to apply suggestion {suggestion.id}: {e}")
                outcome.failures[suggestion.id] = str(e)
                continue
            logger.info(f"Applied {suggestion.operation.value} for {suggestion.slug}")
            outcome.applied.append(preference)

        logger.info(
            f"Successfully applied {len(outcome.applied)}/{len(suggestions)} suggestions"
        )
        return outcome

    def stage_suggestions(
        self,
        user_id: str,
        suggestions: list[Suggestion],
        location_id: str | None = None,
    ) -> BatchOutcome:
        """Persist suggestions as SUGGESTED rows for later review.

        Tuples the user already rejected are reported in ``skipped``.
        """
        outcome = BatchOutcome()
        inferred_at = datetime.now(timezone.utc).isoformat()

        for suggestion in suggestions:
            evidence = {
                "snippets": [suggestion.source_snippet] if suggestion.source_snippet else [],
                "modelVersion": self.settings.anthropic_model,
                "inferredAt": inferred_at,
            }
            if suggestion.source_meta and suggestion.source_meta.filename:
                evidence["reason"] = f"Extracted from {suggestion.source_meta.filename}"

            try:
                preference = self.manager.suggest_preference(
                    user_id,
                    suggestion.slug,
                    suggestion.new_value,
                    suggestion.confidence,
                    scoped_location(suggestion.slug, location_id),
                    evidence,
                )
            except PreferenceError as e:
                logger.warning(f"Could not stage suggestion {suggestion.id}: {e}")
                outcome.failures[suggestion.id] = str(e)
                continue

            if preference is None:
                outcome.skipped.append(suggestion.id)
            else:
                outcome.applied.append(preference)

        return outcome
