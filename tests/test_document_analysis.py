"""Pin AI response parsing, upload checks and the analyze/apply/stage flow."""

import pytest

from conftest import OTHER_USER, USER, FakeGenerator, ai_reply
from preference_engine.errors import AiResponseError, AiServiceError, ValidationError
from preference_engine.document_analysis import (
    AnalysisStatus,
    DocumentAnalyzer,
    build_extraction_prompt,
    parse_ai_response,
    strip_code_fences,
    validate_upload,
)
from preference_engine.models import PreferenceStatus
from preference_engine.reconciliation import MISSING, FilterReason, Operation, Suggestion


def ai_item(slug="food.spice_tolerance", new_value="hot", operation="CREATE", **overrides):
    item = {
        "slug": slug,
        "operation": operation,
        "oldValue": None,
        "newValue": new_value,
        "confidence": 0.9,
        "sourceSnippet": "I love very spicy food",
        "sourceMeta": {"page": 1, "line": 4},
    }
    item.update(overrides)
    return item


class TestStripCodeFences:
    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestParseAiResponse:
    def test_valid_reply(self):
        parsed = parse_ai_response(ai_reply([ai_item()]), "an-1", 10, filename="notes.txt")

        assert parsed.document_summary == "A short document."
        suggestion = parsed.suggestions[0]
        assert suggestion.id == "an-1:0"
        assert suggestion.operation == Operation.CREATE
        assert suggestion.new_value == "hot"
        assert suggestion.category == "food"
        assert suggestion.source_meta.page == 1
        assert suggestion.source_meta.filename == "notes.txt"

    def test_fenced_reply(self):
        raw = "```json\n" + ai_reply([ai_item()]) + "\n```"
        assert len(parse_ai_response(raw, "an-1", 10).suggestions) == 1

    def test_fractional_source_position_accepted(self):
        item = ai_item(sourceMeta={"page": 1.5, "line": 12.0})
        parsed = parse_ai_response(ai_reply([item]), "an-1", 10)
        assert parsed.suggestions[0].source_meta.page == 1.5
        assert parsed.suggestions[0].source_meta.line == 12

    def test_invalid_json(self):
        with pytest.raises(AiResponseError, match="invalid JSON"):
            parse_ai_response("Sure! Here are your preferences:", "an-1", 10)

    def test_missing_slug_reports_path(self):
        item = ai_item()
        del item["slug"]
        with pytest.raises(AiResponseError) as exc_info:
            parse_ai_response(ai_reply([item]), "an-1", 10)
        assert exc_info.value.paths == ["suggestions.0.slug"]

    def test_bad_operation_and_confidence(self):
        with pytest.raises(AiResponseError) as exc_info:
            parse_ai_response(
                ai_reply([ai_item(operation="DELETE", confidence=1.5)]), "an-1", 10
            )
        assert set(exc_info.value.paths) == {"suggestions.0.operation", "suggestions.0.confidence"}

    def test_string_confidence_rejected(self):
        with pytest.raises(AiResponseError):
            parse_ai_response(ai_reply([ai_item(confidence="0.9")]), "an-1", 10)

    def test_missing_summary(self):
        with pytest.raises(AiResponseError) as exc_info:
            parse_ai_response('{"suggestions": []}', "an-1", 10)
        assert exc_info.value.paths == ["documentSummary"]

    def test_absent_new_value_is_missing(self):
        item = ai_item()
        del item["newValue"]
        suggestion = parse_ai_response(ai_reply([item]), "an-1", 10).suggestions[0]
        assert suggestion.new_value is MISSING

    def test_null_new_value_is_kept(self):
        suggestion = parse_ai_response(ai_reply([ai_item(new_value=None)]), "an-1", 10).suggestions[0]
        assert suggestion.new_value is None

    def test_truncates_to_max(self):
        items = [ai_item(slug=f"food.item_{i}") for i in range(5)]
        parsed = parse_ai_response(ai_reply(items), "an-1", 2)
        assert [s.id for s in parsed.suggestions] == ["an-1:0", "an-1:1"]

    def test_unknown_slug_passes_parsing(self):
        suggestion = parse_ai_response(ai_reply([ai_item(slug="food.favorite_color")]), "an-1", 10).suggestions[0]
        assert suggestion.category is None


class TestPrompt:
    def test_prompt_includes_catalog_and_current_values(self):
        prompt = build_extraction_prompt(
            [{"slug": "food.spice_tolerance", "value": "mild"}], "menu.pdf", 7
        )
        assert '"slug": "travel.seat_preference"' in prompt
        assert '"value": "mild"' in prompt
        assert 'The document "menu.pdf"' in prompt
        assert "at most 7 suggestions" in prompt


class TestValidateUpload:
    def test_accepts_allowed_type(self, settings):
        validate_upload("a.txt", "text/plain", 10, settings)

    def test_rejects_empty(self, settings):
        with pytest.raises(ValidationError, match="empty"):
            validate_upload("a.txt", "text/plain", 0, settings)

    def test_rejects_oversize(self, settings):
        with pytest.raises(ValidationError, match="maximum size"):
            validate_upload("a.txt", "text/plain", settings.doc_upload_max_bytes + 1, settings)

    def test_rejects_type(self, settings):
        with pytest.raises(ValidationError, match="Unsupported file type: application/zip"):
            validate_upload("a.zip", "application/zip", 10, settings)


class TestAnalyzeDocument:
    def analyze(self, manager, settings, generator, user_id=USER, **kwargs):
        analyzer = DocumentAnalyzer(manager, generator=generator, settings=settings)
        return analyzer.analyze_document(user_id, b"I love spicy food", "text/plain", "notes.txt", **kwargs)

    def test_success_reconciles_against_stored_values(self, manager, settings):
        manager.set_preference(USER, "food.spice_tolerance", "mild")
        generator = FakeGenerator(ai_reply([
            ai_item(new_value="hot", operation="CREATE"),
            ai_item(slug="travel.seat_preference", new_value="aisle"),
            ai_item(slug="food.favorite_color", new_value="red"),
        ]))

        result = self.analyze(manager, settings, generator)

        assert result.status == AnalysisStatus.SUCCESS
        assert [s.slug for s in result.suggestions] == ["food.spice_tolerance", "travel.seat_preference"]
        spice = result.suggestions[0]
        assert (spice.operation, spice.old_value, spice.was_corrected) == (Operation.UPDATE, "mild", True)
        assert result.filtered_count == 1
        assert result.filtered_suggestions[0].filter_reason == FilterReason.UNKNOWN_SLUG

    def test_prompt_and_file_sent_to_generator(self, manager, settings):
        manager.set_preference(USER, "food.spice_tolerance", "mild")
        generator = FakeGenerator(ai_reply([]))

        self.analyze(manager, settings, generator)

        prompt, file = generator.calls[0]
        assert '"value": "mild"' in prompt
        assert file.content == b"I love spicy food"
        assert file.mime_type == "text/plain"

    def test_no_matches(self, manager, settings):
        manager.set_preference(USER, "food.spice_tolerance", "hot")
        generator = FakeGenerator(ai_reply([ai_item(new_value="hot", operation="UPDATE", oldValue="hot")]))

        result = self.analyze(manager, settings, generator)

        assert result.status == AnalysisStatus.NO_MATCHES
        assert result.suggestions == []
        assert result.filtered_suggestions[0].filter_reason == FilterReason.NO_CHANGE
        assert result.document_summary == "A short document."

    def test_parse_error_status(self, manager, settings):
        result = self.analyze(manager, settings, FakeGenerator("not json"))
        assert result.status == AnalysisStatus.PARSE_ERROR
        assert result.suggestions == []

    def test_ai_error_status(self, manager, settings):
        result = self.analyze(manager, settings, FakeGenerator(error=AiServiceError("timeout")))
        assert result.status == AnalysisStatus.AI_ERROR
        assert "unavailable" in result.status_reason

    def test_bad_upload_raises_before_ai_call(self, manager, settings, fake_generator):
        analyzer = DocumentAnalyzer(manager, generator=fake_generator, settings=settings)
        with pytest.raises(ValidationError):
            analyzer.analyze_document(USER, b"", "text/plain", "empty.txt")
        assert fake_generator.calls == []

    def test_location_snapshot_used(self, manager, settings, home):
        manager.set_preference(USER, "location.quiet_hours", "22:00", home.location_id)
        generator = FakeGenerator(ai_reply([ai_item(slug="location.quiet_hours", new_value="22:00")]))

        result = self.analyze(manager, settings, generator, location_id=home.location_id)

        assert result.status == AnalysisStatus.NO_MATCHES

    def test_analysis_does_not_write(self, manager, settings):
        self.analyze(manager, settings, FakeGenerator(ai_reply([ai_item()])))
        assert manager.count(USER) == 0

    def test_to_dict(self, manager, settings):
        data = self.analyze(manager, settings, FakeGenerator(ai_reply([ai_item()]))).to_dict()
        assert data["status"] == "success"
        assert data["suggestions"][0]["new_value"] == "hot"
        assert data["filtered_count"] == 0


class TestApplyAndStage:
    def suggestion(self, slug, new_value, id="an-1:0"):
        return Suggestion(
            id=id,
            slug=slug,
            operation=Operation.CREATE,
            new_value=new_value,
            confidence=0.8,
            source_snippet="from the doc",
        )

    def test_apply_writes_active(self, manager, settings, fake_generator):
        analyzer = DocumentAnalyzer(manager, generator=fake_generator, settings=settings)
        outcome = analyzer.apply_suggestions(USER, [
            self.suggestion("food.spice_tolerance", "hot", "a"),
            self.suggestion("travel.seat_preference", "roof", "b"),
        ])

        assert [p.slug for p in outcome.applied] == ["food.spice_tolerance"]
        assert list(outcome.failures) == ["b"]
        assert manager.get_active_snapshot(USER) == {"food.spice_tolerance": "hot"}

    def test_stage_writes_suggested_with_evidence(self, manager, settings, fake_generator):
        analyzer = DocumentAnalyzer(manager, generator=fake_generator, settings=settings)
        outcome = analyzer.stage_suggestions(USER, [self.suggestion("food.spice_tolerance", "hot")])

        staged = outcome.applied[0]
        assert staged.status == PreferenceStatus.SUGGESTED
        assert staged.confidence == 0.8
        assert staged.evidence["snippets"] == ["from the doc"]
        assert staged.evidence["modelVersion"] == settings.anthropic_model

    def test_stage_skips_rejected(self, manager, settings, fake_generator):
        previous = manager.suggest_preference(USER, "food.spice_tolerance", "hot", 0.5)
        manager.reject_suggestion(previous.id, USER)
        analyzer = DocumentAnalyzer(manager, generator=fake_generator, settings=settings)

        outcome = analyzer.stage_suggestions(USER, [self.suggestion("food.spice_tolerance", "hot")])

        assert outcome.skipped == ["an-1:0"]
        assert outcome.applied == []

    def test_apply_to_foreign_location_fails_per_item(self, manager, settings, fake_generator, foreign_location):
        analyzer = DocumentAnalyzer(manager, generator=fake_generator, settings=settings)
        outcome = analyzer.apply_suggestions(
            USER,
            [self.suggestion("location.quiet_hours", "22:00")],
            foreign_location.location_id,
        )
        assert outcome.applied == []
        assert "own locations" in outcome.failures["an-1:0"]
        assert manager.count(OTHER_USER) == 0

    def test_location_analysis_applies_global_and_location_slugs(self, manager, settings, home):
        generator = FakeGenerator(ai_reply([
            ai_item(slug="system.response_tone", new_value="concise"),
            ai_item(slug="location.quiet_hours", new_value="22:00-07:00"),
        ]))
        analyzer = DocumentAnalyzer(manager, generator=generator, settings=settings)
        result = analyzer.analyze_document(
            USER, b"Keep it short. Quiet after ten.", "text/plain", "notes.txt", home.location_id
        )

        outcome = analyzer.apply_suggestions(USER, result.suggestions, home.location_id)

        assert outcome.failures == {}
        assert {p.slug: p.location_id for p in outcome.applied} == {
            "system.response_tone": None,
            "location.quiet_hours": home.location_id,
        }
        assert manager.get_active_snapshot(USER) == {"system.response_tone": "concise"}
        assert manager.get_active_snapshot(USER, home.location_id) == {
            "system.response_tone": "concise",
            "location.quiet_hours": "22:00-07:00",
        }

    def test_stage_at_location_keeps_global_slugs_global(self, manager, settings, fake_generator, home):
        analyzer = DocumentAnalyzer(manager, generator=fake_generator, settings=settings)
        outcome = analyzer.stage_suggestions(
            USER,
            [
                self.suggestion("food.spice_tolerance", "hot", "a"),
                self.suggestion("location.quiet_hours", "22:00", "b"),
            ],
            home.location_id,
        )

        assert outcome.failures == {}
        assert {p.slug: p.location_id for p in outcome.applied} == {
            "food.spice_tolerance": None,
            "location.quiet_hours": home.location_id,
        }
