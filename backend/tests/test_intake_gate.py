"""Tests for the intake gate classifier."""

import pytest

from reportflow.workflow.gate import (
    intake_block_reason,
    is_intake_complete,
    parse_intake_output,
    parse_json_with_fallbacks,
)


class TestParseJsonWithFallbacks:
    """JSON extraction from model output."""

    def test_plain_json(self):
        assert parse_json_with_fallbacks('{"status": "COMPLEET"}') == {"status": "COMPLEET"}

    def test_fenced_block(self):
        raw = 'Hier is de analyse:\n```json\n{"status": "INCOMPLEET", "ontbrekende_informatie": []}\n```\nEinde.'
        assert parse_json_with_fallbacks(raw)["status"] == "INCOMPLEET"

    def test_balanced_object_in_prose(self):
        raw = 'Resultaat {"status": "COMPLEET", "dossier": {"note": "a } in a string"}} klaar'
        parsed = parse_json_with_fallbacks(raw)
        assert parsed["dossier"]["note"] == "a } in a string"

    def test_status_pattern(self):
        raw = 'prefix {"status": "COMPLEET", "x": 1} suffix'
        assert parse_intake_output(raw) == {"status": "COMPLEET", "x": 1}

    @pytest.mark.parametrize("raw", [None, "", "   ", "geen json hier", "[1, 2, 3]"])
    def test_unparseable(self, raw):
        assert parse_json_with_fallbacks(raw) is None


class TestIsIntakeComplete:
    """Default gate classifier."""

    def test_complete(self):
        assert is_intake_complete('{"status": "COMPLEET", "dossier": {}}')

    def test_incomplete(self):
        assert not is_intake_complete('```json\n{"status": "INCOMPLEET"}\n```')

    def test_missing_output_blocks(self):
        assert not is_intake_complete(None)
        assert not is_intake_complete("")

    def test_legacy_free_text_passes(self):
        """Unstructured output predates the JSON format and is accepted."""
        assert is_intake_complete("Alle informatie is aanwezig.")

    def test_unknown_status_blocks(self):
        assert not is_intake_complete('{"status": "ONBEKEND"}')


class TestIntakeBlockReason:
    """Human-readable block reason."""

    def test_not_run(self):
        assert "eerst" in intake_block_reason(None)

    def test_incomplete(self):
        assert "INCOMPLEET" in intake_block_reason('{"status": "INCOMPLEET"}')

    def test_complete(self):
        assert intake_block_reason('{"status": "COMPLEET"}') is None

    def test_unknown_status(self):
        assert "ONBEKEND" in intake_block_reason('{"status": "ONBEKEND"}')
