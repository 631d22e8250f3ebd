"""
Tests for structured logging helpers.
"""

from unittest.mock import MagicMock

import pytest

from civic_federation.monitoring.logging import (
    REDACTED,
    add_service_info,
    log_duration,
    redact_sensitive_fields,
)


class TestRedaction:
    """Tests for the redaction processor."""

    def test_masks_top_level_and_nested_fields(self):
        event = {
            "event": "verifier_validated",
            "did": "did:civic:v1",
            "voter_id": "did:civic:citizen42",
            "zkProof": {"registrationProof": "reg_proof_1", "chainSignature": "sig"},
            "entries": [{"publicKey": "pk1", "tier": "expert"}],
        }

        result = redact_sensitive_fields(None, "info", event)

        assert result["did"] == "did:civic:v1"
        assert result["voter_id"] == REDACTED
        assert result["zkProof"] == {"registrationProof": REDACTED, "chainSignature": REDACTED}
        assert result["entries"] == [{"publicKey": REDACTED, "tier": "expert"}]

    def test_service_info(self):
        result = add_service_info(None, "info", {"event": "x"})

        assert result["service"] == "civic-federation"
        assert "timestamp" in result


class TestLogDuration:
    """Tests for log_duration."""

    def test_logs_completion(self):
        logger = MagicMock()

        with log_duration(logger, "registry_fetch", registry_ref="reg-1"):
            pass

        event, = logger.info.call_args.args
        assert event == "registry_fetch_completed"
        assert logger.info.call_args.kwargs["registry_ref"] == "reg-1"

    def test_logs_failure_and_reraises(self):
        logger = MagicMock()

        with pytest.raises(ValueError):
            with log_duration(logger, "registry_fetch", level="debug"):
                raise ValueError("boom")

        assert logger.error.call_args.args == ("registry_fetch_failed",)
        assert logger.error.call_args.kwargs["error"] == "boom"
        logger.debug.assert_not_called()
