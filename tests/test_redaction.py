"""
Tests for pulsecore/pipeline/redaction.py
"""

import pytest

from pulsecore.events.models import BackendErrorPayload, FeedbackPayload
from pulsecore.pipeline.redaction import (
    BUILTIN_PROFILES,
    SECRET_TOKEN,
    TEXT_TOKEN,
    RedactionProfile,
    Redactor,
    load_profiles,
    shannon_entropy,
)


MIXED_TEXT = (
    "Bearer abcdefgh12345678 sent password=hunter2secret "
    "card 4111 1111 1111 1111 ssn 123-45-6789 call 555-123-4567 "
    "mail jane.doe@example.com"
)


@pytest.fixture
def redactor():
    return Redactor()


class TestRedactString:
    """Pattern-based masking of single strings."""

    def test_email_masked_under_standard(self, redactor):
        text, count = redactor.redact_string("contact jane.doe@example.com please", "standard")

        assert text == "contact [REDACTED_EMAIL] please"
        assert count == 1

    def test_relaxed_keeps_emails(self, redactor):
        text, count = redactor.redact_string("contact jane.doe@example.com please", "relaxed")

        assert text == "contact jane.doe@example.com please"
        assert count == 0

    def test_secrets_masked_under_relaxed(self, redactor):
        text, count = redactor.redact_string("api_key=sk_live_abcdefghijklmnop", "relaxed")

        assert "sk_live_abcdefghijklmnop" not in text
        assert count >= 1

    def test_mixed_content(self, redactor):
        text, count = redactor.redact_string(MIXED_TEXT, "standard")

        assert "abcdefgh12345678" not in text
        assert "hunter2secret" not in text
        assert "4111" not in text
        assert "123-45-6789" not in text
        assert "555-123-4567" not in text
        assert "jane.doe@example.com" not in text
        assert "[REDACTED_CARD]" in text
        assert "[REDACTED_SSN]" in text
        assert count >= 6

    def test_ip_only_masked_under_strict(self, redactor):
        standard, _ = redactor.redact_string("request from 10.20.30.40 failed", "standard")
        strict, count = redactor.redact_string("request from 10.20.30.40 failed", "strict")

        assert "10.20.30.40" in standard
        assert strict == "request from [REDACTED_IP] failed"
        assert count == 1

    def test_high_entropy_token_under_strict(self, redactor):
        token = "aB3dE5fG7hJ9kL1mN3pQ5rS7tU9vW1xY3zA"
        text, count = redactor.redact_string(f"session {token} expired", "strict")

        assert text == f"session {SECRET_TOKEN} expired"
        assert count == 1

    def test_low_entropy_run_kept(self, redactor):
        text, count = redactor.redact_string("a" * 40, "strict")

        assert text == "a" * 40
        assert count == 0

    def test_non_string_passthrough(self, redactor):
        assert redactor.redact_string(None) == (None, 0)
        assert redactor.redact_string(42) == (42, 0)
        assert redactor.redact_string("") == ("", 0)


class TestIdempotency:
    """Redacting already-redacted content changes nothing."""

    @pytest.mark.parametrize("profile", ["relaxed", "standard", "strict"])
    def test_second_pass_is_noop(self, redactor, profile):
        once, _ = redactor.redact_string(MIXED_TEXT, profile)
        twice, count = redactor.redact_string(once, profile)

        assert twice == once
        assert count == 0

    def test_object_second_pass_counts_zero(self, redactor):
        data = {
            "message": MIXED_TEXT,
            "headers": {"Authorization": "Basic dXNlcjpwYXNz"},
            "description": "call me at 555-123-4567",
        }
        first = redactor.redact_object(data, "strict")
        second = redactor.redact_object(first.data, "strict")

        assert first.redactions_applied > 0
        assert second.data == first.data
        assert second.redactions_applied == 0


class TestRedactObject:
    """Recursive redaction of JSON-like structures."""

    def test_sensitive_keys_masked_whole(self, redactor):
        result = redactor.redact_object(
            {"headers": {"Authorization": "abc", "Accept": "text/html"}},
            "standard",
        )

        assert result.data["headers"]["Authorization"] == SECRET_TOKEN
        assert result.data["headers"]["Accept"] == "text/html"
        assert result.redactions_applied == 1

    def test_relaxed_keeps_sensitive_keys(self, redactor):
        result = redactor.redact_object({"token": "abc"}, "relaxed")

        assert result.data == {"token": "abc"}
        assert result.redactions_applied == 0

    def test_lists_and_scalars(self, redactor):
        result = redactor.redact_object(
            {"items": ["ok", "mail a@example.com", 3, None, True]},
            "standard",
        )

        assert result.data["items"] == ["ok", "mail [REDACTED_EMAIL]", 3, None, True]

    def test_depth_limit_leaves_deep_values(self, redactor):
        data = current = {}
        for _ in range(12):
            current["next"] = {}
            current = current["next"]
        current["email"] = "deep@example.com"

        result = redactor.redact_object(data, "standard")

        node = result.data
        for _ in range(12):
            node = node["next"]
        assert node["email"] == "deep@example.com"

    def test_unknown_shapes_never_raise(self, redactor):
        assert redactor.redact_object(None).data is None
        assert redactor.redact_object(3.5).data == 3.5
        assert redactor.redact_object(object).data is object

    def test_input_not_mutated(self, redactor):
        data = {"message": "mail a@example.com"}
        redactor.redact_object(data, "standard")

        assert data == {"message": "mail a@example.com"}

    def test_default_profile_is_standard(self, redactor):
        result = redactor.redact_object({"message": "mail a@example.com"})

        assert result.data["message"] == "mail [REDACTED_EMAIL]"


class TestRedactPayload:
    """Typed payload variants in, same variant out."""

    def test_backend_payload_keeps_variant(self, redactor):
        payload = BackendErrorPayload(
            error_type="ValueError",
            message="bad user jane@example.com",
            service_name="billing",
            http_status=500,
            extra={"region": "eu-west-1"},
        )

        clean, count = redactor.redact(payload, "standard")

        assert isinstance(clean, BackendErrorPayload)
        assert clean.message == "bad user [REDACTED_EMAIL]"
        assert clean.http_status == 500
        assert clean.extra == {"region": "eu-west-1"}
        assert count == 1

    def test_strict_masks_free_text(self, redactor):
        payload = FeedbackPayload(
            category="bug",
            description="checkout broke, my email is jane@example.com",
            reproduction_steps="click pay",
        )

        clean, count = redactor.redact(payload, "strict")

        assert clean.description == TEXT_TOKEN
        assert clean.reproduction_steps == TEXT_TOKEN
        assert clean.category == "bug"
        assert count == 2

    def test_standard_keeps_free_text_but_masks_pii(self, redactor):
        payload = FeedbackPayload(category="bug", description="my email is jane@example.com")

        clean, _ = redactor.redact(payload, "standard")

        assert clean.description == "my email is [REDACTED_EMAIL]"

    def test_unknown_profile_falls_back_to_standard(self, redactor):
        payload = FeedbackPayload(description="mail jane@example.com")

        clean, count = redactor.redact(payload, "no-such-profile")

        assert clean.description == "mail [REDACTED_EMAIL]"
        assert count == 1

    def test_non_payload_passthrough(self, redactor):
        assert redactor.redact("plain string") == ("plain string", 0)
        assert redactor.redact(None) == (None, 0)


class TestProfiles:
    """Built-in and YAML-defined profiles."""

    def test_builtin_profiles(self):
        assert set(BUILTIN_PROFILES) == {"relaxed", "standard", "strict"}
        assert set(BUILTIN_PROFILES["relaxed"].classes) < set(BUILTIN_PROFILES["standard"].classes)
        assert set(BUILTIN_PROFILES["standard"].classes) < set(BUILTIN_PROFILES["strict"].classes)

    def test_unknown_class_rejected(self):
        with pytest.raises(ValueError):
            RedactionProfile("broken", ("email", "not_a_class"))

    def test_load_profiles_from_yaml(self, tmp_path):
        path = tmp_path / "profiles.yaml"
        path.write_text(
            "profiles:\n"
            "  pci-only:\n"
            "    classes: [credit_card, ssn]\n"
            "    mask_sensitive_keys: true\n"
        )

        profiles = load_profiles(str(path))
        redactor = Redactor(profiles)

        assert "standard" in profiles
        assert profiles["pci-only"].classes == ("credit_card", "ssn")
        text, _ = redactor.redact_string(
            "card 4111 1111 1111 1111 from jane@example.com", "pci-only"
        )
        assert text == "card [REDACTED_CARD] from jane@example.com"

    def test_profiles_scoped_to_instance(self):
        tenant = Redactor()
        tenant.profiles["emails-only"] = RedactionProfile("emails-only", ("email",))

        assert "emails-only" not in Redactor().profiles
        assert "emails-only" not in BUILTIN_PROFILES

    def test_missing_yaml_returns_builtins(self, tmp_path):
        profiles = load_profiles(str(tmp_path / "missing.yaml"))

        assert profiles == BUILTIN_PROFILES


class TestDetection:
    """PII detection helpers."""

    def test_identify_pii(self, redactor):
        found = redactor.identify_pii("mail jane@example.com or call 555-123-4567")

        assert "email" in found
        assert "phone" in found

    def test_contains_pii(self, redactor):
        assert redactor.contains_pii("mail jane@example.com")
        assert not redactor.contains_pii("nothing to see here")

    def test_validate_for_ai(self, redactor):
        unsafe = redactor.validate_for_ai("mail jane@example.com")
        safe = redactor.validate_for_ai("mail [REDACTED_EMAIL]")

        assert unsafe == {"safe": False, "violations": ["email"]}
        assert safe == {"safe": True, "violations": []}

    def test_shannon_entropy(self):
        assert shannon_entropy("") == 0.0
        assert shannon_entropy("aaaa") == 0.0
        assert shannon_entropy("abcd") == pytest.approx(2.0)
