"""
Redaction

Masks sensitive content in event payloads before anything is stored.

Profiles:
- relaxed:  high-confidence secrets only (key=value secrets, bearer tokens,
            well-known API key formats, card numbers, SSNs)
- standard: relaxed + emails, phone numbers, account ids, street addresses,
            and whole values under sensitive keys (password, token, ...)
- strict:   standard + IP addresses, high-entropy tokens, and free-text
            feedback fields masked entirely

Redaction is idempotent: replacement tokens never match any pattern, and
each string is rewritten until a full pass changes nothing. Only counts are
logged, never content.
"""

import logging
import math
import re
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Pattern, Tuple

import yaml

from pulsecore.events.models import (
    BackendErrorPayload,
    FeedbackPayload,
    FrontendErrorPayload,
    event_type_of,
    payload_from_dict,
    payload_to_dict,
)

logger = logging.getLogger(__name__)

MAX_DEPTH = 10
MAX_PASSES = 5

TEXT_TOKEN = "[REDACTED_TEXT]"
SECRET_TOKEN = "[REDACTED_SECRET]"

# Ordered: earlier classes win when matches overlap.
REDACTION_PATTERNS: List[Tuple[str, Pattern, str]] = [
    (
        "bearer",
        re.compile(r"\bbearer\s+[A-Za-z0-9\-._~+/]{8,}=*", re.IGNORECASE),
        "Bearer [REDACTED_TOKEN]",
    ),
    (
        "secret",
        re.compile(
            r"\b(api[_-]?key|access[_-]?token|auth[_-]?token|token|password|passwd|pwd|"
            r"secret|client[_-]?secret|credential|authorization)"
            r"(['\"]?\s*[=:]\s*['\"]?)([^\s'\",;\[\]]{8,})",
            re.IGNORECASE,
        ),
        r"\1\2" + SECRET_TOKEN,
    ),
    (
        "api_key",
        re.compile(
            r"\b(?:sk|pk|rk)_(?:live|test)_[A-Za-z0-9]{10,}\b"
            r"|\bAKIA[0-9A-Z]{16}\b"
            r"|\bgh[pousr]_[A-Za-z0-9]{30,}\b"
            r"|\beyJ[A-Za-z0-9_-]{5,}\.eyJ[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]{5,}"
        ),
        "[REDACTED_KEY]",
    ),
    (
        "credit_card",
        re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b"),
        "[REDACTED_CARD]",
    ),
    (
        "ssn",
        re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),
        "[REDACTED_SSN]",
    ),
    (
        "email",
        re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}"),
        "[REDACTED_EMAIL]",
    ),
    (
        "phone",
        re.compile(r"(?<![\w.])(?:\+?1[-.\s])?\(?\d{3}\)?[-.\s]\d{3}[-.\s]\d{4}(?![\w.])"),
        "[REDACTED_PHONE]",
    ),
    (
        "account_id",
        re.compile(r"\b[A-Z]{2,4}[-_]?\d{6,12}\b"),
        "[REDACTED_ID]",
    ),
    (
        "ip_address",
        re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),
        "[REDACTED_IP]",
    ),
    (
        "address",
        re.compile(
            r"\b\d{1,6}\s+(?:[A-Za-z]+\s+){1,4}"
            r"(?:street|st|avenue|ave|road|rd|boulevard|blvd|drive|dr|lane|ln|way|court|ct|place|pl)\b",
            re.IGNORECASE,
        ),
        "[REDACTED_ADDRESS]",
    ),
]

PATTERN_CLASSES = [name for name, _, _ in REDACTION_PATTERNS]
HEURISTIC_CLASSES = ["high_entropy"]
ALL_CLASSES = PATTERN_CLASSES + HEURISTIC_CLASSES

_ENTROPY_CANDIDATE = re.compile(r"(?<![\w\[])[A-Za-z0-9+/_\-=]{32,}(?![\w\]])")
ENTROPY_THRESHOLD = 4.0

# Compared after lower-casing and dropping "-" / "_"
SENSITIVE_KEYS = frozenset({
    "password", "passwd", "pwd", "secret", "token", "apikey", "accesstoken",
    "refreshtoken", "authtoken", "sessiontoken", "authorization", "cookie",
    "setcookie", "clientsecret", "privatekey", "creditcard", "cardnumber", "ssn",
})

FREE_TEXT_FIELDS = frozenset({"description", "reproduction_steps"})


@dataclass(frozen=True)
class RedactionProfile:
    """A named redaction policy."""
    name: str
    classes: Tuple[str, ...]
    mask_sensitive_keys: bool = False
    mask_free_text: bool = False

    def __post_init__(self):
        unknown = [c for c in self.classes if c not in ALL_CLASSES]
        if unknown:
            raise ValueError(f"Profile {self.name!r} names unknown classes: {unknown}")


_RELAXED = ("bearer", "secret", "api_key", "credit_card", "ssn")
_STANDARD = _RELAXED + ("email", "phone", "account_id", "address")
_STRICT = _STANDARD + ("ip_address", "high_entropy")

BUILTIN_PROFILES: Dict[str, RedactionProfile] = {
    "relaxed": RedactionProfile("relaxed", _RELAXED),
    "standard": RedactionProfile("standard", _STANDARD, mask_sensitive_keys=True),
    "strict": RedactionProfile(
        "strict", _STRICT, mask_sensitive_keys=True, mask_free_text=True
    ),
}

DEFAULT_PROFILE = "standard"


@dataclass(frozen=True)
class RedactionResult:
    data: Any
    redactions_applied: int


def load_profiles(path: str) -> Dict[str, RedactionProfile]:
    """
    Load custom profiles from a YAML file.

    Format:
        profiles:
          pci-only:
            classes: [credit_card, ssn]
            mask_sensitive_keys: true
            mask_free_text: false

    Returns:
        Built-in profiles overlaid with the file's profiles
    """
    profiles = dict(BUILTIN_PROFILES)
    file_path = Path(path)
    if not file_path.exists():
        logger.warning(f"Redaction profile file not found: {file_path}")
        return profiles

    with open(file_path) as f:
        data = yaml.safe_load(f) or {}

    for name, spec in (data.get("profiles") or {}).items():
        spec = spec or {}
        profiles[name] = RedactionProfile(
            name=name,
            classes=tuple(spec.get("classes") or ()),
            mask_sensitive_keys=bool(spec.get("mask_sensitive_keys", False)),
            mask_free_text=bool(spec.get("mask_free_text", False)),
        )
        logger.info(f"Loaded redaction profile: {name}")

    return profiles


def shannon_entropy(text: str) -> float:
    if not text:
        return 0.0
    counts = Counter(text)
    length = len(text)
    return -sum(n / length * math.log2(n / length) for n in counts.values())


def _is_high_entropy(token: str) -> bool:
    has_alpha = any(c.isalpha() for c in token)
    has_digit = any(c.isdigit() for c in token)
    return has_alpha and has_digit and shannon_entropy(token) >= ENTROPY_THRESHOLD


def _normalize_key(key: Any) -> str:
    return str(key).lower().replace("-", "").replace("_", "")


class Redactor:
    """
    Applies redaction profiles to strings, mappings and typed payloads.

    Example:
        redactor = Redactor()
        clean, count = redactor.redact(payload, "strict")
    """

    def __init__(self, profiles: Optional[Mapping[str, RedactionProfile]] = None):
        self.profiles: Dict[str, RedactionProfile] = dict(profiles or BUILTIN_PROFILES)

    def get_profile(self, profile: Any) -> RedactionProfile:
        """Resolve a profile by name; unknown names fall back to standard."""
        if isinstance(profile, RedactionProfile):
            return profile
        resolved = self.profiles.get(profile) if profile else None
        if resolved is None:
            logger.warning(f"Unknown redaction profile {profile!r}, using {DEFAULT_PROFILE}")
            resolved = self.profiles.get(DEFAULT_PROFILE, BUILTIN_PROFILES[DEFAULT_PROFILE])
        return resolved

    def redact_string(self, text: Any, profile: Any = DEFAULT_PROFILE) -> Tuple[Any, int]:
        """Redact one string. Non-strings are returned untouched."""
        if not isinstance(text, str) or not text:
            return text, 0

        active = self.get_profile(profile)
        total = 0
        for _ in range(MAX_PASSES):
            text, changed = self._single_pass(text, active)
            total += changed
            if changed == 0:
                break
        return text, total

    def _single_pass(self, text: str, profile: RedactionProfile) -> Tuple[str, int]:
        changed = 0
        for name, pattern, replacement in REDACTION_PATTERNS:
            if name in profile.classes:
                text, n = pattern.subn(replacement, text)
                changed += n

        if "high_entropy" in profile.classes:
            hits = 0

            def _mask(match):
                nonlocal hits
                if _is_high_entropy(match.group(0)):
                    hits += 1
                    return SECRET_TOKEN
                return match.group(0)

            text = _ENTROPY_CANDIDATE.sub(_mask, text)
            changed += hits

        return text, changed

    def redact_object(self, data: Any, profile: Any = DEFAULT_PROFILE) -> RedactionResult:
        """
        Recursively redact a JSON-like structure.

        Unknown shapes and scalars pass through unchanged; nesting deeper
        than MAX_DEPTH is left as is.
        """
        active = self.get_profile(profile)
        total = 0

        def process(value: Any, depth: int, key: Any = None) -> Any:
            nonlocal total
            if depth <= 0:
                return value

            if key is not None and value is not None:
                norm = _normalize_key(key)
                if active.mask_free_text and str(key) in FREE_TEXT_FIELDS and isinstance(value, str):
                    if value and value != TEXT_TOKEN:
                        total += 1
                        return TEXT_TOKEN
                    return value
                if active.mask_sensitive_keys and norm in SENSITIVE_KEYS:
                    if value != SECRET_TOKEN and value != "":
                        total += 1
                        return SECRET_TOKEN
                    return value

            if isinstance(value, str):
                redacted, n = self.redact_string(value, active)
                total += n
                return redacted
            if isinstance(value, Mapping):
                return {k: process(v, depth - 1, k) for k, v in value.items()}
            if isinstance(value, (list, tuple)):
                items = [process(item, depth - 1) for item in value]
                return tuple(items) if isinstance(value, tuple) else items
            return value

        result = process(data, MAX_DEPTH)
        if total:
            logger.debug(f"Applied {total} redactions (profile={active.name})")
        return RedactionResult(data=result, redactions_applied=total)

    def redact(self, payload: Any, profile: Any = DEFAULT_PROFILE) -> Tuple[Any, int]:
        """
        Redact an event payload.

        Typed payload variants come back as the same variant; mappings come
        back as mappings; anything else is returned untouched with 0.
        """
        if isinstance(payload, (FeedbackPayload, FrontendErrorPayload, BackendErrorPayload)):
            result = self.redact_object(payload_to_dict(payload), profile)
            return payload_from_dict(event_type_of(payload), result.data), result.redactions_applied
        if isinstance(payload, Mapping):
            result = self.redact_object(payload, profile)
            return result.data, result.redactions_applied
        return payload, 0

    def identify_pii(self, text: str, profile: Any = DEFAULT_PROFILE) -> List[str]:
        """Names of the content classes present in ``text`` under a profile."""
        if not isinstance(text, str) or not text:
            return []
        active = self.get_profile(profile)
        found = [
            name for name, pattern, _ in REDACTION_PATTERNS
            if name in active.classes and pattern.search(text)
        ]
        if "high_entropy" in active.classes and any(
            _is_high_entropy(m.group(0)) for m in _ENTROPY_CANDIDATE.finditer(text)
        ):
            found.append("high_entropy")
        return found

    def contains_pii(self, text: str, profile: Any = DEFAULT_PROFILE) -> bool:
        return bool(self.identify_pii(text, profile))

    def validate_for_ai(self, text: str) -> Dict[str, Any]:
        """
        Check that text is safe to hand to an external model.

        Secrets are always checked, along with unredacted email, phone, SSN
        and card numbers.
        """
        checked = RedactionProfile(
            "ai-check",
            ("bearer", "secret", "api_key", "email", "phone", "ssn", "credit_card"),
        )
        violations = self.identify_pii(text, checked)
        return {"safe": not violations, "violations": violations}

