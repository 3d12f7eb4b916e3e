"""Deterministic rule compiler.

Classifies rule text into an ArtifactKind by keyword precedence and
generates the artifact payload for that kind. Everything here is pure:
no I/O, no randomness, and no exceptions for any input string. The
pipeline always falls back to this compiler when an enhanced strategy
is unavailable or fails.
"""

import json
import re

import frontmatter

from .base import ArtifactKind, CompileResult

# Checked in order; guard keywords always win over action-bundle keywords.
GUARD_KEYWORDS = (
    "block",
    "deny",
    "forbid",
    "prevent",
    "must not",
    "never allow",
    "never",
    "restrict",
)

ACTION_BUNDLE_KEYWORDS = (
    "skill",
    "action",
    "capability",
    "ability",
    "can do",
    "enable",
    "add ability",
)

POLICY_PREFIX = "[POLICY] "
MAX_CONDITION_LENGTH = 120
SKILL_NAME_WORDS = 5
FALLBACK_SKILL_NAME = "rule-skill"

_SENTENCE_END = re.compile(r"[.!?\n]")
_NON_NAME_CHARS = re.compile(r"[^a-z0-9-]")
_REPEATED_HYPHENS = re.compile(r"-{2,}")


def _contains_any(text: str, keywords: tuple[str, ...]) -> bool:
    # Plain substring match, so "unblockable" and "transactions" count.
    lowered = text.lower()
    return any(keyword in lowered for keyword in keywords)


def classify_rule(text: str) -> ArtifactKind:
    """Classify rule text into an artifact kind.

    Args:
        text: The rule text.

    Returns:
        GUARD if any guard keyword is present, else ACTION_BUNDLE if any
        action-bundle keyword is present, else POLICY_FRAGMENT.
    """
    if _contains_any(text, GUARD_KEYWORDS):
        return ArtifactKind.GUARD
    if _contains_any(text, ACTION_BUNDLE_KEYWORDS):
        return ArtifactKind.ACTION_BUNDLE
    return ArtifactKind.POLICY_FRAGMENT


def extract_condition(text: str) -> str:
    """Derive a short condition from the first sentence of the rule.

    Truncated to MAX_CONDITION_LENGTH characters with a trailing
    ellipsis when longer.
    """
    first_sentence = _SENTENCE_END.split(text, maxsplit=1)[0].strip()
    if not first_sentence:
        first_sentence = text.strip()
    if len(first_sentence) > MAX_CONDITION_LENGTH:
        return first_sentence[: MAX_CONDITION_LENGTH - 3] + "..."
    return first_sentence


def derive_skill_name(text: str) -> str:
    """Derive a kebab-case skill name from the first words of the rule."""
    words = text.split()[:SKILL_NAME_WORDS]
    name = _NON_NAME_CHARS.sub("", "-".join(words).lower())
    name = _REPEATED_HYPHENS.sub("-", name).strip("-")
    return name or FALLBACK_SKILL_NAME


def _render_guard(text: str) -> str:
    spec = {
        "kind": "guard",
        "action": "block",
        "reason": text,
        "condition": extract_condition(text),
    }
    return json.dumps(spec, indent=2, ensure_ascii=False)


def _render_skill(text: str) -> str:
    header = frontmatter.dumps(
        frontmatter.Post(
            "",
            name=derive_skill_name(text),
            description=extract_condition(text) or text,
        ),
        sort_keys=False,
    )
    return f"{header}\n\n{text}\n"


def generate_content(kind: ArtifactKind, text: str) -> str:
    """Generate the artifact payload for a kind.

    Args:
        kind: The artifact kind to generate.
        text: The rule text.

    Returns:
        Policy line, guard JSON, or SKILL.md skeleton.
    """
    if kind is ArtifactKind.POLICY_FRAGMENT:
        return POLICY_PREFIX + text
    elif kind is ArtifactKind.GUARD:
        return _render_guard(text)
    elif kind is ArtifactKind.ACTION_BUNDLE:
        return _render_skill(text)
    raise ValueError(f"Unknown artifact kind: {kind}")


def compile_rule_text(text: str) -> CompileResult:
    """Compile rule text using keyword heuristics.

    Args:
        text: The rule text.

    Returns:
        CompileResult with the classified kind and generated content.
    """
    kind = classify_rule(text)
    return CompileResult(kind=kind, content=generate_content(kind, text))
