"""Enhanced compile strategies.

A CompileStrategy turns rule text into a CompileResult, usually by asking
an LLM. Strategies are optional: the pipeline always wraps them with the
deterministic compiler and falls back to it on any error.
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable, Protocol

from .base import ArtifactKind, CompileResult, RulesError
from .skill_writer import NameExtractionError, extract_skill_name

logger = logging.getLogger(__name__)

CompileStrategy = Callable[[str], CompileResult | Awaitable[CompileResult]]


class CompileStrategyError(RulesError):
    """Raised when an enhanced strategy fails or returns malformed output."""

    pass


class LLMClient(Protocol):
    """Protocol for LLM access.

    Allows the strategy to call an LLM without depending on a specific provider.
    """

    async def complete(self, prompt: str, system: str | None = None) -> str:
        """Complete a prompt and return the text response."""
        ...


CLASSIFICATION_PROMPT = """You classify user-written rules for an agent runtime.

Pick exactly ONE artifact type for the rule:

1. "policy-fragment": a behavioral guideline, preference, tone or soft
   constraint injected into the agent's system prompt. This is the default.
   Examples: "Always respond in formal English", "Keep answers short"

2. "guard": a hard boundary enforced by intercepting tool calls. Guards
   BLOCK or MODIFY concrete, checkable actions (paths, tools, times).
   Examples: "Never write to /etc", "Block file deletions after 6pm"

3. "action-bundle": a new reusable capability (skill) the agent gains.
   Examples: "Add a skill to deploy to staging", "Enable database backups"

Reply with ONLY a JSON object, no markdown:
{"type": "<policy-fragment|guard|action-bundle>", "reasoning": "<one sentence>"}"""

POLICY_PROMPT = """You write policy directives for an agent's system prompt.

Rewrite the user's rule as a concise directive:
- imperative form ("Do X", "Never Y", "Always Z")
- specific and unambiguous
- 1 to 3 sentences
Output ONLY the directive text."""

GUARD_PROMPT = """You write guard specifications that intercept agent tool calls.

Output ONLY a JSON object, no markdown:
{
  "kind": "guard",
  "toolPattern": "<glob for tool names, e.g. '*' or 'file_*'>",
  "condition": "<human-readable condition>",
  "action": "<block|confirm|modify>",
  "reason": "<message shown when the guard triggers>",
  "params": {}
}"""

SKILL_PROMPT = """You write SKILL.md files describing agent skills.

Output ONLY the file, starting with YAML frontmatter:
---
name: <kebab-case-skill-name>
description: <one-line description>
---

<Step-by-step instructions for the agent, with relevant context and constraints.>"""

GENERATION_PROMPTS = {
    ArtifactKind.POLICY_FRAGMENT: POLICY_PROMPT,
    ArtifactKind.GUARD: GUARD_PROMPT,
    ArtifactKind.ACTION_BUNDLE: SKILL_PROMPT,
}


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block, if any."""
    stripped = text.strip()
    if not stripped.startswith("```"):
        return stripped
    lines = stripped.split("\n")[1:]
    if lines and lines[-1].strip().startswith("```"):
        lines = lines[:-1]
    return "\n".join(lines).strip()


def parse_classification(reply: str) -> ArtifactKind:
    """Parse the classifier reply into an ArtifactKind.

    Unparseable replies and unknown types default to POLICY_FRAGMENT.
    """
    try:
        data = json.loads(strip_code_fences(reply))
    except json.JSONDecodeError:
        logger.warning("Failed to parse LLM classification response: %s", reply[:200])
        return ArtifactKind.POLICY_FRAGMENT

    raw_type = data.get("type") if isinstance(data, dict) else None
    try:
        return ArtifactKind(raw_type)
    except ValueError:
        logger.warning("LLM returned unknown type %r, defaulting to policy-fragment", raw_type)
        return ArtifactKind.POLICY_FRAGMENT


def validate_result(result: object) -> CompileResult:
    """Check that strategy output is safe to persist.

    Raises:
        CompileStrategyError: If the result is not a CompileResult, has
            empty content, a guard that is not a JSON object, or a skill
            without an extractable name.
    """
    if not isinstance(result, CompileResult):
        raise CompileStrategyError(
            f"Strategy returned {type(result).__name__}, expected CompileResult"
        )
    if not isinstance(result.kind, ArtifactKind):
        raise CompileStrategyError(f"Strategy returned unknown kind: {result.kind!r}")
    if not isinstance(result.content, str) or not result.content.strip():
        raise CompileStrategyError("Strategy returned empty content")

    if result.kind is ArtifactKind.GUARD:
        try:
            spec = json.loads(result.content)
        except json.JSONDecodeError as e:
            raise CompileStrategyError(f"Guard content is not valid JSON: {e}") from e
        if not isinstance(spec, dict):
            raise CompileStrategyError("Guard content must be a JSON object")
    elif result.kind is ArtifactKind.ACTION_BUNDLE:
        try:
            extract_skill_name(result.content)
        except NameExtractionError as e:
            raise CompileStrategyError(f"Skill content is unusable: {e}") from e

    return result


class LLMCompileStrategy:
    """Compile rules with two LLM calls: classify, then generate.

    Each attempt is bounded by a timeout. Failed attempts are retried with
    exponential backoff; once retries are exhausted a CompileStrategyError
    is raised and the pipeline falls back to the heuristic compiler.

    Example:
        llm = GatewayLLMClient("http://127.0.0.1:18789", auth_token="...")
        pipeline = ArtifactPipeline(storage, strategy=LLMCompileStrategy(llm))
    """

    def __init__(
        self,
        llm: LLMClient,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
        timeout: float = 60.0,
    ) -> None:
        """Initialize the strategy.

        Args:
            llm: Client used for both calls.
            max_retries: Total number of attempts (at least 1).
            retry_base_delay: Delay before the first retry, doubled each time.
            timeout: Seconds allowed for one attempt (both calls).
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self.llm = llm
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.timeout = timeout

    async def classify(self, rule_text: str) -> ArtifactKind:
        """Ask the LLM which artifact kind the rule is."""
        reply = await self.llm.complete(rule_text, system=CLASSIFICATION_PROMPT)
        return parse_classification(reply)

    async def generate(self, rule_text: str, kind: ArtifactKind) -> str:
        """Ask the LLM for the artifact content of a kind."""
        reply = await self.llm.complete(rule_text, system=GENERATION_PROMPTS[kind])
        return strip_code_fences(reply)

    async def _attempt(self, rule_text: str) -> CompileResult:
        kind = await self.classify(rule_text)
        logger.info("Classified as: %s", kind.value)
        content = await self.generate(rule_text, kind)
        logger.info("Generated %s content (%d chars)", kind.value, len(content))
        return validate_result(CompileResult(kind=kind, content=content))

    async def __call__(self, rule_text: str) -> CompileResult:
        """Compile rule text, retrying failed attempts.

        Raises:
            CompileStrategyError: When every attempt failed.
        """
        last_error: Exception | None = None

        for attempt in range(self.max_retries):
            try:
                return await asyncio.wait_for(self._attempt(rule_text), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                last_error = e
                logger.warning(
                    "LLM compile attempt %d/%d timed out after %ss",
                    attempt + 1, self.max_retries, self.timeout,
                )
            except Exception as e:
                last_error = e
                logger.warning(
                    "LLM compile attempt %d/%d failed: %s",
                    attempt + 1, self.max_retries, e,
                )

            if attempt < self.max_retries - 1 and self.retry_base_delay > 0:
                await asyncio.sleep(self.retry_base_delay * 2**attempt)

        raise CompileStrategyError(
            f"LLM compilation failed after {self.max_retries} attempt(s): {last_error}"
        ) from last_error
