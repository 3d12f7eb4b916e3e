"""Rules module: compiles user-written rules into agent artifacts.

A rule compiles into exactly one artifact of one of three kinds:
- Policy fragment: text injected into the agent's system prompt
- Guard: JSON spec used to block tool calls
- Action bundle: SKILL.md materialized in the skills directory
"""

from .base import (
    Artifact,
    ArtifactKind,
    ArtifactStatus,
    ArtifactStore,
    CompileResult,
    PersistenceError,
    Rule,
    RulesError,
    RuleStore,
)
from .compiler import classify_rule, compile_rule_text, generate_content
from .lifecycle import (
    cleanup_skills_for_deleted_rule,
    dematerialize_skill,
    materialize_skill,
    sync_skills_for_rule,
)
from .llm_client import GatewayLLMClient, GroqLLMClient, LLMClientError, create_llm_client
from .pipeline import ArtifactPipeline, PipelineEvent, RecompileSummary
from .skill_writer import (
    FilesystemError,
    NameExtractionError,
    extract_skill_name,
    remove_skill_file,
    resolve_skills_dir,
    write_skill_file,
)
from .strategy import CompileStrategy, CompileStrategyError, LLMClient, LLMCompileStrategy

__all__ = [
    "Artifact",
    "ArtifactKind",
    "ArtifactPipeline",
    "ArtifactStatus",
    "ArtifactStore",
    "CompileResult",
    "CompileStrategy",
    "CompileStrategyError",
    "FilesystemError",
    "GatewayLLMClient",
    "GroqLLMClient",
    "LLMClient",
    "LLMClientError",
    "LLMCompileStrategy",
    "NameExtractionError",
    "PersistenceError",
    "PipelineEvent",
    "RecompileSummary",
    "Rule",
    "RuleStore",
    "RulesError",
    "classify_rule",
    "cleanup_skills_for_deleted_rule",
    "compile_rule_text",
    "create_llm_client",
    "dematerialize_skill",
    "extract_skill_name",
    "generate_content",
    "materialize_skill",
    "remove_skill_file",
    "resolve_skills_dir",
    "sync_skills_for_rule",
    "write_skill_file",
]
