"""Tests for ArtifactPipeline."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from easyclaw.rules.base import (
    ArtifactKind,
    ArtifactStatus,
    CompileResult,
    PersistenceError,
    Rule,
)
from easyclaw.rules.pipeline import ArtifactPipeline, PipelineEvent, RecompileSummary
from easyclaw.storage import Storage


@pytest.fixture
def storage(tmp_path: Path) -> Storage:
    """Create a Storage with a temporary database."""
    storage = Storage(tmp_path / "rules.db")
    storage.init_db()
    yield storage
    storage.close()


@pytest.fixture
def pipeline(storage: Storage) -> ArtifactPipeline:
    return ArtifactPipeline(storage)


def fail_content_updates(original):
    """Wrap ArtifactRepository.update so content updates fail."""

    def update(artifact_id, **fields):
        if "content" in fields:
            raise PersistenceError("disk full")
        return original(artifact_id, **fields)

    return update


class TestCompileRule:
    """Tests for compile_rule."""

    @pytest.mark.asyncio
    async def test_creates_artifact(self, storage: Storage, pipeline: ArtifactPipeline):
        rule = storage.rules.create("Always respond in a polite tone")

        artifact = await pipeline.compile_rule(rule)

        assert artifact.rule_id == rule.id
        assert artifact.kind is ArtifactKind.POLICY_FRAGMENT
        assert artifact.content == "[POLICY] Always respond in a polite tone"
        assert artifact.status is ArtifactStatus.OK
        assert artifact.compiled_at
        assert pipeline.get_artifacts(rule.id) == [artifact]

    @pytest.mark.asyncio
    async def test_recompile_is_idempotent(self, storage: Storage, pipeline: ArtifactPipeline):
        """Compiling twice keeps one artifact with the same id and content."""
        rule = storage.rules.create("Block all access to /etc/passwd")

        first = await pipeline.compile_rule(rule)
        second = await pipeline.compile_rule(rule)

        assert second.id == first.id
        assert second.kind is first.kind
        assert second.content == first.content
        assert len(pipeline.get_artifacts(rule.id)) == 1

    @pytest.mark.asyncio
    async def test_kind_change_keeps_artifact_id(
        self, storage: Storage, pipeline: ArtifactPipeline
    ):
        rule = storage.rules.create("Add a skill to summarize documents")
        first = await pipeline.compile_rule(rule)

        edited = storage.rules.update(rule.id, "Block dangerous commands")
        second = await pipeline.compile_rule(edited)

        assert first.kind is ArtifactKind.ACTION_BUNDLE
        assert second.kind is ArtifactKind.GUARD
        assert second.id == first.id
        assert len(pipeline.get_artifacts(rule.id)) == 1

    @pytest.mark.asyncio
    async def test_emits_compiled_event(self, storage: Storage, pipeline: ArtifactPipeline):
        handler = MagicMock()
        pipeline.subscribe(PipelineEvent.COMPILED, handler)
        rule = storage.rules.create("Keep answers short")

        artifact = await pipeline.compile_rule(rule)

        handler.assert_called_once_with(rule.id, artifact)

    @pytest.mark.asyncio
    async def test_failure_keeps_last_known_good(
        self, storage: Storage, pipeline: ArtifactPipeline
    ):
        """A failed recompile only flips status; content and kind survive."""
        rule = storage.rules.create("Keep answers short")
        good = await pipeline.compile_rule(rule)

        failed_handler = MagicMock()
        compiled_handler = MagicMock()
        pipeline.subscribe(PipelineEvent.FAILED, failed_handler)
        pipeline.subscribe(PipelineEvent.COMPILED, compiled_handler)

        edited = storage.rules.update(rule.id, "Block everything")
        original_update = storage.artifacts.update
        with patch.object(
            storage.artifacts, "update", side_effect=fail_content_updates(original_update)
        ):
            result = await pipeline.compile_rule(edited)

        assert result.status is ArtifactStatus.FAILED
        assert result.id == good.id

        stored = pipeline.get_artifact(rule.id)
        assert stored.status is ArtifactStatus.FAILED
        assert stored.kind is ArtifactKind.POLICY_FRAGMENT
        assert stored.content == good.content

        failed_handler.assert_called_once()
        assert failed_handler.call_args.args[0] == rule.id
        assert isinstance(failed_handler.call_args.args[1], PersistenceError)
        compiled_handler.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_without_prior_artifact_persists_nothing(
        self, storage: Storage, pipeline: ArtifactPipeline
    ):
        """A rule missing from the store cannot get an artifact."""
        failed_handler = MagicMock()
        pipeline.subscribe(PipelineEvent.FAILED, failed_handler)
        orphan = Rule(id="no-such-rule", text="Keep answers short")

        result = await pipeline.compile_rule(orphan)

        assert result.status is ArtifactStatus.FAILED
        assert result.rule_id == "no-such-rule"
        assert pipeline.get_artifacts("no-such-rule") == []
        failed_handler.assert_called_once()

    @pytest.mark.asyncio
    async def test_success_after_failure_restores_ok(
        self, storage: Storage, pipeline: ArtifactPipeline
    ):
        rule = storage.rules.create("Keep answers short")
        await pipeline.compile_rule(rule)

        original_update = storage.artifacts.update
        with patch.object(
            storage.artifacts, "update", side_effect=fail_content_updates(original_update)
        ):
            await pipeline.compile_rule(rule)

        artifact = await pipeline.compile_rule(rule)

        assert artifact.status is ArtifactStatus.OK
        assert pipeline.get_artifact(rule.id).is_ok


class TestCompileStrategy:
    """Tests for the optional enhanced strategy."""

    @pytest.mark.asyncio
    async def test_sync_strategy_used(self, storage: Storage):
        strategy = MagicMock(
            return_value=CompileResult(ArtifactKind.POLICY_FRAGMENT, "Be brief.")
        )
        pipeline = ArtifactPipeline(storage, strategy=strategy)
        rule = storage.rules.create("Keep answers short")

        artifact = await pipeline.compile_rule(rule)

        strategy.assert_called_once_with("Keep answers short")
        assert artifact.content == "Be brief."

    @pytest.mark.asyncio
    async def test_async_strategy_used(self, storage: Storage):
        strategy = AsyncMock(
            return_value=CompileResult(ArtifactKind.GUARD, '{"action": "block"}')
        )
        pipeline = ArtifactPipeline(storage, strategy=strategy)
        rule = storage.rules.create("Keep answers short")

        artifact = await pipeline.compile_rule(rule)

        assert artifact.kind is ArtifactKind.GUARD
        assert artifact.content == '{"action": "block"}'

    @pytest.mark.asyncio
    async def test_strategy_error_falls_back(self, storage: Storage):
        """A raising strategy is replaced by the heuristic compiler."""
        strategy = AsyncMock(side_effect=RuntimeError("LLM down"))
        pipeline = ArtifactPipeline(storage, strategy=strategy)
        rule = storage.rules.create("Block all access to /etc/passwd")

        artifact = await pipeline.compile_rule(rule)

        assert artifact.status is ArtifactStatus.OK
        assert artifact.kind is ArtifactKind.GUARD

    @pytest.mark.asyncio
    async def test_malformed_strategy_output_falls_back(self, storage: Storage):
        """Invalid guard JSON from a strategy is never persisted."""
        strategy = MagicMock(return_value=CompileResult(ArtifactKind.GUARD, "not json"))
        pipeline = ArtifactPipeline(storage, strategy=strategy)
        rule = storage.rules.create("Always respond in a polite tone")

        artifact = await pipeline.compile_rule(rule)

        assert artifact.kind is ArtifactKind.POLICY_FRAGMENT
        assert artifact.content == "[POLICY] Always respond in a polite tone"


class TestRecompileAll:
    """Tests for recompile_all."""

    @pytest.mark.asyncio
    async def test_counts(self, storage: Storage, pipeline: ArtifactPipeline):
        storage.rules.create("Keep answers short")
        storage.rules.create("Block sudo")
        storage.rules.create("Add a skill to deploy")

        summary = await pipeline.recompile_all()

        assert summary == RecompileSummary(succeeded=3, failed=0)
        assert summary.total == 3
        assert len(storage.artifacts.get_all()) == 3

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(
        self, storage: Storage, pipeline: ArtifactPipeline
    ):
        ok_rule = storage.rules.create("Keep answers short")
        bad_rule = storage.rules.create("Block sudo")
        await pipeline.compile_rule(ok_rule)
        await pipeline.compile_rule(bad_rule)

        original_update = storage.artifacts.update
        bad_artifact = pipeline.get_artifact(bad_rule.id)

        def update(artifact_id, **fields):
            if artifact_id == bad_artifact.id and "content" in fields:
                raise PersistenceError("locked")
            return original_update(artifact_id, **fields)

        with patch.object(storage.artifacts, "update", side_effect=update):
            summary = await pipeline.recompile_all()

        assert summary.succeeded == 1
        assert summary.failed == 1
        assert pipeline.get_artifact(ok_rule.id).is_ok
        assert not pipeline.get_artifact(bad_rule.id).is_ok

    @pytest.mark.asyncio
    async def test_empty_store(self, pipeline: ArtifactPipeline):
        summary = await pipeline.recompile_all()
        assert summary.total == 0


class TestRemoveArtifacts:
    """Tests for remove_artifacts."""

    @pytest.mark.asyncio
    async def test_removes(self, storage: Storage, pipeline: ArtifactPipeline):
        rule = storage.rules.create("Keep answers short")
        await pipeline.compile_rule(rule)

        assert pipeline.remove_artifacts(rule.id) == 1
        assert pipeline.get_artifact(rule.id) is None

    def test_no_artifacts_is_noop(self, pipeline: ArtifactPipeline):
        assert pipeline.remove_artifacts("missing") == 0


class TestViews:
    """Tests for the policy view and active guards."""

    @pytest.mark.asyncio
    async def test_policy_view_in_creation_order(
        self, storage: Storage, pipeline: ArtifactPipeline
    ):
        texts = ["Be polite", "Keep answers short", "Use metric units"]
        for text in texts:
            await pipeline.compile_rule(storage.rules.create(text))

        view = pipeline.get_compiled_policy_view()

        assert view == "\n".join(f"[POLICY] {text}" for text in texts)

    @pytest.mark.asyncio
    async def test_policy_view_excludes_other_kinds_and_failed(
        self, storage: Storage, pipeline: ArtifactPipeline
    ):
        polite = storage.rules.create("Be polite")
        short = storage.rules.create("Keep answers short")
        await pipeline.compile_rule(polite)
        await pipeline.compile_rule(short)
        await pipeline.compile_rule(storage.rules.create("Block sudo"))

        artifact = pipeline.get_artifact(short.id)
        storage.artifacts.update(artifact.id, status=ArtifactStatus.FAILED)

        assert pipeline.get_compiled_policy_view() == "[POLICY] Be polite"

    @pytest.mark.asyncio
    async def test_policy_view_bounded(self, storage: Storage, pipeline: ArtifactPipeline):
        """Only whole fragments that fit the bound are included."""
        for text in ["aaaa", "bbbb", "cccc"]:
            await pipeline.compile_rule(storage.rules.create(text))

        # "[POLICY] aaaa" is 13 chars, two fragments plus newline are 27
        assert pipeline.get_compiled_policy_view(max_length=12) == ""
        assert pipeline.get_compiled_policy_view(max_length=13) == "[POLICY] aaaa"
        assert pipeline.get_compiled_policy_view(max_length=26) == "[POLICY] aaaa"
        assert (
            pipeline.get_compiled_policy_view(max_length=27)
            == "[POLICY] aaaa\n[POLICY] bbbb"
        )

    @pytest.mark.asyncio
    async def test_policy_view_default_bound(self, storage: Storage):
        pipeline = ArtifactPipeline(storage, max_policy_length=13)
        for text in ["aaaa", "bbbb"]:
            await pipeline.compile_rule(storage.rules.create(text))

        assert pipeline.get_compiled_policy_view() == "[POLICY] aaaa"

    def test_policy_view_empty(self, pipeline: ArtifactPipeline):
        assert pipeline.get_compiled_policy_view() == ""

    @pytest.mark.asyncio
    async def test_active_guards(self, storage: Storage, pipeline: ArtifactPipeline):
        await pipeline.compile_rule(storage.rules.create("Block sudo"))
        await pipeline.compile_rule(storage.rules.create("Keep answers short"))
        failing = storage.rules.create("Deny network access")
        await pipeline.compile_rule(failing)
        storage.artifacts.update(pipeline.get_artifact(failing.id).id, status=ArtifactStatus.FAILED)

        guards = pipeline.get_active_guards()

        assert len(guards) == 1
        assert guards[0].kind is ArtifactKind.GUARD
        assert '"reason": "Block sudo"' in guards[0].content


class TestEvents:
    """Tests for subscribe/unsubscribe."""

    @pytest.mark.asyncio
    async def test_unsubscribe_callable(self, storage: Storage, pipeline: ArtifactPipeline):
        handler = MagicMock()
        unsubscribe = pipeline.subscribe(PipelineEvent.COMPILED, handler)
        unsubscribe()

        await pipeline.compile_rule(storage.rules.create("Be polite"))

        handler.assert_not_called()

    def test_unsubscribe_unknown_handler(self, pipeline: ArtifactPipeline):
        assert pipeline.unsubscribe(PipelineEvent.FAILED, MagicMock()) is False

    @pytest.mark.asyncio
    async def test_handler_error_does_not_break_pipeline(
        self, storage: Storage, pipeline: ArtifactPipeline
    ):
        """A raising handler is logged; other handlers still run."""
        broken = MagicMock(side_effect=RuntimeError("boom"))
        working = MagicMock()
        pipeline.subscribe(PipelineEvent.COMPILED, broken)
        pipeline.subscribe(PipelineEvent.COMPILED, working)

        artifact = await pipeline.compile_rule(storage.rules.create("Be polite"))

        assert artifact.is_ok
        broken.assert_called_once()
        working.assert_called_once()


class TestMarkFailed:
    """Tests for mark_failed and record_output_path."""

    @pytest.mark.asyncio
    async def test_mark_failed(self, storage: Storage, pipeline: ArtifactPipeline):
        handler = MagicMock()
        pipeline.subscribe(PipelineEvent.FAILED, handler)
        rule = storage.rules.create("Be polite")
        artifact = await pipeline.compile_rule(rule)
        error = RuntimeError("sync failed")

        failed = pipeline.mark_failed(artifact, error)

        assert failed.status is ArtifactStatus.FAILED
        assert failed.content == artifact.content
        handler.assert_called_once_with(rule.id, error)

    @pytest.mark.asyncio
    async def test_record_output_path(
        self, storage: Storage, pipeline: ArtifactPipeline, tmp_path: Path
    ):
        artifact = await pipeline.compile_rule(storage.rules.create("Add a skill to deploy"))
        path = tmp_path / "deploy" / "SKILL.md"

        updated = pipeline.record_output_path(artifact, path)
        cleared = pipeline.record_output_path(updated, None)

        assert updated.output_path == path
        assert cleared.output_path is None

    @pytest.mark.asyncio
    async def test_record_output_path_missing_artifact(
        self, storage: Storage, pipeline: ArtifactPipeline
    ):
        artifact = await pipeline.compile_rule(storage.rules.create("Add a skill to deploy"))
        pipeline.remove_artifacts(artifact.rule_id)

        with pytest.raises(PersistenceError):
            pipeline.record_output_path(artifact, None)
