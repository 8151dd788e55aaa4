import pytest

from conftest import seed_definitions
from tickflow.contracts import Job, JobStatus, Transformer
from tickflow.errors import (
    ConfigurationError,
    InvalidPathMapping,
    StepNotFound,
    TransformerNotFound,
    WorkflowNotFound,
)
from tickflow.resolve import StepResolver


def _job(workflow_id: str, step: str | None) -> Job:
    return Job(id="j1", workflow_id=workflow_id, status=JobStatus.RUNNING, current_step_id=step)


@pytest.mark.asyncio
async def test_resolve_current_step(store):
    await seed_definitions(store)
    resolver = StepResolver(store)

    resolved = await resolver.resolve(_job("two-step", "shout"))
    assert resolved.step_id == "shout"
    assert resolved.step.input_map == "$.fetch"
    assert resolved.transformer.id == "t-shout"
    assert resolved.target_function == "shout"
    assert resolved.is_terminal

    first = await resolver.resolve(_job("two-step", "fetch"))
    assert first.transformer.config == {"source": "input"}
    assert not first.is_terminal


@pytest.mark.asyncio
async def test_resolve_start_step(store):
    await seed_definitions(store)
    assert await StepResolver(store).resolve_start_step("two-step") == "fetch"


@pytest.mark.asyncio
async def test_missing_workflow(store):
    with pytest.raises(WorkflowNotFound):
        await StepResolver(store).resolve_start_step("nope")


@pytest.mark.asyncio
async def test_workflow_without_start_step(store):
    await store.save_workflow("wf", {"steps": {"a": {"transformer_id": "t"}}})
    with pytest.raises(WorkflowNotFound, match="no start_step"):
        await StepResolver(store).resolve_start_step("wf")


@pytest.mark.asyncio
async def test_malformed_definition(store):
    await store.save_workflow("wf", {"start_step": "a"})
    with pytest.raises(WorkflowNotFound, match="malformed"):
        await StepResolver(store).resolve(_job("wf", "a"))


@pytest.mark.asyncio
async def test_unknown_step(store):
    await seed_definitions(store)
    with pytest.raises(StepNotFound):
        await StepResolver(store).resolve(_job("two-step", "nope"))
    with pytest.raises(StepNotFound):
        await StepResolver(store).resolve(_job("two-step", None))


@pytest.mark.asyncio
async def test_missing_transformer(store):
    await seed_definitions(store)
    with pytest.raises(TransformerNotFound):
        await StepResolver(store).resolve(_job("broken", "call"))


@pytest.mark.asyncio
async def test_transformer_without_target_function(store):
    await store.save_transformer(Transformer(id="t"))
    await store.save_workflow("wf", {"start_step": "a", "steps": {"a": {"transformer_id": "t"}}})
    with pytest.raises(TransformerNotFound, match="target_function"):
        await StepResolver(store).resolve(_job("wf", "a"))


@pytest.mark.asyncio
async def test_invalid_path_mapping_is_a_configuration_error(store):
    await store.save_transformer(Transformer(id="t", target_function="echo"))
    await store.save_workflow(
        "wf",
        {"start_step": "a", "steps": {"a": {"transformer_id": "t", "input_map": "$.a["}}},
    )
    with pytest.raises(InvalidPathMapping) as info:
        await StepResolver(store).resolve(_job("wf", "a"))
    assert isinstance(info.value, ConfigurationError)
    assert info.value.retryable is False
