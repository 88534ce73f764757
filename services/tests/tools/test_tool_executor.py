"""
Tests for the SCM tool layer: descriptors, parameter handling and the
mapping of operation outcomes onto the invocation envelope.
"""

from __future__ import annotations

import base64
import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest

from scmgate.scm.protocol import (
    BranchRef,
    FileContent,
    MergeFailureReason,
    MergeResult,
    PipelineSpec,
    ProviderServerError,
    PullRequestInfo,
    RepositoryNotFoundError,
    ScmResult,
)
from scmgate.services.scm_operation_service import OperationResult
from scmgate.tools.executor import (
    INVALID_PARAMETERS,
    TOOL_NOT_FOUND,
    ScmTools,
    decode_patch_parameter,
    to_payload,
)
from scmgate.tools.models import InvokeRequest


@pytest.fixture
def service() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def tools(service: AsyncMock) -> ScmTools:
    return ScmTools(service)


def _request(tool_id: str, **parameters) -> InvokeRequest:
    return InvokeRequest(id="req-1", tool_id=tool_id, parameters=parameters)


class TestDescriptors:
    def test_every_operation_is_exposed(self, tools: ScmTools) -> None:
        names = {d.name for d in tools.descriptors()}
        assert names == {
            "ValidateAccess",
            "GetFileContent",
            "CreateBranch",
            "DeleteBranch",
            "ApplyPatch",
            "CreatePullRequest",
            "MergePullRequest",
            "ClosePullRequest",
            "TriggerPipeline",
        }

    def test_retry_only_on_idempotent_tools(self, tools: ScmTools) -> None:
        for descriptor in tools.descriptors():
            assert descriptor.retry_policy.enabled is descriptor.idempotent
            if not descriptor.idempotent:
                assert descriptor.retry_policy.max_attempts == 1

    def test_read_tool_policy_from_settings(self, tools: ScmTools) -> None:
        descriptor = next(d for d in tools.descriptors() if d.name == "GetFileContent")
        assert descriptor.idempotent is True
        assert descriptor.retry_policy.max_attempts == 3
        assert descriptor.retry_policy.initial_interval_ms == 500
        assert descriptor.timeout_policy.timeout_ms == 5000

    def test_camel_case_serialization(self, tools: ScmTools) -> None:
        dumped = tools.descriptors()[0].model_dump(by_alias=True)
        assert "displayName" in dumped
        assert "retryPolicy" in dumped
        assert "maxAttempts" in dumped["retryPolicy"]

    def test_every_tool_describes_its_response(self, tools: ScmTools) -> None:
        for descriptor in tools.descriptors():
            response = descriptor.response
            assert response is not None, descriptor.name
            assert {s.status for s in response.statuses} == {"SUCCESS", "ERROR"}
            assert len(response.examples) == 1
            assert set(response.examples[0].input) <= set(descriptor.parameters)

    def test_response_schema_matches_payload_fields(self, tools: ScmTools) -> None:
        descriptor = next(d for d in tools.descriptors() if d.name == "MergePullRequest")
        schema = descriptor.response.response_schema
        result = MergeResult(merged=False, pull_request_id="7", sha=None, message="x")

        assert set(schema.properties) == set(to_payload(result))
        assert "CONFLICT" in schema.properties["failure_reason"].description
        assert schema.properties["sha"].nullable is True

    def test_response_serializes_in_camel_case(self, tools: ScmTools) -> None:
        descriptor = next(d for d in tools.descriptors() if d.name == "ApplyPatch")
        dumped = descriptor.model_dump(by_alias=True)

        response = dumped["response"]
        assert response["responseSchema"]["type"] == "OBJECT"
        assert "details" in response["responseSchema"]["properties"]
        assert response["statuses"][0]["contentType"] == "application/json"
        assert response["examples"][0]["output"]["details"] == ["created:a.txt", "updated:README.md"]


class TestInvoke:
    async def test_unknown_tool(self, tools: ScmTools) -> None:
        response = await tools.invoke(_request("RebaseBranch"))

        assert response.error.code == TOOL_NOT_FOUND
        assert response.result is None

    async def test_tool_id_is_case_insensitive(self, tools: ScmTools, service: AsyncMock) -> None:
        service.delete_branch.return_value = OperationResult.success(ScmResult.ok("Branch deleted: x"))

        response = await tools.invoke(_request("deleteBranch", repositoryId="r1", branch="x"))

        assert response.error is None
        service.delete_branch.assert_awaited_once_with("r1", "x", None)

    async def test_missing_parameter(self, tools: ScmTools, service: AsyncMock) -> None:
        response = await tools.invoke(_request("GetFileContent", repositoryId="r1"))

        assert response.error.code == INVALID_PARAMETERS
        assert "filePath" in response.error.message
        service.read_file.assert_not_awaited()

    async def test_get_file_content(self, tools: ScmTools, service: AsyncMock) -> None:
        service.read_file.return_value = OperationResult.success(
            FileContent(path="a.md", content="hello", size=5, sha="s1")
        )

        response = await tools.invoke(
            _request("GetFileContent", repositoryId="r1", filePath=" a.md ", branch=None), caller="alice"
        )

        assert response.id == "req-1"
        assert response.result == {"path": "a.md", "content": "hello", "size": 5, "sha": "s1"}
        service.read_file.assert_awaited_once_with("r1", None, "a.md", "alice")

    async def test_operation_error_uses_tool_error_code(self, tools: ScmTools, service: AsyncMock) -> None:
        service.create_branch.return_value = OperationResult.failure(RepositoryNotFoundError("r9"))

        response = await tools.invoke(_request("CreateBranch", repositoryId="r9", newBranchName="x"))

        assert response.error.code == "CREATE_BRANCH_ERROR"
        assert "Repository not found: r9" in response.error.message
        assert response.error.details["errorType"] == "RepositoryNotFoundError"
        assert response.error.retryable is False

    async def test_retryable_only_for_idempotent_tools(self, tools: ScmTools, service: AsyncMock) -> None:
        error = ProviderServerError("boom", status_code=503)
        service.read_file.return_value = OperationResult.failure(error)
        service.create_branch.return_value = OperationResult.failure(error)

        read = await tools.invoke(_request("GetFileContent", repositoryId="r1", filePath="a"))
        create = await tools.invoke(_request("CreateBranch", repositoryId="r1", newBranchName="x"))

        assert read.error.code == "EXECUTION_ERROR"
        assert read.error.retryable is True
        assert create.error.retryable is False

    async def test_apply_patch_accepts_base64(self, tools: ScmTools, service: AsyncMock) -> None:
        patch = json.dumps([{"path": "a.txt", "content": "x"}])
        service.apply_patch.return_value = OperationResult.success(
            ScmResult.ok("Applied patch to 1 files: created:a.txt", ("created:a.txt",))
        )

        response = await tools.invoke(
            _request(
                "ApplyPatch",
                repositoryId="r1",
                branch="feature/x",
                patch=base64.b64encode(patch.encode()).decode(),
            )
        )

        assert response.result["success"] is True
        assert response.result["details"] == ["created:a.txt"]
        assert service.apply_patch.await_args.args[:3] == ("r1", "feature/x", patch)

    async def test_merge_result_payload(self, tools: ScmTools, service: AsyncMock) -> None:
        service.merge_pull_request.return_value = OperationResult.success(
            MergeResult(
                merged=False,
                pull_request_id="42",
                sha=None,
                message="conflict",
                failure_reason=MergeFailureReason.CONFLICT,
            )
        )

        response = await tools.invoke(_request("MergePullRequest", repositoryId="r1", pullRequestId=42))

        assert response.result["failure_reason"] == "CONFLICT"
        assert response.result["merged"] is False
        service.merge_pull_request.assert_awaited_once_with("r1", "42", None)

    async def test_trigger_pipeline_spec(self, tools: ScmTools, service: AsyncMock) -> None:
        service.trigger_pipeline.return_value = OperationResult.success(None)

        await tools.invoke(
            _request(
                "TriggerPipeline",
                repositoryId="r1",
                spec={"triggerSource": "ci.yml", "branch": "main", "variables": {"n": 1}},
            )
        )

        repository_id, spec, caller = service.trigger_pipeline.await_args.args
        assert repository_id == "r1"
        assert spec == PipelineSpec(trigger_source="ci.yml", branch="main", variables={"n": "1"})
        assert caller is None

    async def test_trigger_pipeline_requires_object(self, tools: ScmTools) -> None:
        response = await tools.invoke(_request("TriggerPipeline", repositoryId="r1", spec="ci.yml"))

        assert response.error.code == INVALID_PARAMETERS


class TestDecodePatchParameter:
    def test_json_passes_through(self) -> None:
        assert decode_patch_parameter('[{"path": "a", "content": "b"}]') == '[{"path": "a", "content": "b"}]'

    def test_base64_is_decoded(self) -> None:
        encoded = base64.b64encode(b"[]").decode()
        assert decode_patch_parameter(encoded) == "[]"

    def test_garbage_passes_through(self) -> None:
        assert decode_patch_parameter("not a patch") == "not a patch"

    def test_base64_of_non_json_text_passes_through(self) -> None:
        encoded = base64.b64encode(b"hello world").decode()
        assert decode_patch_parameter(encoded) == encoded


class TestToPayload:
    def test_nested_dataclasses(self) -> None:
        created = datetime(2024, 5, 1, 10, 0, tzinfo=UTC)
        info = PullRequestInfo(
            id="1",
            title="T",
            body=None,
            source_branch="feature/x",
            target_branch="main",
            created_at=created,
        )
        payload = to_payload(info)
        assert payload["status"] == "OPEN"
        assert payload["created_at"] == "2024-05-01T10:00:00+00:00"

    def test_error_inside_result(self) -> None:
        payload = to_payload(ScmResult.failed(ProviderServerError("down", 503)))
        assert payload["error"] == {"type": "ProviderServerError", "message": "down", "retryable": True}

    def test_branch_ref(self) -> None:
        assert to_payload(BranchRef(name="x", sha="y")) == {"name": "x", "sha": "y"}
