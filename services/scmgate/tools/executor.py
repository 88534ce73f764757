"""
SCM tools.

Thin translation between the tool invocation envelope and
ScmOperationService: pull parameters out of the request, call the
operation, and format the value or error into an InvokeResponse.
"""

from __future__ import annotations

import base64
import binascii
import dataclasses
import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from scmgate.config import settings
from scmgate.logging_config import get_logger
from scmgate.scm.protocol import (
    MergeFailureReason,
    PipelineSpec,
    PipelineStatus,
    PullRequestStatus,
    ScmError,
)
from scmgate.services.scm_operation_service import OperationResult, ScmOperationService
from scmgate.tools.models import (
    ErrorInfo,
    InvokeRequest,
    InvokeResponse,
    ParameterDescriptor,
    ParameterType,
    ResponseDescriptor,
    ResponseStatus,
    RetryPolicy,
    TimeoutPolicy,
    ToolDescriptor,
    ToolExample,
)

logger = get_logger(__name__)

REPOSITORY_ID_KEY = "repositoryId"
BRANCH_KEY = "branch"
BASE_BRANCH_KEY = "baseBranch"
NEW_BRANCH_NAME_KEY = "newBranchName"
FILE_PATH_KEY = "filePath"
PATCH_KEY = "patch"
COMMIT_MESSAGE_KEY = "commitMessage"
SOURCE_BRANCH_KEY = "sourceBranch"
TARGET_BRANCH_KEY = "targetBranch"
TITLE_KEY = "title"
DESCRIPTION_KEY = "description"
PULL_REQUEST_ID_KEY = "pullRequestId"
SPEC_KEY = "spec"

TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
INVALID_PARAMETERS = "INVALID_PARAMETERS"


class ToolParameterError(ValueError):
    """A required tool parameter is missing or malformed."""


Handler = Callable[[ScmOperationService, dict[str, Any], str | None], Awaitable[OperationResult[Any]]]


@dataclass(frozen=True)
class Tool:
    descriptor: ToolDescriptor
    error_code: str
    handler: Handler


# --- Parameter helpers ---


def safe_string(params: dict[str, Any], key: str, required: bool = False) -> str | None:
    value = params.get(key)
    if value is None:
        text = ""
    elif isinstance(value, (dict, list)):
        raise ToolParameterError(f"Parameter {key} must be a string")
    else:
        text = str(value).strip()
    if not text:
        if required:
            raise ToolParameterError(f"Parameter is required: {key}")
        return None
    return text


def decode_patch_parameter(raw: str) -> str:
    """Accept the patch as JSON text or as base64 of JSON text.

    The base64 form is only taken when the raw value is not JSON itself and
    decodes to UTF-8 JSON; otherwise the raw value is passed through and the
    patch parser reports what is wrong with it.
    """
    try:
        json.loads(raw)
        return raw
    except ValueError:
        pass
    try:
        decoded = base64.b64decode(raw, validate=True).decode("utf-8")
        json.loads(decoded)
    except (binascii.Error, ValueError):
        logger.debug("Patch parameter is not base64 JSON, using raw content")
        return raw
    return decoded


def pipeline_spec(params: dict[str, Any]) -> PipelineSpec:
    spec = params.get(SPEC_KEY)
    if not isinstance(spec, dict):
        raise ToolParameterError(f"Parameter {SPEC_KEY} must be an object")
    trigger = spec.get("triggerSource") or spec.get("trigger_source") or ""
    variables = spec.get("variables") or {}
    if not isinstance(variables, dict):
        raise ToolParameterError("spec.variables must be an object")
    return PipelineSpec(
        trigger_source=str(trigger),
        branch=str(spec.get("branch") or ""),
        variables={str(k): str(v) for k, v in variables.items()},
    )


def to_payload(value: Any) -> Any:
    """Convert operation results into JSON-ready structures."""
    if isinstance(value, ScmError):
        return {"type": type(value).__name__, "message": str(value), "retryable": value.retryable}
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_payload(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_payload(v) for k, v in value.items()}
    return value


# --- Descriptors ---


def _repository_param() -> ParameterDescriptor:
    return ParameterDescriptor(description="Repository ID", examples=["repo-001"])


def _branch_param(description: str, required: bool = False) -> ParameterDescriptor:
    return ParameterDescriptor(
        description=description, required=required, nullable=not required, examples=["feature/x"]
    )


def _field(
    description: str, type: ParameterType = ParameterType.STRING, required: bool = True
) -> ParameterDescriptor:
    return ParameterDescriptor(
        type=type, description=description, required=required, nullable=not required
    )


def _response(
    description: str,
    properties: dict[str, ParameterDescriptor],
    success: str,
    error: str,
    example: ToolExample,
    result_type: ParameterType = ParameterType.OBJECT,
) -> ResponseDescriptor:
    return ResponseDescriptor(
        response_schema=ParameterDescriptor(
            type=result_type, description=description, properties=properties
        ),
        statuses=[
            ResponseStatus(status="SUCCESS", description=success),
            ResponseStatus(status="ERROR", description=error),
        ],
        examples=[example],
    )


def _scm_result_properties() -> dict[str, ParameterDescriptor]:
    return {
        "success": _field("Whether the operation completed", ParameterType.BOOLEAN),
        "message": _field("Human-readable outcome"),
        "details": _field(
            "Per-file labels such as created:path or updated:path", ParameterType.ARRAY
        ),
        "error": _field(
            "Failure type, message and retryable flag", ParameterType.OBJECT, required=False
        ),
    }


def _pull_request_properties() -> dict[str, ParameterDescriptor]:
    return {
        "id": _field("Pull request ID"),
        "title": _field("Pull request title"),
        "body": _field("Pull request body", required=False),
        "source_branch": _field("Source branch"),
        "target_branch": _field("Target branch"),
        "status": _field("One of " + ", ".join(s.value for s in PullRequestStatus)),
        "author": _field("Author login", required=False),
        "url": _field("Web URL of the pull request", required=False),
        "created_at": _field("ISO 8601 creation time", required=False),
        "updated_at": _field("ISO 8601 last update time", required=False),
    }


def _descriptor(
    name: str,
    display_name: str,
    description: str,
    parameters: dict[str, ParameterDescriptor],
    idempotent: bool,
    tags: list[str],
    response: ResponseDescriptor | None = None,
) -> ToolDescriptor:
    # Only idempotent tools advertise retries
    retry = settings.retry
    if idempotent:
        retry_policy = RetryPolicy(
            enabled=True,
            max_attempts=retry.max_attempts,
            initial_interval_ms=retry.initial_interval_ms,
            multiplier=retry.multiplier,
            max_interval_ms=retry.max_interval_ms,
        )
    else:
        retry_policy = RetryPolicy(enabled=False, max_attempts=1)
    return ToolDescriptor(
        name=name,
        display_name=display_name,
        description=description,
        tags=tags,
        idempotent=idempotent,
        parameters=parameters,
        response=response,
        retry_policy=retry_policy,
        timeout_policy=TimeoutPolicy(
            timeout_ms=retry.timeout_ms, grace_period_ms=retry.grace_period_ms
        ),
    )


# --- Handlers ---


async def _validate_access(svc: ScmOperationService, p: dict[str, Any], caller: str | None):
    return await svc.validate_access(safe_string(p, REPOSITORY_ID_KEY, True), caller)


async def _get_file_content(svc: ScmOperationService, p: dict[str, Any], caller: str | None):
    return await svc.read_file(
        safe_string(p, REPOSITORY_ID_KEY, True),
        safe_string(p, BRANCH_KEY),
        safe_string(p, FILE_PATH_KEY, True),
        caller,
    )


async def _create_branch(svc: ScmOperationService, p: dict[str, Any], caller: str | None):
    return await svc.create_branch(
        safe_string(p, REPOSITORY_ID_KEY, True),
        safe_string(p, BASE_BRANCH_KEY),
        safe_string(p, NEW_BRANCH_NAME_KEY, True),
        caller,
    )


async def _delete_branch(svc: ScmOperationService, p: dict[str, Any], caller: str | None):
    return await svc.delete_branch(
        safe_string(p, REPOSITORY_ID_KEY, True), safe_string(p, BRANCH_KEY, True), caller
    )


async def _apply_patch(svc: ScmOperationService, p: dict[str, Any], caller: str | None):
    return await svc.apply_patch(
        safe_string(p, REPOSITORY_ID_KEY, True),
        safe_string(p, BRANCH_KEY),
        decode_patch_parameter(safe_string(p, PATCH_KEY, True)),
        safe_string(p, COMMIT_MESSAGE_KEY),
        caller,
    )


async def _create_pull_request(svc: ScmOperationService, p: dict[str, Any], caller: str | None):
    return await svc.create_pull_request(
        safe_string(p, REPOSITORY_ID_KEY, True),
        safe_string(p, SOURCE_BRANCH_KEY, True),
        safe_string(p, TARGET_BRANCH_KEY),
        safe_string(p, TITLE_KEY, True),
        safe_string(p, DESCRIPTION_KEY),
        caller,
    )


async def _merge_pull_request(svc: ScmOperationService, p: dict[str, Any], caller: str | None):
    return await svc.merge_pull_request(
        safe_string(p, REPOSITORY_ID_KEY, True), safe_string(p, PULL_REQUEST_ID_KEY, True), caller
    )


async def _close_pull_request(svc: ScmOperationService, p: dict[str, Any], caller: str | None):
    return await svc.close_pull_request(
        safe_string(p, REPOSITORY_ID_KEY, True), safe_string(p, PULL_REQUEST_ID_KEY, True), caller
    )


async def _trigger_pipeline(svc: ScmOperationService, p: dict[str, Any], caller: str | None):
    return await svc.trigger_pipeline(safe_string(p, REPOSITORY_ID_KEY, True), pipeline_spec(p), caller)


def build_tools() -> list[Tool]:
    """Every SCM operation exposed as a tool."""
    pr_id = ParameterDescriptor(description="Pull request ID", examples=["42"])
    return [
        Tool(
            _descriptor(
                "ValidateAccess", "Validate Access",
                "Checks that the repository is reachable with its configured credentials.",
                {REPOSITORY_ID_KEY: _repository_param()},
                idempotent=True, tags=["git", "repository"],
                response=_response(
                    "True when the repository is reachable",
                    {},
                    "Access check completed",
                    "The repository is unknown or its provider is not configured",
                    ToolExample(
                        title="Check repository access",
                        description="Confirms repo-001 can be reached with its token",
                        input={REPOSITORY_ID_KEY: "repo-001"},
                        output=True,
                    ),
                    result_type=ParameterType.BOOLEAN,
                ),
            ),
            "EXECUTION_ERROR",
            _validate_access,
        ),
        Tool(
            _descriptor(
                "GetFileContent", "Get File Content",
                "Reads a file from the repository at a branch.",
                {
                    REPOSITORY_ID_KEY: _repository_param(),
                    FILE_PATH_KEY: ParameterDescriptor(
                        description="Path of the file in the repository", examples=["README.md"]
                    ),
                    BRANCH_KEY: _branch_param("Branch to read from, defaults to the default branch"),
                },
                idempotent=True, tags=["git", "file"],
                response=_response(
                    "Decoded file content",
                    {
                        "path": _field("File path"),
                        "content": _field("File content as UTF-8 text"),
                        "size": _field("File size in bytes", ParameterType.INTEGER, required=False),
                        "sha": _field("Provider revision of the file", required=False),
                    },
                    "File fetched successfully",
                    "The file does not exist at the branch or could not be decoded",
                    ToolExample(
                        title="Read the README",
                        description="Fetches README.md from the default branch",
                        input={REPOSITORY_ID_KEY: "repo-001", FILE_PATH_KEY: "README.md"},
                        output={"path": "README.md", "content": "# Title\n", "size": 8, "sha": "3b18e51"},
                    ),
                ),
            ),
            "EXECUTION_ERROR",
            _get_file_content,
        ),
        Tool(
            _descriptor(
                "CreateBranch", "Create Branch",
                "Creates a new branch at the head of a base branch.",
                {
                    REPOSITORY_ID_KEY: _repository_param(),
                    BASE_BRANCH_KEY: _branch_param("Base branch, defaults to the default branch"),
                    NEW_BRANCH_NAME_KEY: _branch_param("Name of the branch to create", required=True),
                },
                idempotent=False, tags=["git", "branch"],
                response=_response(
                    "The created branch",
                    {
                        "name": _field("New branch name"),
                        "sha": _field("Commit the branch points at", required=False),
                    },
                    "Branch created successfully",
                    "The base branch is missing or the branch already exists",
                    ToolExample(
                        title="Branch off main",
                        description="Creates feature/x from the head of main",
                        input={
                            REPOSITORY_ID_KEY: "repo-001",
                            BASE_BRANCH_KEY: "main",
                            NEW_BRANCH_NAME_KEY: "feature/x",
                        },
                        output={"name": "feature/x", "sha": "9fceb02"},
                    ),
                ),
            ),
            "CREATE_BRANCH_ERROR",
            _create_branch,
        ),
        Tool(
            _descriptor(
                "DeleteBranch", "Delete Branch",
                "Deletes a branch.",
                {
                    REPOSITORY_ID_KEY: _repository_param(),
                    BRANCH_KEY: _branch_param("Branch to delete", required=True),
                },
                idempotent=False, tags=["git", "branch"],
                response=_response(
                    "Outcome of the deletion",
                    _scm_result_properties(),
                    "Deletion attempted, see success",
                    "The repository is unknown or its provider is not configured",
                    ToolExample(
                        title="Delete a feature branch",
                        description="Removes feature/x after it was merged",
                        input={REPOSITORY_ID_KEY: "repo-001", BRANCH_KEY: "feature/x"},
                        output={
                            "success": True,
                            "message": "Branch deleted: feature/x",
                            "details": [],
                            "error": None,
                        },
                    ),
                ),
            ),
            "DELETE_BRANCH_ERROR",
            _delete_branch,
        ),
        Tool(
            _descriptor(
                "ApplyPatch", "Apply Patch",
                "Writes a set of whole files to a branch, one commit per file. "
                "Files written before a failure stay committed.",
                {
                    REPOSITORY_ID_KEY: _repository_param(),
                    BRANCH_KEY: _branch_param("Target branch, defaults to the default branch"),
                    PATCH_KEY: ParameterDescriptor(
                        description='JSON array of {"path", "content", "encoding"?} objects, '
                        "optionally base64 encoded",
                        examples=['[{"path": "README.md", "content": "# Title"}]'],
                    ),
                    COMMIT_MESSAGE_KEY: ParameterDescriptor(
                        description="Commit message for every file write",
                        required=False,
                        nullable=True,
                        examples=["Apply automated changes"],
                    ),
                },
                idempotent=False, tags=["git", "patch"],
                response=_response(
                    "Outcome of the patch; details lists the files written before any failure",
                    _scm_result_properties(),
                    "Patch attempted, see success and details",
                    "The repository is unknown or the patch target could not be resolved",
                    ToolExample(
                        title="Apply patch to a feature branch",
                        description="Creates one file and updates another on feature/x",
                        input={
                            REPOSITORY_ID_KEY: "repo-001",
                            BRANCH_KEY: "feature/x",
                            PATCH_KEY: '[{"path": "a.txt", "content": "1"}, '
                            '{"path": "README.md", "content": "# Title"}]',
                            COMMIT_MESSAGE_KEY: "Apply automated changes",
                        },
                        output={
                            "success": True,
                            "message": "Applied patch to 2 files: created:a.txt, updated:README.md",
                            "details": ["created:a.txt", "updated:README.md"],
                            "error": None,
                        },
                    ),
                ),
            ),
            "APPLY_PATCH_ERROR",
            _apply_patch,
        ),
        Tool(
            _descriptor(
                "CreatePullRequest", "Create Pull Request",
                "Opens a pull request from a source branch into a target branch.",
                {
                    REPOSITORY_ID_KEY: _repository_param(),
                    SOURCE_BRANCH_KEY: _branch_param("Branch with the changes", required=True),
                    TARGET_BRANCH_KEY: _branch_param("Branch to merge into, defaults to the default branch"),
                    TITLE_KEY: ParameterDescriptor(description="Pull request title"),
                    DESCRIPTION_KEY: ParameterDescriptor(
                        description="Pull request body", required=False, nullable=True
                    ),
                },
                idempotent=False, tags=["git", "pull-request"],
                response=_response(
                    "The opened pull request",
                    _pull_request_properties(),
                    "Pull request created successfully",
                    "The provider rejected the pull request",
                    ToolExample(
                        title="Open a pull request",
                        description="Creates a PR from feature/x to main",
                        input={
                            REPOSITORY_ID_KEY: "repo-001",
                            SOURCE_BRANCH_KEY: "feature/x",
                            TARGET_BRANCH_KEY: "main",
                            TITLE_KEY: "Add feature",
                        },
                        output={
                            "id": "42",
                            "title": "Add feature",
                            "body": None,
                            "source_branch": "feature/x",
                            "target_branch": "main",
                            "status": PullRequestStatus.OPEN.value,
                            "author": "octocat",
                            "url": "https://github.com/acme/widgets/pull/42",
                            "created_at": "2024-05-01T10:00:00+00:00",
                            "updated_at": "2024-05-01T10:00:00+00:00",
                        },
                    ),
                ),
            ),
            "CREATE_PR_ERROR",
            _create_pull_request,
        ),
        Tool(
            _descriptor(
                "MergePullRequest", "Merge Pull Request",
                "Merges an open pull request.",
                {REPOSITORY_ID_KEY: _repository_param(), PULL_REQUEST_ID_KEY: pr_id},
                idempotent=False, tags=["git", "pull-request"],
                response=_response(
                    "Outcome of the merge",
                    {
                        "merged": _field("Whether the pull request was merged", ParameterType.BOOLEAN),
                        "pull_request_id": _field("Pull request ID"),
                        "sha": _field("Merge commit, present only when merged", required=False),
                        "message": _field("Provider message"),
                        "failure_reason": _field(
                            "One of " + ", ".join(r.value for r in MergeFailureReason)
                        ),
                    },
                    "Merge attempted, see merged and failure_reason",
                    "The repository is unknown or its provider is not configured",
                    ToolExample(
                        title="Merge a pull request",
                        description="Merges PR 42 into its target branch",
                        input={REPOSITORY_ID_KEY: "repo-001", PULL_REQUEST_ID_KEY: "42"},
                        output={
                            "merged": True,
                            "pull_request_id": "42",
                            "sha": "6dcb09b",
                            "message": "Merged",
                            "failure_reason": MergeFailureReason.NONE.value,
                        },
                    ),
                ),
            ),
            "MERGE_PR_ERROR",
            _merge_pull_request,
        ),
        Tool(
            _descriptor(
                "ClosePullRequest", "Close Pull Request",
                "Closes a pull request without merging it.",
                {REPOSITORY_ID_KEY: _repository_param(), PULL_REQUEST_ID_KEY: pr_id},
                idempotent=False, tags=["git", "pull-request"],
                response=_response(
                    "Outcome of closing the pull request",
                    _scm_result_properties(),
                    "Close attempted, see success",
                    "The repository is unknown or its provider is not configured",
                    ToolExample(
                        title="Close a pull request",
                        description="Closes PR 42 without merging",
                        input={REPOSITORY_ID_KEY: "repo-001", PULL_REQUEST_ID_KEY: "42"},
                        output={
                            "success": True,
                            "message": "Pull request closed: 42",
                            "details": [],
                            "error": None,
                        },
                    ),
                ),
            ),
            "CLOSE_PR_ERROR",
            _close_pull_request,
        ),
        Tool(
            _descriptor(
                "TriggerPipeline", "Trigger Pipeline",
                "Requests a CI/CD run for a branch.",
                {
                    REPOSITORY_ID_KEY: _repository_param(),
                    SPEC_KEY: ParameterDescriptor(
                        type=ParameterType.OBJECT,
                        description="{triggerSource, branch, variables}",
                        examples=[{"triggerSource": "ci.yml", "branch": "main", "variables": {}}],
                    ),
                },
                idempotent=False, tags=["ci", "pipeline"],
                response=_response(
                    "Outcome of the trigger request",
                    {
                        "pipeline_id": _field("Pipeline ID, when the provider returns one", required=False),
                        "status": _field("One of " + ", ".join(s.value for s in PipelineStatus)),
                        "message": _field("Human-readable outcome"),
                        "started_at": _field("ISO 8601 request time", required=False),
                        "finished_at": _field("ISO 8601 completion time", required=False),
                        "url": _field("Web URL of the pipeline", required=False),
                    },
                    "Trigger attempted, see status",
                    "The repository is unknown or the pipeline spec is invalid",
                    ToolExample(
                        title="Run CI on main",
                        description="Dispatches the ci.yml workflow on main",
                        input={
                            REPOSITORY_ID_KEY: "repo-001",
                            SPEC_KEY: {"triggerSource": "ci.yml", "branch": "main", "variables": {}},
                        },
                        output={
                            "pipeline_id": None,
                            "status": PipelineStatus.QUEUED.value,
                            "message": "Workflow dispatch requested",
                            "started_at": "2024-05-01T10:00:00+00:00",
                            "finished_at": None,
                            "url": None,
                        },
                    ),
                ),
            ),
            "TRIGGER_PIPELINE_ERROR",
            _trigger_pipeline,
        ),
    ]


class ScmTools:
    """Dispatches InvokeRequests to the matching tool."""

    def __init__(self, service: ScmOperationService, tools: list[Tool] | None = None) -> None:
        self._service = service
        self._tools = {t.descriptor.name.lower(): t for t in (tools or build_tools())}

    def descriptors(self) -> list[ToolDescriptor]:
        return [t.descriptor for t in self._tools.values()]

    async def invoke(self, request: InvokeRequest, caller: str | None = None) -> InvokeResponse:
        tool = self._tools.get(request.tool_id.lower())
        if tool is None:
            return InvokeResponse(
                id=request.id,
                tool_id=request.tool_id,
                error=ErrorInfo(code=TOOL_NOT_FOUND, message=f"Tool not supported: {request.tool_id}"),
            )

        logger.info(
            "Invoking tool",
            tool=tool.descriptor.name,
            request_id=request.id,
            repository_id=request.parameters.get(REPOSITORY_ID_KEY),
        )
        try:
            outcome = await tool.handler(self._service, request.parameters, caller)
        except ToolParameterError as e:
            return InvokeResponse(
                id=request.id,
                tool_id=request.tool_id,
                error=ErrorInfo(code=INVALID_PARAMETERS, message=str(e)),
            )

        if not outcome.ok:
            error = outcome.error
            return InvokeResponse(
                id=request.id,
                tool_id=request.tool_id,
                error=ErrorInfo(
                    code=tool.error_code,
                    message=f"{tool.descriptor.name}: {error}",
                    retryable=bool(error.retryable and tool.descriptor.idempotent),
                    details={
                        "errorType": type(error).__name__,
                        REPOSITORY_ID_KEY: request.parameters.get(REPOSITORY_ID_KEY),
                    },
                ),
            )

        return InvokeResponse(id=request.id, tool_id=request.tool_id, result=to_payload(outcome.value))
