"""
SCM operation service.

The single entry point callers use. Every operation resolves the repository
descriptor, builds the per-call context and branch, selects the provider
for the repository's declared type and delegates. Errors are logged and
handed back as a failed OperationResult; nothing raw escapes.

Operations whose provider contract returns a structured outcome
(ScmResult, MergeResult, PipelineResult) come back as successful
OperationResults even when the outcome itself reports a failure: the
call went through and the outcome is the answer.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from scmgate.logging_config import get_logger
from scmgate.repositories import RepositoryDescriptor, RepositoryResolver
from scmgate.scm.archive import ArchiveStream
from scmgate.scm.protocol import (
    BranchNotFoundError,
    BranchRef,
    FileContent,
    MergeResult,
    Patch,
    PipelineResult,
    PipelineSpec,
    PullRequestInfo,
    ScmContext,
    ScmError,
    ScmProvider,
    ScmResult,
)
from scmgate.scm.registry import ProviderRegistry

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_COMMIT_MESSAGE = "Apply automated changes"


@dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Either a value or the error that prevented it."""

    value: T | None = None
    error: ScmError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> OperationResult[T]:
        return cls(value=value)

    @classmethod
    def failure(cls, error: ScmError) -> OperationResult[T]:
        return cls(error=error)

    def unwrap(self) -> T:
        """Return the value or raise the captured error."""
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


@dataclass(frozen=True)
class _Target:
    descriptor: RepositoryDescriptor
    ctx: ScmContext
    provider: ScmProvider


def resolve_branch(descriptor: RepositoryDescriptor, branch: str | None) -> BranchRef:
    """Explicit branch wins, then the descriptor's default branch."""
    if branch and branch.strip():
        return BranchRef(name=branch.strip())
    if descriptor.default_branch:
        return BranchRef(name=descriptor.default_branch)
    raise BranchNotFoundError(None, descriptor.id)


class ScmOperationService:
    """Resolves repositories and dispatches operations to their provider."""

    def __init__(self, resolver: RepositoryResolver, registry: ProviderRegistry) -> None:
        self._resolver = resolver
        self._registry = registry

    async def _target(self, repository_id: str, caller: str | None) -> _Target:
        descriptor = await self._resolver.get_repository(repository_id, caller)
        try:
            ctx = ScmContext(
                repository=descriptor.path,
                auth_token=descriptor.token,
                api_url=descriptor.api_url,
            )
        except ValueError as e:
            raise ScmError(f"Repository {repository_id} is misconfigured: {e}") from e
        provider = self._registry.select(descriptor.provider)
        return _Target(descriptor=descriptor, ctx=ctx, provider=provider)

    async def _run(
        self,
        operation: str,
        repository_id: str,
        caller: str | None,
        call: Callable[[_Target], Awaitable[T]],
    ) -> OperationResult[T]:
        log = logger.bind(operation=operation, repository_id=repository_id, caller=caller)
        try:
            target = await self._target(repository_id, caller)
            value = await call(target)
        except ScmError as e:
            log.error(f"Error in {operation}", error=str(e), error_type=type(e).__name__)
            return OperationResult.failure(e)
        except ValueError as e:
            # Invalid caller input rejected by a value type (empty branch name etc.)
            log.warning(f"Invalid input to {operation}", error=str(e))
            return OperationResult.failure(ScmError(str(e)))
        except Exception as e:
            log.exception(f"Unexpected error in {operation}")
            return OperationResult.failure(ScmError(f"{operation} failed: {e}"))
        return OperationResult.success(value)

    # --- Read-only ---

    async def validate_access(
        self, repository_id: str, caller: str | None = None
    ) -> OperationResult[bool]:
        return await self._run(
            "validateAccess", repository_id, caller,
            lambda t: t.provider.validate_access(t.ctx),
        )

    async def read_file(
        self,
        repository_id: str,
        branch: str | None,
        file_path: str,
        caller: str | None = None,
    ) -> OperationResult[FileContent]:
        async def call(t: _Target) -> FileContent:
            if not file_path or not file_path.strip():
                raise ValueError("file path must not be empty")
            return await t.provider.read_file(
                t.ctx, resolve_branch(t.descriptor, branch), file_path.strip()
            )

        return await self._run("readFile", repository_id, caller, call)

    async def download_archive(
        self, repository_id: str, branch: str | None, caller: str | None = None
    ) -> OperationResult[ArchiveStream]:
        """Open a streamed archive. The caller owns the returned stream and must close it."""
        return await self._run(
            "downloadArchive", repository_id, caller,
            lambda t: t.provider.download_archive(t.ctx, resolve_branch(t.descriptor, branch)),
        )

    # --- Branches ---

    async def create_branch(
        self,
        repository_id: str,
        base_branch: str | None,
        new_branch_name: str,
        caller: str | None = None,
    ) -> OperationResult[BranchRef]:
        async def call(t: _Target) -> BranchRef:
            base = resolve_branch(t.descriptor, base_branch)
            target = BranchRef(name=new_branch_name)
            return await t.provider.create_branch(t.ctx, base, target.name)

        return await self._run("createBranch", repository_id, caller, call)

    async def delete_branch(
        self, repository_id: str, branch: str, caller: str | None = None
    ) -> OperationResult[ScmResult]:
        # Never falls back to the default branch
        return await self._run(
            "deleteBranch", repository_id, caller,
            lambda t: t.provider.delete_branch(t.ctx, BranchRef(name=branch)),
        )

    # --- Patch ---

    async def apply_patch(
        self,
        repository_id: str,
        branch: str | None,
        patch: Patch | str,
        commit_message: str | None = None,
        caller: str | None = None,
    ) -> OperationResult[ScmResult]:
        if isinstance(patch, str):
            patch = Patch(diff=patch)
        message = commit_message or DEFAULT_COMMIT_MESSAGE
        return await self._run(
            "applyPatch", repository_id, caller,
            lambda t: t.provider.apply_patch(
                t.ctx, resolve_branch(t.descriptor, branch), patch, message
            ),
        )

    # --- Pull requests ---

    async def create_pull_request(
        self,
        repository_id: str,
        source_branch: str,
        target_branch: str | None,
        title: str,
        description: str | None = None,
        caller: str | None = None,
    ) -> OperationResult[PullRequestInfo]:
        async def call(t: _Target) -> PullRequestInfo:
            if not title or not title.strip():
                raise ValueError("pull request title must not be empty")
            return await t.provider.create_pull_request(
                t.ctx,
                BranchRef(name=source_branch),
                resolve_branch(t.descriptor, target_branch),
                title,
                description,
            )

        return await self._run("createPullRequest", repository_id, caller, call)

    async def merge_pull_request(
        self, repository_id: str, pull_request_id: str, caller: str | None = None
    ) -> OperationResult[MergeResult]:
        return await self._run(
            "mergePullRequest", repository_id, caller,
            lambda t: t.provider.merge_pull_request(t.ctx, str(pull_request_id)),
        )

    async def close_pull_request(
        self, repository_id: str, pull_request_id: str, caller: str | None = None
    ) -> OperationResult[ScmResult]:
        return await self._run(
            "closePullRequest", repository_id, caller,
            lambda t: t.provider.close_pull_request(t.ctx, str(pull_request_id)),
        )

    # --- Pipelines ---

    async def trigger_pipeline(
        self, repository_id: str, spec: PipelineSpec, caller: str | None = None
    ) -> OperationResult[PipelineResult]:
        async def call(t: _Target) -> PipelineResult:
            resolved = dataclasses.replace(
                spec, branch=resolve_branch(t.descriptor, spec.branch).name
            )
            return await t.provider.trigger_pipeline(t.ctx, resolved)

        return await self._run("triggerPipeline", repository_id, caller, call)
