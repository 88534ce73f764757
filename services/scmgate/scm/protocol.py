"""
SCM provider protocol and types for scmgate.

Defines the ScmProvider Protocol that every hosting backend must satisfy,
along with the shared request-scoped value types and the error taxonomy
callers branch on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from scmgate.scm.archive import ArchiveStream


# --- Enums ---


class ContentEncoding(StrEnum):
    """Declared encoding of a patch entry's content."""

    TEXT = "text"
    BASE64 = "base64"


class PullRequestStatus(StrEnum):
    OPEN = "OPEN"
    CLOSED = "CLOSED"
    MERGED = "MERGED"

    def can_transition_to(self, other: PullRequestStatus) -> bool:
        """Only open pull requests move, and only to a terminal state."""
        return self is PullRequestStatus.OPEN and other in (
            PullRequestStatus.MERGED,
            PullRequestStatus.CLOSED,
        )


class MergeFailureReason(StrEnum):
    NONE = "NONE"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    UNKNOWN = "UNKNOWN"


class PipelineStatus(StrEnum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


# --- Data Types ---


@dataclass(frozen=True)
class ScmContext:
    """Target repository and credentials for a single operation.

    `repository` is the provider-side path (``owner/name`` on GitHub, the
    full namespace path on GitLab). An empty `auth_token` is allowed for
    public reads.
    """

    repository: str
    auth_token: str = field(default="", repr=False)
    api_url: str | None = None

    def __post_init__(self) -> None:
        if not self.repository or not self.repository.strip():
            raise ValueError("ScmContext.repository must not be empty")


@dataclass(frozen=True)
class BranchRef:
    """A named branch, optionally resolved to its head commit."""

    name: str
    sha: str | None = None

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("BranchRef.name must not be empty")


@dataclass(frozen=True)
class FileContent:
    """Decoded file payload. `content` is always plain text."""

    path: str
    content: str
    size: int | None = None
    sha: str | None = None


@dataclass(frozen=True)
class PatchEntry:
    """A single file write within a patch."""

    path: str
    content: str
    encoding: ContentEncoding | None = None


@dataclass(frozen=True)
class Patch:
    """Caller-supplied change set.

    `diff` carries the wire format: a JSON array of
    ``{"path": ..., "content": ..., "encoding"?: "text"|"base64"}`` objects.
    """

    diff: str


@dataclass(frozen=True)
class ScmResult:
    """Outcome of a mutating operation."""

    success: bool
    message: str
    details: tuple[str, ...] = ()
    error: ScmError | None = None

    @classmethod
    def ok(cls, message: str, details: tuple[str, ...] = ()) -> ScmResult:
        return cls(success=True, message=message, details=details)

    @classmethod
    def failed(cls, error: ScmError, details: tuple[str, ...] = ()) -> ScmResult:
        return cls(success=False, message=str(error), details=details, error=error)


@dataclass(frozen=True)
class PullRequestInfo:
    id: str
    title: str
    body: str | None
    source_branch: str
    target_branch: str
    status: PullRequestStatus = PullRequestStatus.OPEN
    author: str | None = None
    url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class MergeResult:
    """Outcome of a merge attempt. A commit sha is only present when merged."""

    merged: bool
    pull_request_id: str
    sha: str | None
    message: str
    failure_reason: MergeFailureReason = MergeFailureReason.NONE

    def __post_init__(self) -> None:
        if self.sha is not None and not self.merged:
            raise ValueError("MergeResult.sha is only allowed when merged is true")


@dataclass(frozen=True)
class PipelineSpec:
    """CI/CD trigger request.

    `trigger_source` is the provider's pipeline handle: a workflow file name
    or id on GitHub; unused on GitLab where the project pipeline is implied.
    """

    trigger_source: str
    branch: str
    variables: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class PipelineResult:
    pipeline_id: str | None
    status: PipelineStatus
    message: str
    started_at: datetime | None = None
    finished_at: datetime | None = None
    url: str | None = None


# --- Exceptions ---


class ScmError(Exception):
    """Base exception for SCM operations.

    `retryable` tells a wrapping policy executor whether a replay is safe to
    attempt for idempotent operations. Nothing inside scmgate retries.
    """

    retryable: bool = False


class RepositoryNotFoundError(ScmError):
    """The repository id is unknown to the metadata resolver."""

    def __init__(self, repository_id: str) -> None:
        self.repository_id = repository_id
        super().__init__(f"Repository not found: {repository_id}")


class BranchNotFoundError(ScmError):
    """No branch was given and none could be resolved, or the branch is absent remotely."""

    def __init__(self, branch: str | None = None, repository: str | None = None) -> None:
        self.branch = branch
        self.repository = repository
        if branch:
            super().__init__(f"Branch not found: {branch}")
        else:
            super().__init__(f"No branch given and no default branch for {repository}")


class ProviderNotFoundError(ScmError):
    """No provider is registered for the requested type."""

    def __init__(self, provider_type: str) -> None:
        self.provider_type = provider_type
        super().__init__(f"Provider not found: {provider_type}")


class AccessOrNotFoundError(ScmError):
    """The provider rejected the request with a 4xx status."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class NotFoundError(AccessOrNotFoundError):
    """The provider answered 404 for the requested resource."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)


class ProviderServerError(ScmError):
    """The provider failed with a 5xx status."""

    retryable = True

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class ProviderConnectionError(ScmError):
    """The request never produced a response (DNS, connect, read timeout)."""

    retryable = True


class UnexpectedRedirectError(ScmError):
    """The provider answered 3xx on a call that does not follow redirects."""

    def __init__(self, message: str, status_code: int, location: str | None = None) -> None:
        self.status_code = status_code
        self.location = location
        super().__init__(message)


class ProviderResponseError(ScmError):
    """A 2xx response whose body is not the JSON shape the call expects."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class DecodeError(ScmError):
    """Content claimed to be base64 could not be decoded to UTF-8 text."""


class PatchParseError(ScmError):
    """The patch payload is not a JSON array of {path, content} objects."""


class PartialPatchFailure(ScmError):
    """A patch batch stopped part-way. Entries in `applied` remain on the remote."""

    def __init__(self, applied: tuple[str, ...], path: str, cause: Exception) -> None:
        self.applied = applied
        self.path = path
        self.cause = cause
        done = ", ".join(applied) if applied else "none"
        super().__init__(
            f"applyPatch failed for {path} after {len(applied)} files ({done}): {cause}"
        )


# --- Protocols ---


@runtime_checkable
class ScmProvider(Protocol):
    """Protocol defining the vendor-agnostic SCM contract.

    All methods are async. Implementations satisfy this interface
    structurally, no inheritance required. Methods documented as never
    raising encode their failure in the returned object.
    """

    async def validate_access(self, ctx: ScmContext) -> bool:
        """Return True if the repository is reachable with the given credentials. Never raises."""
        ...

    async def read_file(self, ctx: ScmContext, branch: BranchRef, path: str) -> FileContent:
        """Read and decode a file at a branch.

        Raises:
            NotFoundError: If the path does not exist at the branch.
            DecodeError: If the provider content is not valid base64 UTF-8.
        """
        ...

    async def download_archive(self, ctx: ScmContext, branch: BranchRef) -> ArchiveStream:
        """Open a streamed zip archive of the branch.

        The HTTP status is classified before returning; chunks are only
        read as the caller iterates.
        """
        ...

    async def create_branch(
        self, ctx: ScmContext, base_branch: BranchRef, new_branch_name: str
    ) -> BranchRef:
        """Create `new_branch_name` at the head of `base_branch`.

        Returns:
            The new branch with the sha it was created at.
        """
        ...

    async def delete_branch(self, ctx: ScmContext, branch: BranchRef) -> ScmResult:
        """Delete a branch. Never raises."""
        ...

    async def apply_patch(
        self, ctx: ScmContext, branch: BranchRef, patch: Patch, commit_message: str
    ) -> ScmResult:
        """Write every patch entry to the branch, one commit per file. Never raises."""
        ...

    async def create_pull_request(
        self,
        ctx: ScmContext,
        source_branch: BranchRef,
        target_branch: BranchRef,
        title: str,
        description: str | None,
    ) -> PullRequestInfo:
        """Open a pull (merge) request."""
        ...

    async def merge_pull_request(self, ctx: ScmContext, pull_request_id: str) -> MergeResult:
        """Merge a pull request. Never raises."""
        ...

    async def close_pull_request(self, ctx: ScmContext, pull_request_id: str) -> ScmResult:
        """Close a pull request without merging. Never raises."""
        ...

    async def trigger_pipeline(self, ctx: ScmContext, spec: PipelineSpec) -> PipelineResult:
        """Request a CI/CD run. Never raises; failure is status FAILED."""
        ...

    async def close(self) -> None:
        """Release any resources held by the provider."""
        ...


class FileWriter(Protocol):
    """Per-file primitives the patch engine drives."""

    async def get_revision(self, ctx: ScmContext, branch: BranchRef, path: str) -> str:
        """Return the file's current revision token.

        Raises:
            NotFoundError: If the file does not exist at the branch.
        """
        ...

    async def write_file(
        self,
        ctx: ScmContext,
        branch: BranchRef,
        path: str,
        content_base64: str,
        message: str,
        revision: str | None,
    ) -> None:
        """Create (revision is None) or update the file."""
        ...


