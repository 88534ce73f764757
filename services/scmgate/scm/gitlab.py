"""
GitLab SCM provider.

Authenticates with a project/group/personal access token sent as
PRIVATE-TOKEN. Supports GitLab.com and self-hosted GitLab instances. The
repository path may contain nested groups (group/subgroup/project); it is
URL-encoded into the project id GitLab expects.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote as url_quote

import httpx

from scmgate.logging_config import get_logger
from scmgate.scm.archive import ArchiveStream, open_archive
from scmgate.scm.content import decode_content
from scmgate.scm.http import build_client, json_body, request, require
from scmgate.scm.patch import PatchApplier
from scmgate.scm.protocol import (
    BranchNotFoundError,
    BranchRef,
    FileContent,
    MergeFailureReason,
    MergeResult,
    NotFoundError,
    Patch,
    PipelineResult,
    PipelineSpec,
    PipelineStatus,
    ProviderResponseError,
    PullRequestInfo,
    PullRequestStatus,
    ScmContext,
    ScmError,
    ScmResult,
)

logger = get_logger(__name__)

DEFAULT_GITLAB_URL = "https://gitlab.com"

_MR_STATES = {
    "opened": PullRequestStatus.OPEN,
    "closed": PullRequestStatus.CLOSED,
    "merged": PullRequestStatus.MERGED,
}

_PIPELINE_STATES = {
    "created": PipelineStatus.QUEUED,
    "waiting_for_resource": PipelineStatus.QUEUED,
    "preparing": PipelineStatus.QUEUED,
    "pending": PipelineStatus.QUEUED,
    "scheduled": PipelineStatus.QUEUED,
    "running": PipelineStatus.RUNNING,
    "success": PipelineStatus.SUCCESS,
    "failed": PipelineStatus.FAILED,
    "canceled": PipelineStatus.FAILED,
    "skipped": PipelineStatus.FAILED,
}


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _enc(value: str) -> str:
    """URL-encode a path segment completely (GitLab ids, file paths, branch names)."""
    return url_quote(value, safe="")


def merge_failure_reason(error: ScmError) -> MergeFailureReason:
    """GitLab answers 405/406/409/422 when a merge request cannot be merged."""
    status = getattr(error, "status_code", None)
    if status in (405, 406, 409, 422):
        return MergeFailureReason.CONFLICT
    if status == 404:
        return MergeFailureReason.NOT_FOUND
    if status in (401, 403):
        return MergeFailureReason.UNAUTHORIZED
    return MergeFailureReason.UNKNOWN


class GitLabProvider:
    """SCM provider backed by the GitLab v4 REST API."""

    def __init__(
        self,
        url: str = DEFAULT_GITLAB_URL,
        archive_chunk_size: int = 64 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url_base = url.rstrip("/")
        self._chunk_size = archive_chunk_size
        self._client = build_client(transport=transport)
        self._patches = PatchApplier(self)

    def _api(self, ctx: ScmContext) -> str:
        base = (ctx.api_url or self._url_base).rstrip("/")
        if base.endswith("/api/v4"):
            return base
        return f"{base}/api/v4"

    def _project_url(self, ctx: ScmContext, path: str = "") -> str:
        return f"{self._api(ctx)}/projects/{_enc(ctx.repository)}{path}"

    @staticmethod
    def _headers(ctx: ScmContext) -> dict[str, str]:
        if not ctx.auth_token:
            return {}
        return {"PRIVATE-TOKEN": ctx.auth_token}

    async def _call(
        self, ctx: ScmContext, method: str, path: str, what: str, **kwargs: Any
    ) -> httpx.Response:
        return await request(
            self._client,
            method,
            self._project_url(ctx, path),
            what,
            headers=self._headers(ctx),
            **kwargs,
        )

    # --- Repository ---

    async def validate_access(self, ctx: ScmContext) -> bool:
        logger.info("Validating repository access", provider="gitlab", repository=ctx.repository)
        try:
            await self._call(ctx, "GET", "", f"project {ctx.repository}")
        except ScmError as e:
            logger.warning(
                "Repository access check failed", repository=ctx.repository, error=str(e)
            )
            return False
        return True

    # --- Files ---

    async def _get_file(self, ctx: ScmContext, branch: BranchRef, path: str) -> dict:
        resp = await self._call(
            ctx, "GET", f"/repository/files/{_enc(path.lstrip('/'))}",
            f"file {path}@{branch.name}", params={"ref": branch.name},
        )
        data = json_body(resp, f"file {path}@{branch.name}")
        if not isinstance(data, dict):
            raise ProviderResponseError(f"file {path}@{branch.name} returned {type(data).__name__}")
        return data

    async def read_file(self, ctx: ScmContext, branch: BranchRef, path: str) -> FileContent:
        logger.info("Reading file", repository=ctx.repository, branch=branch.name, path=path)
        data = await self._get_file(ctx, branch, path)
        content = data.get("content")
        text = decode_content(content) if data.get("encoding", "base64") == "base64" else content
        return FileContent(
            path=data.get("file_path", path),
            content=text or "",
            size=data.get("size"),
            sha=data.get("last_commit_id"),
        )

    async def get_revision(self, ctx: ScmContext, branch: BranchRef, path: str) -> str:
        data = await self._get_file(ctx, branch, path)
        return require(data, f"file {path}", "last_commit_id")

    async def write_file(
        self,
        ctx: ScmContext,
        branch: BranchRef,
        path: str,
        content_base64: str,
        message: str,
        revision: str | None,
    ) -> None:
        body: dict[str, Any] = {
            "branch": branch.name,
            "commit_message": message,
            "content": content_base64,
            "encoding": "base64",
        }
        if revision is not None:
            # Rejected with 400 if the file changed since `revision`
            body["last_commit_id"] = revision
            method, action = "PUT", "update"
        else:
            method, action = "POST", "create"
        await self._call(
            ctx, method, f"/repository/files/{_enc(path.lstrip('/'))}", f"{action} {path}", json=body
        )

    async def download_archive(self, ctx: ScmContext, branch: BranchRef) -> ArchiveStream:
        logger.info("Downloading archive", repository=ctx.repository, branch=branch.name)
        return await open_archive(
            self._client,
            self._project_url(ctx, "/repository/archive.zip"),
            f"archive {ctx.repository}@{branch.name}",
            chunk_size=self._chunk_size,
            params={"sha": branch.name},
            headers=self._headers(ctx),
        )

    # --- Branches ---

    async def create_branch(
        self, ctx: ScmContext, base_branch: BranchRef, new_branch_name: str
    ) -> BranchRef:
        logger.info(
            "Creating branch",
            repository=ctx.repository,
            base=base_branch.name,
            branch=new_branch_name,
        )
        try:
            resp = await self._call(
                ctx, "GET", f"/repository/branches/{_enc(base_branch.name)}",
                f"branch {base_branch.name}",
            )
        except NotFoundError as e:
            raise BranchNotFoundError(base_branch.name, ctx.repository) from e
        what = f"branch {base_branch.name}"
        sha = require(json_body(resp, what), what, "commit", "id")

        # Pin to the sha just read so the new branch matches the base head we observed
        await self._call(
            ctx, "POST", "/repository/branches", f"create branch {new_branch_name}",
            params={"branch": new_branch_name, "ref": sha},
        )
        return BranchRef(name=new_branch_name, sha=sha)

    async def delete_branch(self, ctx: ScmContext, branch: BranchRef) -> ScmResult:
        logger.info("Deleting branch", repository=ctx.repository, branch=branch.name)
        try:
            await self._call(
                ctx, "DELETE", f"/repository/branches/{_enc(branch.name)}",
                f"delete branch {branch.name}",
            )
        except ScmError as e:
            logger.error("Branch deletion failed", repository=ctx.repository, error=str(e))
            return ScmResult.failed(e)
        return ScmResult.ok(f"Branch deleted: {branch.name}")

    # --- Patch ---

    async def apply_patch(
        self, ctx: ScmContext, branch: BranchRef, patch: Patch, commit_message: str
    ) -> ScmResult:
        logger.info("Applying patch", repository=ctx.repository, branch=branch.name)
        return await self._patches.apply(ctx, branch, patch, commit_message)

    # --- Merge requests ---

    async def create_pull_request(
        self,
        ctx: ScmContext,
        source_branch: BranchRef,
        target_branch: BranchRef,
        title: str,
        description: str | None,
    ) -> PullRequestInfo:
        logger.info(
            "Creating merge request",
            repository=ctx.repository,
            source=source_branch.name,
            target=target_branch.name,
        )
        resp = await self._call(
            ctx, "POST", "/merge_requests", f"create merge request {source_branch.name}",
            json={
                "source_branch": source_branch.name,
                "target_branch": target_branch.name,
                "title": title,
                "description": description or "",
            },
        )
        what = f"create merge request {source_branch.name}"
        mr = json_body(resp, what)
        return PullRequestInfo(
            id=str(require(mr, what, "iid")),
            title=mr.get("title", title),
            body=mr.get("description"),
            source_branch=mr.get("source_branch", source_branch.name),
            target_branch=mr.get("target_branch", target_branch.name),
            status=_MR_STATES.get(mr.get("state", "opened"), PullRequestStatus.OPEN),
            author=(mr.get("author") or {}).get("username"),
            url=mr.get("web_url"),
            created_at=_parse_timestamp(mr.get("created_at")),
            updated_at=_parse_timestamp(mr.get("updated_at")),
        )

    async def merge_pull_request(self, ctx: ScmContext, pull_request_id: str) -> MergeResult:
        logger.info("Merging merge request", repository=ctx.repository, mr=pull_request_id)
        try:
            resp = await self._call(
                ctx, "PUT", f"/merge_requests/{pull_request_id}/merge",
                f"merge merge request {pull_request_id}",
            )
            mr = json_body(resp, f"merge merge request {pull_request_id}")
            if not isinstance(mr, dict):
                raise ProviderResponseError(
                    f"merge merge request {pull_request_id} returned {type(mr).__name__}"
                )
        except ScmError as e:
            logger.error("Merge request merge failed", repository=ctx.repository, error=str(e))
            return MergeResult(
                merged=False,
                pull_request_id=pull_request_id,
                sha=None,
                message=str(e),
                failure_reason=merge_failure_reason(e),
            )

        if mr.get("state") != "merged":
            # Merge when pipeline succeeds: accepted but not merged yet
            return MergeResult(
                merged=False,
                pull_request_id=pull_request_id,
                sha=None,
                message=f"Merge request is {mr.get('state', 'unknown')}",
                failure_reason=MergeFailureReason.UNKNOWN,
            )
        return MergeResult(
            merged=True,
            pull_request_id=pull_request_id,
            sha=mr.get("merge_commit_sha") or mr.get("squash_commit_sha") or mr.get("sha"),
            message="Merged",
        )

    async def close_pull_request(self, ctx: ScmContext, pull_request_id: str) -> ScmResult:
        logger.info("Closing merge request", repository=ctx.repository, mr=pull_request_id)
        try:
            await self._call(
                ctx, "PUT", f"/merge_requests/{pull_request_id}",
                f"close merge request {pull_request_id}", json={"state_event": "close"},
            )
        except ScmError as e:
            logger.error("Merge request close failed", repository=ctx.repository, error=str(e))
            return ScmResult.failed(e)
        return ScmResult.ok(f"Pull request closed: {pull_request_id}")

    # --- Pipelines ---

    async def trigger_pipeline(self, ctx: ScmContext, spec: PipelineSpec) -> PipelineResult:
        logger.info("Creating pipeline", repository=ctx.repository, branch=spec.branch)
        started = datetime.now(UTC)
        variables = [{"key": k, "value": str(v)} for k, v in (spec.variables or {}).items()]
        try:
            resp = await self._call(
                ctx, "POST", "/pipeline", f"create pipeline on {spec.branch}",
                json={"ref": spec.branch, "variables": variables},
            )
            # Unlike GitHub dispatch, GitLab returns the pipeline synchronously
            pipeline = json_body(resp, f"create pipeline on {spec.branch}")
            pipeline_id = str(require(pipeline, "create pipeline", "id"))
        except ScmError as e:
            logger.error("Pipeline creation failed", repository=ctx.repository, error=str(e))
            return PipelineResult(
                pipeline_id=None,
                status=PipelineStatus.FAILED,
                message=str(e),
                started_at=started,
                finished_at=datetime.now(UTC),
            )

        return PipelineResult(
            pipeline_id=pipeline_id,
            status=_PIPELINE_STATES.get(pipeline.get("status", ""), PipelineStatus.QUEUED),
            message="Pipeline created",
            started_at=_parse_timestamp(pipeline.get("created_at")) or started,
            finished_at=_parse_timestamp(pipeline.get("finished_at")),
            url=pipeline.get("web_url"),
        )

    async def close(self) -> None:
        await self._client.aclose()
