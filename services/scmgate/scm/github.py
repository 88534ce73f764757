"""
GitHub SCM provider.

Implements the ScmProvider protocol over the GitHub REST API: the Contents
API for reads and per-file commits, the Git Refs API for branches, the Pulls
API, Actions workflow dispatch, and the zipball endpoint. Works against
github.com and GitHub Enterprise (per-repository `api_url`).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx

from scmgate.logging_config import get_logger
from scmgate.scm.archive import ArchiveStream, open_archive
from scmgate.scm.content import decode_content
from scmgate.scm.http import build_client, json_body, request, require
from scmgate.scm.patch import PatchApplier
from scmgate.scm.protocol import (
    AccessOrNotFoundError,
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

DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_API_VERSION = "2022-11-28"

_JSON_MEDIA_TYPE = "application/vnd.github+json"
_RAW_MEDIA_TYPE = "application/vnd.github.raw"


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def merge_failure_reason(error: ScmError) -> MergeFailureReason:
    """Map a failed merge call onto a failure reason.

    GitHub answers 405 when the PR is not mergeable and 409 when the head
    moved underneath the merge.
    """
    status = getattr(error, "status_code", None)
    if status in (405, 409):
        return MergeFailureReason.CONFLICT
    if status == 404:
        return MergeFailureReason.NOT_FOUND
    if status in (401, 403):
        return MergeFailureReason.UNAUTHORIZED
    return MergeFailureReason.UNKNOWN


class GitHubProvider:
    """SCM provider backed by the GitHub REST API."""

    def __init__(
        self,
        api_url: str = DEFAULT_GITHUB_API_URL,
        api_version: str = DEFAULT_API_VERSION,
        archive_chunk_size: int = 64 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        self._chunk_size = archive_chunk_size
        self._client = build_client(
            headers={"Accept": _JSON_MEDIA_TYPE, "X-GitHub-Api-Version": api_version},
            transport=transport,
        )
        self._patches = PatchApplier(self)

    def _url(self, ctx: ScmContext, path: str) -> str:
        base = (ctx.api_url or self._api_url).rstrip("/")
        return f"{base}/repos/{ctx.repository}{path}"

    @staticmethod
    def _auth(ctx: ScmContext) -> dict[str, str]:
        if not ctx.auth_token:
            return {}
        return {"Authorization": f"Bearer {ctx.auth_token}"}

    async def _call(
        self, ctx: ScmContext, method: str, path: str, what: str, **kwargs: Any
    ) -> httpx.Response:
        headers = {**self._auth(ctx), **kwargs.pop("headers", {})}
        return await request(
            self._client, method, self._url(ctx, path), what, headers=headers, **kwargs
        )

    # --- Repository ---

    async def validate_access(self, ctx: ScmContext) -> bool:
        logger.info("Validating repository access", provider="github", repository=ctx.repository)
        try:
            await self._call(ctx, "GET", "", f"repository {ctx.repository}")
        except ScmError as e:
            logger.warning(
                "Repository access check failed", repository=ctx.repository, error=str(e)
            )
            return False
        return True

    # --- Files ---

    def _contents_path(self, path: str) -> str:
        return f"/contents/{quote(path.lstrip('/'))}"

    async def _get_contents(self, ctx: ScmContext, branch: BranchRef, path: str) -> dict:
        resp = await self._call(
            ctx, "GET", self._contents_path(path), f"file {path}@{branch.name}",
            params={"ref": branch.name},
        )
        data = json_body(resp, f"file {path}@{branch.name}")
        if not isinstance(data, dict) or data.get("type", "file") != "file":
            raise AccessOrNotFoundError(f"{path} is not a file", status_code=resp.status_code)
        return data

    async def read_file(self, ctx: ScmContext, branch: BranchRef, path: str) -> FileContent:
        logger.info("Reading file", repository=ctx.repository, branch=branch.name, path=path)
        data = await self._get_contents(ctx, branch, path)

        if data.get("encoding") == "none":
            # Files over 1 MB come back without inline content
            resp = await self._call(
                ctx, "GET", self._contents_path(path), f"raw file {path}@{branch.name}",
                params={"ref": branch.name}, headers={"Accept": _RAW_MEDIA_TYPE},
            )
            text = resp.text
        else:
            text = decode_content(data.get("content"))

        return FileContent(
            path=data.get("path", path),
            content=text,
            size=data.get("size"),
            sha=data.get("sha"),
        )

    async def get_revision(self, ctx: ScmContext, branch: BranchRef, path: str) -> str:
        data = await self._get_contents(ctx, branch, path)
        return require(data, f"file {path}", "sha")

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
            "message": message,
            "content": content_base64,
            "branch": branch.name,
        }
        if revision is not None:
            body["sha"] = revision
        action = "update" if revision is not None else "create"
        await self._call(ctx, "PUT", self._contents_path(path), f"{action} {path}", json=body)

    async def download_archive(self, ctx: ScmContext, branch: BranchRef) -> ArchiveStream:
        logger.info("Downloading archive", repository=ctx.repository, branch=branch.name)
        return await open_archive(
            self._client,
            self._url(ctx, f"/zipball/{quote(branch.name)}"),
            f"archive {ctx.repository}@{branch.name}",
            chunk_size=self._chunk_size,
            headers=self._auth(ctx),
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
                ctx, "GET", f"/git/ref/heads/{quote(base_branch.name)}",
                f"ref heads/{base_branch.name}",
            )
        except NotFoundError as e:
            raise BranchNotFoundError(base_branch.name, ctx.repository) from e
        what = f"ref heads/{base_branch.name}"
        sha = require(json_body(resp, what), what, "object", "sha")

        await self._call(
            ctx, "POST", "/git/refs", f"create branch {new_branch_name}",
            json={"ref": f"refs/heads/{new_branch_name}", "sha": sha},
        )
        return BranchRef(name=new_branch_name, sha=sha)

    async def delete_branch(self, ctx: ScmContext, branch: BranchRef) -> ScmResult:
        logger.info("Deleting branch", repository=ctx.repository, branch=branch.name)
        try:
            await self._call(
                ctx, "DELETE", f"/git/refs/heads/{quote(branch.name)}",
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
        logger.info(
            "Applying patch",
            repository=ctx.repository,
            branch=branch.name,
            commit_message=commit_message,
        )
        return await self._patches.apply(ctx, branch, patch, commit_message)

    # --- Pull requests ---

    async def create_pull_request(
        self,
        ctx: ScmContext,
        source_branch: BranchRef,
        target_branch: BranchRef,
        title: str,
        description: str | None,
    ) -> PullRequestInfo:
        logger.info(
            "Creating pull request",
            repository=ctx.repository,
            source=source_branch.name,
            target=target_branch.name,
        )
        resp = await self._call(
            ctx, "POST", "/pulls", f"create pull request {source_branch.name}",
            json={
                "title": title,
                "body": description,
                "head": source_branch.name,
                "base": target_branch.name,
            },
        )
        what = f"create pull request {source_branch.name}"
        pr = json_body(resp, what)
        return PullRequestInfo(
            id=str(require(pr, what, "number")),
            title=pr.get("title", title),
            body=pr.get("body"),
            source_branch=(pr.get("head") or {}).get("ref", source_branch.name),
            target_branch=(pr.get("base") or {}).get("ref", target_branch.name),
            status=PullRequestStatus.OPEN,
            author=(pr.get("user") or {}).get("login"),
            url=pr.get("html_url"),
            created_at=_parse_timestamp(pr.get("created_at")),
            updated_at=_parse_timestamp(pr.get("updated_at")),
        )

    async def merge_pull_request(self, ctx: ScmContext, pull_request_id: str) -> MergeResult:
        logger.info("Merging pull request", repository=ctx.repository, pr=pull_request_id)
        try:
            resp = await self._call(
                ctx, "PUT", f"/pulls/{pull_request_id}/merge",
                f"merge pull request {pull_request_id}", json={},
            )
            data = json_body(resp, f"merge pull request {pull_request_id}")
            if not isinstance(data, dict):
                raise ProviderResponseError(
                    f"merge pull request {pull_request_id} returned {type(data).__name__}"
                )
        except ScmError as e:
            logger.error("Pull request merge failed", repository=ctx.repository, error=str(e))
            return MergeResult(
                merged=False,
                pull_request_id=pull_request_id,
                sha=None,
                message=str(e),
                failure_reason=merge_failure_reason(e),
            )

        if data.get("merged") is False:
            return MergeResult(
                merged=False,
                pull_request_id=pull_request_id,
                sha=None,
                message=data.get("message", "Merge was not performed"),
                failure_reason=MergeFailureReason.UNKNOWN,
            )
        return MergeResult(
            merged=True,
            pull_request_id=pull_request_id,
            sha=data.get("sha"),
            message=data.get("message") or "Merged",
        )

    async def close_pull_request(self, ctx: ScmContext, pull_request_id: str) -> ScmResult:
        logger.info("Closing pull request", repository=ctx.repository, pr=pull_request_id)
        try:
            await self._call(
                ctx, "PATCH", f"/pulls/{pull_request_id}",
                f"close pull request {pull_request_id}", json={"state": "closed"},
            )
        except ScmError as e:
            logger.error("Pull request close failed", repository=ctx.repository, error=str(e))
            return ScmResult.failed(e)
        return ScmResult.ok(f"Pull request closed: {pull_request_id}")

    # --- Pipelines ---

    async def trigger_pipeline(self, ctx: ScmContext, spec: PipelineSpec) -> PipelineResult:
        logger.info(
            "Dispatching workflow",
            repository=ctx.repository,
            workflow=spec.trigger_source,
            branch=spec.branch,
        )
        started = datetime.now(UTC)
        try:
            await self._call(
                ctx, "POST", f"/actions/workflows/{quote(spec.trigger_source)}/dispatches",
                f"dispatch workflow {spec.trigger_source}",
                json={"ref": spec.branch, "inputs": spec.variables or {}},
            )
        except ScmError as e:
            logger.error("Workflow dispatch failed", repository=ctx.repository, error=str(e))
            return PipelineResult(
                pipeline_id=None,
                status=PipelineStatus.FAILED,
                message=str(e),
                started_at=started,
                finished_at=datetime.now(UTC),
            )

        # Dispatch is fire-and-forget: GitHub returns 204 without a run id
        return PipelineResult(
            pipeline_id=None,
            status=PipelineStatus.QUEUED,
            message="Workflow dispatch requested",
            started_at=started,
        )

    async def close(self) -> None:
        await self._client.aclose()
