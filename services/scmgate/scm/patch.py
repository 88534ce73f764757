"""
Patch application engine.

A patch is an ordered list of whole-file writes. Each entry is written with
one create-or-update call against the provider, strictly in order: the
current revision token is looked up first, an update carries it as an
optimistic-concurrency guard, and a missing file is created without one.

There is no rollback. When an entry fails, the entries before it stay
committed on the remote branch and the returned result lists them.
Re-applying an unchanged patch writes every file again; the end state
converges but each run produces commits.
"""

import json
from typing import Any

from scmgate.logging_config import get_logger
from scmgate.scm.content import to_transport_base64
from scmgate.scm.protocol import (
    BranchRef,
    ContentEncoding,
    FileWriter,
    NotFoundError,
    PartialPatchFailure,
    Patch,
    PatchEntry,
    PatchParseError,
    ScmContext,
    ScmError,
    ScmResult,
)

logger = get_logger(__name__)

CREATED = "created"
UPDATED = "updated"


def _parse_entry(index: int, raw: Any) -> PatchEntry:
    if not isinstance(raw, dict):
        raise PatchParseError(f"Entry {index} is not an object")

    path = raw.get("path")
    if not isinstance(path, str) or not path.strip():
        raise PatchParseError(f"Entry {index} is missing a non-empty 'path'")

    content = raw.get("content")
    if not isinstance(content, str):
        raise PatchParseError(f"Entry {index} ({path}) is missing string 'content'")

    encoding = raw.get("encoding")
    if encoding is not None:
        try:
            encoding = ContentEncoding(encoding)
        except ValueError as e:
            raise PatchParseError(
                f"Entry {index} ({path}) has unknown encoding {encoding!r}"
            ) from e

    return PatchEntry(path=path.strip().lstrip("/"), content=content, encoding=encoding)


def parse_patch(patch: Patch) -> list[PatchEntry]:
    """Parse the wire form of a patch.

    Raises:
        PatchParseError: If `patch.diff` is not a JSON array of
            ``{path, content[, encoding]}`` objects.
    """
    if patch.diff is None:
        raise PatchParseError("Patch has no diff payload")
    try:
        data = json.loads(patch.diff)
    except (TypeError, ValueError) as e:
        raise PatchParseError(f"Failed to parse patch as JSON array of {{path,content}}: {e}") from e

    if not isinstance(data, list):
        raise PatchParseError(
            f"Failed to parse patch as JSON array of {{path,content}}: got {type(data).__name__}"
        )
    return [_parse_entry(i, item) for i, item in enumerate(data)]


def summarize(labels: list[str]) -> str:
    return f"Applied patch to {len(labels)} files: {', '.join(labels)}"


class PatchApplier:
    """Drives a FileWriter through the create-or-update sequence."""

    def __init__(self, writer: FileWriter) -> None:
        self._writer = writer

    async def _apply_entry(
        self, ctx: ScmContext, branch: BranchRef, entry: PatchEntry, message: str
    ) -> str:
        content = to_transport_base64(entry)

        try:
            revision: str | None = await self._writer.get_revision(ctx, branch, entry.path)
        except NotFoundError:
            revision = None

        await self._writer.write_file(ctx, branch, entry.path, content, message, revision)
        outcome = UPDATED if revision is not None else CREATED
        return f"{outcome}:{entry.path}"

    async def apply(
        self, ctx: ScmContext, branch: BranchRef, patch: Patch, commit_message: str
    ) -> ScmResult:
        """Apply every entry in order. Never raises ScmError; failures are in the result."""
        try:
            entries = parse_patch(patch)
        except PatchParseError as e:
            logger.error("Patch rejected", repository=ctx.repository, error=str(e))
            return ScmResult.failed(e)

        labels: list[str] = []
        for entry in entries:
            try:
                labels.append(await self._apply_entry(ctx, branch, entry, commit_message))
            except ScmError as e:
                failure = PartialPatchFailure(tuple(labels), entry.path, e)
                logger.error(
                    "Patch aborted",
                    repository=ctx.repository,
                    branch=branch.name,
                    path=entry.path,
                    applied=len(labels),
                    error=str(e),
                )
                return ScmResult.failed(failure, details=tuple(labels))

        logger.info(
            "Patch applied",
            repository=ctx.repository,
            branch=branch.name,
            files=len(labels),
        )
        return ScmResult.ok(summarize(labels), details=tuple(labels))
