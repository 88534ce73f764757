"""
Tests for the patch engine: parsing, create-or-update sequencing and
partial failure reporting.
"""

from __future__ import annotations

import json

import pytest

from scmgate.scm.content import decode_content, encode_content
from scmgate.scm.patch import PatchApplier, parse_patch, summarize
from scmgate.scm.protocol import (
    BranchRef,
    ContentEncoding,
    NotFoundError,
    PartialPatchFailure,
    Patch,
    PatchParseError,
    ProviderServerError,
    ScmContext,
)


class FakeWriter:
    """In-memory FileWriter keyed by path."""

    def __init__(self, files: dict[str, str] | None = None, fail_on: str | None = None) -> None:
        self.files = dict(files or {})
        self.fail_on = fail_on
        self.revision_calls = 0
        self.writes: list[tuple[str, str, str | None]] = []

    async def get_revision(self, ctx: ScmContext, branch: BranchRef, path: str) -> str:
        self.revision_calls += 1
        if path not in self.files:
            raise NotFoundError(f"Not found: file {path}@{branch.name}")
        return f"sha-{path}"

    async def write_file(
        self,
        ctx: ScmContext,
        branch: BranchRef,
        path: str,
        content_base64: str,
        message: str,
        revision: str | None,
    ) -> None:
        if path == self.fail_on:
            raise ProviderServerError(f"update {path} failed with HTTP 500", status_code=500)
        self.writes.append((path, content_base64, revision))
        self.files[path] = decode_content(content_base64)


def _patch(*entries: dict) -> Patch:
    return Patch(diff=json.dumps(list(entries)))


@pytest.fixture
def ctx() -> ScmContext:
    return ScmContext(repository="acme/widgets", auth_token="t")


@pytest.fixture
def branch() -> BranchRef:
    return BranchRef(name="feature/x")


class TestParsePatch:
    def test_entries_in_order(self) -> None:
        entries = parse_patch(_patch({"path": "b.txt", "content": "B"}, {"path": "a.txt", "content": "A"}))
        assert [e.path for e in entries] == ["b.txt", "a.txt"]

    def test_leading_slash_stripped(self) -> None:
        assert parse_patch(_patch({"path": "/docs/x.md", "content": ""}))[0].path == "docs/x.md"

    def test_explicit_encoding(self) -> None:
        entry = parse_patch(_patch({"path": "a", "content": "YQ==", "encoding": "base64"}))[0]
        assert entry.encoding is ContentEncoding.BASE64

    def test_empty_array(self) -> None:
        assert parse_patch(Patch(diff="[]")) == []

    @pytest.mark.parametrize(
        "diff",
        [
            "not json",
            '{"path": "a", "content": "b"}',
            '["a.txt"]',
            '[{"content": "x"}]',
            '[{"path": "  ", "content": "x"}]',
            '[{"path": "a", "content": 3}]',
            '[{"path": "a", "content": "x", "encoding": "gzip"}]',
        ],
    )
    def test_rejects_malformed(self, diff: str) -> None:
        with pytest.raises(PatchParseError):
            parse_patch(Patch(diff=diff))


class TestPatchApplier:
    async def test_create_new_file(self, ctx: ScmContext, branch: BranchRef) -> None:
        writer = FakeWriter()
        result = await PatchApplier(writer).apply(
            ctx, branch, _patch({"path": "a.txt", "content": "hello"}), "msg"
        )

        assert result.success is True
        assert result.details == ("created:a.txt",)
        assert result.message == "Applied patch to 1 files: created:a.txt"
        assert writer.writes == [("a.txt", encode_content("hello"), None)]
        assert writer.revision_calls == 1

    async def test_update_carries_revision(self, ctx: ScmContext, branch: BranchRef) -> None:
        writer = FakeWriter(files={"a.txt": "old"})
        result = await PatchApplier(writer).apply(
            ctx, branch, _patch({"path": "a.txt", "content": "new"}), "msg"
        )

        assert result.details == ("updated:a.txt",)
        assert writer.writes[0][2] == "sha-a.txt"
        assert writer.files["a.txt"] == "new"

    async def test_mixed_created_and_updated_in_order(self, ctx: ScmContext, branch: BranchRef) -> None:
        writer = FakeWriter(files={"b.txt": "old", "d.txt": "old"})
        patch = _patch(
            {"path": "a.txt", "content": "1"},
            {"path": "b.txt", "content": "2"},
            {"path": "c.txt", "content": "3"},
            {"path": "d.txt", "content": "4"},
        )
        result = await PatchApplier(writer).apply(ctx, branch, patch, "msg")

        assert result.success is True
        assert result.details == ("created:a.txt", "updated:b.txt", "created:c.txt", "updated:d.txt")
        assert [w[0] for w in writer.writes] == ["a.txt", "b.txt", "c.txt", "d.txt"]

    async def test_parse_failure_makes_no_calls(self, ctx: ScmContext, branch: BranchRef) -> None:
        writer = FakeWriter()
        result = await PatchApplier(writer).apply(ctx, branch, Patch(diff="not json"), "msg")

        assert result.success is False
        assert isinstance(result.error, PatchParseError)
        assert "Failed to parse patch" in result.message
        assert writer.revision_calls == 0
        assert writer.writes == []

    async def test_partial_failure_keeps_earlier_writes(self, ctx: ScmContext, branch: BranchRef) -> None:
        writer = FakeWriter(fail_on="b.txt")
        patch = _patch(
            {"path": "a.txt", "content": "1"},
            {"path": "b.txt", "content": "2"},
            {"path": "c.txt", "content": "3"},
        )
        result = await PatchApplier(writer).apply(ctx, branch, patch, "msg")

        assert result.success is False
        assert result.details == ("created:a.txt",)
        assert isinstance(result.error, PartialPatchFailure)
        assert result.error.path == "b.txt"
        assert result.error.applied == ("created:a.txt",)
        assert isinstance(result.error.cause, ProviderServerError)
        assert "applyPatch failed for b.txt after 1 files" in result.message
        # c.txt was never attempted
        assert "c.txt" not in writer.files

    async def test_empty_patch_succeeds(self, ctx: ScmContext, branch: BranchRef) -> None:
        writer = FakeWriter()
        result = await PatchApplier(writer).apply(ctx, branch, Patch(diff="[]"), "msg")

        assert result.success is True
        assert result.message == summarize([])
        assert writer.revision_calls == 0
