from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from pydeskagent.tools.base import ToolContext
from pydeskagent.tools.permissions import PermissionGate, PermissionRejectedError
from pydeskagent.tools.sandbox import check_access, is_contained, resolve_boundary


class TestIsContained:
    def test_sibling_with_common_prefix(self) -> None:
        assert is_contained("/home/user", "/home/user2") is False
        assert is_contained("/home/user", "/home/user2/file.txt") is False

    def test_boundary_and_descendants(self) -> None:
        assert is_contained("/home/user", "/home/user") is True
        assert is_contained("/home/user", "/home/user/docs/a.txt") is True

    def test_dotdot_escape(self, tmp_path: Path) -> None:
        boundary = tmp_path / "project"
        boundary.mkdir()
        assert is_contained(boundary, boundary / ".." / "other.txt") is False
        assert is_contained(boundary, boundary / "src" / ".." / "a.txt") is True

    def test_symlink_out_of_boundary(self, tmp_path: Path) -> None:
        boundary = tmp_path / "project"
        outside = tmp_path / "outside"
        boundary.mkdir()
        outside.mkdir()
        (boundary / "link").symlink_to(outside)
        assert is_contained(boundary, boundary / "link" / "secret.txt") is False


class TestResolveBoundary:
    def test_explicit_wins(self, tmp_path: Path) -> None:
        assert resolve_boundary(str(tmp_path / "a"), str(tmp_path / "b")) == (tmp_path / "a").resolve()

    def test_default_when_no_explicit(self, tmp_path: Path) -> None:
        assert resolve_boundary(None, str(tmp_path / "b")) == (tmp_path / "b").resolve()

    def test_cwd_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert resolve_boundary(None, None) == tmp_path.resolve()

    def test_home_expansion(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("HOME", str(tmp_path))
        assert resolve_boundary("~/proj") == (tmp_path / "proj").resolve()


class TestCheckAccess:
    @pytest.fixture
    def layout(self, tmp_path: Path) -> tuple[Path, Path]:
        boundary = tmp_path / "project"
        boundary.mkdir()
        outside = tmp_path / "elsewhere" / "x.txt"
        outside.parent.mkdir()
        outside.write_text("x")
        return boundary, outside

    @pytest.mark.asyncio
    async def test_inside_needs_no_permission(self, layout: tuple[Path, Path]) -> None:
        boundary, _ = layout
        gate = PermissionGate()
        ctx = ToolContext(session_id="s1", working_directory=str(boundary), gate=gate)
        assert await check_access("src/a.py", ctx, "Read") == (boundary / "src" / "a.py").resolve()
        assert gate.get_pending("s1") == []

    @pytest.mark.asyncio
    async def test_outside_asks_and_waits(self, layout: tuple[Path, Path]) -> None:
        boundary, outside = layout
        gate = PermissionGate()
        ctx = ToolContext(session_id="s1", working_directory=str(boundary), gate=gate, call_id="c1")

        task = asyncio.create_task(check_access(str(outside), ctx, "Read"))
        await asyncio.sleep(0)
        pending = gate.get_pending("s1")
        assert len(pending) == 1
        req = pending[0]
        target = outside.resolve()
        assert req.type == "external_directory"
        assert req.pattern == [str(target.parent), str(target)]
        assert req.title == "Read: x.txt"
        assert req.metadata["operation"] == "Read"
        assert req.metadata["boundary"] == str(boundary.resolve())
        assert not task.done()

        assert gate.respond("s1", req.id, "allow") is True
        assert await task == target

    @pytest.mark.asyncio
    async def test_outside_rejected(self, layout: tuple[Path, Path]) -> None:
        boundary, outside = layout
        gate = PermissionGate()
        ctx = ToolContext(session_id="s1", working_directory=str(boundary), gate=gate)

        task = asyncio.create_task(check_access(str(outside), ctx, "Write"))
        await asyncio.sleep(0)
        gate.respond("s1", gate.get_pending("s1")[0].id, "deny")
        with pytest.raises(PermissionRejectedError):
            await task

    @pytest.mark.asyncio
    async def test_outside_without_gate(self, layout: tuple[Path, Path]) -> None:
        boundary, outside = layout
        ctx = ToolContext(session_id="s1", working_directory=str(boundary))
        with pytest.raises(PermissionRejectedError):
            await check_access(str(outside), ctx, "Read")

    @pytest.mark.asyncio
    async def test_default_working_directory(self, layout: tuple[Path, Path]) -> None:
        boundary, _ = layout
        ctx = ToolContext(session_id="s1", default_working_directory=str(boundary), gate=PermissionGate())
        assert await check_access("a.txt", ctx, "Read") == (boundary / "a.txt").resolve()
