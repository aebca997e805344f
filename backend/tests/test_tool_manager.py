"""Tool manager: caps, summaries, and confirmation of destructive calls."""

from __future__ import annotations

import asyncio
from pathlib import Path

import orjson
import pytest

from hearth.ingest.documents import FileSystemDocumentStore
from hearth.tools.definitions import ToolCall
from hearth.tools.executor import ToolExecutor
from hearth.tools.manager import CANCELLED_GLYPH, FAILURE_GLYPH, SUCCESS_GLYPH, ConfirmationBroker, ToolManager


def _fence(name: str, **arguments) -> str:
    return "```tool\n" + orjson.dumps({"tool": name, "arguments": arguments}).decode() + "\n```\n"


def _manager(make_settings, notes_root: Path, **overrides) -> ToolManager:
    settings = make_settings(**overrides)
    return ToolManager(settings, ToolExecutor(FileSystemDocumentStore(notes_root), root=notes_root))


async def _wait_for_pending(broker: ConfirmationBroker) -> str:
    for _ in range(100):
        pending = broker.pending()
        if pending:
            return pending[0].id
        await asyncio.sleep(0.01)
    raise AssertionError("no confirmation was requested")


@pytest.mark.asyncio
async def test_summary_lines_and_display_text(make_settings, notes_root: Path) -> None:
    manager = _manager(make_settings, notes_root)
    response = "On it.\n" + _fence("create_folder", path="Inbox") + _fence("get_note_content", path="ghost") + _fence(
        "launch_rocket"
    )

    processed = await manager.process_response(response)

    assert processed.has_tool_calls is True
    assert processed.content == "On it."
    assert [result.success for result in processed.tool_results] == [True, False, False]
    assert processed.tool_summary.splitlines() == [
        f'{SUCCESS_GLYPH} Created folder "Inbox".',
        f'{FAILURE_GLYPH} Note "ghost" not found.',
        f"{FAILURE_GLYPH} launch_rocket: Unknown tool",
    ]


@pytest.mark.asyncio
async def test_calls_beyond_the_cap_are_dropped(make_settings, notes_root: Path) -> None:
    manager = _manager(make_settings, notes_root, max_tool_calls_per_response=2)
    response = "".join(_fence("create_folder", path=name) for name in ("A", "B", "C"))

    processed = await manager.process_response(response)

    assert len(processed.tool_calls) == 2
    assert (notes_root / "A").is_dir() and (notes_root / "B").is_dir()
    assert not (notes_root / "C").exists()


@pytest.mark.asyncio
async def test_disabled_tool_calling_leaves_text_alone(make_settings, notes_root: Path) -> None:
    manager = _manager(make_settings, notes_root, enable_tool_calling=False)
    response = _fence("create_folder", path="A")

    processed = await manager.process_response(response)

    assert processed.has_tool_calls is False
    assert processed.content == response
    assert not (notes_root / "A").exists()


@pytest.mark.asyncio
async def test_rejected_destructive_call_is_cancelled(make_settings, notes_root: Path, write_note) -> None:
    manager = _manager(make_settings, notes_root, require_tool_confirmation=True)
    target = write_note("old.md", "keep me")

    task = asyncio.ensure_future(manager.process_response(_fence("delete_note", path="old")))
    confirmation_id = await _wait_for_pending(manager.broker)
    assert manager.broker.pending()[0].to_dict()["tool"] == "delete_note"
    assert manager.broker.resolve(confirmation_id, False) is True
    processed = await task

    assert processed.tool_summary == f"{CANCELLED_GLYPH} delete_note: Cancelled by user"
    assert target.exists()
    assert manager.broker.pending() == []


@pytest.mark.asyncio
async def test_approved_destructive_call_runs(make_settings, notes_root: Path, write_note) -> None:
    manager = _manager(make_settings, notes_root, require_tool_confirmation=True)
    target = write_note("old.md", "bye")

    task = asyncio.ensure_future(manager.process_response(_fence("delete_note", path="old")))
    manager.broker.resolve(await _wait_for_pending(manager.broker), True)
    processed = await task

    assert processed.tool_results[0].success is True
    assert not target.exists()


@pytest.mark.asyncio
async def test_non_destructive_calls_skip_confirmation(make_settings, notes_root: Path) -> None:
    manager = _manager(make_settings, notes_root, require_tool_confirmation=True)
    processed = await manager.process_response(_fence("create_folder", path="A"))
    assert processed.tool_results[0].success is True


@pytest.mark.asyncio
async def test_unanswered_confirmation_times_out_as_no(make_settings, notes_root: Path, write_note) -> None:
    manager = _manager(make_settings, notes_root, require_tool_confirmation=True, confirmation_timeout_s=0.05)
    target = write_note("old.md", "stay")

    processed = await manager.process_response(_fence("delete_note", path="old"))

    assert processed.tool_results[0].success is False
    assert target.exists()


@pytest.mark.asyncio
async def test_dismiss_all_answers_no() -> None:
    broker = ConfirmationBroker(timeout_s=5)
    task = asyncio.ensure_future(broker.request(ToolCall("delete_folder", {"path": "x"})))
    await _wait_for_pending(broker)
    broker.dismiss_all()
    assert await task is False
    assert broker.resolve("confirm_missing", True) is False
