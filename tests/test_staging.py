"""Tests for per-contract toolchain workspaces."""
from __future__ import annotations

import asyncio
import os
import time

import pytest

from contract_studio.exceptions import ValidationError
from contract_studio.pipeline.staging import NameLocks, WorkspaceManager, render_hardhat_config


@pytest.fixture
def manager(tmp_path) -> WorkspaceManager:
    return WorkspaceManager(tmp_path / "staging", solidity_versions=["0.8.20"], chain_id=57054)


@pytest.mark.asyncio
async def test_prepare_lays_out_workspace(manager, counter_source):
    workspace = await manager.prepare("Counter", counter_source)

    assert workspace.source_path.read_text(encoding="utf-8") == counter_source
    assert workspace.source_path.name == "Counter.sol"
    assert workspace.scripts_dir.is_dir()
    assert workspace.config_path.is_file()
    assert workspace.artifact_path.parts[-3:] == ("contracts", "Counter.sol", "Counter.json")


@pytest.mark.asyncio
async def test_prepare_wipes_previous_files(manager, counter_source):
    first = await manager.prepare("Counter", counter_source)
    stale = first.root / "artifacts" / "contracts" / "Counter.sol" / "Counter.json"
    stale.parent.mkdir(parents=True)
    stale.write_text("{}")

    second = await manager.prepare("Counter", counter_source)

    assert second.root == first.root
    assert not stale.exists()


@pytest.mark.asyncio
async def test_names_never_share_a_directory(manager, counter_source):
    a = await manager.prepare("Counter", counter_source)
    b = await manager.prepare("Other", counter_source.replace("Counter", "Other"))

    assert a.root != b.root
    assert a.source_path.exists()
    assert b.source_path.exists()


@pytest.mark.parametrize("name", ["../escape", "Bad Name", "1Leading", ""])
def test_rejects_unsafe_names(manager, name):
    with pytest.raises(ValidationError, match="Invalid contract name"):
        manager.workspace_for(name)


def test_config_reads_key_from_environment():
    config = render_hardhat_config(
        solidity_versions=["0.8.20", "0.8.19"],
        optimizer_runs=200,
        network_name="sonic",
        rpc_url="https://rpc.example",
        chain_id=57054,
    )

    assert "process.env.PRIVATE_KEY" in config
    assert '"0.8.20"' in config
    assert '"0.8.19"' in config
    assert "chainId: 57054" in config
    assert '"sonic"' in config


@pytest.mark.asyncio
async def test_name_locks_serialize_same_name():
    locks = NameLocks()
    order: list[str] = []

    async def worker(label: str):
        async with locks.hold("Counter"):
            order.append(f"{label}-start")
            await asyncio.sleep(0.01)
            order.append(f"{label}-end")

    await asyncio.gather(worker("a"), worker("b"))

    assert order in (
        ["a-start", "a-end", "b-start", "b-end"],
        ["b-start", "b-end", "a-start", "a-end"],
    )


@pytest.mark.asyncio
async def test_name_locks_do_not_block_other_names():
    locks = NameLocks()

    async with locks.hold("A"):
        await asyncio.wait_for(_enter(locks, "B"), timeout=1)


async def _enter(locks: NameLocks, name: str) -> None:
    async with locks.hold(name):
        pass


@pytest.mark.asyncio
async def test_name_locks_are_dropped_once_released():
    locks = NameLocks()

    for name in ("A", "B", "C"):
        async with locks.hold(name):
            assert len(locks) == 1

    assert len(locks) == 0


@pytest.mark.asyncio
async def test_name_lock_survives_while_a_waiter_remains():
    locks = NameLocks()
    entered = asyncio.Event()

    async def waiter():
        async with locks.hold("Counter"):
            entered.set()

    async with locks.hold("Counter"):
        task = asyncio.create_task(waiter())
        await asyncio.sleep(0)
        assert len(locks) == 1

    await asyncio.wait_for(task, timeout=1)
    assert entered.is_set()
    assert len(locks) == 0


def _age(path, seconds: float) -> None:
    past = time.time() - seconds
    os.utime(path, (past, past))


@pytest.mark.asyncio
async def test_prepare_prunes_stale_workspaces_of_other_names(tmp_path, counter_source):
    manager = WorkspaceManager(tmp_path / "staging", retention_seconds=60)
    old = await manager.prepare("Old", counter_source.replace("Counter", "Old"))
    recent = await manager.prepare("Recent", counter_source.replace("Counter", "Recent"))
    _age(old.root, 120)

    await manager.prepare("Counter", counter_source)

    assert not old.root.exists()
    assert recent.root.exists()


def test_prune_keeps_the_named_workspace(tmp_path):
    manager = WorkspaceManager(tmp_path)
    (tmp_path / "Counter").mkdir()
    (tmp_path / "Token").mkdir()
    _age(tmp_path / "Counter", 120)
    _age(tmp_path / "Token", 120)

    removed = manager.prune(60, keep="Counter")

    assert removed == ["Token"]
    assert (tmp_path / "Counter").is_dir()


@pytest.mark.asyncio
async def test_retention_can_be_disabled(tmp_path, counter_source):
    manager = WorkspaceManager(tmp_path, retention_seconds=None)
    old = await manager.prepare("Old", counter_source.replace("Counter", "Old"))
    _age(old.root, 10_000)

    await manager.prepare("Counter", counter_source)

    assert old.root.exists()
