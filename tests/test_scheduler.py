#!/usr/bin/env python3
"""Tests for the standalone sweep scheduler and the operator CLI.

Tests cover:
    - Health endpoint status code and body
    - Scheduler loop runs the startup sweep and exits on shutdown
    - CLI commands map outcomes onto exit codes
"""
import argparse
import asyncio
import json
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import main
import scheduler
from scheduler import health_body, print_sweep_result, scheduler_loop
from src.netgate.api.exceptions import EnforcementFailure
from src.netgate.enforcement.background import SweepState
from src.netgate.enforcement.domain.entities import (
    AccessAction,
    ReconcileResult,
    RuleState,
    Subscriber,
    SweepResult,
)


# ============================================
# Test Fixtures
# ============================================

def sweep_result(failed=0):
    return SweepResult(started_at=datetime.now(timezone.utc), blocked=1, failed=failed)


def subscriber(ip_address="10.0.0.5"):
    now = datetime.now(timezone.utc)
    return Subscriber(
        subscriber_id="SUB-001",
        ip_address=ip_address,
        subscription_start=now - timedelta(days=30),
        subscription_end=now - timedelta(days=1),
    )


@pytest.fixture
def container():
    """Container stand-in exposing the attributes the commands use."""
    sweep = MagicMock()
    sweep.execute = AsyncMock(return_value=sweep_result())
    sweep.purge = AsyncMock(return_value=SweepResult(started_at=datetime.now(timezone.utc), purged_correlations=2))
    repo = MagicMock()
    repo.get_subscriber = AsyncMock(return_value=subscriber())
    reconciler = MagicMock()
    reconciler.reconcile = AsyncMock(return_value=ReconcileResult(
        subscriber_id="SUB-001",
        address="10.0.0.5",
        action=AccessAction.APPLIED_BLOCK,
        desired_blocked=True,
        observed=RuleState.ABSENT,
    ))
    firewall = MagicMock()
    firewall.exists = AsyncMock(return_value=RuleState.PRESENT)
    return SimpleNamespace(
        sweep=sweep,
        subscriber_repo=repo,
        reconciler=reconciler,
        firewall=firewall,
        close=AsyncMock(),
    )


# ============================================
# Health Check Tests
# ============================================

class TestHealthBody:
    def test_healthy_before_first_sweep(self):
        code, body = health_body(SweepState())
        data = json.loads(body)
        assert code == 200
        assert data["status"] == "healthy"
        assert data["last_sweep_at"] == "never"

    def test_unhealthy_after_failed_sweep(self):
        state = SweepState()
        state.record(sweep_result(failed=1))
        code, body = health_body(state)
        data = json.loads(body)
        assert code == 503
        assert data["failed_sweeps"] == 1
        assert data["last_sweep"]["failed"] == 1


# ============================================
# Scheduler Loop Tests
# ============================================

class TestSchedulerLoop:
    @pytest.mark.asyncio
    async def test_startup_sweep_then_shutdown(self, container):
        config = SimpleNamespace(sweep_interval_minutes=60, sweep_on_startup=True)
        state = SweepState()
        shutdown = asyncio.Event()

        task = asyncio.create_task(scheduler_loop(config, container, state, shutdown))
        await asyncio.sleep(0.01)
        shutdown.set()
        await asyncio.wait_for(task, timeout=1)

        container.sweep.execute.assert_awaited_once()
        assert state.total_sweeps == 1

    @pytest.mark.asyncio
    async def test_no_startup_sweep(self, container):
        config = SimpleNamespace(sweep_interval_minutes=60, sweep_on_startup=False)
        shutdown = asyncio.Event()
        shutdown.set()

        await scheduler_loop(config, container, SweepState(), shutdown)

        container.sweep.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_delegates_to_sweep_loop(self, container):
        config = SimpleNamespace(sweep_interval_minutes=15, sweep_on_startup=False)
        state = SweepState()
        shutdown = asyncio.Event()

        with patch.object(scheduler, "sweep_loop", new=AsyncMock()) as loop:
            await scheduler_loop(config, container, state, shutdown)

        loop.assert_awaited_once_with(
            container.sweep,
            15,
            shutdown,
            state,
            run_on_startup=False,
            on_result=print_sweep_result,
        )

    @pytest.mark.asyncio
    async def test_prints_sweep_progress(self, container, capsys):
        config = SimpleNamespace(sweep_interval_minutes=60, sweep_on_startup=True)
        shutdown = asyncio.Event()

        task = asyncio.create_task(scheduler_loop(config, container, SweepState(), shutdown))
        await asyncio.sleep(0.01)
        shutdown.set()
        await asyncio.wait_for(task, timeout=1)

        out = capsys.readouterr().out
        assert "[Scheduler] Sweep complete" in out
        assert "blocked=1" in out


# ============================================
# CLI Tests
# ============================================

class TestCommands:
    @pytest.mark.asyncio
    async def test_sweep_exit_code(self, container):
        assert await main.run_sweep(container) == 0
        container.sweep.execute.return_value = sweep_result(failed=1)
        assert await main.run_sweep(container) == 1

    @pytest.mark.asyncio
    async def test_reconcile(self, container, capsys):
        assert await main.run_reconcile(container, "SUB-001") == 0
        assert '"applied_block"' in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_reconcile_unknown_subscriber(self, container):
        container.subscriber_repo.get_subscriber.return_value = None
        assert await main.run_reconcile(container, "SUB-404") == 1
        container.reconciler.reconcile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_reconcile_enforcement_failure(self, container):
        container.reconciler.reconcile.side_effect = EnforcementFailure(
            subscriber_id="SUB-001", address="10.0.0.5", action="block", exit_status=1,
        )
        assert await main.run_reconcile(container, "SUB-001") == 1

    @pytest.mark.asyncio
    async def test_probe_changes_nothing(self, container, capsys):
        assert await main.run_probe(container, "SUB-001") == 0
        data = json.loads(capsys.readouterr().out)
        assert data["rule"] == "present"
        assert data["desired_blocked"] is True
        container.reconciler.reconcile.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_probe_without_address(self, container):
        container.subscriber_repo.get_subscriber.return_value = subscriber(ip_address=None)
        assert await main.run_probe(container, "SUB-001") == 1
        container.firewall.exists.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_purge(self, container, capsys):
        assert await main.run_purge(container) == 0
        assert json.loads(capsys.readouterr().out)["purged_correlations"] == 2

    @pytest.mark.asyncio
    async def test_run_command_closes_container(self, container, monkeypatch):
        monkeypatch.setattr(main, "create_container", AsyncMock(return_value=container))
        args = argparse.Namespace(sweep=True, reconcile=None, probe=None, purge=False)

        assert await main.run_command(args) == 0
        container.close.assert_awaited_once()
