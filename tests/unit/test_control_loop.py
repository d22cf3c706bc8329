"""Unit tests for the control loop and shutdown coordinator."""

import asyncio
import signal

import pytest

from multisite_queue.balancer.config import BalancerConfig
from multisite_queue.balancer.control_loop import ControlLoop, LoopState
from multisite_queue.balancer.queue_inspector import SiteDepthStat
from multisite_queue.balancer.shutdown import ShutdownCoordinator
from multisite_queue.reporter import ReportLevel


class FakeInspector:
    """Returns canned depth stats and records which sites it was asked about"""

    def __init__(self, pending=None, error=None, on_inspect=None):
        self.pending = pending or {}
        self.error = error
        self.on_inspect = on_inspect
        self.calls = []

    async def inspect(self, sites):
        self.calls.append(list(sites))
        if self.on_inspect:
            self.on_inspect()
        if self.error:
            raise self.error
        return {site: SiteDepthStat.from_counts(self.pending.get(site, 0)) for site in sites}


def make_config(**overrides):
    values = dict(
        concurrency=4,
        min_per_site=1,
        max_per_site=3,
        check_interval=30,
        monitor_interval=0.01,
        shutdown_timeout=2,
    )
    values.update(overrides)
    return BalancerConfig(**values)


@pytest.fixture
def stop_event():
    return asyncio.Event()


@pytest.fixture
def coordinator(process_manager, reporter, stop_event):
    return ShutdownCoordinator(process_manager, reporter, stop_event, grace_period=2)


@pytest.fixture
def build_loop(registry, process_manager, coordinator, reporter, stop_event, fake_clock):
    def factory(inspector, **config):
        return ControlLoop(
            make_config(**config),
            registry,
            inspector,
            process_manager,
            coordinator,
            reporter,
            stop_event,
            clock=fake_clock,
        )

    return factory


@pytest.mark.unit
class TestRebalance:
    @pytest.mark.asyncio
    async def test_applies_allocation_for_active_sites(
        self, make_site, build_loop, process_manager, reporter
    ):
        make_site("a.test")
        make_site("b.test")
        make_site("noenv.test", with_env=False)
        inspector = FakeInspector({"a.test": 30, "b.test": 10, "noenv.test": 99})
        loop = build_loop(inspector)

        allocation = await loop.rebalance()

        assert inspector.calls == [["a.test", "b.test"]]
        assert allocation == {"a.test": 3, "b.test": 1}
        assert process_manager.count_for("a.test") == 3
        assert process_manager.count_for("b.test") == 1
        assert loop.last_allocation == allocation

    @pytest.mark.asyncio
    async def test_reports_current_allocation(self, make_site, build_loop, reporter):
        make_site("a.test")
        loop = build_loop(FakeInspector({"a.test": 5}))

        await loop.rebalance()

        lines = reporter.lines()
        assert "📊 Rebalancing workers..." in lines
        report = lines[lines.index("📋 Current allocation:"):]
        assert report[1] == "  └─ a.test: 3 workers"
        assert report[2] == "Total active workers: 3"

    @pytest.mark.asyncio
    async def test_idle_sites_lose_their_workers(self, make_site, build_loop, process_manager):
        make_site("a.test")
        inspector = FakeInspector({"a.test": 5})
        loop = build_loop(inspector)
        await loop.rebalance()

        inspector.pending = {}
        allocation = await loop.rebalance()

        assert allocation == {}
        assert process_manager.count_for("a.test") == 0

    @pytest.mark.asyncio
    async def test_skips_reconcile_when_stopping(
        self, make_site, build_loop, process_manager, stop_event
    ):
        make_site("a.test")
        loop = build_loop(FakeInspector({"a.test": 5}, on_inspect=stop_event.set))

        assert await loop.rebalance() is None
        assert process_manager.workers == {}

    @pytest.mark.asyncio
    async def test_cycle_errors_are_contained(self, make_site, build_loop, process_manager):
        make_site("a.test")
        process_manager.start("a.test")
        loop = build_loop(FakeInspector(error=RuntimeError("redis down")))

        assert await loop.rebalance() is None
        assert process_manager.count_for("a.test") == 1


@pytest.mark.unit
class TestMonitor:
    def test_reports_unexpected_exits(self, build_loop, process_manager, fake_popen, reporter):
        loop = build_loop(FakeInspector())
        process_manager.start("a.test")
        process_manager.start("a.test")
        fake_popen.processes[0].crash()

        dead = loop.monitor()

        assert dead == ["a.test-0"]
        assert reporter.lines(ReportLevel.WARN) == ["⚠️ Worker a.test-0 died unexpectedly"]

    def test_rebalance_due_follows_check_interval(self, build_loop, fake_clock):
        loop = build_loop(FakeInspector(), check_interval=30)
        assert loop._rebalance_due()

        loop.last_rebalance = fake_clock()
        fake_clock.now += 29
        assert not loop._rebalance_due()

        fake_clock.now += 1
        assert loop._rebalance_due()


@pytest.mark.unit
class TestRun:
    @pytest.mark.asyncio
    async def test_runs_until_shutdown_then_stops_workers(
        self, make_site, build_loop, coordinator, process_manager, fake_popen, reporter
    ):
        make_site("a.test")
        loop = build_loop(FakeInspector({"a.test": 5}))

        task = asyncio.create_task(loop.run())
        await asyncio.sleep(0.05)
        assert loop.running
        assert process_manager.count_for("a.test") == 3

        coordinator.request(signal.SIGTERM)
        await asyncio.wait_for(task, timeout=5)

        assert loop.state == LoopState.STOPPED
        assert coordinator.completed
        assert process_manager.workers == {}
        assert all(p.poll() is not None for p in fake_popen.processes)
        assert reporter.lines()[0] == "🚀 Starting dynamic load balancer..."
        assert reporter.lines()[-1] == "✅ All workers stopped"

    @pytest.mark.asyncio
    async def test_rebalances_once_per_interval(self, make_site, build_loop, coordinator):
        make_site("a.test")
        inspector = FakeInspector({"a.test": 1})
        loop = build_loop(inspector)

        task = asyncio.create_task(loop.run())
        await asyncio.sleep(0.05)
        coordinator.request()
        await asyncio.wait_for(task, timeout=5)

        # the fake clock never advances on its own
        assert len(inspector.calls) == 1

    @pytest.mark.asyncio
    async def test_cannot_run_twice(self, build_loop, stop_event):
        loop = build_loop(FakeInspector())
        stop_event.set()
        await loop.run()

        with pytest.raises(RuntimeError):
            await loop.run()


@pytest.mark.unit
class TestShutdownCoordinator:
    def test_request_sets_stop_event_once(self, coordinator, stop_event, reporter):
        coordinator.request(signal.SIGINT)
        coordinator.request(signal.SIGTERM)

        assert stop_event.is_set()
        assert coordinator.requested
        assert reporter.lines().count("🛑 Shutting down gracefully...") == 1

    @pytest.mark.asyncio
    async def test_shutdown_runs_once(self, coordinator, process_manager, reporter):
        process_manager.start("a.test")

        await asyncio.gather(coordinator.shutdown(), coordinator.shutdown())
        await coordinator.shutdown()

        assert coordinator.completed
        assert reporter.lines().count("✅ All workers stopped") == 1

    @pytest.mark.asyncio
    async def test_shutdown_warns_about_force_kills(
        self, coordinator, process_manager, fake_popen, reporter
    ):
        fake_popen.ignore_terminate = True
        process_manager.start("a.test")

        await coordinator.shutdown()

        assert fake_popen.processes[0].kill_calls == 1
        assert reporter.lines(ReportLevel.WARN) == ["Force killed 1 workers after 2s"]
