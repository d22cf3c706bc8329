"""Unit tests for the load balancer orchestrator."""

import pytest

from multisite_queue import orchestrator
from multisite_queue.balancer import BalancerConfig, LoopState
from multisite_queue.orchestrator import LoadBalancerOrchestrator, run_balancer
from multisite_queue.sites import SiteRegistryError


@pytest.fixture
def config():
    return BalancerConfig(concurrency=8, min_per_site=1, max_per_site=4, check_interval=15, mute=True)


@pytest.mark.unit
class TestStartup:
    @pytest.mark.asyncio
    async def test_displays_configuration(self, config, registry, make_site, reporter):
        make_site("a.test")
        make_site("b.test")
        make_site("c.test", with_env=False)
        balancer = LoadBalancerOrchestrator(config, registry, reporter)

        await balancer.startup()

        headers, rows = reporter.tables[0]
        assert headers == ["Config", "Value"]
        assert dict((row[0], row[1]) for row in rows) == {
            "Strategy": "Dynamic Load Balancer",
            "Total Sites": 2,
            "Total Workers": 8,
            "Min Workers/Site": 1,
            "Max Workers/Site": 4,
            "Rebalance Interval": "15s",
        }

    @pytest.mark.asyncio
    async def test_wires_shared_stop_event(self, config, registry, reporter):
        balancer = LoadBalancerOrchestrator(config, registry, reporter)

        await balancer.startup()

        assert balancer.control_loop.stop_event is balancer.stop_event
        assert balancer.shutdown.stop_event is balancer.stop_event
        assert balancer.shutdown.grace_period == config.shutdown_timeout
        assert balancer.process_manager.tuning == config.worker_tuning()

    @pytest.mark.asyncio
    async def test_stops_after_early_shutdown_request(self, config, registry, reporter):
        balancer = LoadBalancerOrchestrator(config, registry, reporter)
        await balancer.startup()

        balancer.shutdown.request()
        await balancer.control_loop.run()

        assert balancer.control_loop.state == LoopState.STOPPED
        assert balancer.shutdown.completed

    def test_mute_config_selects_mute_reporter(self, config, registry):
        from multisite_queue.reporter import MuteReporter

        assert isinstance(LoadBalancerOrchestrator(config, registry).reporter, MuteReporter)


@pytest.mark.unit
class TestRunBalancer:
    def test_unexpected_error_exits_nonzero(self, config, registry, monkeypatch):
        async def boom(self):
            raise RuntimeError("boom")

        monkeypatch.setattr(orchestrator.LoadBalancerOrchestrator, "run", boom)

        assert run_balancer(config, registry) == 1

    def test_registry_errors_propagate(self, config, monkeypatch):
        async def unconfigured(self):
            raise SiteRegistryError("MULTISITE environment is not defined")

        monkeypatch.setattr(orchestrator.LoadBalancerOrchestrator, "run", unconfigured)

        with pytest.raises(SiteRegistryError):
            run_balancer(config)

    def test_clean_run_exits_zero(self, config, registry, monkeypatch):
        async def finished(self):
            return None

        monkeypatch.setattr(orchestrator.LoadBalancerOrchestrator, "run", finished)

        assert run_balancer(config, registry) == 0
