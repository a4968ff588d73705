import asyncio

import pytest
from ecs_exporter.collector.builder import SnapshotBuilder, chunked
from ecs_exporter.collector.retry import RetryPolicy
from ecs_exporter.collector.throttle import TokenBucket
from ecs_exporter.core.errors import PermanentAPIError, TransientAPIError
from ecs_exporter.domain.models import ClusterFailure, ClusterSuccess, FailureKind


def make_builder(api, **kwargs) -> SnapshotBuilder:
    kwargs.setdefault("throttle", TokenBucket(rate=10_000, burst=10_000))
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=3, backoff_base=0))
    return SnapshotBuilder(api, **kwargs)


def throttled(op: str) -> TransientAPIError:
    return TransientAPIError("Rate exceeded", operation=op, code="ThrottlingException")


def test_chunked_splits_into_batches():
    assert [list(c) for c in chunked(list(range(5)), 2)] == [[0, 1], [2, 3], [4]]
    assert list(chunked([], 3)) == []


class TestSnapshotBuilder:
    @pytest.mark.asyncio
    async def test_builds_full_snapshot(self, fake_api_factory):
        api = fake_api_factory({"prod": {"web": 2, "worker": 1}, "staging": {"web": 1}})
        builder = make_builder(api, clock=lambda: 1234.0)

        snapshot = await builder.build()

        assert snapshot.captured_at == 1234.0
        assert [r.cluster.name for r in snapshot.clusters] == ["prod", "staging"]
        prod = snapshot.cluster("prod")
        assert isinstance(prod, ClusterSuccess)
        assert [s.name for s in prod.services] == ["web", "worker"]
        web = prod.services[0]
        assert len(web.tasks) == 2
        assert all(t.service == "web" for t in web.tasks)
        assert snapshot.failed_clusters() == []
        assert snapshot.containers_ok is None

    @pytest.mark.asyncio
    async def test_permanent_failure_isolated_to_one_cluster(self, fake_api_factory):
        api = fake_api_factory({"broken": {"api": 1}, "healthy": {"web": 3}})
        api.fail(
            "list_services",
            "broken",
            PermanentAPIError("Access denied", operation="ListServices", code="AccessDeniedException"),
        )

        snapshot = await make_builder(api).build()

        broken = snapshot.cluster("broken")
        assert isinstance(broken, ClusterFailure)
        assert broken.kind == FailureKind.permanent
        healthy = snapshot.cluster("healthy")
        assert isinstance(healthy, ClusterSuccess)
        assert len(healthy.services[0].tasks) == 3
        # no retry on permanent errors
        assert api.count("list_services", "broken") == 1

    @pytest.mark.asyncio
    async def test_transient_errors_retried_until_success(self, fake_api_factory):
        api = fake_api_factory({"prod": {"web": 1}})
        api.fail(
            "describe_services",
            "prod",
            throttled("DescribeServices"),
            throttled("DescribeServices"),
        )

        snapshot = await make_builder(api).build()

        result = snapshot.cluster("prod")
        assert isinstance(result, ClusterSuccess)
        assert result.services[0].name == "web"
        assert api.count("describe_services", "prod") == 3

    @pytest.mark.asyncio
    async def test_transient_errors_exhaust_retries(self, fake_api_factory):
        api = fake_api_factory({"prod": {"web": 1}})
        api.fail("list_tasks", "prod", *(throttled("ListTasks") for _ in range(3)))

        snapshot = await make_builder(api).build()

        result = snapshot.cluster("prod")
        assert isinstance(result, ClusterFailure)
        assert result.kind == FailureKind.transient
        assert api.count("list_tasks", "prod") == 3

    @pytest.mark.asyncio
    async def test_cluster_deadline_marks_cluster_failed(self, fake_api_factory):
        api = fake_api_factory({"slow": {"web": 1}}, delay=0.2)

        snapshot = await make_builder(api, cluster_deadline=0.05, cluster_names=["slow"]).build()

        result = snapshot.cluster("slow")
        assert isinstance(result, ClusterFailure)
        assert result.kind == FailureKind.timeout

    @pytest.mark.asyncio
    async def test_unexpected_exception_recorded_as_internal(self, fake_api_factory):
        api = fake_api_factory({"prod": {"web": 1}, "other": {"web": 1}})
        api.fail("describe_tasks", "prod", RuntimeError("boom"))

        snapshot = await make_builder(api).build()

        prod = snapshot.cluster("prod")
        assert isinstance(prod, ClusterFailure)
        assert prod.kind == FailureKind.internal
        assert "boom" in prod.reason
        assert snapshot.cluster("other").ok

    @pytest.mark.asyncio
    async def test_discovery_failure_fails_cycle(self, fake_api_factory):
        api = fake_api_factory({"prod": {"web": 1}})
        api.fail(
            "list_clusters",
            None,
            PermanentAPIError("Unrecognized client", operation="ListClusters"),
        )

        with pytest.raises(PermanentAPIError):
            await make_builder(api).build()

    @pytest.mark.asyncio
    async def test_configured_cluster_names_skip_discovery(self, fake_api_factory):
        api = fake_api_factory({"prod": {"web": 1}, "staging": {"web": 1}})

        snapshot = await make_builder(api, cluster_names=["staging"]).build()

        assert api.count("list_clusters") == 0
        assert [r.cluster.name for r in snapshot.clusters] == ["staging"]

    @pytest.mark.asyncio
    async def test_describe_calls_respect_batch_sizes(self, fake_api_factory):
        services = {f"svc-{i:02d}": 3 for i in range(7)}
        api = fake_api_factory({"prod": services})

        snapshot = await make_builder(api, describe_batch_size=3, task_batch_size=4).build()

        service_batches = [size for op, _, size in api.calls if op == "describe_services"]
        task_batches = [size for op, _, size in api.calls if op == "describe_tasks"]
        assert service_batches == [3, 3, 1]
        assert max(task_batches) <= 4
        assert sum(task_batches) == 21
        assert sum(len(s.tasks) for s in snapshot.services()) == 21

    @pytest.mark.asyncio
    async def test_worker_pool_bounds_cluster_concurrency(self, fake_api_factory):
        layout = {f"cluster-{i}": {"web": 0} for i in range(6)}
        api = fake_api_factory(layout, delay=0.01)

        snapshot = await make_builder(api, max_concurrent_clusters=2).build()

        assert len(snapshot.clusters) == 6
        assert api.max_in_flight <= 2

    @pytest.mark.asyncio
    async def test_every_call_consumes_a_token(self, fake_api_factory):
        api = fake_api_factory({"prod": {"web": 1}})
        bucket = TokenBucket(rate=10_000, burst=10_000)

        await make_builder(api, throttle=bucket).build()

        assert bucket.reserved == len(api.calls)

    @pytest.mark.asyncio
    async def test_derived_counts_never_exceed_observed_tasks(self, fake_api_factory):
        api = fake_api_factory({"prod": {"web": 4}})

        snapshot = await make_builder(api).build()

        for service in snapshot.services():
            assert service.count_tasks(last_status="RUNNING") <= len(service.tasks)
            assert service.count_tasks(health_status="HEALTHY") <= len(service.tasks)

    @pytest.mark.asyncio
    async def test_includes_container_passthrough(self, fake_api_factory):
        class StubPassthrough:
            async def collect(self):
                await asyncio.sleep(0)
                return (), False

        api = fake_api_factory({"prod": {"web": 1}})

        snapshot = await make_builder(api, passthrough=StubPassthrough()).build()

        assert snapshot.containers == ()
        assert snapshot.containers_ok is False
        assert snapshot.cluster("prod").ok

    @pytest.mark.asyncio
    async def test_each_listing_page_consumes_a_token(self, fake_api_factory):
        api = fake_api_factory({"prod": {f"svc-{i}": 1 for i in range(5)}}, page_size=2)
        bucket = TokenBucket(rate=10_000, burst=10_000)

        snapshot = await make_builder(api, throttle=bucket).build()

        assert api.count("list_services", "prod") == 3
        assert [s.name for s in snapshot.services()] == [f"svc-{i}" for i in range(5)]
        assert bucket.reserved == len(api.calls)

    @pytest.mark.asyncio
    async def test_transient_error_retries_only_the_failed_page(self, fake_api_factory):
        api = fake_api_factory({"prod": {f"svc-{i}": 0 for i in range(5)}}, page_size=2)
        api.fail("list_services", "prod", None, throttled("ListServices"))

        snapshot = await make_builder(api).build()

        assert snapshot.cluster("prod").ok
        assert len(snapshot.cluster("prod").services) == 5
        assert [token for op, token in api.page_tokens if op == "list_services"] == [
            None,
            "2",
            "2",
            "4",
        ]

    @pytest.mark.asyncio
    async def test_stopped_tasks_are_collected(self, fake_api_factory):
        api = fake_api_factory({"prod": {"web": 2}})
        api.stopped[("prod", "web")] = 1

        snapshot = await make_builder(api).build()

        web = snapshot.cluster("prod").services[0]
        assert sorted(api.desired_statuses) == ["RUNNING", "STOPPED"]
        assert len(web.tasks) == 3
        assert web.count_tasks(last_status="STOPPED") == 1
        stopped = [t for t in web.tasks if t.last_status == "STOPPED"]
        assert stopped[0].stopped_reason == "Essential container in task exited"

    @pytest.mark.asyncio
    async def test_cluster_deadline_reason_names_the_deadline(self, fake_api_factory):
        api = fake_api_factory({"slow": {"web": 1}}, delay=0.2)

        snapshot = await make_builder(api, cluster_deadline=0.05, cluster_names=["slow"]).build()

        assert "0.05s deadline" in snapshot.cluster("slow").reason

    @pytest.mark.asyncio
    async def test_capture_time_increases_when_clock_steps_back(self, fake_api_factory):
        api = fake_api_factory({"prod": {"web": 1}})
        readings = iter([100.0, 90.0, 200.0])
        builder = make_builder(api, clock=lambda: next(readings))

        first = await builder.build()
        second = await builder.build()
        third = await builder.build()

        assert first.captured_at == 100.0
        assert second.captured_at > first.captured_at
        assert third.captured_at == 200.0
