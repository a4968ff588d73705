"""Async ECS control-plane client.

Thin typed wrapper over aioboto3. Every failure is re-raised as either a
TransientAPIError or a PermanentAPIError so callers can decide on retries
without inspecting botocore exceptions.
"""

from __future__ import annotations

from contextlib import AsyncExitStack, contextmanager
from datetime import datetime
from typing import Any, Iterator, Sequence

import aioboto3
import structlog
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    ConnectionError as BotoConnectionError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ReadTimeoutError,
)

from ecs_exporter.config import MAX_DESCRIBE_SERVICES, MAX_DESCRIBE_TASKS, MAX_LIST_RESULTS
from ecs_exporter.core.errors import PermanentAPIError, TransientAPIError
from ecs_exporter.domain.models import (
    ClusterRef,
    Page,
    ServiceObservation,
    ServiceRef,
    TaskObservation,
    TaskRef,
    arn_name,
)

logger = structlog.get_logger()

TRANSIENT_ERROR_CODES = frozenset(
    {
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "ServerException",
        "ServiceUnavailable",
        "ServiceUnavailableException",
        "InternalFailure",
        "RequestTimeout",
        "RequestTimeoutException",
    }
)


def is_transient_client_error(exc: ClientError) -> bool:
    """Determine if a botocore ClientError is worth retrying."""
    error = exc.response.get("Error", {})
    if error.get("Code") in TRANSIENT_ERROR_CODES:
        return True
    status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
    return status == 429 or status >= 500


@contextmanager
def api_errors(operation: str, cluster: str | None = None) -> Iterator[None]:
    """Translate botocore failures raised inside the block."""
    try:
        yield
    except ClientError as exc:
        code = exc.response.get("Error", {}).get("Code")
        details = {"cluster": cluster} if cluster else {}
        if is_transient_client_error(exc):
            raise TransientAPIError(str(exc), operation=operation, code=code, details=details) from exc
        raise PermanentAPIError(str(exc), operation=operation, code=code, details=details) from exc
    except (
        EndpointConnectionError,
        ConnectTimeoutError,
        ReadTimeoutError,
        BotoConnectionError,
    ) as exc:
        raise TransientAPIError(str(exc), operation=operation, code=type(exc).__name__) from exc
    except NoCredentialsError as exc:
        raise PermanentAPIError(str(exc), operation=operation, code="NoCredentials") from exc
    except BotoCoreError as exc:
        raise PermanentAPIError(str(exc), operation=operation, code=type(exc).__name__) from exc
    except (KeyError, TypeError, ValueError) as exc:
        raise PermanentAPIError(
            f"Malformed {operation} response: {exc!r}",
            operation=operation,
            code="MalformedResponse",
        ) from exc


def _epoch(value: Any) -> float | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


def _quantity(value: Any) -> float | None:
    if value in (None, ""):
        return None
    return float(value)


def _paging(next_token: str | None) -> dict[str, Any]:
    params: dict[str, Any] = {"maxResults": MAX_LIST_RESULTS}
    if next_token:
        params["nextToken"] = next_token
    return params


def _build_service_observation(cluster: str, service: dict[str, Any]) -> ServiceObservation:
    """Build ServiceObservation from a DescribeServices entry."""
    deployments = service.get("deployments") or []
    primary = next((d for d in deployments if d.get("status") == "PRIMARY"), None)
    deployment_status = "UNKNOWN"
    if primary is not None:
        deployment_status = primary.get("rolloutState") or primary.get("status") or "UNKNOWN"

    launch_type = service.get("launchType")
    if not launch_type:
        launch_type = "CAPACITY_PROVIDER" if service.get("capacityProviderStrategy") else "UNKNOWN"

    return ServiceObservation(
        cluster=cluster,
        name=service["serviceName"],
        status=service.get("status") or "UNKNOWN",
        desired_count=int(service["desiredCount"]),
        running_count=int(service["runningCount"]),
        pending_count=int(service["pendingCount"]),
        deployment_status=deployment_status,
        deployment_count=len(deployments),
        launch_type=launch_type,
    )


def _build_task_observation(task: dict[str, Any], service: str) -> TaskObservation:
    """Build TaskObservation from a DescribeTasks entry."""
    arn = task["taskArn"]
    return TaskObservation(
        task_id=arn_name(arn),
        task_arn=arn,
        service=service,
        last_status=task.get("lastStatus") or "UNKNOWN",
        desired_status=task.get("desiredStatus") or "UNKNOWN",
        health_status=task.get("healthStatus") or "UNKNOWN",
        launch_type=task.get("launchType") or "UNKNOWN",
        task_definition=arn_name(task.get("taskDefinitionArn") or ""),
        availability_zone=task.get("availabilityZone") or "",
        cpu_reserved=_quantity(task.get("cpu")),
        memory_reserved=_quantity(task.get("memory")),
        started_at=_epoch(task.get("startedAt")),
        stopped_reason=task.get("stoppedReason") or None,
    )


class EcsClient:
    """ECS discovery and describe calls over one long-lived aioboto3 client."""

    def __init__(
        self,
        region: str = "us-east-1",
        *,
        endpoint_url: str | None = None,
        timeout: float = 10.0,
        session: aioboto3.Session | None = None,
    ) -> None:
        self.region = region
        self._endpoint_url = endpoint_url
        self._session = session or aioboto3.Session(region_name=region)
        # Retries are owned by the snapshot builder's policy
        self._config = Config(
            connect_timeout=timeout,
            read_timeout=timeout,
            retries={"total_max_attempts": 1, "mode": "standard"},
        )
        self._stack: AsyncExitStack | None = None
        self._client: Any = None

    async def __aenter__(self) -> EcsClient:
        self._stack = AsyncExitStack()
        self._client = await self._stack.enter_async_context(
            self._session.client(
                "ecs",
                region_name=self.region,
                endpoint_url=self._endpoint_url,
                config=self._config,
            )
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._stack is not None:
            await self._stack.aclose()
        self._stack = None
        self._client = None

    @property
    def client(self) -> Any:
        if self._client is None:
            raise RuntimeError("EcsClient used outside of 'async with'")
        return self._client

    async def list_clusters(self, next_token: str | None = None) -> Page[ClusterRef]:
        """One ListClusters page. Callers drive pagination so each page is throttled."""
        with api_errors("ListClusters"):
            response = await self.client.list_clusters(**_paging(next_token))
            return Page(
                tuple(ClusterRef.from_arn(arn) for arn in response["clusterArns"]),
                response.get("nextToken"),
            )

    async def list_services(
        self, cluster: ClusterRef, next_token: str | None = None
    ) -> Page[ServiceRef]:
        with api_errors("ListServices", cluster.name):
            response = await self.client.list_services(
                cluster=cluster.identifier, **_paging(next_token)
            )
            return Page(
                tuple(ServiceRef.from_arn(cluster.name, arn) for arn in response["serviceArns"]),
                response.get("nextToken"),
            )

    async def describe_services(
        self, cluster: ClusterRef, services: Sequence[ServiceRef]
    ) -> list[ServiceObservation]:
        """Describe up to 10 services. Tasks are not attached here."""
        if not services:
            return []
        if len(services) > MAX_DESCRIBE_SERVICES:
            raise ValueError(f"describe_services accepts at most {MAX_DESCRIBE_SERVICES} services")

        with api_errors("DescribeServices", cluster.name):
            response = await self.client.describe_services(
                cluster=cluster.identifier,
                services=[s.identifier for s in services],
            )
            for failure in response.get("failures") or []:
                # MISSING: deleted between ListServices and DescribeServices
                logger.warning(
                    "describe_services_failure",
                    cluster=cluster.name,
                    arn=failure.get("arn"),
                    reason=failure.get("reason"),
                )
            return [
                _build_service_observation(cluster.name, service)
                for service in response["services"]
            ]

    async def list_tasks(
        self,
        cluster: ClusterRef,
        service: ServiceRef,
        next_token: str | None = None,
        *,
        desired_status: str = "RUNNING",
    ) -> Page[TaskRef]:
        """One ListTasks page of the service's tasks with the given desired status.

        ECS only lists RUNNING tasks unless asked otherwise; STOPPED tasks stay
        listable for about an hour after they stop.
        """
        with api_errors("ListTasks", cluster.name):
            response = await self.client.list_tasks(
                cluster=cluster.identifier,
                serviceName=service.name,
                desiredStatus=desired_status,
                **_paging(next_token),
            )
            return Page(
                tuple(
                    TaskRef(cluster=cluster.name, service=service.name, arn=arn)
                    for arn in response["taskArns"]
                ),
                response.get("nextToken"),
            )

    async def describe_tasks(
        self, cluster: ClusterRef, tasks: Sequence[TaskRef]
    ) -> list[TaskObservation]:
        """Describe up to 100 tasks, keeping the service each was listed under."""
        if not tasks:
            return []
        if len(tasks) > MAX_DESCRIBE_TASKS:
            raise ValueError(f"describe_tasks accepts at most {MAX_DESCRIBE_TASKS} tasks")

        service_by_arn = {t.arn: t.service for t in tasks}
        with api_errors("DescribeTasks", cluster.name):
            response = await self.client.describe_tasks(
                cluster=cluster.identifier,
                tasks=[t.arn for t in tasks],
            )
            for failure in response.get("failures") or []:
                logger.debug(
                    "describe_tasks_failure",
                    cluster=cluster.name,
                    arn=failure.get("arn"),
                    reason=failure.get("reason"),
                )
            return [
                _build_task_observation(task, service_by_arn.get(task["taskArn"], ""))
                for task in response["tasks"]
            ]
