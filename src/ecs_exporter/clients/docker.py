"""Local Docker daemon access for the container pass-through.

The Docker SDK is blocking, so every call runs in a worker thread. Failures
are re-raised as TransientAPIError or PermanentAPIError, like the ECS client.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator

import docker
import requests
from docker.errors import APIError as DockerAPIError
from docker.errors import DockerException

from ecs_exporter.core.errors import PermanentAPIError, TransientAPIError


def is_retryable_status(status_code: int) -> bool:
    """Determine if HTTP status code is retryable."""
    return status_code in (408, 429, 500, 502, 503, 504)


@contextmanager
def docker_errors(operation: str, container_id: str | None = None) -> Iterator[None]:
    """Translate Docker SDK and transport failures raised inside the block."""
    details = {"container_id": container_id} if container_id else {}
    try:
        yield
    except DockerAPIError as exc:
        status = exc.status_code or 0
        error = TransientAPIError if is_retryable_status(status) else PermanentAPIError
        raise error(str(exc), operation=operation, code=str(status), details=details) from exc
    except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
        raise TransientAPIError(
            str(exc), operation=operation, code=type(exc).__name__, details=details
        ) from exc
    except DockerException as exc:
        raise PermanentAPIError(
            str(exc), operation=operation, code=type(exc).__name__, details=details
        ) from exc
    except (KeyError, TypeError, ValueError) as exc:
        raise PermanentAPIError(
            f"Malformed {operation} response: {exc!r}",
            operation=operation,
            code="MalformedResponse",
            details=details,
        ) from exc


@dataclass(frozen=True, slots=True)
class ContainerInfo:
    id: str
    labels: dict[str, str] = field(default_factory=dict)


class DockerClient:
    """The few Docker Engine calls needed to exec a command in a container."""

    def __init__(
        self,
        socket_path: str = "/var/run/docker.sock",
        *,
        timeout: float = 5.0,
        client_factory: Callable[..., Any] = docker.DockerClient,
    ) -> None:
        self.base_url = f"unix://{socket_path}"
        self.timeout = timeout
        self._client_factory = client_factory
        self._client: Any = None

    async def __aenter__(self) -> DockerClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None:
            client, self._client = self._client, None
            await asyncio.to_thread(client.close)

    def _sdk(self) -> Any:
        # Created on first use so a missing daemon only fails the pass-through
        if self._client is None:
            self._client = self._client_factory(base_url=self.base_url, timeout=self.timeout)
        return self._client

    def _list_containers(self, label: str) -> list[ContainerInfo]:
        with docker_errors("containers.list"):
            containers = self._sdk().containers.list(filters={"label": label})
            return [ContainerInfo(c.id, dict(c.labels or {})) for c in containers]

    def _exec_output(self, container_id: str, cmd: list[str]) -> tuple[int, str]:
        with docker_errors("exec", container_id):
            api = self._sdk().api
            exec_id = api.exec_create(container_id, cmd, stdout=True, stderr=False)["Id"]
            stdout, _ = api.exec_start(exec_id, demux=True)
            exit_code = api.exec_inspect(exec_id)["ExitCode"]
            return (
                exit_code if exit_code is not None else -1,
                (stdout or b"").decode("utf-8", errors="replace"),
            )

    async def list_containers(self, label: str) -> list[ContainerInfo]:
        """Running containers carrying ``label``."""
        return await asyncio.to_thread(self._list_containers, label)

    async def exec_output(self, container_id: str, cmd: list[str]) -> tuple[int, str]:
        """Run ``cmd`` inside the container; return (exit code, stdout)."""
        return await asyncio.to_thread(self._exec_output, container_id, cmd)
