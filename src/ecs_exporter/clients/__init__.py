from ecs_exporter.clients.docker import DockerClient
from ecs_exporter.clients.ecs import EcsClient

__all__ = ["DockerClient", "EcsClient"]
