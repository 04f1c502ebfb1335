"""HTTP clients for the cluster, CTFd and GitHub APIs."""

from clients.ctfd import CTFdClient
from clients.github import GitHubClient
from clients.kubernetes import KubernetesClient, WatchStream

__all__ = ["CTFdClient", "GitHubClient", "KubernetesClient", "WatchStream"]
