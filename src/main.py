"""
Main entry point for the CTFd manager.

Wires the cluster, CTFd and GitHub clients into the controller and the HTTP
API and runs both until a shutdown signal arrives.
"""

import asyncio
import functools
import logging
import os
import signal
from typing import Optional

from api import HTTPServer
from bindings import CHALLENGE_BINDINGS_CONFIGMAP, PAGE_BINDINGS_CONFIGMAP, BindingStore
from bootstrap import SetupService, read_access_token
from clients import CTFdClient, GitHubClient, KubernetesClient
from config import get_config
from controller import Controller, ControllerConfig
from fingerprint import FingerprintStore
from health import HealthState
from sync import ChallengeSync, PageSync

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Application:
    """Main application that orchestrates the controller and the HTTP API."""

    def __init__(self):
        self.config = get_config()
        self.cluster: Optional[KubernetesClient] = None
        self.ctfd: Optional[CTFdClient] = None
        self.controller: Optional[Controller] = None
        self.http: Optional[HTTPServer] = None
        self.health = HealthState()
        self.running = False

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing CTFd manager")
        namespace = self.config.cluster.namespace

        cluster_config = self.config.cluster
        self.cluster = KubernetesClient(
            api_url=cluster_config.api_url,
            token=cluster_config.token,
            ca_file=cluster_config.ca_file,
            verify_ssl=cluster_config.verify_ssl,
        )
        await self.cluster.connect()
        version = await self.cluster.server_version()
        logger.info(f"Connected to Kubernetes {version.get('gitVersion', 'unknown')}")

        github_config = self.config.github
        github = GitHubClient(
            repo=github_config.repo,
            branch=github_config.branch,
            token=github_config.token,
            user=github_config.user,
            api_base_url=github_config.api_url,
        )
        if await github.check_access():
            logger.info("GitHub client initialized")

        self.ctfd = CTFdClient(
            self.config.ctfd.url,
            token_loader=functools.partial(read_access_token, self.cluster, namespace),
        )
        await self.ctfd.connect()

        challenge_bindings = BindingStore(
            self.cluster, namespace, CHALLENGE_BINDINGS_CONFIGMAP
        )
        page_bindings = BindingStore(self.cluster, namespace, PAGE_BINDINGS_CONFIGMAP)
        challenge_sync = ChallengeSync(
            self.ctfd, github, self.cluster, namespace, challenge_bindings
        )
        page_sync = PageSync(self.ctfd, page_bindings)

        ctrl_config = self.config.controller
        self.controller = Controller(
            cluster=self.cluster,
            fingerprints=FingerprintStore(self.cluster),
            challenge_sync=challenge_sync,
            page_sync=page_sync,
            health=self.health,
            config=ControllerConfig(
                namespace=namespace,
                backoff_enabled=ctrl_config.backoff_enabled,
                backoff_base_delay=ctrl_config.backoff_base_delay,
                backoff_max_delay=ctrl_config.backoff_max_delay,
                backoff_jitter_factor=ctrl_config.backoff_jitter_factor,
                max_connect_attempts=ctrl_config.max_connect_attempts,
                watch_timeout_seconds=ctrl_config.watch_timeout_seconds,
            ),
        )

        api_config = self.config.api
        self.http = HTTPServer(
            cluster=self.cluster,
            namespace=namespace,
            github=github,
            ctfd=self.ctfd,
            challenge_sync=challenge_sync,
            challenge_bindings=challenge_bindings,
            setup_service=SetupService(self.config.ctfd.url, self.cluster, namespace),
            health=self.health,
            password=api_config.password,
            version=api_config.version,
            host=api_config.host,
            port=api_config.port,
        )

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller or not self.http:
            await self.initialize()

        self.running = True
        logger.info("Starting CTFd manager")

        tasks = [
            asyncio.create_task(self.controller.start()),
            asyncio.create_task(self.http.start()),
        ]

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        logger.info("Stopping CTFd manager")
        self.running = False

        if self.controller:
            await self.controller.stop()
        if self.http:
            await self.http.stop()
        if self.ctfd:
            await self.ctfd.close()
        if self.cluster:
            await self.cluster.close()

        logger.info("CTFd manager stopped")


async def main():
    """Main entry point."""
    app = Application()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


def run():
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
