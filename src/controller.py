"""
Reconciliation Loop - watches ConfigMaps and syncs them to CTFd.

A single task consumes the ConfigMap watch and handles events strictly in
order. The watch is reopened whenever the API server closes it; every
reopen replays ADDED events for all objects, which fingerprints turn into
no-ops for anything already synced.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from errors import ClusterAPIError, RemoteCallError, ValidationError, WatchConnectionError
from events import WatchEvent, WatchEventType
from extraction import (
    CONFIGMAP_LABEL,
    classify_object,
    extract_challenge_config,
    extract_page_config,
)
from fingerprint import FingerprintStore, compute_fingerprint
from health import HealthState
from models import ConfigObject, ObjectKind
from sync import ChallengeSync, PageSync

logger = logging.getLogger(__name__)


class WatchState(Enum):
    """Lifecycle of the ConfigMap watch."""

    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"
    STOPPED = "stopped"


@dataclass
class ControllerConfig:
    """Configuration for the controller."""

    namespace: str = "default"
    label_selector: str = CONFIGMAP_LABEL

    # Reconnect backoff after the stream closes, off by default
    backoff_enabled: bool = False
    backoff_base_delay: float = 1.0
    backoff_max_delay: float = 60.0
    backoff_jitter_factor: float = 0.1  # ±10% jitter

    # Consecutive failures to open the watch before giving up
    max_connect_attempts: int = 5
    watch_timeout_seconds: Optional[int] = None


class Controller:
    """
    Consumes the ConfigMap watch and dispatches each event.

    Challenge objects go to ChallengeSync, page objects to PageSync. Anything
    else carrying the configmap label is ignored.
    """

    def __init__(
        self,
        cluster,
        fingerprints: FingerprintStore,
        challenge_sync: ChallengeSync,
        page_sync: PageSync,
        health: Optional[HealthState] = None,
        config: Optional[ControllerConfig] = None,
    ):
        self.cluster = cluster
        self.fingerprints = fingerprints
        self.challenge_sync = challenge_sync
        self.page_sync = page_sync
        self.health = health or HealthState()
        self.config = config or ControllerConfig()
        self.state = WatchState.CLOSED
        self.running = False
        self._stream = None

    async def start(self):
        """
        Run the watch loop until stopped.

        Raises:
            WatchConnectionError: If the watch cannot be opened after the
                configured number of attempts
        """
        logger.info(f"Starting controller for namespace {self.config.namespace}")
        self.running = True
        try:
            await self._watch_loop()
        finally:
            self.state = WatchState.STOPPED

    async def stop(self):
        """Stop the watch loop after the current event."""
        logger.info("Stopping controller")
        self.running = False
        if self._stream is not None:
            self._stream.close()

    def backoff_delay(self, attempt: int) -> float:
        """Exponential delay for the given attempt number, capped and jittered."""
        delay = min(
            self.config.backoff_base_delay * (2 ** max(attempt - 1, 0)),
            self.config.backoff_max_delay,
        )
        jitter = self.config.backoff_jitter_factor
        return max(0.0, delay * (1 + random.uniform(-jitter, jitter)))

    async def _open_watch(self):
        """Open the watch, retrying with backoff until the attempt limit."""
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self.cluster.watch_config_maps(
                    self.config.namespace,
                    label_selector=self.config.label_selector,
                    timeout_seconds=self.config.watch_timeout_seconds,
                )
            except WatchConnectionError as e:
                if attempt >= self.config.max_connect_attempts:
                    logger.error(
                        f"Unable to open ConfigMap watch after {attempt} attempts: {e}"
                    )
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    f"Unable to open ConfigMap watch (attempt {attempt}): {e}, "
                    f"retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)

    async def _watch_loop(self):
        closes = 0
        while self.running:
            self.state = WatchState.CONNECTING
            self._stream = await self._open_watch()
            if not self.running:
                self._stream.close()
                break

            self.state = WatchState.STREAMING

            handled = 0
            try:
                handled = await self.process_events(self._stream)
            except WatchConnectionError as e:
                logger.warning(f"ConfigMap watch interrupted: {e}")
            finally:
                self._stream.close()
                self._stream = None

            if not self.running:
                break

            self.state = WatchState.CLOSED
            self.health.set_unhealthy()
            logger.info("ConfigMap watch closed, reconnecting")

            closes = 0 if handled else closes + 1
            if self.config.backoff_enabled and closes:
                await asyncio.sleep(self.backoff_delay(closes))

    async def process_events(self, stream) -> int:
        """Handle events from an open watch in order. Returns how many were seen."""
        count = 0
        async for event in stream:
            if not self.running:
                break
            count += 1
            try:
                await self.handle_event(event)
            except Exception as e:
                logger.error(
                    f"Error handling {event.event_type.value} event for "
                    f"{event.object_name}: {e}",
                    exc_info=True,
                )
        return count

    async def handle_event(self, event: WatchEvent) -> None:
        """Classify the event's object and apply or remove it in CTFd."""
        if event.event_type in (WatchEventType.BOOKMARK, WatchEventType.ERROR):
            logger.debug(f"Ignoring {event.event_type.value} watch event")
            return
        if event.obj is None or event.event_type is WatchEventType.UNKNOWN:
            logger.warning(f"Ignoring unexpected watch event: {event.raw.get('type')}")
            return

        obj = event.obj
        kind = classify_object(obj)
        if kind is ObjectKind.UNKNOWN:
            logger.debug(f"Skipping ConfigMap {obj.name}, not a challenge or page")
            return

        if event.event_type is WatchEventType.DELETED:
            await self._remove(obj, kind)
        else:
            await self._apply(obj, kind)

    async def _apply(self, obj: ConfigObject, kind: ObjectKind) -> None:
        if await self.fingerprints.has_been_deployed(obj):
            logger.info(f"ConfigMap {obj.name} has already been deployed, skipping")
            return

        try:
            if kind is ObjectKind.CHALLENGE:
                config = extract_challenge_config(obj)
            else:
                config = extract_page_config(obj)
        except ValidationError as e:
            logger.error(f"Error extracting {kind.value} from ConfigMap {obj.name}: {e}")
            return

        try:
            if kind is ObjectKind.CHALLENGE:
                remote_id = await self.challenge_sync.upsert(config)
            else:
                remote_id = await self.page_sync.upsert(config)
        except RemoteCallError as e:
            logger.error(f"Error syncing {kind.value} {obj.name} to CTFd: {e}")
            return

        logger.info(f"Synced {kind.value} {obj.name} to CTFd with ID {remote_id}")

        try:
            await self.fingerprints.set_stored_fingerprint(
                obj.namespace, obj.name, compute_fingerprint(obj.data)
            )
        except ClusterAPIError as e:
            logger.error(f"Error storing fingerprint for {obj.name}: {e}")

    async def _remove(self, obj: ConfigObject, kind: ObjectKind) -> None:
        config = None
        try:
            if kind is ObjectKind.CHALLENGE:
                config = extract_challenge_config(obj)
            else:
                config = extract_page_config(obj)
        except ValidationError as e:
            logger.warning(
                f"Unable to extract deleted {kind.value} {obj.name}, "
                f"leaving CTFd untouched: {e}"
            )

        if config is not None:
            try:
                if kind is ObjectKind.CHALLENGE:
                    await self.challenge_sync.disable(config)
                else:
                    await self.page_sync.delete(config)
            except RemoteCallError as e:
                logger.error(f"Error removing {kind.value} {obj.name} from CTFd: {e}")

        try:
            await self.fingerprints.clear_stored_fingerprint(obj.namespace, obj.name)
        except ClusterAPIError as e:
            logger.error(f"Error clearing fingerprint for {obj.name}: {e}")
