"""
Controller manager.

Starts everything the controller process runs, in ONE process:
1. Probe server (FastAPI on uvicorn): /healthz, /readyz
2. Metrics server (prometheus_client)
3. VirtualDatabase controller (watchers + reconcile workers),
   gated by Redis leader election when enabled
"""
import asyncio
import socket
import uuid
from typing import List, Optional

import uvicorn
from fastapi import FastAPI
from kubernetes_asyncio.config import ConfigException
from prometheus_client import start_http_server
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from vdb_controller.api.v1 import health
from vdb_controller.config.logging import configure_logging, get_logger
from vdb_controller.config.redis import RedisConnection
from vdb_controller.config.settings import Settings, parse_bind_address, settings
from vdb_controller.services.codecs import CodecTable
from vdb_controller.services.kube_store import KubeStore
from vdb_controller.services.rds_provider import RdsProvider
from vdb_controller.utils.shutdown import ShutdownHandler
from vdb_controller.workers.controller import Controller
from vdb_controller.workers.leader_election import LeaderElection
from vdb_controller.workers.virtualdatabase_reconciler import VirtualDatabaseReconciler

logger = get_logger(__name__)


def create_probe_app(manager: "Manager") -> FastAPI:
    """Build the probe application bound to a manager."""
    app = FastAPI(
        title=f"{settings.app_name} probes",
        version=settings.app_version,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.manager = manager
    app.include_router(health.router, tags=["Health"])
    return app


class Manager:
    """
    Owns the process lifecycle: bootstrap, leader election, graceful shutdown.
    """

    def __init__(self, config: Settings = settings):
        self.settings = config
        self.instance_id = f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"
        self.shutdown_handler = ShutdownHandler()

        self.store: Optional[KubeStore] = None
        self.controller: Optional[Controller] = None
        self.leader_election: Optional[LeaderElection] = None
        self.started = False

        self._probe_server: Optional[uvicorn.Server] = None
        self._probe_task: Optional[asyncio.Task] = None
        self._metrics_server = None
        self._tasks: List[asyncio.Task] = []

    # Readiness

    @property
    def leader_elect(self) -> bool:
        return self.settings.leader_elect

    @property
    def is_leader(self) -> bool:
        if self.leader_election is None:
            return not self.leader_elect
        return self.leader_election.is_leader

    @property
    def controller_running(self) -> bool:
        return self.controller is not None and self.controller.running

    @property
    def ready(self) -> bool:
        """Started, with the controller running whenever this replica leads.

        A standby replica is ready as soon as it has started, so rolling
        updates of a multi-replica Deployment are not blocked by the lease.
        """
        if not self.started:
            return False
        return self.controller_running or not self.is_leader

    # Lifecycle

    async def run(self) -> None:
        """Run until SIGINT/SIGTERM."""
        configure_logging(self.settings, instance_id=self.instance_id)
        self.shutdown_handler.setup()
        logger.info(
            "manager_starting",
            version=self.settings.app_version,
            environment=self.settings.environment,
            instance_id=self.instance_id,
        )

        try:
            await self.start()
            await self.shutdown_handler.wait()
        finally:
            await self.stop()
            self.shutdown_handler.restore()

    async def start(self) -> None:
        """Connect clients and start servers, the controller and leader election."""
        cfg = self.settings
        logger.info(
            "webhook_server_disabled",
            webhook_port=cfg.webhook_port,
            message="Admission webhooks are not served by this controller",
        )

        self._start_metrics_server()
        self._start_probe_server()

        self.store = await self._connect_store()
        provider = RdsProvider.from_credentials(
            region=cfg.aws_region,
            access_key=cfg.aws_access_key,
            secret_access_key=cfg.aws_secret_access_key,
        )
        reconciler = VirtualDatabaseReconciler(
            self.store,
            provider,
            reconcile_interval=cfg.reconcile_interval,
        )
        self.controller = Controller(
            self.store,
            reconciler,
            max_concurrent_reconciles=cfg.max_concurrent_reconciles,
            backoff_base_delay=cfg.backoff_base_delay,
            backoff_max_delay=cfg.backoff_max_delay,
        )

        if cfg.leader_elect:
            await RedisConnection.connect(cfg.redis_url)
            self.leader_election = LeaderElection(
                instance_id=self.instance_id,
                election_id=cfg.leader_election_id,
                lease_duration=cfg.leader_lease_duration,
            )
            self._tasks.append(
                asyncio.create_task(self._run_with_leader_election(), name="leader-election")
            )
        else:
            await self.controller.start()

        self.started = True
        logger.info(
            "manager_started",
            instance_id=self.instance_id,
            leader_elect=cfg.leader_elect,
            namespace=cfg.watch_namespace or "*",
            workers=cfg.max_concurrent_reconciles,
        )

    async def stop(self) -> None:
        """Stop the controller, release leadership and close clients."""
        logger.info("manager_shutting_down")
        self.started = False

        for task in self._tasks:
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
            self._tasks = []

        if self.controller is not None:
            await self.controller.stop()

        if self.leader_election is not None:
            try:
                await self.leader_election.release_leadership()
            except Exception as e:
                logger.error("leadership_release_failed", error=str(e))
            await RedisConnection.close()

        if self.store is not None:
            await self.store.close()
            logger.info("kubernetes_client_closed")

        if self._probe_server is not None:
            self._probe_server.should_exit = True
        if self._probe_task is not None:
            await asyncio.gather(self._probe_task, return_exceptions=True)

        if self._metrics_server is not None:
            self._metrics_server.shutdown()

        logger.info("manager_shutdown_complete")

    # Bootstrap helpers

    async def _connect_store(self) -> KubeStore:
        """Load the kube config, retrying transient failures."""
        cfg = self.settings
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(5),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type((ConfigException, OSError)),
            reraise=True,
        ):
            with attempt:
                logger.info("connecting_to_kubernetes", attempt=attempt.retry_state.attempt_number)
                store = await KubeStore.connect(
                    CodecTable.default(),
                    in_cluster=cfg.k8s_in_cluster,
                    kubeconfig_path=cfg.kubeconfig_path,
                    namespace=cfg.watch_namespace,
                )
        return store

    def _start_metrics_server(self) -> None:
        host, port = parse_bind_address(self.settings.metrics_bind_address)
        self._metrics_server, _ = start_http_server(port, addr=host)
        logger.info("metrics_server_started", host=host, port=port)

    def _start_probe_server(self) -> None:
        host, port = parse_bind_address(self.settings.health_probe_bind_address)
        config = uvicorn.Config(
            create_probe_app(self),
            host=host,
            port=port,
            log_config=None,
            access_log=False,
        )
        self._probe_server = uvicorn.Server(config)
        self._probe_task = asyncio.create_task(self._probe_server.serve(), name="probe-server")
        logger.info("probe_server_started", host=host, port=port)

    async def _run_with_leader_election(self) -> None:
        """Run the controller only while holding the lease."""
        election = self.leader_election
        renew_interval = max(1.0, election.lease_duration / 3)

        while True:
            try:
                if election.is_leader:
                    leading = await election.renew_lease()
                else:
                    leading = await election.acquire_leadership()

                if leading and not self.controller.running:
                    logger.info("became_leader_starting_controller", instance_id=self.instance_id)
                    await self.controller.start()
                elif not leading and self.controller.running:
                    logger.info("lost_leadership_stopping_controller", instance_id=self.instance_id)
                    await self.controller.stop()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("leader_election_error", error=str(e))
                if self.controller.running:
                    # Cannot confirm the lease any more
                    await self.controller.stop()
                election.step_down()

            await asyncio.sleep(renew_interval)
