"""
VirtualDatabase reconciler.

One pass moves a VirtualDatabase one step closer to its desired state:
it makes sure the RDS instance behind an AWSRdsInstance DatabaseClass exists
and keeps the DatabaseEndpoint of the same name in sync with the instance's
live address. Each pass is level-triggered: it re-derives everything from
current state and returns an Outcome telling the work queue when to come back.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Optional

from vdb_controller.config.logging import get_logger, reconcile_context
from vdb_controller.core.state_machine import InstanceState, InstanceStateMachine
from vdb_controller.exceptions import (
    ConfigurationError,
    InstanceAlreadyExistsError,
    InstanceNotFoundError,
    ProviderError,
    ResourceNotFoundError,
    StoreError,
)
from vdb_controller.models.instance import CreateInstanceRequest, InstanceDescription
from vdb_controller.models.outcome import Outcome
from vdb_controller.models.resources import (
    DatabaseClass,
    DatabaseEndpoint,
    MySQLEndpoint,
    ObjectKey,
    VirtualDatabase,
)
from vdb_controller.services import metrics
from vdb_controller.services.kube_store import KubeStore
from vdb_controller.services.rds_provider import RdsProvider
from vdb_controller.utils.security import generate_password

logger = get_logger(__name__)

# Steady-state recheck interval in seconds
RECONCILE_INTERVAL = 30.0


@dataclass
class _PassState:
    """Side effects already performed during the current pass."""

    password: Optional[str] = None
    instance_create_attempted: bool = False
    endpoint_created: bool = False


class VirtualDatabaseReconciler:
    """
    Converges one VirtualDatabase per call.

    Side effects per pass are bounded: at most one CreateDBInstance call,
    one DatabaseEndpoint create and one DatabaseEndpoint update. Nothing is
    ever deleted.
    """

    def __init__(
        self,
        store: KubeStore,
        provider: RdsProvider,
        reconcile_interval: float = RECONCILE_INTERVAL,
        password_generator: Callable[[], str] = generate_password,
    ):
        """
        Initialize reconciler.

        Args:
            store: Desired-state store (VirtualDatabase, DatabaseClass, DatabaseEndpoint)
            provider: RDS provider
            reconcile_interval: Seconds until a converged or inert object is checked again
            password_generator: Source of master passwords for new instances
        """
        self.store = store
        self.provider = provider
        self.reconcile_interval = reconcile_interval
        self.password_generator = password_generator

    async def reconcile(self, key: ObjectKey) -> Outcome:
        """
        Run one reconcile pass for a VirtualDatabase.

        Never raises for domain errors; only cancellation propagates.
        """
        start = time.monotonic()
        with reconcile_context(key):
            try:
                outcome = await self._reconcile(key)
            except asyncio.CancelledError:
                logger.info("reconcile_cancelled")
                raise
            except Exception as e:
                logger.error("reconcile_unexpected_error", error=str(e), exc_info=True)
                outcome = Outcome.failed(e)

            metrics.reconcile_duration_seconds.observe(time.monotonic() - start)
            metrics.reconcile_total.labels(result=outcome.result).inc()
            if outcome.error is not None:
                metrics.reconcile_errors_total.labels(error_type=type(outcome.error).__name__).inc()

            logger.debug(
                "reconcile_finished",
                result=outcome.result,
                requeue_after=outcome.requeue_after,
                duration_seconds=round(time.monotonic() - start, 3),
            )
            return outcome

    async def _reconcile(self, key: ObjectKey) -> Outcome:
        try:
            vdb = await self.store.get(VirtualDatabase, key)
        except ResourceNotFoundError:
            logger.info("virtualdatabase_not_found", message="Resource in work queue no longer exists")
            return Outcome.done()
        except StoreError as e:
            logger.error("virtualdatabase_get_failed", error=str(e))
            return Outcome.failed(e)

        class_name = vdb.spec.database_class_name
        if not class_name:
            logger.debug("virtualdatabase_without_class", message="No databaseClassName, nothing to provision")
            return Outcome.after(self.reconcile_interval)

        class_key = ObjectKey(key.namespace, class_name)
        try:
            db_class = await self.store.get(DatabaseClass, class_key)
        except ResourceNotFoundError as e:
            error = ConfigurationError(
                f"DatabaseClass '{class_key}' referenced by VirtualDatabase '{key}' not found",
                details={"databaseclass": str(class_key)},
            )
            logger.warning("databaseclass_not_found", databaseclass=str(class_key), error=str(e))
            return Outcome.failed(error)
        except StoreError as e:
            logger.error("databaseclass_get_failed", databaseclass=str(class_key), error=str(e))
            return Outcome.failed(e)

        if not db_class.is_rds_instance:
            logger.debug(
                "provisioner_not_handled",
                databaseclass=str(class_key),
                provisioner=db_class.spec.provisioner,
            )
            return Outcome.after(self.reconcile_interval)

        return await self._reconcile_rds_instance(vdb, db_class)

    async def _reconcile_rds_instance(self, vdb: VirtualDatabase, db_class: DatabaseClass) -> Outcome:
        """Converge the RDS instance and the endpoint, one step per MySQL service."""
        state = _PassState()

        for service in vdb.spec.services:
            if service.database_mysql is None:
                continue
            db_name = service.database_mysql.db

            try:
                description: Optional[InstanceDescription] = await self.provider.describe_instance(
                    vdb.metadata.name
                )
            except InstanceNotFoundError:
                description = None
                if not state.instance_create_attempted:
                    outcome = await self._create_instance(vdb, db_class, db_name, state)
                    if outcome is not None:
                        return outcome
            except ProviderError as e:
                logger.error("rds_describe_failed", service=service.name, error=str(e))
                return Outcome.failed(e)

            outcome = await self._sync_endpoint(vdb, db_class, db_name, description, state)
            if outcome is not None:
                return outcome

        return Outcome.after(self.reconcile_interval)

    async def _create_instance(
        self,
        vdb: VirtualDatabase,
        db_class: DatabaseClass,
        db_name: str,
        state: _PassState,
    ) -> Optional[Outcome]:
        """Issue CreateDBInstance. Returns an Outcome only when the pass must stop."""
        state.instance_create_attempted = True
        state.password = self.password_generator()
        request = CreateInstanceRequest(
            identifier=vdb.metadata.name,
            engine=db_class.spec.engine.name,
            engine_version=db_class.spec.engine.version,
            master_username=db_class.spec.default_master_username,
            master_password=state.password,
            instance_class=db_class.spec.instance.instance_class,
            allocated_storage=db_class.spec.storage.allocated_storage,
            database_name=db_name,
            vpc_security_group_ids=db_class.vpc_security_group_ids,
            subnet_group_name=db_class.subnet_group_name,
        )

        try:
            await self.provider.create_instance(request)
        except InstanceAlreadyExistsError:
            # Lost a race with another creator; our password was never applied
            logger.info("rds_instance_already_exists", identifier=request.identifier)
            metrics.rds_instance_create_total.labels(result="already_exists").inc()
            state.password = None
            return None
        except ProviderError as e:
            logger.error("rds_instance_create_failed", identifier=request.identifier, error=str(e))
            metrics.rds_instance_create_total.labels(result="error").inc()
            return Outcome.failed(e)

        metrics.rds_instance_create_total.labels(result="success").inc()
        InstanceStateMachine.validate_transition(
            InstanceState.NO_INSTANCE, InstanceState.PROVISIONING, str(vdb.key)
        )
        return None

    async def _sync_endpoint(
        self,
        vdb: VirtualDatabase,
        db_class: DatabaseClass,
        db_name: str,
        description: Optional[InstanceDescription],
        state: _PassState,
    ) -> Optional[Outcome]:
        """Create the endpoint or copy the live address into it. Returns an Outcome only to stop the pass."""
        try:
            endpoint: Optional[DatabaseEndpoint] = await self.store.get(DatabaseEndpoint, vdb.key)
        except ResourceNotFoundError:
            endpoint = None
        except StoreError as e:
            logger.error("databaseendpoint_get_failed", error=str(e))
            return Outcome.failed(e)

        if endpoint is None:
            if state.endpoint_created:
                return None
            return await self._create_endpoint(vdb, db_class, db_name, state)

        recorded = InstanceStateMachine.recorded_state(endpoint)
        observed = InstanceStateMachine.observed_state(description)
        if observed != InstanceState.LIVE:
            if recorded == InstanceState.LIVE:
                logger.warning(
                    "rds_instance_address_unavailable",
                    status=description.status if description else None,
                    message="Keeping the recorded endpoint address",
                )
            return None

        mysql = endpoint.spec.database.mysql
        if mysql is None:
            mysql = endpoint.spec.database.mysql = MySQLEndpoint()
        address, port = description.endpoint.address, description.endpoint.port
        if mysql.host == address and mysql.port == port:
            return None

        InstanceStateMachine.validate_transition(recorded, InstanceState.LIVE, str(vdb.key))
        mysql.host = address
        mysql.port = port
        try:
            await self.store.update(endpoint)
        except StoreError as e:
            logger.error("databaseendpoint_update_failed", host=address, port=port, error=str(e))
            metrics.endpoint_writes_total.labels(op="update", result="error").inc()
            return Outcome.immediately(e)

        metrics.endpoint_writes_total.labels(op="update", result="success").inc()
        logger.info("databaseendpoint_address_updated", host=address, port=port)
        return None

    async def _create_endpoint(
        self,
        vdb: VirtualDatabase,
        db_class: DatabaseClass,
        db_name: str,
        state: _PassState,
    ) -> Optional[Outcome]:
        if state.password is None:
            # The instance predates this endpoint; RDS never returns the master password
            logger.warning(
                "databaseendpoint_password_unknown",
                message="Instance already existed, creating endpoint with an empty password",
            )

        endpoint = DatabaseEndpoint.for_owner(
            vdb,
            MySQLEndpoint(
                user=db_class.spec.default_master_username,
                password=state.password or "",
                db=db_name,
            ),
        )
        try:
            await self.store.create(endpoint)
        except StoreError as e:
            logger.error("databaseendpoint_create_failed", error=str(e))
            metrics.endpoint_writes_total.labels(op="create", result="error").inc()
            return Outcome.failed(e)

        state.endpoint_created = True
        metrics.endpoint_writes_total.labels(op="create", result="success").inc()
        logger.info("databaseendpoint_created", db=db_name)
        return None
