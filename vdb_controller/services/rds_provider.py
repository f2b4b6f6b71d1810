"""
RDS provider - describes and creates DB instances through boto3.

boto3 is blocking, so every call runs in a worker thread; the calling
reconcile pass still waits for it to finish.
"""
import asyncio
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from vdb_controller.config.logging import get_logger
from vdb_controller.exceptions import (
    InstanceAlreadyExistsError,
    InstanceNotFoundError,
    ProviderError,
)
from vdb_controller.models.instance import (
    CreateInstanceRequest,
    InstanceDescription,
    InstanceEndpoint,
)

logger = get_logger(__name__)

ERROR_INSTANCE_NOT_FOUND = "DBInstanceNotFound"
ERROR_INSTANCE_ALREADY_EXISTS = "DBInstanceAlreadyExists"


class RdsProvider:
    """Thin async facade over the boto3 RDS client."""

    def __init__(self, rds_client: Any):
        self.client = rds_client

    @classmethod
    def from_credentials(
        cls,
        region: str,
        access_key: Optional[str] = None,
        secret_access_key: Optional[str] = None,
    ) -> "RdsProvider":
        """
        Build the provider once at startup.

        Without explicit keys boto3 falls back to its default credential chain.
        """
        session = boto3.session.Session(
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_access_key,
            region_name=region,
        )
        logger.info("rds_client_initialized", region=region, explicit_credentials=bool(access_key))
        return cls(session.client("rds"))

    async def describe_instance(self, identifier: str) -> InstanceDescription:
        """
        Describe a DB instance by identifier.

        Raises:
            InstanceNotFoundError: If no such instance exists
            ProviderError: For any other RDS failure
        """
        try:
            response = await asyncio.to_thread(
                self.client.describe_db_instances,
                DBInstanceIdentifier=identifier,
            )
        except ClientError as e:
            code = _error_code(e)
            if code == ERROR_INSTANCE_NOT_FOUND:
                raise InstanceNotFoundError(identifier) from e
            logger.error("rds_describe_failed", identifier=identifier, code=code, error=str(e))
            raise ProviderError(f"Failed to describe {identifier}: {e}", code=code) from e
        except BotoCoreError as e:
            logger.error("rds_describe_failed", identifier=identifier, error=str(e))
            raise ProviderError(f"Failed to describe {identifier}: {e}") from e

        instances = response.get("DBInstances") or []
        if not instances:
            raise InstanceNotFoundError(identifier)
        return _to_description(instances[0])

    async def create_instance(self, request: CreateInstanceRequest) -> InstanceDescription:
        """
        Create a DB instance.

        Raises:
            InstanceAlreadyExistsError: If an instance with this identifier exists
            ProviderError: For any other RDS failure
        """
        params: Dict[str, Any] = {
            "DBInstanceIdentifier": request.identifier,
            "Engine": request.engine,
            "MasterUsername": request.master_username,
            "MasterUserPassword": request.master_password,
            "DBInstanceClass": request.instance_class,
            "AllocatedStorage": request.allocated_storage,
        }
        if request.engine_version:
            params["EngineVersion"] = request.engine_version
        if request.database_name:
            params["DBName"] = request.database_name
        if request.vpc_security_group_ids:
            params["VpcSecurityGroupIds"] = list(request.vpc_security_group_ids)
        if request.subnet_group_name:
            params["DBSubnetGroupName"] = request.subnet_group_name

        try:
            response = await asyncio.to_thread(self.client.create_db_instance, **params)
        except ClientError as e:
            code = _error_code(e)
            if code == ERROR_INSTANCE_ALREADY_EXISTS:
                raise InstanceAlreadyExistsError(request.identifier) from e
            logger.error("rds_create_failed", identifier=request.identifier, code=code, error=str(e))
            raise ProviderError(f"Failed to create {request.identifier}: {e}", code=code) from e
        except BotoCoreError as e:
            logger.error("rds_create_failed", identifier=request.identifier, error=str(e))
            raise ProviderError(f"Failed to create {request.identifier}: {e}") from e

        logger.info(
            "rds_instance_create_requested",
            identifier=request.identifier,
            engine=request.engine,
            engine_version=request.engine_version,
            instance_class=request.instance_class,
        )
        return _to_description(response.get("DBInstance") or {"DBInstanceIdentifier": request.identifier})


def _error_code(error: ClientError) -> str:
    return error.response.get("Error", {}).get("Code", "")


def _to_description(instance: Dict[str, Any]) -> InstanceDescription:
    endpoint = instance.get("Endpoint")
    return InstanceDescription(
        identifier=instance.get("DBInstanceIdentifier", ""),
        status=instance.get("DBInstanceStatus", ""),
        engine=instance.get("Engine"),
        engine_version=instance.get("EngineVersion"),
        endpoint=InstanceEndpoint(
            address=endpoint.get("Address", ""),
            port=endpoint.get("Port", 0),
        ) if endpoint else None,
    )
