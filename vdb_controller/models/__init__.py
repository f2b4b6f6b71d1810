from vdb_controller.models.instance import CreateInstanceRequest, InstanceDescription, InstanceEndpoint
from vdb_controller.models.outcome import Outcome
from vdb_controller.models.resources import (
    DatabaseClass,
    DatabaseEndpoint,
    DatabaseProvisioner,
    MySQLEndpoint,
    ObjectKey,
    VirtualDatabase,
)

__all__ = [
    "CreateInstanceRequest",
    "InstanceDescription",
    "InstanceEndpoint",
    "Outcome",
    "DatabaseClass",
    "DatabaseEndpoint",
    "DatabaseProvisioner",
    "MySQLEndpoint",
    "ObjectKey",
    "VirtualDatabase",
]
