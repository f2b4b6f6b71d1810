"""
Pydantic models for RDS instances as seen by the controller.
"""
from typing import List, Optional

from pydantic import BaseModel, Field


class InstanceEndpoint(BaseModel):
    """Connection endpoint reported by RDS once the instance is reachable."""

    address: str = Field(default="", description="DNS address of the instance")
    port: int = Field(default=0, description="Port the engine listens on")


class InstanceDescription(BaseModel):
    """Subset of DescribeDBInstances output the reconciler relies on."""

    identifier: str = Field(..., description="DB instance identifier")
    status: str = Field(default="", description="RDS lifecycle status (creating, available, ...)")
    engine: Optional[str] = Field(default=None, description="Database engine")
    engine_version: Optional[str] = Field(default=None, description="Engine version")
    endpoint: Optional[InstanceEndpoint] = Field(default=None, description="Connection endpoint, once assigned")

    @property
    def is_live(self) -> bool:
        """True once RDS reports populated endpoint coordinates."""
        return self.endpoint is not None and bool(self.endpoint.address) and self.endpoint.port > 0


class CreateInstanceRequest(BaseModel):
    """Parameters for CreateDBInstance, derived from a DatabaseClass and a service."""

    identifier: str
    engine: str
    engine_version: str
    master_username: str
    master_password: str = Field(..., repr=False)
    instance_class: str
    allocated_storage: int
    database_name: str
    vpc_security_group_ids: List[str] = Field(default_factory=list)
    subnet_group_name: str = ""
