"""
Instance state machine for VirtualDatabase provisioning.

The reconciler never stores this state; it is re-derived on every pass from
the RDS describe result and the DatabaseEndpoint, then checked against the
allowed transitions.

States:
- NO_INSTANCE: RDS reports the instance as not found
- PROVISIONING: the instance exists but has no endpoint address yet
- LIVE: RDS reports host and port (terminal for this controller)

Usage:
    >>> from vdb_controller.core.state_machine import InstanceState, InstanceStateMachine
    >>>
    >>> InstanceStateMachine.can_transition(
    ...     InstanceState.PROVISIONING,
    ...     InstanceState.LIVE
    ... )
    True
    >>> InstanceStateMachine.can_transition(
    ...     InstanceState.LIVE,
    ...     InstanceState.NO_INSTANCE
    ... )
    False
"""

from enum import Enum
from typing import Dict, Optional, Set

import structlog

from vdb_controller.models.instance import InstanceDescription
from vdb_controller.models.resources import DatabaseEndpoint

logger = structlog.get_logger(__name__)


class InstanceState(str, Enum):
    """Lifecycle of the external instance behind a VirtualDatabase."""
    NO_INSTANCE = "no_instance"
    PROVISIONING = "provisioning"
    LIVE = "live"


class InstanceStateMachine:
    """
    Allowed transitions for a VirtualDatabase/instance pair.

    Only forward moves are driven by the controller; nothing ever leaves LIVE.
    """

    TRANSITIONS: Dict[InstanceState, Set[InstanceState]] = {
        InstanceState.NO_INSTANCE: {
            InstanceState.PROVISIONING,  # create issued
            InstanceState.LIVE,          # created and became live between passes
        },
        InstanceState.PROVISIONING: {
            InstanceState.LIVE,          # describe returned endpoint coordinates
        },
        InstanceState.LIVE: set(),       # Terminal state
    }

    @classmethod
    def can_transition(cls, from_state: InstanceState, to_state: InstanceState) -> bool:
        """
        Check if state transition is valid.

        Staying in the same state is always allowed.
        """
        if from_state == to_state:
            return True
        return to_state in cls.TRANSITIONS.get(from_state, set())

    @classmethod
    def validate_transition(
        cls,
        from_state: InstanceState,
        to_state: InstanceState,
        virtualdatabase: Optional[str] = None,
    ) -> None:
        """
        Validate state transition and raise exception if invalid.

        Raises:
            ValueError: If transition is not allowed
        """
        if not cls.can_transition(from_state, to_state):
            error_msg = f"Invalid state transition from {from_state.value} to {to_state.value}"
            if virtualdatabase:
                error_msg += f" for virtualdatabase {virtualdatabase}"

            logger.error(
                "invalid_state_transition",
                virtualdatabase=virtualdatabase,
                from_state=from_state.value,
                to_state=to_state.value,
                allowed_states=[s.value for s in cls.TRANSITIONS.get(from_state, set())],
            )
            raise ValueError(error_msg)

        if from_state != to_state:
            logger.info(
                "instance_state_transition",
                virtualdatabase=virtualdatabase,
                from_state=from_state.value,
                to_state=to_state.value,
            )

    @staticmethod
    def observed_state(description: Optional[InstanceDescription]) -> InstanceState:
        """State of the instance according to the latest describe call."""
        if description is None:
            return InstanceState.NO_INSTANCE
        if description.is_live:
            return InstanceState.LIVE
        return InstanceState.PROVISIONING

    @staticmethod
    def recorded_state(endpoint: Optional[DatabaseEndpoint]) -> InstanceState:
        """
        State last recorded in the DatabaseEndpoint.

        An endpoint only exists once provisioning started, and only carries an
        address once the instance was seen live.
        """
        if endpoint is None:
            return InstanceState.NO_INSTANCE
        mysql = endpoint.spec.database.mysql
        if mysql is not None and mysql.has_address:
            return InstanceState.LIVE
        return InstanceState.PROVISIONING
