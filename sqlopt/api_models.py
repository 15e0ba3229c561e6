from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1
DEFAULT_RESTART_TIMEOUT_S = 120


class DesiredState(BaseModel):
    model_config = ConfigDict(frozen=True)

    server_name: str | None = Field(None, description="Target host; defaults to the local computer name")
    instance_name: str = Field(..., min_length=1, description="Instance name, e.g. MSSQLSERVER")
    option_name: str = Field(..., min_length=1, description="Display name of the configuration option")
    option_value: int = Field(..., ge=INT32_MIN, le=INT32_MAX, description="Value the option must hold")
    restart_service: bool = Field(False, description="Restart the instance when a non-dynamic option changed")
    restart_timeout: int = Field(DEFAULT_RESTART_TIMEOUT_S, ge=0, description="Seconds to wait for a restart")
    process_only_on_active_node: bool = Field(False, description="Only evaluate on the active cluster node")


class ReadRequest(BaseModel):
    server_name: str | None = None
    instance_name: str = Field(..., min_length=1)
    option_name: str = Field(..., min_length=1)
    restart_service: bool = False
    restart_timeout: int = Field(DEFAULT_RESTART_TIMEOUT_S, ge=0)


class ObservedState(BaseModel):
    """Snapshot of an option as read from the instance."""

    model_config = ConfigDict(frozen=True)

    server_name: str
    instance_name: str
    option_name: str
    option_value: int = Field(..., ge=INT32_MIN, le=INT32_MAX)
    restart_service: bool = False
    restart_timeout: int = DEFAULT_RESTART_TIMEOUT_S
    is_active_node: bool


class TestOutcome(str, Enum):
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    # Skipped because this node does not own the instance.
    NOT_APPLICABLE = "not_applicable"

    @property
    def in_desired_state(self) -> bool:
        """Boolean view for callers that only act on drift.

        True for both SATISFIED and NOT_APPLICABLE ("no action"), so it cannot
        tell them apart; callers that care must branch on the outcome itself.
        """
        return self is not TestOutcome.UNSATISFIED


class TestResponse(BaseModel):
    """Result of a test. Branch on ``outcome``; ``in_desired_state`` is also true for not_applicable."""

    outcome: TestOutcome
    in_desired_state: bool = Field(..., description="True for satisfied and not_applicable; use outcome to tell them apart")


class ApplyResponse(BaseModel):
    ok: bool = True
