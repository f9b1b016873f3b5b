"""Persisted per-branch worktree metadata."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    WrapValidator,
)
from pydantic.alias_generators import to_camel

InitScriptStatus = Literal["running", "success", "failed"]


def _keep_unrecognized(value: Any, handler: ValidatorFunctionWrapHandler) -> Any:
    """Validate ``value`` but keep it verbatim when another writer stored a different shape."""

    try:
        return handler(value)
    except ValidationError:
        return value


_TOLERANT = WrapValidator(_keep_unrecognized)


class RunMetadata(BaseModel):
    """Metadata record stored for one (project, branch) worktree.

    The record is shared with other writers (PR tracking in particular), so
    fields this package does not know about are retained as extras and
    written back untouched. Known fields holding unexpected values are kept
    as-is too, so a record never has to be discarded to be updated.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    branch: Annotated[str, _TOLERANT] = Field(..., description="Branch the worktree was created for.")
    created_at: Annotated[str | None, _TOLERANT] = Field(
        default=None, description="ISO-8601 timestamp of the first write for this branch."
    )
    pr: Any = Field(default=None, description="Pull request details owned by another writer.")
    init_script_ran: Annotated[bool | None, _TOLERANT] = Field(
        default=None, description="True once the init script reached a terminal outcome."
    )
    init_script_status: Annotated[InitScriptStatus | None, _TOLERANT] = Field(
        default=None, description="Lifecycle state of the init script for this branch."
    )
    init_script_error: Annotated[str | None, _TOLERANT] = Field(
        default=None, description="Failure description, only present when the script failed."
    )

    def to_document(self) -> dict[str, Any]:
        """Return the camelCase JSON document stored on disk."""

        return self.model_dump(mode="json", by_alias=True, exclude_none=True, warnings=False)

    def with_init_state(
        self,
        *,
        created_at: str,
        ran: bool,
        status: InitScriptStatus,
        error: str | None = None,
    ) -> "RunMetadata":
        """Return a copy carrying a new init-script state.

        ``createdAt`` is kept when already present; ``pr`` and unknown fields
        always survive.
        """

        return self.model_copy(
            update={
                "created_at": self.created_at or created_at,
                "init_script_ran": ran,
                "init_script_status": status,
                "init_script_error": error,
            }
        )


__all__ = ["InitScriptStatus", "RunMetadata"]
