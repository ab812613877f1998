"""
Checkpoint — the single persisted progress record.

Serialized as ``{Phase, Timestamp, Data, ScriptPath, Parameters}``.
The checkpoint is advisory: the orchestrator reads it for diagnostics
only and always re-derives the authoritative phase from live state.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from kustoboot.core.errors import ConfigFormatError
from kustoboot.core.models.phase import Phase

Scalar = Union[str, int, float, bool, None]


def _now() -> datetime:
    return datetime.now(UTC)


class Checkpoint(BaseModel):
    """Last-known phase plus the context needed to reproduce the run."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    phase: Phase = Field(alias="Phase")
    timestamp: datetime = Field(default_factory=_now, alias="Timestamp")
    data: dict[str, Scalar] = Field(default_factory=dict, alias="Data")
    script_path: str = Field(alias="ScriptPath")
    parameters: dict[str, Scalar] = Field(default_factory=dict, alias="Parameters")

    def to_json(self) -> str:
        """Serialize with the on-disk key names."""
        data = self.model_dump(mode="json", by_alias=True)
        return json.dumps(data, indent=2, ensure_ascii=False) + "\n"

    @classmethod
    def from_json(cls, raw: str) -> Checkpoint:
        """Parse and validate a serialized checkpoint.

        Raises:
            ConfigFormatError: If the text is not JSON, or a required
                field is missing, unknown, or of the wrong type.
        """
        try:
            data: Any = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigFormatError(f"Checkpoint is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ConfigFormatError(
                f"Checkpoint must be a JSON object, got {type(data).__name__}"
            )

        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigFormatError(f"Invalid checkpoint: {e}") from e
