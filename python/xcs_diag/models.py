"""
Core data models for the diagnostic collector.

Entities and records are read-only views over documents owned by the
document store; their raw documents are exported unmodified.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class Entity(BaseModel):
    """A tracked bot as stored in the document store."""

    id: str = Field(..., description="Document id of the bot")
    name: str = Field(default="", description="Display name, source of the export directory")
    document: dict[str, Any] = Field(default_factory=dict, description="Full bot document")

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Entity:
        """Build from a view row carrying an included document."""
        document = row.get("doc") or {}
        return cls(
            id=str(row.get("id") or document.get("_id", "")),
            name=str(document.get("name", "")),
            document=document,
        )


class Record(BaseModel):
    """One integration (historical run) of a bot."""

    owner_entity_name: str | None = Field(
        default=None, description="Owning bot's name as embedded in the record"
    )
    number: int | None = Field(default=None, description="Integration number")
    document: dict[str, Any] = Field(default_factory=dict, description="Full integration document")

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> Record:
        """Build from an integration document, tolerating missing fields."""
        bot = document.get("bot")
        owner = bot.get("name") if isinstance(bot, dict) else None
        number = document.get("number")
        if isinstance(number, bool) or not isinstance(number, (int, float)):
            number = None
        return cls(
            owner_entity_name=str(owner) if owner is not None else None,
            number=int(number) if number is not None else None,
            document=document,
        )


class CommandResult(BaseModel):
    """Outcome of an external command. Timeouts yield the empty sentinel."""

    command: str = Field(..., description="Command as executed")
    stdout: str = Field(default="", description="Captured standard output")
    stderr: str = Field(default="", description="Captured standard error")
    success: bool = Field(default=False, description="True when the command exited with status 0")
    returncode: int | None = Field(default=None, description="Exit status if the process finished")
    timed_out: bool = Field(default=False, description="True when the deadline killed the process")
    duration_seconds: float = Field(default=0.0, description="Wall clock runtime")

    @classmethod
    def timeout_sentinel(cls, command: str, duration_seconds: float = 0.0) -> CommandResult:
        """Empty output, failure status."""
        return cls(command=command, success=False, timed_out=True, duration_seconds=duration_seconds)
