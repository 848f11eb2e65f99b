"""
Core type definitions for Vault Memory.

These types describe:
- The knowledge graph: Entity, RelationLink, Relation, KnowledgeGraph
- Batch store results with per-item errors
- The sync engine's transfer records and results
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse an ISO-8601 timestamp (or datetime) into an aware UTC datetime.

    Naive values are taken to be UTC. Returns None for empty or
    unparseable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class WireModel(BaseModel):
    """Base for models exchanged as JSON with camelCase aliases."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        """Dump to JSON-safe primitives using wire (alias) names."""
        return self.model_dump(mode="json", by_alias=True)


# ============================================
# Knowledge Graph
# ============================================

class RelationLink(WireModel):
    """A directed edge stored inside the source entity's file."""

    target: str
    type: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _blank_type_is_untyped(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class Entity(WireModel):
    """A named knowledge node, persisted as `<name>.md`."""

    name: str
    entity_type: str = Field(default="", alias="entityType")
    observations: list[str] = Field(default_factory=list)
    relations: list[RelationLink] = Field(default_factory=list)
    created: datetime | None = None
    updated: datetime | None = None

    # Document content the codec carries through without modelling it
    preamble: str = Field(default="", exclude=True)
    extra_sections: list[str] = Field(default_factory=list, exclude=True)
    properties: dict[str, Any] = Field(default_factory=dict, exclude=True)


class EntityNode(Entity):
    """An entity together with its rendered markdown document."""

    content: str = ""


class Relation(WireModel):
    """A `(from, to, relationType)` triple as exchanged by the tools."""

    from_: str = Field(alias="from")
    to: str
    relation_type: str | None = Field(default=None, alias="relationType")

    @field_validator("relation_type", mode="before")
    @classmethod
    def _blank_type_is_untyped(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    def as_link(self) -> RelationLink:
        return RelationLink(target=self.to, type=self.relation_type)

    def describe(self) -> str:
        if self.relation_type:
            return f"{self.from_} -[{self.relation_type}]-> {self.to}"
        return f"{self.from_} -> {self.to}"


class ObservationUpdate(WireModel):
    entity_name: str = Field(alias="entityName")
    contents: list[str] = Field(default_factory=list)


class ObservationDeletion(WireModel):
    entity_name: str = Field(alias="entityName")
    observations: list[str] = Field(default_factory=list)


class KnowledgeGraph(WireModel):
    """A set of entities plus the flattened list of their outgoing relations."""

    entities: list[Entity] = Field(default_factory=list)
    relations: list[Relation] = Field(default_factory=list)

    @classmethod
    def from_entities(cls, entities: list[Entity]) -> "KnowledgeGraph":
        relations = [
            Relation(**{"from": entity.name, "to": link.target, "relationType": link.type})
            for entity in entities
            for link in entity.relations
        ]
        return cls(entities=entities, relations=relations)


# ============================================
# Batch Results
# ============================================

ErrorKind = Literal["not_found", "invalid", "io", "parse"]


class ItemError(WireModel):
    """One failed item inside a batch operation."""

    item: str
    kind: ErrorKind
    message: str


class CreateEntitiesResult(WireModel):
    created: list[Entity] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    """Names that already existed; never overwritten."""
    errors: list[ItemError] = Field(default_factory=list)


class CreateRelationsResult(WireModel):
    created: list[Relation] = Field(default_factory=list)
    skipped: list[Relation] = Field(default_factory=list)
    """Relations already present on the source entity."""
    errors: list[ItemError] = Field(default_factory=list)


class AddedObservations(WireModel):
    entity_name: str = Field(alias="entityName")
    added_observations: list[str] = Field(default_factory=list, alias="addedObservations")


class AddObservationsResult(WireModel):
    results: list[AddedObservations] = Field(default_factory=list)
    errors: list[ItemError] = Field(default_factory=list)


class DeleteEntitiesResult(WireModel):
    deleted: list[str] = Field(default_factory=list)
    missing: list[str] = Field(default_factory=list)
    relations_pruned: int = Field(default=0, alias="relationsPruned")
    errors: list[ItemError] = Field(default_factory=list)


class DeleteObservationsResult(WireModel):
    removed: int = 0
    errors: list[ItemError] = Field(default_factory=list)


class DeleteRelationsResult(WireModel):
    removed: int = 0
    errors: list[ItemError] = Field(default_factory=list)


# ============================================
# Sync
# ============================================

class SyncDirection(str, Enum):
    """Which half (or both halves) of the sync to run."""

    NEO4J_TO_OBSIDIAN = "neo4j_to_obsidian"
    OBSIDIAN_TO_NEO4J = "obsidian_to_neo4j"
    BOTH = "both"

    @classmethod
    def _missing_(cls, value: object) -> "SyncDirection | None":
        aliases = {
            "external_to_local": cls.NEO4J_TO_OBSIDIAN,
            "local_to_external": cls.OBSIDIAN_TO_NEO4J,
        }
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        for member in cls:
            if member.value == lowered:
                return member
        return aliases.get(lowered)

    @property
    def pulls(self) -> bool:
        return self in (SyncDirection.NEO4J_TO_OBSIDIAN, SyncDirection.BOTH)

    @property
    def pushes(self) -> bool:
        return self in (SyncDirection.OBSIDIAN_TO_NEO4J, SyncDirection.BOTH)


class Neo4jMemory(BaseModel):
    """A memory record pulled from the graph memory service."""

    id: str
    content: str = ""
    sector: str = "Semantic"
    salience: float = 0.5
    entities: list[str] = Field(default_factory=list)
    observations: list[str] = Field(default_factory=list)
    created_at: str = ""
    last_accessed: str | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_string(cls, value: Any) -> Any:
        return str(value) if value is not None else value


class ChangedFile(BaseModel):
    """A vault file modified since the last local scan."""

    path: Path
    entity_name: str
    modified_time: datetime


class VaultUpdateResult(BaseModel):
    created: int = 0
    updated: int = 0
    errors: list[str] = Field(default_factory=list)


class Neo4jUpdateResult(BaseModel):
    updated: int = 0
    errors: list[str] = Field(default_factory=list)


class Neo4jToObsidianStats(BaseModel):
    fetched: int = 0
    created: int = 0
    updated: int = 0
    errors: list[str] = Field(default_factory=list)


class ObsidianToNeo4jStats(BaseModel):
    changed_files: int = 0
    updated_memories: int = 0
    errors: list[str] = Field(default_factory=list)


class SyncResult(BaseModel):
    """Outcome of one orchestration run. Held in memory only."""

    success: bool = True
    neo4j_to_obsidian: Neo4jToObsidianStats = Field(default_factory=Neo4jToObsidianStats)
    obsidian_to_neo4j: ObsidianToNeo4jStats = Field(default_factory=ObsidianToNeo4jStats)
    duration_ms: int = 0

    @property
    def error_count(self) -> int:
        return len(self.neo4j_to_obsidian.errors) + len(self.obsidian_to_neo4j.errors)


class SchedulerStatus(WireModel):
    enabled: bool
    last_sync: datetime | None = Field(default=None, alias="lastSync")
    next_sync: datetime | None = Field(default=None, alias="nextSync")
    interval: int
    is_running: bool = Field(alias="isRunning")
    last_result: SyncResult | None = Field(default=None, alias="lastResult")
