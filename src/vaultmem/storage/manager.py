"""
Markdown Storage Manager - entity and relation CRUD over the vault.

The storage root is the entity set: an entity exists exactly when a
readable `<name>.md` file exists there. There is no index and no cache;
every operation reads or writes the files, so the directory is always
the ground truth.

Relations are stored inside the source entity's file. Deleting an entity
also strips relations that point at it from every remaining entity.

Batch operations never let one bad item abort the rest: failures are
returned as ItemError entries next to the successful results.

Concurrent writers inside one process are serialized per entity name.
Separate processes writing the same file race, and the last write wins.
"""

import asyncio
import os
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

from pydantic import ValidationError

from vaultmem.core.config import settings, get_logger
from vaultmem.core.errors import EntityNotFoundError, InvalidEntityNameError, ParseFailureError
from vaultmem.core.types import (
    AddedObservations,
    AddObservationsResult,
    CreateEntitiesResult,
    CreateRelationsResult,
    DeleteEntitiesResult,
    DeleteObservationsResult,
    DeleteRelationsResult,
    Entity,
    EntityNode,
    ItemError,
    KnowledgeGraph,
    ObservationDeletion,
    ObservationUpdate,
    Relation,
    RelationLink,
    utcnow,
)
from vaultmem.storage.markdown import normalize_observation, parse_entity, render_body, render_entity

logger = get_logger("storage.manager")

ENTITY_SUFFIX = ".md"


def validate_entity_name(name: str) -> str:
    """
    Reject names that cannot be a filename stem in the storage root.

    Names are never rewritten; a bad name is the caller's error.
    """
    if not isinstance(name, str) or not name.strip():
        raise InvalidEntityNameError(str(name))
    if name.startswith(".") or any(ch in name for ch in ("/", "\\", "\x00")):
        raise InvalidEntityNameError(name)
    return name


def _item_label(raw: Any, key: str) -> str:
    if isinstance(raw, dict):
        return str(raw.get(key, "<unnamed>"))
    return str(getattr(raw, key, raw))


def _item_error(item: str, error: Exception) -> ItemError:
    """Map a per-item failure onto its ItemError kind."""
    if isinstance(error, EntityNotFoundError):
        kind = "not_found"
    elif isinstance(error, ParseFailureError):
        kind = "parse"
    else:
        kind = "io"
    return ItemError(item=item, kind=kind, message=str(error))


@dataclass
class _NameLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class MarkdownStorageManager:
    """
    Knowledge graph store backed by one markdown file per entity.

    All public operations are coroutines and return plain pydantic
    models, never live handles.
    """

    def __init__(self, memory_dir: Path | None = None):
        """Initialize the store, creating the storage root if needed."""
        self.memory_dir = Path(memory_dir or settings.memory_dir)
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, _NameLock] = {}

    # ============================================
    # File access
    # ============================================

    def entity_path(self, name: str) -> Path:
        """Path of the file backing an entity name."""
        return self.memory_dir / f"{validate_entity_name(name)}{ENTITY_SUFFIX}"

    def list_entity_names(self) -> list[str]:
        """Names of all entities, i.e. the stems of non-hidden .md files."""
        return sorted(
            path.stem
            for path in self.memory_dir.glob(f"*{ENTITY_SUFFIX}")
            if not path.name.startswith(".") and path.is_file()
        )

    async def _entity_names(self) -> list[str]:
        return await asyncio.to_thread(self.list_entity_names)

    @asynccontextmanager
    async def _lock(self, name: str):
        """Hold the per-name lock; the entry is dropped once nobody holds or waits on it."""
        entry = self._locks.get(name)
        if entry is None:
            entry = self._locks[name] = _NameLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[name]

    def _read_sync(self, name: str) -> Entity | None:
        path = self.entity_path(name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise ParseFailureError(f"{path.name} is not valid UTF-8: {e}") from e
        return parse_entity(text, name)

    def _write_sync(self, entity: Entity) -> None:
        path = self.entity_path(entity.name)
        tmp_path = path.with_name(f".{path.name}.tmp")
        tmp_path.write_text(render_entity(entity), encoding="utf-8")
        os.replace(tmp_path, path)

    async def _load(self, name: str) -> Entity | None:
        return await asyncio.to_thread(self._read_sync, name)

    async def _save(self, entity: Entity) -> None:
        await asyncio.to_thread(self._write_sync, entity)
        logger.debug(f"Wrote entity {entity.name}")

    async def _load_many(self, names: Iterable[str]) -> list[Entity]:
        """Load entities, skipping unreadable or vanished files."""
        entities = []
        for name in names:
            try:
                entity = await self._load(name)
            except (ParseFailureError, OSError) as e:
                logger.warning(f"Skipping unreadable entity {name}: {e}")
                continue
            if entity is not None:
                entities.append(entity)
        return entities

    async def get_entity(self, name: str) -> Entity | None:
        """Read a single entity, or None if it does not exist."""
        try:
            return await self._load(name)
        except InvalidEntityNameError:
            return None

    async def _require(self, name: str) -> Entity:
        entity = await self._load(name)
        if entity is None:
            raise EntityNotFoundError(name)
        return entity

    # ============================================
    # Create
    # ============================================

    async def create_entities(self, entities: list[Entity | dict]) -> CreateEntitiesResult:
        """
        Create one file per entity whose name is not taken yet.

        Existing names are reported in `skipped` and left untouched.
        """
        result = CreateEntitiesResult()

        for raw in entities:
            label = _item_label(raw, "name")
            try:
                entity = raw if isinstance(raw, Entity) else Entity.model_validate(raw)
                validate_entity_name(entity.name)
            except (ValidationError, InvalidEntityNameError) as e:
                result.errors.append(ItemError(item=label, kind="invalid", message=str(e)))
                continue

            async with self._lock(entity.name):
                try:
                    if await asyncio.to_thread(self.entity_path(entity.name).exists):
                        logger.info(f"Entity {entity.name} already exists, skipping")
                        result.skipped.append(entity.name)
                        continue

                    now = utcnow()
                    links: list[RelationLink] = []
                    for link in entity.relations:
                        if link not in links:
                            links.append(link)

                    new_entity = entity.model_copy(update={
                        "observations": [
                            obs for obs in map(normalize_observation, entity.observations) if obs
                        ],
                        "relations": links,
                        "created": now,
                        "updated": now,
                    })
                    await self._save(new_entity)
                    result.created.append(new_entity)
                    logger.info(f"Created entity {entity.name}")
                except OSError as e:
                    logger.error(f"Failed to create entity {entity.name}: {e}")
                    result.errors.append(_item_error(entity.name, e))

        return result

    async def create_relations(self, relations: list[Relation | dict]) -> CreateRelationsResult:
        """
        Append each relation to its source entity unless already present.

        A missing source entity fails only that relation.
        """
        result = CreateRelationsResult()

        for raw in relations:
            label = _item_label(raw, "from")
            try:
                relation = raw if isinstance(raw, Relation) else Relation.model_validate(raw)
                validate_entity_name(relation.from_)
            except (ValidationError, InvalidEntityNameError) as e:
                result.errors.append(ItemError(item=label, kind="invalid", message=str(e)))
                continue

            async with self._lock(relation.from_):
                try:
                    entity = await self._require(relation.from_)

                    link = relation.as_link()
                    if link in entity.relations:
                        result.skipped.append(relation)
                        continue

                    entity.relations.append(link)
                    entity.updated = utcnow()
                    await self._save(entity)
                    result.created.append(relation)
                    logger.info(f"Created relation {relation.describe()}")
                except (EntityNotFoundError, ParseFailureError, OSError) as e:
                    result.errors.append(_item_error(relation.describe(), e))

        return result

    # ============================================
    # Update
    # ============================================

    async def add_observations(self, updates: list[ObservationUpdate | dict]) -> AddObservationsResult:
        """
        Append observations not already present verbatim.

        An entity is only rewritten (and its `updated` bumped) when at
        least one observation was actually added.
        """
        result = AddObservationsResult()

        for raw in updates:
            label = _item_label(raw, "entityName")
            try:
                update = raw if isinstance(raw, ObservationUpdate) else ObservationUpdate.model_validate(raw)
                validate_entity_name(update.entity_name)
            except (ValidationError, InvalidEntityNameError) as e:
                result.errors.append(ItemError(item=label, kind="invalid", message=str(e)))
                continue

            async with self._lock(update.entity_name):
                try:
                    entity = await self._require(update.entity_name)

                    added = []
                    for content in update.contents:
                        observation = normalize_observation(content)
                        if observation and observation not in entity.observations:
                            entity.observations.append(observation)
                            added.append(observation)

                    if added:
                        entity.updated = utcnow()
                        await self._save(entity)
                        logger.info(f"Added {len(added)} observations to {entity.name}")

                    result.results.append(AddedObservations(
                        entity_name=update.entity_name,
                        added_observations=added,
                    ))
                except (EntityNotFoundError, ParseFailureError, OSError) as e:
                    result.errors.append(_item_error(update.entity_name, e))

        return result

    # ============================================
    # Delete
    # ============================================

    async def delete_entities(self, names: list[str]) -> DeleteEntitiesResult:
        """
        Delete entity files and prune relations that target them.

        Names with no file are reported in `missing`; deleting is
        idempotent.
        """
        result = DeleteEntitiesResult()

        for name in names:
            try:
                path = self.entity_path(name)
            except InvalidEntityNameError as e:
                result.errors.append(ItemError(item=str(name), kind="invalid", message=str(e)))
                continue

            async with self._lock(name):
                try:
                    await asyncio.to_thread(path.unlink)
                    result.deleted.append(name)
                    logger.info(f"Deleted entity {name}")
                except FileNotFoundError:
                    result.missing.append(name)
                except OSError as e:
                    result.errors.append(_item_error(name, e))

        if result.deleted:
            result.relations_pruned = await self._prune_relations_to(set(result.deleted), result.errors)

        return result

    async def _prune_relations_to(self, targets: set[str], errors: list[ItemError]) -> int:
        """Remove relations pointing at any of `targets` from all entities."""
        pruned = 0
        for name in await self._entity_names():
            async with self._lock(name):
                try:
                    entity = await self._load(name)
                    if entity is None:
                        continue
                    kept = [link for link in entity.relations if link.target not in targets]
                    if len(kept) == len(entity.relations):
                        continue
                    pruned += len(entity.relations) - len(kept)
                    entity.relations = kept
                    entity.updated = utcnow()
                    await self._save(entity)
                except (ParseFailureError, OSError) as e:
                    errors.append(_item_error(name, e))

        if pruned:
            logger.info(f"Pruned {pruned} relations to deleted entities")
        return pruned

    async def delete_observations(self, deletions: list[ObservationDeletion | dict]) -> DeleteObservationsResult:
        """Remove exact observation matches. Unknown entities and strings are ignored."""
        result = DeleteObservationsResult()

        for raw in deletions:
            label = _item_label(raw, "entityName")
            try:
                deletion = raw if isinstance(raw, ObservationDeletion) else ObservationDeletion.model_validate(raw)
                validate_entity_name(deletion.entity_name)
            except (ValidationError, InvalidEntityNameError) as e:
                result.errors.append(ItemError(item=label, kind="invalid", message=str(e)))
                continue

            async with self._lock(deletion.entity_name):
                try:
                    entity = await self._load(deletion.entity_name)
                    if entity is None:
                        continue

                    doomed = {normalize_observation(obs) for obs in deletion.observations}
                    kept = [obs for obs in entity.observations if obs not in doomed]
                    if len(kept) == len(entity.observations):
                        continue

                    result.removed += len(entity.observations) - len(kept)
                    entity.observations = kept
                    entity.updated = utcnow()
                    await self._save(entity)
                except (ParseFailureError, OSError) as e:
                    result.errors.append(_item_error(deletion.entity_name, e))

        return result

    async def delete_relations(self, relations: list[Relation | dict]) -> DeleteRelationsResult:
        """Remove exact (from, to, relationType) matches."""
        result = DeleteRelationsResult()

        for raw in relations:
            label = _item_label(raw, "from")
            try:
                relation = raw if isinstance(raw, Relation) else Relation.model_validate(raw)
                validate_entity_name(relation.from_)
            except (ValidationError, InvalidEntityNameError) as e:
                result.errors.append(ItemError(item=label, kind="invalid", message=str(e)))
                continue

            async with self._lock(relation.from_):
                try:
                    entity = await self._load(relation.from_)
                    if entity is None:
                        continue

                    link = relation.as_link()
                    kept = [existing for existing in entity.relations if existing != link]
                    if len(kept) == len(entity.relations):
                        continue

                    result.removed += len(entity.relations) - len(kept)
                    entity.relations = kept
                    entity.updated = utcnow()
                    await self._save(entity)
                except (ParseFailureError, OSError) as e:
                    result.errors.append(_item_error(relation.describe(), e))

        return result

    # ============================================
    # Read / Query
    # ============================================

    async def read_graph(self) -> KnowledgeGraph:
        """Return every entity with its observations and relations."""
        entities = await self._load_many(await self._entity_names())
        return KnowledgeGraph.from_entities(entities)

    async def search_nodes(self, query: str) -> KnowledgeGraph:
        """
        Case-insensitive substring search over names, types and observations.

        Matched entities keep their full relation lists, including links
        to entities outside the result set.
        """
        needle = query.lower()
        graph = await self.read_graph()
        matches = [
            entity
            for entity in graph.entities
            if needle in entity.name.lower()
            or needle in entity.entity_type.lower()
            or any(needle in obs.lower() for obs in entity.observations)
        ]
        return KnowledgeGraph.from_entities(matches)

    async def open_nodes(self, names: list[str]) -> KnowledgeGraph:
        """Return the named entities; unknown names are left out."""
        wanted = []
        for name in names:
            if name in wanted:
                continue
            try:
                validate_entity_name(name)
            except InvalidEntityNameError:
                continue
            wanted.append(name)
        return KnowledgeGraph.from_entities(await self._load_many(wanted))

    async def get_all_nodes(self) -> list[EntityNode]:
        """Every entity plus its rendered markdown body, for UI consumers."""
        entities = await self._load_many(await self._entity_names())
        return [
            EntityNode(**entity.model_dump(by_alias=True), content=render_body(entity))
            for entity in entities
        ]
