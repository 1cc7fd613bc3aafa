"""Memory domain - a knowledge graph persisted as JSON lines.

Each line of the graph file is one entity or one relation, tagged with a
``type`` field. The whole graph is loaded, updated and rewritten per
operation under a lock.
"""

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from shared.config import MemorySettings
from shared.logging import get_logger
from shared.models import ToolResult
from shared.schema import array_property, create_schema, string_property
from domains.base import BaseDomain
from mcp_server.registry import ToolRegistry

logger = get_logger(__name__)

GRAPH_FILE = "knowledge_graph.jsonl"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Entity(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str
    entity_type: str = Field(alias="entityType")
    observations: list[str] = Field(default_factory=list)
    created_at: str = Field(default_factory=_now, alias="createdAt")
    updated_at: str = Field(default_factory=_now, alias="updatedAt")


class Relation(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    source: str = Field(alias="from")
    target: str = Field(alias="to")
    relation_type: str = Field(alias="relationType")
    created_at: str = Field(default_factory=_now, alias="createdAt")


class KnowledgeGraph(BaseModel):
    entities: dict[str, Entity] = Field(default_factory=dict)
    relations: list[Relation] = Field(default_factory=list)


class MemoryDomain(BaseDomain):
    """
    Memory Domain.

    Provides tools for:
    - Creating entities and the relations between them
    - Searching entities by name or observation
    - Opening entities by name
    """

    name = "memory"

    def __init__(self, settings: MemorySettings) -> None:
        self.settings = settings
        self.storage_path = Path(settings.storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.graph_file = self.storage_path / GRAPH_FILE
        self._lock = threading.Lock()

    # Persistence

    def load_graph(self) -> KnowledgeGraph:
        graph = KnowledgeGraph()
        if not self.graph_file.exists():
            return graph

        with open(self.graph_file, encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                    kind = record.get("type")
                    if kind == "entity":
                        entity = Entity.model_validate(record)
                        graph.entities[entity.name] = entity
                    elif kind == "relation":
                        graph.relations.append(Relation.model_validate(record))
                except (json.JSONDecodeError, ValidationError, AttributeError):
                    logger.warning("Skipping unreadable graph line", line=line.strip()[:200])

        return graph

    def save_graph(self, graph: KnowledgeGraph) -> None:
        temp_file = self.graph_file.with_suffix(".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            for entity in graph.entities.values():
                f.write(json.dumps({"type": "entity", **entity.model_dump(by_alias=True)}) + "\n")
            for relation in graph.relations:
                f.write(json.dumps({"type": "relation", **relation.model_dump(by_alias=True)}) + "\n")
        os.replace(temp_file, self.graph_file)

    # Operations

    async def create_entities(self, entities: list[dict[str, Any]]) -> ToolResult:
        return await self._run("create entities", self._create_entities, entities)

    def _create_entities(self, entities: list[dict[str, Any]]) -> ToolResult:
        with self._lock:
            graph = self.load_graph()
            created = []
            for item in entities:
                entity = Entity.model_validate(item)
                existing = graph.entities.get(entity.name)
                if existing is not None:
                    entity.created_at = existing.created_at
                graph.entities[entity.name] = entity
                created.append(entity.name)
            self.save_graph(graph)

        logger.info("Created entities", count=len(created))
        return ToolResult.success(f"Created {len(created)} entities: {', '.join(created)}")

    async def create_relations(self, relations: list[dict[str, Any]]) -> ToolResult:
        return await self._run("create relations", self._create_relations, relations)

    def _create_relations(self, relations: list[dict[str, Any]]) -> ToolResult:
        with self._lock:
            graph = self.load_graph()
            seen = {(r.source, r.target, r.relation_type) for r in graph.relations}
            new_relations = []
            for item in relations:
                relation = Relation.model_validate(item)
                key = (relation.source, relation.target, relation.relation_type)
                if key in seen:
                    continue
                seen.add(key)
                new_relations.append(relation)
            graph.relations.extend(new_relations)
            self.save_graph(graph)

        logger.info("Created relations", count=len(new_relations))
        return ToolResult.success(f"Created {len(new_relations)} relations")

    async def search_nodes(self, query: str) -> ToolResult:
        return await self._run("search nodes", self._search_nodes, query)

    def _search_nodes(self, query: str) -> ToolResult:
        with self._lock:
            graph = self.load_graph()

        needle = query.lower()
        matches = [
            entity for entity in graph.entities.values()
            if needle in entity.name.lower()
            or any(needle in obs.lower() for obs in entity.observations)
        ]
        names = {entity.name for entity in matches}
        relations = [r for r in graph.relations if r.source in names or r.target in names]

        lines = [f"Found {len(matches)} matching entities:"]
        for entity in matches:
            lines.append(f"\n- {entity.name} ({entity.entity_type})")
            lines.extend(f"  * {obs}" for obs in entity.observations)

        if relations:
            lines.append(f"\nRelevant relations ({len(relations)}):")
            lines.extend(f"  {r.source} --[{r.relation_type}]--> {r.target}" for r in relations)

        logger.info("Searched nodes", query=query, matches=len(matches))
        return ToolResult.success("\n".join(lines))

    async def open_nodes(self, names: list[str]) -> ToolResult:
        return await self._run("open nodes", self._open_nodes, names)

    def _open_nodes(self, names: list[str]) -> ToolResult:
        with self._lock:
            graph = self.load_graph()

        entities = [graph.entities[name] for name in names if name in graph.entities]
        if not entities:
            return ToolResult.error("No entities found with the specified names")

        lines = [f"Found {len(entities)} entities:"]
        for entity in entities:
            lines.append(f"\n{entity.name} ({entity.entity_type})")
            lines.append(f"Created: {entity.created_at}")
            lines.append("Observations:")
            lines.extend(f"  - {obs}" for obs in entity.observations)

        return ToolResult.success("\n".join(lines))

    # Registration

    def register(self, registry: ToolRegistry) -> None:
        async def create_entities(args: dict) -> ToolResult:
            return await self.create_entities(args["entities"])

        async def create_relations(args: dict) -> ToolResult:
            return await self.create_relations(args["relations"])

        async def search_nodes(args: dict) -> ToolResult:
            return await self.search_nodes(args["query"])

        async def open_nodes(args: dict) -> ToolResult:
            return await self.open_nodes(args["names"])

        entity_schema = create_schema(
            {
                "name": string_property("Entity name"),
                "entityType": string_property("Entity type"),
                "observations": array_property("Facts about the entity", {"type": "string"}),
            },
            required=["name", "entityType"],
        )
        relation_schema = create_schema(
            {
                "from": string_property("Source entity name"),
                "to": string_property("Target entity name"),
                "relationType": string_property("Relation type, in active voice"),
            },
            required=["from", "to", "relationType"],
        )

        registry.register(
            name="createEntities",
            description="Create entities in the knowledge graph",
            input_schema=create_schema(
                {"entities": array_property("Entities to create", entity_schema)},
                required=["entities"],
            ),
            handler=create_entities,
        )
        registry.register(
            name="createRelations",
            description="Create relations between entities in the knowledge graph",
            input_schema=create_schema(
                {"relations": array_property("Relations to create", relation_schema)},
                required=["relations"],
            ),
            handler=create_relations,
        )
        registry.register(
            name="searchNodes",
            description="Search entities by name or observation content",
            input_schema=create_schema(
                {"query": string_property("Case-insensitive search text")},
                required=["query"],
            ),
            handler=search_nodes,
        )
        registry.register(
            name="openNodes",
            description="Open entities by name",
            input_schema=create_schema(
                {"names": array_property("Entity names", {"type": "string"})},
                required=["names"],
            ),
            handler=open_nodes,
        )

        logger.info("Memory domain registered", tool_count=4)


def register_memory_domain(registry: ToolRegistry, settings: MemorySettings) -> MemoryDomain:
    """Create the memory domain and register its tools."""
    domain = MemoryDomain(settings)
    domain.register(registry)
    return domain
