#!/usr/bin/env python3
"""
Semantic Core - schema catalog, entity resolution, knowledge graph and unified retrieval
"""

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from sqlalchemy import create_engine

from semantic_core.catalog import SchemaCatalog
from semantic_core.config import load_config as read_config, load_env_file
from semantic_core.errors import SemanticCoreError
from semantic_core.kg import GraphStore, KnowledgeGraphBuilder
from semantic_core.models import EmbeddingManager
from semantic_core.retrieval import (
    RetrievalConfig,
    SearchMode,
    SearchRequest,
    SQLAgentConfigSource,
    SQLIndexBackend,
    StaticAgentConfigSource,
    StructuredQueryRequest,
    UnifiedRetriever,
)
from semantic_core.semantic import EntityResolver, SQLEntitySource, StaticEntitySource

# Setup logger
logger = logging.getLogger(__name__)


def load_config(config_path: str = "config/config.yaml") -> dict:
    """Load configuration from YAML file."""
    try:
        return read_config(config_path)
    except FileNotFoundError:
        print(f"❌ Configuration file not found: {config_path}")
        sys.exit(1)
    except yaml.YAMLError as e:
        print(f"❌ Error parsing configuration file: {e}")
        sys.exit(1)


def setup_logging(config: dict, debug: bool = False):
    """Setup logging configuration."""
    log_config = config.get("logging", {})
    log_level = logging.DEBUG if debug else getattr(logging, log_config.get("level", "INFO"))
    log_format = log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    # Create logs directory if it doesn't exist
    log_file = log_config.get("file", "logs/semantic_core.log")
    Path(log_file).parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )


class SemanticCoreSystem:
    """Wires the catalog, resolver, graph builder and retriever from configuration."""

    def __init__(self, config: dict):
        self.config = config
        self.console = Console()

        db_config = config.get("database", {})
        self.engine = create_engine(db_config.get("url", "sqlite:///data/semantic_core.db"), future=True)

        catalog_config = dict(config.get("catalog", {}), schema=db_config.get("schema"))
        self.catalog = SchemaCatalog(catalog_config, self.engine)

        semantic_config = config.get("semantic", {})
        if semantic_config.get("source", "static") == "sql":
            self.entity_source = SQLEntitySource(self.engine)
        else:
            self.entity_source = StaticEntitySource(semantic_config.get("entities", []))
        self.resolver = EntityResolver(semantic_config, self.entity_source, self.catalog)

        self._embedding_manager = None
        self._builder = None
        self._retriever = None

    @property
    def embedding_manager(self) -> Optional[EmbeddingManager]:
        if self._embedding_manager is None:
            try:
                self._embedding_manager = EmbeddingManager(self.config.get("embeddings", {}))
            except Exception as e:
                logger.warning(f"Failed to initialize embedding manager: {e}")
        return self._embedding_manager

    @property
    def builder(self) -> KnowledgeGraphBuilder:
        if self._builder is None:
            kg_config = self.config.get("kg", {})
            if kg_config.get("backend", "json") == "neo4j":
                from semantic_core.kg.neo4j_graph_store import Neo4jGraphStore
                store = Neo4jGraphStore(kg_config.get("neo4j", {}))
            else:
                store = GraphStore(Path(kg_config.get("storage_path", "data/kg")))
            self._builder = KnowledgeGraphBuilder(
                kg_config, self.catalog, self.resolver, store, self.embedding_manager
            )
        return self._builder

    @property
    def retriever(self) -> UnifiedRetriever:
        if self._retriever is None:
            retrieval_config = self.config.get("retrieval", {})
            defaults = RetrievalConfig.from_dict(retrieval_config.get("defaults"))

            backends = {"postgres": SQLIndexBackend(retrieval_config, self.engine)}
            pinecone_config = retrieval_config.get("pinecone")
            if pinecone_config:
                try:
                    from semantic_core.retrieval.pinecone_backend import PineconeBackend
                    backends["external"] = PineconeBackend(pinecone_config, self.embedding_manager)
                    logger.info("Pinecone backend initialized")
                except Exception as e:
                    logger.warning(f"Failed to initialize Pinecone backend: {e}")

            if retrieval_config.get("agent_source", "static") == "sql":
                agent_source = SQLAgentConfigSource(self.engine, defaults)
            else:
                agent_source = StaticAgentConfigSource(retrieval_config.get("agents", {}), defaults)

            self._retriever = UnifiedRetriever(
                retrieval_config,
                backends,
                agent_source=agent_source,
                resolver=self.resolver,
                embedding_manager=self.embedding_manager,
                engine=self.engine,
            )
        return self._retriever

    def init_db(self):
        """Create the entity, alias, agent and chunk tables."""
        SQLEntitySource(self.engine).create_tables()
        SQLAgentConfigSource(self.engine).create_tables()
        SQLIndexBackend(self.config.get("retrieval", {}), self.engine).create_tables()
        self.catalog.clear_cache()

    def show_schema(self, table_name: Optional[str] = None):
        if table_name:
            table = self.catalog.get_table(table_name)
            if table is None:
                self.console.print(f"[yellow]Table not found: {table_name}[/yellow]")
                return
            columns = Table(title=f"Table {table.name}")
            columns.add_column("Column", style="cyan")
            columns.add_column("Type", style="white")
            columns.add_column("Nullable", style="dim")
            columns.add_column("PK", style="green")
            columns.add_column("References", style="magenta")
            for col in table.columns:
                ref = f"{col.foreign_key.table}.{col.foreign_key.column}" if col.foreign_key else ""
                columns.add_row(col.name, col.data_type, str(col.nullable), "✅" if col.is_primary_key else "", ref)
            self.console.print(columns)
            return

        schema = self.catalog.get_schema()
        tables = Table(title="Schema")
        tables.add_column("Table", style="cyan")
        tables.add_column("Columns", style="white")
        tables.add_column("Primary Key", style="green")
        for table in schema.tables.values():
            tables.add_row(table.name, str(len(table.columns)), ", ".join(table.primary_key))
        self.console.print(tables)

        rels = Table(title="Relationships")
        rels.add_column("From", style="cyan")
        rels.add_column("To", style="magenta")
        rels.add_column("Type", style="white")
        for rel in schema.relationships:
            rels.add_row(f"{rel.from_table}.{rel.from_column}", f"{rel.to_table}.{rel.to_column}",
                         rel.relationship_type.value)
        self.console.print(rels)

    def show_catalog(self):
        table = Table(title="Catalog")
        table.add_column("Table", style="cyan")
        table.add_column("Rows", style="white")
        table.add_column("Columns", style="white")
        table.add_column("References", style="magenta")
        table.add_column("Referenced By", style="blue")
        for entry in self.catalog.get_catalog():
            table.add_row(
                entry.table_name,
                str(entry.row_count),
                str(entry.column_count),
                ", ".join(sorted({r.to_table for r in entry.foreign_keys})),
                ", ".join(sorted({r.from_table for r in entry.referenced_by})),
            )
        self.console.print(table)

    def show_join_path(self, from_table: str, to_table: str):
        path = self.catalog.get_join_path(from_table, to_table)
        if path is None:
            self.console.print(f"[yellow]No join path between {from_table} and {to_table}[/yellow]")
            return
        if not path:
            self.console.print(f"[green]{from_table} and {to_table} are the same table (zero hops)[/green]")
            return
        hops = "\n".join(
            f"{i + 1}. {hop.from_table}.{hop.from_column} → {hop.to_table}.{hop.to_column}"
            for i, hop in enumerate(path)
        )
        self.console.print(Panel(hops, title=f"[bold blue]{from_table} → {to_table}[/bold blue]", border_style="blue"))
        sql = self.catalog.generate_join_query([from_table, to_table])
        if sql:
            self.console.print(Panel(sql, title="Join Query", border_style="dim"))

    def show_entities(self):
        table = Table(title="Semantic Entities")
        table.add_column("Name", style="cyan")
        table.add_column("Display Name", style="white")
        table.add_column("Table", style="green")
        table.add_column("Aliases", style="magenta")
        table.add_column("Related", style="blue")
        for entity in self.resolver.get_all_entities():
            related = [e.name for e in self.resolver.get_related(entity.name)]
            table.add_row(entity.name, entity.display_name, entity.source_table,
                          ", ".join(entity.aliases), ", ".join(related))
        self.console.print(table)

    def show_extraction(self, query: str):
        resolved = self.resolver.extract_entities(query)
        if not resolved:
            self.console.print("[yellow]No entities found in query[/yellow]")
            return
        table = Table(title="Resolved Entities")
        table.add_column("Entity", style="cyan")
        table.add_column("Matched", style="white")
        table.add_column("Confidence", style="green")
        table.add_column("Match", style="magenta")
        for item in resolved:
            table.add_row(item.entity.name, item.matched_alias, f"{item.confidence:.2f}", item.match_type.value)
        self.console.print(table)

    async def build_graph(self, generate_embeddings: bool = False):
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console
        ) as progress:
            task = progress.add_task("Building knowledge graph...", total=None)
            result = await self.builder.build(generate_embeddings=generate_embeddings)
            progress.update(task, description="Knowledge graph build complete")

        outcomes = Table(title="Entity Outcomes")
        outcomes.add_column("Entity", style="cyan")
        outcomes.add_column("Status", style="green")
        outcomes.add_column("Nodes", style="white")
        outcomes.add_column("Reason", style="dim")
        for outcome in result.outcomes:
            status = "✅ Success" if outcome.status.value == "success" else "⚠️ Skipped"
            outcomes.add_row(outcome.entity, status, str(outcome.node_count), outcome.reason or "")
        self.console.print(outcomes)
        self.display_stats(result.stats)
        self.console.print(f"[dim]Built in {result.duration_seconds:.2f}s, {result.dropped_edges} edges dropped[/dim]")

    def display_stats(self, stats):
        table = Table(title="Knowledge Graph Statistics")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="white")
        table.add_row("Total Nodes", str(stats.total_nodes))
        table.add_row("Total Edges", str(stats.total_edges))
        table.add_row("Avg Connections", f"{stats.avg_connections:.2f}")
        table.add_row("Built At", stats.built_at or "never")
        for node_type, count in sorted(stats.nodes_by_type.items()):
            table.add_row(f"Nodes: {node_type}", str(count))
        for edge_type, count in sorted(stats.edges_by_type.items()):
            table.add_row(f"Edges: {edge_type}", str(count))
        self.console.print(table)

    async def search(self, request: SearchRequest):
        response = await self.retriever.search_with_status(request)

        if response.entities:
            names = ", ".join(f"{r.entity.name} ({r.confidence:.2f})" for r in response.entities)
            self.console.print(f"[blue]Entities:[/blue] {names}")
        if response.degraded:
            self.console.print(f"[yellow]Degraded backends: {', '.join(response.degraded_backends)}[/yellow]")

        table = Table(title=f"Search Results ({response.mode.value})")
        table.add_column("Score", style="green")
        table.add_column("Source", style="magenta")
        table.add_column("Id", style="cyan")
        table.add_column("Content", style="white")
        for result in response.results:
            content = result.content if len(result.content) <= 120 else result.content[:117] + "..."
            table.add_row(f"{result.score:.3f}", result.source, result.id, content)
        self.console.print(table)

    async def query(self, request: StructuredQueryRequest):
        result = await self.retriever.query_structured_data(request)
        table = Table(title=f"{result.row_count} rows")
        for column in result.columns:
            table.add_column(column)
        for row in result.rows:
            table.add_row(*[json.dumps(row[c], default=str) if not isinstance(row[c], str) else row[c]
                            for c in result.columns])
        self.console.print(table)


def run(ctx, action):
    """Run an action against the system and report core errors."""
    system = SemanticCoreSystem(ctx.obj["config"])
    try:
        outcome = action(system)
        if asyncio.iscoroutine(outcome):
            asyncio.run(outcome)
    except SemanticCoreError as e:
        system.console.print(f"[red]❌ {type(e).__name__}: {e}[/red]")
        sys.exit(1)


@click.group()
@click.option("--config", "config_path", default="config/config.yaml", help="Path to configuration file")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx, config_path: str, debug: bool):
    """Semantic Core - schema, entities, knowledge graph and retrieval."""
    load_env_file()
    config = load_config(config_path)
    setup_logging(config, debug=debug)
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command("init-db")
@click.pass_context
def init_db(ctx):
    """Create the entity, alias, agent and chunk tables."""
    run(ctx, lambda system: system.init_db())
    click.echo("✅ Tables created")


@cli.command()
@click.option("--table", "table_name", default=None, help="Show a single table")
@click.pass_context
def schema(ctx, table_name: Optional[str]):
    """Show the introspected schema."""
    run(ctx, lambda system: system.show_schema(table_name))


@cli.command()
@click.pass_context
def catalog(ctx):
    """Show every table with row counts and references."""
    run(ctx, lambda system: system.show_catalog())


@cli.command("join-path")
@click.argument("from_table")
@click.argument("to_table")
@click.pass_context
def join_path(ctx, from_table: str, to_table: str):
    """Find the shortest join path between two tables."""
    run(ctx, lambda system: system.show_join_path(from_table, to_table))


@cli.command()
@click.pass_context
def entities(ctx):
    """List semantic entities."""
    run(ctx, lambda system: system.show_entities())


@cli.command()
@click.argument("query")
@click.pass_context
def extract(ctx, query: str):
    """Extract entities mentioned in a query."""
    run(ctx, lambda system: system.show_extraction(query))


@cli.command("build-graph")
@click.option("--embeddings", is_flag=True, help="Generate node embeddings")
@click.pass_context
def build_graph(ctx, embeddings: bool):
    """Rebuild the knowledge graph."""
    run(ctx, lambda system: system.build_graph(generate_embeddings=embeddings))


@cli.command("graph-stats")
@click.pass_context
def graph_stats(ctx):
    """Show stats of the stored knowledge graph."""
    run(ctx, lambda system: system.display_stats(system.builder.get_stats()))


@cli.command()
@click.argument("query")
@click.option("--agent", "agent_id", default=None, help="Agent id")
@click.option("--source", "data_source_id", default=None, help="Data source id")
@click.option("--mode", type=click.Choice([m.value for m in SearchMode]), default=None, help="Search mode")
@click.option("--limit", default=10, type=int, help="Maximum number of results")
@click.pass_context
def search(ctx, query: str, agent_id: Optional[str], data_source_id: Optional[str], mode: Optional[str], limit: int):
    """Search across the configured backends."""
    request = SearchRequest(
        query=query,
        agent_id=agent_id,
        data_source_id=data_source_id,
        mode=SearchMode(mode) if mode else None,
        limit=limit,
    )
    run(ctx, lambda system: system.search(request))


@cli.command()
@click.argument("sql")
@click.option("--agent", "agent_id", default=None, help="Agent id")
@click.option("--source", "data_source_id", default=None, help="Data source id")
@click.pass_context
def query(ctx, sql: str, agent_id: Optional[str], data_source_id: Optional[str]):
    """Run a read-only SELECT."""
    request = StructuredQueryRequest(query=sql, agent_id=agent_id, data_source_id=data_source_id)
    run(ctx, lambda system: system.query(request))


if __name__ == "__main__":
    cli()
