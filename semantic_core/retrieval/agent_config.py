"""
Sources of per-agent data source and retrieval configuration.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column, MetaData, String, Table, select
from sqlalchemy.engine import Engine

from .models import AgentDataSource, RetrievalConfig

logger = logging.getLogger(__name__)

metadata = MetaData()

agent_data_sources = Table(
    "agent_data_sources",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("agent_id", String(64), nullable=False, index=True),
    Column("source_type", String(50), nullable=False),
    Column("source_name", String(200), nullable=False),
    Column("source_config", JSON),
    Column("embedding_table", String(100)),
    Column("retrieval_config", JSON),
)


class AgentConfigSource(ABC):
    """Looks up the data sources attached to an agent."""

    @abstractmethod
    def get_data_sources(self, agent_id: str) -> List[AgentDataSource]:
        pass


class StaticAgentConfigSource(AgentConfigSource):
    """Agent data sources declared in the YAML configuration."""

    def __init__(self, agents: Dict[str, List[Dict[str, Any]]], defaults: Optional[RetrievalConfig] = None):
        self.sources: Dict[str, List[AgentDataSource]] = {}
        for agent_id, records in (agents or {}).items():
            self.sources[str(agent_id)] = [
                AgentDataSource.from_dict(dict(record, agent_id=agent_id), defaults)
                for record in records
            ]

    def get_data_sources(self, agent_id: str) -> List[AgentDataSource]:
        return list(self.sources.get(str(agent_id), []))


class SQLAgentConfigSource(AgentConfigSource):
    """Agent data sources stored in the ``agent_data_sources`` table."""

    def __init__(self, engine: Engine, defaults: Optional[RetrievalConfig] = None):
        self.engine = engine
        self.defaults = defaults

    def create_tables(self):
        metadata.create_all(self.engine)

    def get_data_sources(self, agent_id: str) -> List[AgentDataSource]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(agent_data_sources)
                .where(agent_data_sources.c.agent_id == str(agent_id))
                .order_by(agent_data_sources.c.id)
            ).mappings().all()

        sources = [AgentDataSource.from_dict(dict(row), self.defaults) for row in rows]
        logger.debug(f"Loaded {len(sources)} data sources for agent {agent_id}")
        return sources
