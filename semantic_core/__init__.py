"""
Semantic Retrieval Core

Schema introspection, business-entity resolution, knowledge graph materialization
and multi-backend retrieval over a relational store.
"""

__version__ = "1.0.0"
__author__ = "Semantic Core Team"
