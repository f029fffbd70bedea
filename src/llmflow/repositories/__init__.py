"""Persistent implementations of the execution state store."""

from llmflow.repositories.sql import SqlExecutionStore

__all__ = ["SqlExecutionStore"]
