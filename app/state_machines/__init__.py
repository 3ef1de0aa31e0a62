"""
State machine infrastructure for multi-step flows.

This package provides the CAS ingestion flow: upload, parse and delete of a
client's Consolidated Account Statement.
"""

from .base import FlowMachine
from .cas_flow import CasFlowMachine

__all__ = ["FlowMachine", "CasFlowMachine"]
