"""
Org-chart Backend - the FlowManager facade, the local FastAPI service and
its command-line client.
"""

from .flow_manager import FlowManager

__all__ = ["FlowManager"]
