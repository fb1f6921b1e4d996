"""
SBExplorer: Service Bus dead-letter explorer

Locates, resubmits, deletes and purges dead-lettered messages on Service Bus
queues and topic subscriptions.
"""

__version__ = "0.1.0"
__author__ = "SBExplorer Contributors"

from .servicebus.service import ExplorerService

__all__ = ["ExplorerService", "__version__"]
