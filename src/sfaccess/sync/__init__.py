from .base import ResourceSyncer, SyncPage, iter_pages
from .connector import SalesforceConnector, new_connector

__all__ = ["ResourceSyncer", "SalesforceConnector", "SyncPage", "iter_pages", "new_connector"]
