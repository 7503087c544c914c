"""HTTP clients for FastEditor and the Shopify Admin API."""

from fesync.clients.fasteditor import FastEditorClient, FastEditorCredentials
from fesync.clients.shopify import ShopifyClient

__all__ = ["FastEditorClient", "FastEditorCredentials", "ShopifyClient"]
