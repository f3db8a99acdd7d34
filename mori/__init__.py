"""
Mori — headless client core for a variant-list game protocol.

Decodes server-pushed function calls, keeps the session model up to date and
exposes it to Lua automation scripts.
"""

__version__ = "0.3.0"
