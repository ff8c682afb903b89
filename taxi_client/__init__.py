"""
Taxi Manager client.

Authenticated asyncio HTTP client for the taxi-fleet back office, with
transparent access token refresh, persistent credential storage and a
command-line front end.
"""

__version__ = "1.0.0"
