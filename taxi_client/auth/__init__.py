"""
Authentication package for the Taxi Manager client.

This package contains credential storage, the token endpoint exchanges,
the request authenticator and the coordinator that refreshes expired
access tokens and replays the requests that were rejected.
"""
