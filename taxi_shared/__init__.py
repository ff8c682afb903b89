"""
Shared building blocks for the Taxi Manager client.

This package contains the data models, abstract interfaces, exception
hierarchy and logging configuration used by the client package.
"""
