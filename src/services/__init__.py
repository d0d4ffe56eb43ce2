"""Business logic services: identity resolution, event processing, context building.

Handlers build these with explicit dependencies; nothing here holds a
module-level connection.
"""
