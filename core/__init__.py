"""
Core module for the remote browser session broker.

This package contains session configuration, capability building, the
session repository and the broker that ties them to protocol adapters.

Submodules:
    config: Process settings (``BrokerSettings``) and per-session options
        (``SessionConfig``, ``StealthConfig``) via Pydantic.
    capabilities: Capability document and endpoint builder, credentials,
        tunnel resolver protocol.
    repository: ``Session`` records and the ``SessionRepository``.
    broker: ``SessionBroker`` orchestrating create/connect/release.
    errors: Typed error kinds carrying the session id.
    logging_setup: Compressed rotating file + safe console logging.
    utils: Corruption-safe JSON read/atomic write helpers.
"""
