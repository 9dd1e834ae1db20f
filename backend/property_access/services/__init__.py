"""Property services: store adapter, access engine, application layer."""
