"""Durable lap storage: the gateway contract and the bundled SQLite backend."""
