"""
Conduit - capability routing across AI providers and a durable task queue.

Package structure:
- core: config, logging, errors, shared typing
- providers: provider adapters, registry, pricing, rate limits
- routing: routing policy and capability router with fallback
- usage: append-only usage ledger
- storage: SQLite persistence backend
- tasks: task store, dispatcher, handler registry
"""

__version__ = "0.1.0"
