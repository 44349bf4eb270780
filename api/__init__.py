"""ARCHGRAPH API - Starlette HTTP surface (see api.routes)."""
