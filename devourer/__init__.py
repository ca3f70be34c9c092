"""Devourer core package.

Modules:
- walker / classifier / titles: filesystem discovery and filename heuristics
- archive: zip, RAR and 7-zip member access behind one interface
- thumbnails: preview generation
- metadata: series lookup against the Jikan API
- catalog / scanner: catalog synchronization and the background scan
- streaming: on-demand delivery and repackaging of issues
- api: FastAPI app and routing
- config: INI parsing and config object
"""
