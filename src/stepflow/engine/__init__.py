"""Engine components.

- Settings loaded from .env
- Structured logging
- A small CLI surface
- JSON-file persistence for workflows and knowledge entries
"""
