"""
Feature modules.

Each module owns its ORM models (models.py), write-side logic (service.py)
and its blueprints. Tables are registered on app.medblog.models.Base.
"""
