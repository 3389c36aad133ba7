"""
Orchestra - Core Package
========================

Configuration, database, models, schemas and the orchestration core.
"""
