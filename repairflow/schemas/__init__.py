"""Pydantic schemas package.

Folder intent:
  common.py     CamelModel base + HealthResponse (all schemas inherit CamelModel)
  estimate.py   Workflow commands (validated before any tier check) and response models
"""
