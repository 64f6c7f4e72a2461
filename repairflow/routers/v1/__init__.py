"""v1 router package: all /api/v1/* endpoints live here.

Files:
  estimates.py  Estimate workflow routes (/api/v1/estimates/*)

Rule: Routers only handle HTTP (request parsing, response shaping).
      All business logic delegates to repairflow/services/.
"""
