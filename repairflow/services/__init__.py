"""Services package: all business logic lives here, never in routers.

Files:
  estimates.py       EstimateWorkflow facade (every public operation)
  conflicts.py       per-estimate serialisation + version check
  broadcast.py       fan-out of one request to several shops
  reminders.py       expiry reminder scheduling and dispatch
  resolution.py      AI conflict-resolution suggestions
  openai_service.py  OpenAI damage assessment / resolution advice
  notifier.py        event delivery
  dependencies.py    timeout + error wrapping for collaborator calls
  latency.py         slow-operation observation

Rule: routers call services, services call repositories, repositories call the DB.
      No SQLAlchemy queries in routers. No FastAPI imports in services.
"""
