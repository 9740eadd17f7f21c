"""
backend — FastAPI application package.

Routers: api/analyze.py, api/health.py
Intake:  intake.py (upload validation + staging)
Schemas: schemas/response.py
Entry point: main.py → run with `python -m backend.main`
"""
