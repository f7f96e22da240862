"""Daily check-in call backend (FastAPI application and services)."""
