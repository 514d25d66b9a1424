"""HTTP registry: FastAPI service, SQL-backed store and client."""
