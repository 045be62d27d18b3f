"""HTTP API: FastAPI application, request gate and routes."""
