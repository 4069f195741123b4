"""FastAPI routers and middleware."""
