"""FastAPI application for BoardRelay."""
