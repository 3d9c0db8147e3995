"""Gateway module: FastAPI service for the automation core."""
