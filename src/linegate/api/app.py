"""ASGI entry point: uvicorn linegate.api.app:app"""

from .factory import create_app

app = create_app()
