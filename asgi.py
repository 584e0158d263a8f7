"""
asgi.py -- Application assembly for the auth service.

Reads configuration from the environment once, installs logging, and builds
the app. api/main.py itself never reads the environment on import.

Run with:  uvicorn asgi:app --reload
"""

from api.main import configure_logging, create_app
from core.config import load_settings

settings = load_settings()
configure_logging(settings)
app = create_app(settings)
