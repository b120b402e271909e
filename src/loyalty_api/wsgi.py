"""
WSGI entry point for production servers (``loyalty_api.wsgi:app``).
"""

from loyalty_api.app import create_app

app = create_app()
