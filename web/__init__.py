"""Web application package for impostor monitoring.

Provides the Flask app in web_server.py. Run with:
    python -m web.web_server
"""

__all__ = ["web_server"]
