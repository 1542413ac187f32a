"""Web server route blueprints.

This package contains Flask blueprints for organizing routes by feature area.
"""

from .monitoring import monitoring_bp

__all__ = ['monitoring_bp']
