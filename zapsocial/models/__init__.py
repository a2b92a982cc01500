"""
SQLAlchemy models package.
"""
from zapsocial.models.user import User
from zapsocial.models.integration import Integration
from zapsocial.models.api_log import ApiLog

__all__ = ["User", "Integration", "ApiLog"]
