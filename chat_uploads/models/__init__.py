# Models package for chat-uploads

from .user import User

__all__ = ["User"]
