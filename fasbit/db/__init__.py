from .base import Base
from .models import media_file, message

__all__ = ["Base", "media_file", "message"]
