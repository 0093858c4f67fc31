# chat_uploads/models/user.py
from typing import Optional

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from chat_uploads.db import Base


class User(Base):
    # alleen de kolommen die de upload pipeline aanraakt; de rest beheert de user service
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    avatar_url: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
