"""Role model"""

from sqlalchemy import Column, Integer, String
from sqlalchemy.orm import relationship
from authcore.core.database import Base


ADMIN = "Admin"
USER = "User"


class Role(Base):
    """Name-keyed role; created lazily and never duplicated"""

    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)

    accounts = relationship("Account", back_populates="role")

    def __repr__(self):
        return f"<Role(id={self.id}, name='{self.name}')>"
