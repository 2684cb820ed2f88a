"""User model - back-office staff with email/password authentication."""
from sqlalchemy import Column, String, DateTime, Enum
from sqlalchemy.sql import func
from werkzeug.security import generate_password_hash, check_password_hash
from backoffice.database import Base, BigIntegerPK
import enum


class UserRole(enum.Enum):
    """Access role."""
    ADMIN = "ADMIN"
    USER = "USER"


class User(Base):
    """Back-office user."""

    __tablename__ = 'app_user'

    id = Column(BigIntegerPK, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False, unique=True)
    role = Column(Enum(UserRole, name='user_role'), nullable=False, default=UserRole.USER)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    def set_password(self, password):
        """Set password hash."""
        self.password_hash = generate_password_hash(password, method='scrypt')

    def check_password(self, password):
        """Check password against hash."""
        if not self.password_hash:
            return False
        return check_password_hash(self.password_hash, password)

    @property
    def is_admin(self):
        return self.role == UserRole.ADMIN

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role.value,
        }

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role={self.role.value})>"
