from datetime import datetime
from werkzeug.security import generate_password_hash, check_password_hash
from flask_login import UserMixin
from ..extensions import db, login_manager


class Permission:
    DEVICES_MANAGE = "devices.manage"
    CONFIG_MANAGE = "config.manage"

    ALL = [DEVICES_MANAGE, CONFIG_MANAGE]


class Role:
    ADMIN = "admin"
    OPERATOR = "operator"
    VIEWER = "viewer"

    PERMISSIONS = {
        ADMIN: set(Permission.ALL),
        OPERATOR: {Permission.DEVICES_MANAGE, Permission.CONFIG_MANAGE},
        VIEWER: set(),
    }


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(User, int(user_id))


class User(db.Model, UserMixin):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)

    role = db.Column(db.String(32), nullable=False, default=Role.VIEWER)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    password_hash = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def has_permission(self, permission: str) -> bool:
        if not self.is_active:
            return False
        return permission in Role.PERMISSIONS.get(self.role, set())

    def set_password(self, password: str) -> None:
        self.password_hash = generate_password_hash(password)

    def check_password(self, password: str) -> bool:
        return check_password_hash(self.password_hash, password)

    def __repr__(self) -> str:
        return f"<User {self.email} role={self.role}>"
