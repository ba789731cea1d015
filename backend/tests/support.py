from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from creditgate.core.database import Base
from creditgate.models import ai_model, async_task, model_credit, organization, rbac, user  # noqa: F401
from creditgate.models.ai_model import AiModel
from creditgate.models.organization import Organization
from creditgate.models.rbac import Permission, Role, RolePermission
from creditgate.models.user import User


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


def make_session_factory(engine=None):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine or make_engine())


def add_organization(db, name="Acme School", type="school", **kwargs) -> Organization:
    org = Organization(name=name, type=type, **kwargs)
    db.add(org)
    db.commit()
    db.refresh(org)
    return org


def add_user(db, user_id, organization_id=None, email=None, full_name=None) -> User:
    u = User(id=user_id, email=email or f"{user_id}@example.com", full_name=full_name, organization_id=organization_id)
    db.add(u)
    db.commit()
    return u


def add_role(db, name, is_active=True, permissions=()) -> Role:
    role = Role(name=name, display_name=name.title(), is_active=is_active)
    db.add(role)
    db.flush()
    for code in permissions:
        permission = db.query(Permission).filter(Permission.code == code).first()
        if permission is None:
            permission = Permission(code=code, name=code)
            db.add(permission)
            db.flush()
        db.add(RolePermission(role_id=role.id, permission_id=permission.id))
    db.commit()
    return role


def add_pricing(db, provider_id, model_id, units) -> AiModel:
    row = AiModel(provider_id=provider_id, model_id=model_id, pricing={"units": units}, enabled=True)
    db.add(row)
    db.commit()
    return row
