from __future__ import annotations

import os
import tempfile

from sqlalchemy.orm import Session, sessionmaker

from app.db.base import Base
from app.db.models import DeviceTemplate, HierarchyRule, Plant, TemplateTag
from app.db.session import build_engine


class SqliteDatabase:
    def __init__(self) -> None:
        fd, self.path = tempfile.mkstemp(prefix="solar-fleet-", suffix=".sqlite3")
        os.close(fd)
        self.engine = build_engine(f"sqlite+pysqlite:///{self.path}")
        Base.metadata.create_all(self.engine)
        self.session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
        )

    def session(self) -> Session:
        return self.session_factory()

    def close(self) -> None:
        self.engine.dispose()
        if os.path.exists(self.path):
            os.remove(self.path)


def add_plant(db: Session, *, code: str = "RAJ1", mqtt_base_topic: str | None = "solar/raj1") -> Plant:
    plant = Plant(code=code, name=f"Plant {code}", mqtt_base_topic=mqtt_base_topic)
    db.add(plant)
    db.commit()
    return plant


def add_template(
    db: Session,
    *,
    shortform: str,
    device_type: str = "INVERTER",
    name: str | None = None,
    tags: list[str] | None = None,
    is_active: bool = True,
) -> DeviceTemplate:
    template = DeviceTemplate(
        shortform=shortform,
        name=name or f"{shortform} template",
        device_type=device_type,
        is_active=is_active,
    )
    for index, tag_name in enumerate(tags or []):
        template.tags.append(
            TemplateTag(tag_name=tag_name, unit="kW", data_type="FLOAT", display_order=index)
        )
    db.add(template)
    db.commit()
    return template


def allow(db: Session, *, parent: DeviceTemplate | None, child: DeviceTemplate) -> HierarchyRule:
    rule = HierarchyRule(
        parent_template_id=parent.id if parent is not None else None,
        child_template_id=child.id,
        is_allowed=True,
    )
    db.add(rule)
    db.commit()
    return rule
