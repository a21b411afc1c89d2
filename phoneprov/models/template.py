from datetime import datetime
from ..extensions import db


class Template(db.Model):
    __tablename__ = "config_templates"

    id = db.Column(db.Integer, primary_key=True)
    device_type_id = db.Column(db.Integer, db.ForeignKey("device_types.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    category = db.Column(db.String(64), nullable=False, default="general")
    description = db.Column(db.Text, nullable=True)
    body = db.Column(db.Text, nullable=False)

    is_default = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    device_type = db.relationship("DeviceType")

    @classmethod
    def for_device_type(cls, device_type_id: int):
        """Active templates, default first; lowest id wins among several defaults."""
        return (
            cls.query.filter_by(device_type_id=device_type_id, is_active=True)
            .order_by(cls.is_default.desc(), cls.category.asc(), cls.name.asc(), cls.id.asc())
            .all()
        )

    def __repr__(self) -> str:
        return f"<Template {self.id} {self.name}>"


class VariableDefinition(db.Model):
    """A typed variable; `template_id` NULL means the definition applies to every template."""

    __tablename__ = "template_variables"
    __table_args__ = (
        db.UniqueConstraint("template_id", "name", name="uq_template_variable_name"),
    )

    id = db.Column(db.Integer, primary_key=True)
    template_id = db.Column(db.Integer, db.ForeignKey("config_templates.id"), nullable=True, index=True)

    name = db.Column(db.String(128), nullable=False)
    label = db.Column(db.String(255), nullable=True)
    var_type = db.Column(db.String(32), nullable=False, default="text")
    is_required = db.Column(db.Boolean, nullable=False, default=False)
    default_value = db.Column(db.Text, nullable=True)

    min_value = db.Column(db.Float, nullable=True)
    max_value = db.Column(db.Float, nullable=True)
    regex_pattern = db.Column(db.String(512), nullable=True)
    # list of values or {"value": ..., "label": ...} objects
    options = db.Column(db.JSON, nullable=True)

    help_text = db.Column(db.Text, nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)

    template = db.relationship("Template", backref=db.backref("variables", lazy="dynamic"))

    @classmethod
    def for_template(cls, template_id: int) -> list:
        """Global definitions overlaid by the template's own, in display order."""
        rows = cls.query.filter(
            db.or_(cls.template_id == template_id, cls.template_id.is_(None))
        ).all()
        by_name = {}
        for row in sorted(rows, key=lambda r: r.template_id is not None):
            by_name[row.name] = row
        return sorted(by_name.values(), key=lambda r: (r.display_order or 0, r.name))

    def __repr__(self) -> str:
        return f"<VariableDefinition {self.name} type={self.var_type}>"


class GlobalVariable(db.Model):
    __tablename__ = "global_variables"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), unique=True, nullable=False)
    value = db.Column(db.Text, nullable=False, default="")

    @classmethod
    def as_mapping(cls) -> dict:
        return {row.name: row.value or "" for row in cls.query.all()}
