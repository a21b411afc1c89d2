from datetime import datetime
from sqlalchemy.orm import validates
from ..extensions import db
from ..mac import normalize_mac


class DeviceType(db.Model):
    __tablename__ = "device_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), unique=True, nullable=False)
    description = db.Column(db.Text, nullable=True)

    def __repr__(self) -> str:
        return f"<DeviceType {self.id} {self.name}>"


class Customer(db.Model):
    __tablename__ = "customers"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), unique=True, nullable=False)
    company_name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class Device(db.Model):
    __tablename__ = "devices"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)

    # canonical AA:BB:CC:DD:EE:FF
    mac_address = db.Column(db.String(17), unique=True, index=True, nullable=False)

    device_type_id = db.Column(db.Integer, db.ForeignKey("device_types.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    device_type = db.relationship("DeviceType")
    customer = db.relationship("Customer")

    @validates("mac_address")
    def _normalize_mac(self, key, value):
        normalized = normalize_mac(value)
        if normalized is None:
            raise ValueError(f"Invalid MAC address: {value!r}")
        return normalized

    @classmethod
    def find_active_by_mac(cls, mac: str):
        """Active device with canonical MAC `mac`, or None for unknown and inactive alike."""
        return cls.query.filter_by(mac_address=mac, is_active=True).first()

    def __repr__(self) -> str:
        return f"<Device {self.id} {self.mac_address}>"
