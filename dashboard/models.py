# dashboard/models.py
from datetime import datetime
from dashboard import db

SELECTED_WAREHOUSE = 'selected_warehouse'


class Preference(db.Model):
    id = db.Column(db.Integer, primary_key=True)
    key = db.Column(db.String(64), unique=True, nullable=False)
    value = db.Column(db.String(256))
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @classmethod
    def get_value(cls, key, default=None):
        preference = cls.query.filter_by(key=key).first()
        return preference.value if preference else default

    @classmethod
    def set_value(cls, key, value):
        preference = cls.query.filter_by(key=key).first()
        if preference is None:
            preference = cls(key=key)
            db.session.add(preference)
        preference.value = None if value is None else str(value)
        db.session.commit()
        return preference


def get_selected_warehouse():
    value = Preference.get_value(SELECTED_WAREHOUSE)
    try:
        return int(value) if value else None
    except ValueError:
        return None


def set_selected_warehouse(warehouse_id):
    Preference.set_value(SELECTED_WAREHOUSE, warehouse_id)
