from datetime import datetime
from extensions import db


class University(db.Model):
    __tablename__ = "universities"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), unique=True, nullable=False, index=True)
    country = db.Column(db.String(80), nullable=False, index=True)
    city = db.Column(db.String(80))
    website = db.Column(db.String(255))
    ranking = db.Column(db.Integer)
    acceptance_rate = db.Column(db.Numeric(5, 2))
    description = db.Column(db.Text)
    requirements = db.Column(db.Text)
    active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def brief(self):
        return {"id": self.id, "name": self.name, "country": self.country, "city": self.city}

    def to_dict(self):
        return {
            **self.brief(),
            "website": self.website,
            "ranking": self.ranking,
            "acceptance_rate": float(self.acceptance_rate) if self.acceptance_rate is not None else None,
            "description": self.description,
            "requirements": self.requirements,
            "active": self.active,
        }
