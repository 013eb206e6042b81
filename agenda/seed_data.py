"""
Seed data for the ministry agenda.
Pre-populates the three worship groups the rotation refers to.
Run on app startup; existing groups are left alone.
"""
from .models import WorshipGroup
from .extensions import db
from .utils import GROUPS, GROUP_NAMES


def seed_database():
    """
    Seed the worship groups if they are missing.
    The scheduler assigns these ids, so they must exist before generation.
    """
    missing = [key for key, gid in GROUPS.items() if db.session.get(WorshipGroup, gid) is None]
    if not missing:
        return False

    for key in missing:
        db.session.add(WorshipGroup(id=GROUPS[key], name=GROUP_NAMES[key], is_active=True))
    db.session.commit()
    return True
