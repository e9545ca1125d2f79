#!/usr/bin/env python3
"""
Escalation Rule Seed Script
Loads the default escalation rules into the escalation_rules table.

Existing (deadline_key, level) rows are updated in place, so the script can be
re-run after editing the defaults.

Usage:
    python -m scripts.seed_escalation_rules
"""
import sys
import os
from uuid import uuid4

# Add the parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy.orm import Session
from case_engine.database import SessionLocal, init_db
from case_engine.models.db_models import EscalationRuleDB
from case_engine.services.rules import DEFAULT_ESCALATION_RULES


def seed_escalation_rules(db: Session, rules=DEFAULT_ESCALATION_RULES) -> int:
    """Insert or update rules keyed by (deadline_key, level). Returns rows written."""
    written = 0
    for rule in rules:
        row = db.query(EscalationRuleDB).filter(
            EscalationRuleDB.deadline_key == rule.deadline_key,
            EscalationRuleDB.level == rule.level,
        ).first()

        if row is None:
            row = EscalationRuleDB(id=str(uuid4()), deadline_key=rule.deadline_key, level=rule.level)
            db.add(row)

        row.offset_days = rule.offset_days
        row.condition_type = rule.condition_type.value
        row.condition_key = rule.condition_key
        row.message_template = rule.message_template
        written += 1

    db.commit()
    return written


def main():
    # Ensure tables exist
    init_db()

    db: Session = SessionLocal()
    try:
        written = seed_escalation_rules(db)
        print(f"Seeded {written} escalation rules.")
    except Exception as e:
        print(f"Error seeding escalation rules: {e}")
        db.rollback()
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
