#!/usr/bin/env python3
"""
Barrido diario de cobranza: marca cuotas vencidas, genera los recordatorios
que falten y envía los que ya corresponden.
Run from cron or inside the container: docker-compose exec backend python run_reminder_sweep.py
"""
import logging
import os
import sys
from datetime import date

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from clinic.core.config import settings
from clinic.core.database import SessionLocal
from clinic.services import installment_service, reminder_scheduler
from clinic.services.notification_dispatcher import LogChannel, dispatch_due


def run_sweep(as_of=None):
    as_of = as_of or date.today()
    db = SessionLocal()
    try:
        print(f"Marking overdue installments as of {as_of}...")
        updated = installment_service.mark_overdue(db, as_of)
        db.commit()
        print(f"  {updated} installments marked overdue")

        print("Generating missing reminders...")
        report = reminder_scheduler.generate_pending(db)
        db.commit()
        print(f"  {report.created} reminders created for {report.installments} installments")
        for error in report.errors:
            print(f"  ✗ {error}")

        print("Dispatching due reminders...")
        sent = dispatch_due(db, LogChannel(), as_of=as_of)
        print(f"  sent={sent.sent} failed={sent.failed} skipped={sent.skipped}")
        print("\n✓ Sweep finished")
    except Exception as e:
        db.rollback()
        print(f"\n✗ Sweep failed: {e}")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=settings.log_level.upper())
    run_sweep()
