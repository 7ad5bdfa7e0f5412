from datetime import date
from decimal import Decimal

from sqlalchemy.orm import Session

from clinic.models.patient import Patient
from clinic.models.tenant import Tenant
from clinic.models.treatment import Treatment
from clinic.services.installment_service import build_monthly_schedule, create_plan


def seed_demo(db: Session):
    if db.query(Tenant).filter(Tenant.slug == 'demo').first():
        return
    tenant = Tenant(name='Consultorio Demo', slug='demo')
    db.add(tenant)
    db.flush()
    patient = Patient(tenant_id=tenant.id, name='Paciente Demo', email='paciente@demo.com', phone='+5491100000000')
    db.add(patient)
    db.flush()
    treatment = Treatment(patient_id=patient.id, name='Ortodoncia', total_cost=Decimal('60000'), status='in_progress')
    db.add(treatment)
    db.flush()
    create_plan(db, treatment.id, build_monthly_schedule(6, Decimal('10000'), date.today()))
    db.commit()
