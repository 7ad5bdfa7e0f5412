"""
Servicio de cuotas (installments).

Crea planes de pago y mantiene el saldo de cada cuota. NO hace commit:
el caller es dueño de la transacción y debe hacer commit o rollback.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy import select
from sqlalchemy.orm import Session

from clinic.core.enums import InstallmentState, PlanStatus
from clinic.core.errors import NotFoundError, OverpaymentError, ValidationError
from clinic.models.patient import Patient
from clinic.models.payment import Payment
from clinic.models.payment_plan import Installment, PaymentPlan
from clinic.models.reminder import Reminder
from clinic.models.treatment import Treatment

CENTS = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """Normaliza un monto a Decimal con dos decimales. No redondea: más de dos decimales es un error."""
    if value is None:
        return Decimal("0.00")
    try:
        amount = Decimal(str(value))
        rounded = amount.quantize(CENTS)
    except ArithmeticError:
        raise ValidationError(f"Monto inválido: {value}")
    if rounded != amount:
        raise ValidationError(f"Monto con más de dos decimales: {value}")
    return rounded


def build_monthly_schedule(count: int, amount: Any, first_due: date) -> List[Dict[str, Any]]:
    """
    Genera `count` cuotas iguales con vencimiento mensual a partir de `first_due`.

    Un vencimiento el día 31 cae en el último día de los meses más cortos.
    """
    if count < 1:
        raise ValidationError("La cantidad de cuotas debe ser al menos 1")
    return [
        {"amount": to_money(amount), "due_date": first_due + relativedelta(months=i)}
        for i in range(count)
    ]


def _normalize_items(installments: List[Dict[str, Any]]) -> List[Tuple[Decimal, date, Optional[int]]]:
    if not installments:
        raise ValidationError("El plan debe tener al menos una cuota")

    normalized = []
    for idx, item in enumerate(installments, start=1):
        amount = to_money(item.get("amount"))
        if amount <= 0:
            raise ValidationError(f"La cuota {idx} debe tener un monto positivo")
        due_date = item.get("due_date")
        if not isinstance(due_date, date):
            raise ValidationError(f"La cuota {idx} no tiene fecha de vencimiento")
        normalized.append((amount, due_date, item.get("id")))
    return normalized


def create_plan(
    db: Session,
    treatment_id: int,
    installments: List[Dict[str, Any]],
    name: Optional[str] = None,
) -> PaymentPlan:
    """
    Crea un plan de pago con sus cuotas numeradas 1..N.

    El total del plan se recalcula como la suma de las cuotas. No genera
    recordatorios: el caller los pide explícitamente.

    Raises:
        ValidationError: lista vacía, monto <= 0 o cuota sin vencimiento
        NotFoundError: el tratamiento no existe
    """
    normalized = [(amount, due_date) for amount, due_date, _ in _normalize_items(installments)]

    treatment = db.query(Treatment).filter(Treatment.id == treatment_id).first()
    if not treatment:
        raise NotFoundError(f"Tratamiento {treatment_id} no encontrado")

    total = sum((amount for amount, _ in normalized), Decimal("0.00"))
    plan = PaymentPlan(
        treatment_id=treatment.id,
        name=name or f"Plan de pago - {treatment.name}",
        total_amount=total,
        installment_count=len(normalized),
    )
    for number, (amount, due_date) in enumerate(normalized, start=1):
        plan.installments.append(
            Installment(
                number=number,
                amount=amount,
                due_date=due_date,
                state=InstallmentState.pending.value,
                total_paid=Decimal("0.00"),
            )
        )
    db.add(plan)
    db.flush()
    return plan


def get_installment(db: Session, installment_id: int, for_update: bool = False) -> Installment:
    query = db.query(Installment).filter(Installment.id == installment_id)
    if for_update:
        # Lock de fila para el read-modify-write del saldo
        query = query.with_for_update()
    installment = query.first()
    if not installment:
        raise NotFoundError(f"Cuota {installment_id} no encontrada")
    return installment


def get_balance(installment: Installment) -> Decimal:
    return to_money(installment.amount) - to_money(installment.total_paid)


def apply_payment_delta(db: Session, installment_id: int, delta: Any) -> Installment:
    """
    Suma `delta` (puede ser negativo al revertir) al total pagado de la cuota.

    La cuota pasa a `paid` solo cuando el total pagado iguala el monto; si
    estaba pagada y baja del monto vuelve a pending.

    Raises:
        OverpaymentError: el nuevo total supera el monto de la cuota
        ValidationError: el nuevo total quedaría negativo
    """
    installment = get_installment(db, installment_id, for_update=True)
    amount = to_money(installment.amount)
    new_total = to_money(installment.total_paid) + to_money(delta)

    if new_total > amount:
        raise OverpaymentError(
            f"El pago excede el saldo de la cuota {installment.number} "
            f"(saldo: {get_balance(installment)})"
        )
    if new_total < 0:
        raise ValidationError(f"El total pagado de la cuota {installment.number} no puede ser negativo")

    installment.total_paid = new_total
    if new_total == amount:
        installment.state = InstallmentState.paid.value
        installment.paid_date = installment.paid_date or date.today()
    elif installment.state == InstallmentState.paid.value:
        # mark_overdue vuelve a marcarla si ya estaba vencida
        installment.state = InstallmentState.pending.value
        installment.paid_date = None

    db.flush()
    sync_plan_status(db, installment.plan_id)
    return installment


def mark_gateway_paid(db: Session, installment_id: int, gateway_payment_id: str) -> Installment:
    """
    Liquida la cuota por un pago aprobado en la pasarela.

    Reemplaza el total pagado por el monto completo (no suma): la pasarela
    es la autoridad final sobre la cuota.
    """
    installment = get_installment(db, installment_id, for_update=True)
    installment.state = InstallmentState.paid.value
    installment.total_paid = to_money(installment.amount)
    installment.gateway_payment_id = str(gateway_payment_id)
    installment.paid_date = date.today()
    db.flush()
    sync_plan_status(db, installment.plan_id)
    return installment


def sync_plan_status(db: Session, plan_id: int) -> Optional[PaymentPlan]:
    """El plan queda completed cuando todas sus cuotas están pagadas y vuelve a active si alguna no."""
    plan = db.query(PaymentPlan).filter(PaymentPlan.id == plan_id).first()
    if plan is None:
        return None
    all_paid = bool(plan.installments) and all(
        i.state == InstallmentState.paid.value for i in plan.installments
    )
    plan.status = PlanStatus.completed.value if all_paid else PlanStatus.active.value
    db.flush()
    return plan


def _is_locked(db: Session, installment: Installment) -> bool:
    """Una cuota con pagos (totales o parciales) o con checkout en la pasarela no se edita."""
    if to_money(installment.total_paid) > 0:
        return True
    if installment.gateway_payment_id or installment.gateway_preference_id:
        return True
    return db.query(Payment.id).filter(Payment.installment_id == installment.id).first() is not None


def update_plan(
    db: Session,
    plan_id: int,
    installments: List[Dict[str, Any]],
    name: Optional[str] = None,
) -> PaymentPlan:
    """
    Reemplaza el calendario de cuotas de un plan.

    Cada item trae `amount`, `due_date` y opcionalmente el `id` de una cuota
    existente; sin `id` es una cuota nueva. Las cuotas existentes que no
    vienen en la lista se eliminan junto con sus recordatorios. Las cuotas
    se renumeran 1..N en el orden recibido y se recalculan el total del plan
    y el costo del tratamiento.

    Raises:
        NotFoundError: el plan no existe
        ValidationError: datos inválidos, o se intenta eliminar o cambiar
            monto/vencimiento de una cuota con pagos o checkout
    """
    normalized = _normalize_items(installments)

    plan = db.query(PaymentPlan).filter(PaymentPlan.id == plan_id).first()
    if not plan:
        raise NotFoundError(f"Plan de pago {plan_id} no encontrado")

    current = {i.id: i for i in plan.installments}
    kept_ids = [item_id for _, _, item_id in normalized if item_id is not None]
    if len(set(kept_ids)) != len(kept_ids):
        raise ValidationError("Una cuota aparece más de una vez en el plan")
    for item_id in kept_ids:
        if item_id not in current:
            raise ValidationError(f"La cuota {item_id} no pertenece al plan")

    removed = [i for i in current.values() if i.id not in kept_ids]
    for installment in removed:
        if _is_locked(db, installment):
            raise ValidationError(
                f"No se pueden eliminar cuotas que ya tienen pagos registrados (cuota {installment.number})"
            )

    changed = []
    for amount, due_date, item_id in normalized:
        if item_id is None:
            continue
        installment = current[item_id]
        if to_money(installment.amount) == amount and installment.due_date == due_date:
            continue
        if _is_locked(db, installment):
            raise ValidationError(
                f"La cuota {installment.number} tiene pagos registrados; no se puede cambiar monto ni vencimiento"
            )
        changed.append(installment)

    # Los mensajes llevan monto y fecha: se regeneran después
    stale_ids = [i.id for i in removed + changed]
    if stale_ids:
        db.query(Reminder).filter(Reminder.installment_id.in_(stale_ids)).delete(synchronize_session="fetch")

    for installment in removed:
        plan.installments.remove(installment)
    # Números temporales para no chocar con la unique (plan_id, number) al renumerar
    for installment in plan.installments:
        installment.number = -installment.number
    db.flush()

    for number, (amount, due_date, item_id) in enumerate(normalized, start=1):
        if item_id is None:
            plan.installments.append(
                Installment(
                    number=number,
                    amount=amount,
                    due_date=due_date,
                    state=InstallmentState.pending.value,
                    total_paid=Decimal("0.00"),
                )
            )
            continue
        installment = current[item_id]
        installment.number = number
        if installment in changed:
            installment.amount = amount
            installment.due_date = due_date
            installment.state = InstallmentState.pending.value

    total = sum((amount for amount, _, _ in normalized), Decimal("0.00"))
    plan.total_amount = total
    plan.installment_count = len(normalized)
    if name:
        plan.name = name
    plan.treatment.total_cost = total
    db.flush()
    sync_plan_status(db, plan.id)
    return plan


def _tenant_scoped(query, tenant_id: int):
    return (
        query.join(PaymentPlan, Installment.plan_id == PaymentPlan.id)
        .join(Treatment, PaymentPlan.treatment_id == Treatment.id)
        .join(Patient, Treatment.patient_id == Patient.id)
        .filter(Patient.tenant_id == tenant_id)
    )


def list_by_date_range(db: Session, tenant_id: int, start: date, end: date) -> List[Installment]:
    if start > end:
        raise ValidationError("start must be <= end")
    query = _tenant_scoped(db.query(Installment), tenant_id).filter(
        Installment.due_date >= start,
        Installment.due_date <= end,
    )
    return query.order_by(Installment.due_date, Installment.id).all()


def list_overdue(db: Session, as_of: date, tenant_id: Optional[int] = None) -> List[Installment]:
    """Cuotas impagas con vencimiento anterior a `as_of` (marcadas o no como overdue)."""
    query = db.query(Installment)
    if tenant_id is not None:
        query = _tenant_scoped(query, tenant_id)
    query = query.filter(
        Installment.state != InstallmentState.paid.value,
        Installment.due_date < as_of,
    )
    return query.order_by(Installment.due_date, Installment.id).all()


def mark_overdue(db: Session, as_of: date, tenant_id: Optional[int] = None) -> int:
    """Pasa a overdue las cuotas pending vencidas. Devuelve la cantidad de filas afectadas."""
    query = db.query(Installment).filter(
        Installment.state == InstallmentState.pending.value,
        Installment.due_date < as_of,
    )
    if tenant_id is not None:
        scoped_ids = _tenant_scoped(select(Installment.id), tenant_id)
        query = query.filter(Installment.id.in_(scoped_ids))
    updated = query.update({Installment.state: InstallmentState.overdue.value}, synchronize_session="fetch")
    db.flush()
    return updated


def resolve_tenant_id(db: Session, installment: Installment) -> Optional[int]:
    """Sigue cuota -> plan -> tratamiento -> paciente -> tenant. None si la cadena está rota."""
    row = (
        db.query(Patient.tenant_id)
        .join(Treatment, Treatment.patient_id == Patient.id)
        .join(PaymentPlan, PaymentPlan.treatment_id == Treatment.id)
        .filter(PaymentPlan.id == installment.plan_id)
        .first()
    )
    return row[0] if row else None


def get_patient(db: Session, installment: Installment) -> Optional[Patient]:
    return (
        db.query(Patient)
        .join(Treatment, Treatment.patient_id == Patient.id)
        .join(PaymentPlan, PaymentPlan.treatment_id == Treatment.id)
        .filter(PaymentPlan.id == installment.plan_id)
        .first()
    )
