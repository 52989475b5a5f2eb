import logging
import re
from calendar import monthrange
from datetime import date, datetime

from sqlalchemy import func, or_

from pondok.errors import ValidationFailed, NotFound, Conflict
from pondok.extensions import db
from pondok.models import (
    Bill, BillType, BillPayment, BillStatus, BillCategory, BillFrequency,
    PaymentHistory, PaymentMethod, PenaltyType, Student, StudentStatus,
    InstitutionType, VerificationStatus,
)
from pondok.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

OPEN_STATUSES = (BillStatus.OUTSTANDING, BillStatus.PARTIAL, BillStatus.OVERDUE)


def format_rupiah(amount):
    return "Rp {:,.0f}".format(amount or 0).replace(',', '.')


def resolve_amount(bill_type, student):
    """SPP khusus santri > harga per tingkat > harga per jenjang > nominal default."""
    if bill_type.category == BillCategory.TUITION and student.custom_spp_fee is not None:
        return float(student.custom_spp_fee)

    price_by_grade = bill_type.price_by_grade or {}
    if student.grade and price_by_grade.get(student.grade):
        return float(price_by_grade[student.grade])
    if student.institution_type and price_by_grade.get(student.institution_type.name):
        return float(price_by_grade[student.institution_type.name])
    return float(bill_type.default_amount or 0)


def calculate_penalty(bill, bill_type, days_past_due=None):
    days = bill.days_past_due if days_past_due is None else days_past_due
    if days <= (bill_type.grace_period_days or 0) or (bill.remaining_amount or 0) <= 0:
        return 0.0

    penalty = 0.0
    if bill_type.late_penalty_type == PenaltyType.FIXED:
        penalty = bill_type.late_penalty_amount or 0
    elif bill_type.late_penalty_type == PenaltyType.PERCENTAGE:
        base = bill.original_amount if bill.original_amount is not None else bill.amount
        penalty = base * (bill_type.late_penalty_amount or 0) / 100

    if bill_type.max_penalty is not None:
        penalty = min(penalty, bill_type.max_penalty)
    return float(penalty)


def _next_sequence(column, prefix):
    last = db.session.query(column).filter(column.like(f'{prefix}%')) \
        .execution_options(include_deleted=True).order_by(column.desc()).first()
    if last and last[0][len(prefix):].isdigit():
        return int(last[0][len(prefix):]) + 1
    return 1


def _type_code(bill_type):
    letters = re.sub(r'[^A-Za-z]', '', bill_type.name or '')
    return (letters[:3] or 'BIL').upper()


class BillingService:
    # ==========================================
    # PEMBUATAN TAGIHAN
    # ==========================================
    @staticmethod
    def find_siblings(student):
        conditions = []
        if student.parent_id:
            conditions.append(Student.parent_id == student.parent_id)
        if student.father_phone:
            conditions.append(Student.father_phone == student.father_phone)
        if student.mother_phone:
            conditions.append(Student.mother_phone == student.mother_phone)
        if not conditions:
            return []
        return Student.query.filter(
            Student.id != student.id,
            Student.status == StudentStatus.ACTIVE,
            or_(*conditions),
        ).all()

    @staticmethod
    def sibling_discounts(bill_type, student, amount):
        if not bill_type.allow_sibling_discount or not (bill_type.sibling_discount_percent or 0) > 0:
            return []
        siblings = BillingService.find_siblings(student)
        if not siblings:
            return []
        percent = bill_type.sibling_discount_percent
        return [{
            'type': 'SIBLING_DISCOUNT',
            'description': f'Diskon saudara ({len(siblings)} saudara)',
            'amount': amount * percent / 100,
            'percentage': percent,
        }]

    @staticmethod
    def build_bill(bill_type, student, period, due_date, bill_no, apply_discounts=True, user_id=None, notes=None):
        """Return Bill baru (belum di-add) atau None jika nominal <= 0."""
        amount = resolve_amount(bill_type, student)
        if amount <= 0:
            return None

        discounts = BillingService.sibling_discounts(bill_type, student, amount) if apply_discounts else []
        total_discount = sum(d['amount'] for d in discounts)
        final_amount = max(0.0, amount - total_discount)

        return Bill(
            bill_no=bill_no,
            student_id=student.id,
            bill_type_id=bill_type.id,
            period=period,
            amount=final_amount,
            original_amount=amount,
            discounts=discounts,
            total_discount=total_discount,
            paid_amount=0,
            remaining_amount=final_amount,
            due_date=due_date,
            status=BillStatus.OUTSTANDING,
            generated_by=user_id,
            notes=notes,
        )

    @staticmethod
    def _history_generated(bill, bill_type, user_id=None, description=None):
        db.session.add(PaymentHistory(
            bill_id=bill.id,
            student_id=bill.student_id,
            action='BILL_GENERATED',
            description=description or f'Tagihan {bill_type.name} periode {bill.period}',
            new_amount=bill.amount,
            performed_by=user_id,
            details={'period': bill.period, 'bill_type': bill_type.name, 'discounts': bill.discounts or []},
        ))

    @staticmethod
    def generate_bills(bill_type_id, period, due_date, student_ids=None, institution_types=None,
                       grades=None, apply_discounts=True, notes=None, user=None):
        bill_type = db.session.get(BillType, bill_type_id)
        if not bill_type or not bill_type.is_active:
            raise NotFound('Jenis tagihan tidak ditemukan atau tidak aktif')

        query = Student.query.filter(Student.status == StudentStatus.ACTIVE)
        if student_ids:
            query = query.filter(Student.id.in_(student_ids))
        if institution_types:
            query = query.filter(Student.institution_type.in_([InstitutionType[i] for i in institution_types]))
        if grades:
            query = query.filter(Student.grade.in_(grades))
        students = query.order_by(Student.id).all()
        if not students:
            raise ValidationFailed('Tidak ada santri yang sesuai kriteria')

        already_billed = {
            row[0] for row in db.session.query(Bill.student_id).filter(
                Bill.bill_type_id == bill_type.id,
                Bill.period == period,
                Bill.status != BillStatus.CANCELLED,
            ).all()
        }
        targets = [s for s in students if s.id not in already_billed]
        if not targets:
            raise ValidationFailed('Semua santri sudah memiliki tagihan untuk periode ini')

        prefix = f'BILL-{period}-'
        sequence = _next_sequence(Bill.bill_no, prefix)
        user_id = user.id if user else None
        created, skipped = [], []

        try:
            for student in targets:
                bill = BillingService.build_bill(
                    bill_type, student, period, due_date, f'{prefix}{sequence:04d}',
                    apply_discounts=apply_discounts, user_id=user_id, notes=notes,
                )
                if not bill:
                    skipped.append({'student_id': student.id, 'reason': 'Nominal tagihan tidak ditemukan'})
                    continue
                sequence += 1
                db.session.add(bill)
                db.session.flush()
                BillingService._history_generated(bill, bill_type, user_id)
                NotificationService.queue_for_student(
                    student,
                    f"Assalamu'alaikum. Tagihan {bill_type.name} periode {period} untuk {student.full_name} "
                    f"sebesar {format_rupiah(bill.amount)} jatuh tempo {due_date.strftime('%d-%m-%Y')}.",
                )
                created.append(bill)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Generate tagihan %s periode %s: %s dibuat", bill_type.name, period, len(created))
        return {
            'generated': len(created),
            'skipped_existing': len(already_billed & {s.id for s in students}),
            'skipped': skipped,
            'total_amount': sum(b.amount for b in created),
            'bills': [b.to_dict() for b in created],
        }

    @staticmethod
    def generate_monthly_bills(today=None):
        """Tagihan bulanan otomatis untuk semua jenis tagihan MONTHLY yang aktif."""
        today = today or date.today()
        period = today.strftime('%Y-%m')
        next_year, next_month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
        due_date = date(next_year, next_month, min(15, monthrange(next_year, next_month)[1]))

        bill_types = BillType.query.filter_by(
            is_active=True, is_recurring=True, frequency=BillFrequency.MONTHLY
        ).order_by(BillType.sort_order, BillType.id).all()

        results = []
        total = 0
        for bill_type in bill_types:
            try:
                exists = Bill.query.filter_by(bill_type_id=bill_type.id, period=period).count()
                if exists:
                    results.append({'bill_type': bill_type.name, 'status': 'skipped', 'generated': 0})
                    continue

                students = Student.query.filter_by(status=StudentStatus.ACTIVE).order_by(Student.id).all()
                prefix = f'{_type_code(bill_type)}-{today.strftime("%Y%m")}-'
                sequence = _next_sequence(Bill.bill_no, prefix)
                count = 0
                for student in students:
                    bill = BillingService.build_bill(
                        bill_type, student, period, due_date, f'{prefix}{sequence:04d}',
                        notes=f'Tagihan otomatis periode {period}',
                    )
                    if not bill:
                        continue
                    sequence += 1
                    db.session.add(bill)
                    db.session.flush()
                    BillingService._history_generated(bill, bill_type, description=f'Tagihan otomatis {bill_type.name} - {period}')
                    count += 1
                db.session.commit()
                total += count
                results.append({'bill_type': bill_type.name, 'status': 'success', 'generated': count})
                logger.info("Cron tagihan %s periode %s: %s dibuat", bill_type.name, period, count)
            except Exception as e:
                db.session.rollback()
                logger.exception("Cron tagihan %s gagal", bill_type.name)
                results.append({'bill_type': bill_type.name, 'status': 'error', 'error': str(e), 'generated': 0})

        return {'period': period, 'due_date': due_date.isoformat(), 'bills_generated': total, 'results': results}

    @staticmethod
    def issue_registration_bills(student, user_id=None, today=None):
        """Tagihan sekali bayar (kategori REGISTRATION) untuk santri baru."""
        today = today or date.today()
        period = today.strftime('%Y-%m')
        bill_types = BillType.query.filter_by(is_active=True, category=BillCategory.REGISTRATION).all()
        prefix = f'BILL-{period}-'
        sequence = _next_sequence(Bill.bill_no, prefix)
        created = []
        for bill_type in bill_types:
            exists = Bill.query.filter_by(student_id=student.id, bill_type_id=bill_type.id).first()
            if exists:
                continue
            bill = BillingService.build_bill(
                bill_type, student, period, today, f'{prefix}{sequence:04d}',
                apply_discounts=False, user_id=user_id, notes='Biaya pendaftaran santri baru',
            )
            if not bill:
                continue
            sequence += 1
            db.session.add(bill)
            db.session.flush()
            BillingService._history_generated(bill, bill_type, user_id)
            created.append(bill)
        return created

    # ==========================================
    # TUNGGAKAN
    # ==========================================
    @staticmethod
    def refresh_bill(bill, today=None):
        """Perbarui status jatuh tempo. Return denda yang berlaku saat ini."""
        today = today or date.today()
        bill_type = bill.bill_type
        days = max(0, (today - bill.due_date).days) if bill.due_date else 0
        bill.days_past_due = days

        overdue = days > (bill_type.grace_period_days or 0) and (bill.remaining_amount or 0) > 0
        bill.is_overdue = overdue
        if overdue:
            if bill.status == BillStatus.OUTSTANDING:
                bill.status = BillStatus.OVERDUE
            if not bill.first_overdue_date:
                bill.first_overdue_date = today
        return calculate_penalty(bill, bill_type, days) if overdue else 0.0

    @staticmethod
    def outstanding_query(student_id=None, bill_type_id=None, institution_type=None, grade=None, search=None):
        query = Bill.query.join(Student, Bill.student_id == Student.id).filter(Bill.status.in_(OPEN_STATUSES))
        if student_id:
            query = query.filter(Bill.student_id == student_id)
        if bill_type_id:
            query = query.filter(Bill.bill_type_id == bill_type_id)
        if institution_type:
            query = query.filter(Student.institution_type == InstitutionType[institution_type])
        if grade:
            query = query.filter(Student.grade == grade)
        if search:
            like = f'%{search}%'
            query = query.filter(or_(Student.full_name.ilike(like), Student.nis.ilike(like), Bill.bill_no.ilike(like)))
        return query

    @staticmethod
    def outstanding(status='ALL', is_overdue=None, today=None, **filters):
        today = today or date.today()
        bills = BillingService.outstanding_query(**filters).order_by(Bill.due_date, Bill.id).all()

        penalties = {}
        for bill in bills:
            penalties[bill.id] = BillingService.refresh_bill(bill, today)
        db.session.commit()

        if status and status != 'ALL':
            bills = [b for b in bills if b.status.name == status]
        if is_overdue is not None:
            bills = [b for b in bills if bool(b.is_overdue) is is_overdue]

        items = []
        for bill in bills:
            data = bill.to_dict()
            data['student'] = {
                'id': bill.student.id,
                'nis': bill.student.nis,
                'full_name': bill.student.full_name,
                'institution_type': bill.student.institution_type.name if bill.student.institution_type else None,
                'grade': bill.student.grade,
            }
            data['penalty'] = penalties[bill.id]
            data['total_amount_due'] = (bill.remaining_amount or 0) + penalties[bill.id]
            items.append(data)

        return items, BillingService._outstanding_summary(items)

    @staticmethod
    def _outstanding_summary(items):
        total_remaining = sum(i['remaining_amount'] or 0 for i in items)
        total_penalty = sum(i['penalty'] for i in items)
        overdue = [i for i in items if i['is_overdue']]
        oldest = max(overdue, key=lambda i: i['days_past_due'], default=None)

        breakdown = {}
        for item in items:
            key = item['student']['institution_type'] or 'LAINNYA'
            row = breakdown.setdefault(key, {'count': 0, 'remaining_amount': 0, 'penalty': 0, 'overdue_count': 0})
            row['count'] += 1
            row['remaining_amount'] += item['remaining_amount'] or 0
            row['penalty'] += item['penalty']
            row['overdue_count'] += 1 if item['is_overdue'] else 0

        return {
            'total_bills': len(items),
            'total_amount': sum(i['amount'] or 0 for i in items),
            'total_paid': sum(i['paid_amount'] or 0 for i in items),
            'total_remaining': total_remaining,
            'total_penalty': total_penalty,
            'total_amount_due': total_remaining + total_penalty,
            'overdue_count': len(overdue),
            'average_outstanding': round(total_remaining / len(items), 2) if items else 0,
            'oldest_overdue': {
                'bill_no': oldest['bill_no'],
                'days_past_due': oldest['days_past_due'],
                'student': oldest['student']['full_name'],
            } if oldest else None,
            'by_institution': breakdown,
        }

    # ==========================================
    # PEMBAYARAN
    # ==========================================
    @staticmethod
    def next_payment_no(today=None):
        today = today or datetime.utcnow()
        prefix = f'BP-{today.strftime("%Y-%m")}-'
        return f'{prefix}{_next_sequence(BillPayment.payment_no, prefix):04d}'

    @staticmethod
    def apply_payment(bill, payment, user_id=None, description=None):
        """Tambahkan pembayaran terverifikasi ke tagihan."""
        previous_remaining = bill.remaining_amount or 0
        bill.paid_amount = (bill.paid_amount or 0) + payment.amount
        bill.remaining_amount = max(0.0, bill.amount - bill.paid_amount)
        bill.status = BillStatus.PAID if bill.remaining_amount <= 0 else BillStatus.PARTIAL
        if bill.status == BillStatus.PAID:
            bill.is_overdue = False

        db.session.add(PaymentHistory(
            bill_id=bill.id,
            payment_id=payment.id,
            student_id=bill.student_id,
            action='PAYMENT_MADE',
            description=description or f'Pembayaran diterima - {payment.method.value}',
            previous_amount=previous_remaining,
            new_amount=bill.remaining_amount,
            change_amount=-payment.amount,
            performed_by=user_id,
            details={'method': payment.method.name, 'channel': payment.channel, 'reference': payment.reference},
        ))

        status_text = 'LUNAS' if bill.status == BillStatus.PAID else f'sisa {format_rupiah(bill.remaining_amount)}'
        NotificationService.queue_for_student(
            bill.student,
            f"Pembayaran {bill.bill_type.name} ({bill.bill_no}) sebesar {format_rupiah(payment.amount)} "
            f"telah kami terima. Status: {status_text}. Jazakumullah khairan.",
        )

    @staticmethod
    def record_payment(bill_id, amount, method, user, auto_verify=False, channel=None, reference=None,
                       proof_url=None, payment_date=None, notes=None):
        bill = db.session.get(Bill, bill_id)
        if not bill:
            raise NotFound('Tagihan tidak ditemukan')
        if bill.status == BillStatus.PAID:
            raise ValidationFailed('Tagihan sudah lunas')
        if bill.status == BillStatus.CANCELLED:
            raise ValidationFailed('Tagihan sudah dibatalkan')
        if amount > (bill.remaining_amount or 0):
            raise ValidationFailed('Nominal pembayaran melebihi sisa tagihan')

        try:
            payment = BillPayment(
                payment_no=BillingService.next_payment_no(),
                bill_id=bill.id,
                amount=amount,
                payment_date=payment_date or datetime.utcnow(),
                method=PaymentMethod[method] if isinstance(method, str) else method,
                channel=channel,
                reference=reference,
                proof_url=proof_url,
                notes=notes,
                verification_status=VerificationStatus.VERIFIED if auto_verify else VerificationStatus.PENDING,
                verified_by=user.id if auto_verify and user else None,
                verified_at=datetime.utcnow() if auto_verify else None,
            )
            db.session.add(payment)
            db.session.flush()

            if auto_verify:
                BillingService.apply_payment(bill, payment, user.id if user else None)
            else:
                db.session.add(PaymentHistory(
                    bill_id=bill.id,
                    payment_id=payment.id,
                    student_id=bill.student_id,
                    action='PAYMENT_PENDING',
                    description=f'Pembayaran menunggu verifikasi - {payment.method.value}',
                    change_amount=-amount,
                    performed_by=user.id if user else None,
                    details={'method': payment.method.name, 'channel': channel, 'reference': reference},
                ))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Pembayaran %s untuk tagihan %s dicatat (%s)", payment.payment_no, bill.bill_no,
                    payment.verification_status.name)
        return payment

    @staticmethod
    def verify_payment(payment_id, action, user, rejection_reason=None, commit=True):
        payment = db.session.get(BillPayment, payment_id)
        if not payment:
            raise NotFound('Pembayaran tidak ditemukan')
        if payment.verification_status != VerificationStatus.PENDING:
            raise Conflict('Pembayaran sudah diproses sebelumnya')

        bill = payment.bill
        try:
            if action == 'VERIFY':
                if payment.amount > (bill.remaining_amount or 0):
                    raise Conflict('Nominal pembayaran melebihi sisa tagihan')
                payment.verification_status = VerificationStatus.VERIFIED
                payment.verified_by = user.id
                payment.verified_at = datetime.utcnow()
                BillingService.apply_payment(bill, payment, user.id)
                db.session.add(PaymentHistory(
                    bill_id=bill.id,
                    payment_id=payment.id,
                    student_id=bill.student_id,
                    action='PAYMENT_VERIFIED',
                    description=f'Pembayaran {payment.payment_no} diverifikasi',
                    performed_by=user.id,
                ))
            else:
                payment.verification_status = VerificationStatus.REJECTED
                payment.verified_by = user.id
                payment.verified_at = datetime.utcnow()
                payment.rejection_reason = rejection_reason
                db.session.add(PaymentHistory(
                    bill_id=bill.id,
                    payment_id=payment.id,
                    student_id=bill.student_id,
                    action='PAYMENT_REJECTED',
                    description=f'Pembayaran {payment.payment_no} ditolak',
                    performed_by=user.id,
                    details={'reason': rejection_reason},
                ))
            if commit:
                db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Pembayaran %s: %s oleh user %s", payment.payment_no, action, user.id)
        return payment

    @staticmethod
    def bulk_verify(payment_ids, user):
        results = {'verified': [], 'failed': []}
        for payment_id in payment_ids:
            try:
                BillingService.verify_payment(payment_id, 'VERIFY', user)
                results['verified'].append(payment_id)
            except (NotFound, Conflict) as e:
                results['failed'].append({'payment_id': payment_id, 'error': e.message})
        return results

    @staticmethod
    def cancel_bill(bill, user, reason=None):
        if bill.status == BillStatus.CANCELLED:
            raise Conflict('Tagihan sudah dibatalkan')
        if (bill.paid_amount or 0) > 0:
            raise Conflict('Tagihan yang sudah dibayar tidak dapat dibatalkan')

        previous = bill.remaining_amount
        bill.status = BillStatus.CANCELLED
        bill.remaining_amount = 0
        bill.is_overdue = False
        db.session.add(PaymentHistory(
            bill_id=bill.id,
            student_id=bill.student_id,
            action='BILL_CANCELLED',
            description=reason or 'Tagihan dibatalkan',
            previous_amount=previous,
            new_amount=0,
            performed_by=user.id,
        ))
        db.session.commit()
        return bill

    # ==========================================
    # LAPORAN
    # ==========================================
    @staticmethod
    def report(period=None):
        query = Bill.query.filter(Bill.status != BillStatus.CANCELLED)
        if period:
            query = query.filter(Bill.period == period)
        bills = query.all()

        def _totals(rows):
            billed = sum(b.amount or 0 for b in rows)
            collected = sum(b.paid_amount or 0 for b in rows)
            return {
                'count': len(rows),
                'billed': billed,
                'collected': collected,
                'outstanding': sum(b.remaining_amount or 0 for b in rows),
                'collection_rate': round(collected / billed * 100, 2) if billed else 0,
            }

        by_type, by_institution = {}, {}
        for bill in bills:
            by_type.setdefault(bill.bill_type.name, []).append(bill)
            key = bill.student.institution_type.name if bill.student.institution_type else 'LAINNYA'
            by_institution.setdefault(key, []).append(bill)

        count_query = db.session.query(Bill.status, func.count(Bill.id))
        if period:
            count_query = count_query.filter(Bill.period == period)
        status_counts = dict(count_query.group_by(Bill.status).all())

        return {
            'period': period,
            'summary': _totals(bills),
            'by_status': {s.name: status_counts.get(s, 0) for s in BillStatus},
            'by_bill_type': {name: _totals(rows) for name, rows in by_type.items()},
            'by_institution': {name: _totals(rows) for name, rows in by_institution.items()},
        }
