from sqlalchemy import or_, func

from pondok.errors import Forbidden, NotFound
from pondok.extensions import db
from pondok.models import (
    Student, Bill, BillPayment, HafalanRecord, HafalanSession, VerificationStatus,
)
from pondok.services.academic_service import AcademicService
from pondok.services.billing_service import OPEN_STATUSES
from pondok.utils.phone import phone_variants


class ParentService:
    @staticmethod
    def children_of(parent):
        """Anak = santri yang terhubung ke akun wali atau No HP ayah/ibu sama dengan No HP wali."""
        if not parent:
            return []
        conditions = [Student.parent_id == parent.id]
        variants = phone_variants(parent.phone)
        if variants:
            conditions.append(Student.father_phone.in_(variants))
            conditions.append(Student.mother_phone.in_(variants))
        return Student.query.filter(or_(*conditions)).order_by(Student.full_name).all()

    @staticmethod
    def get_child(parent, student_id):
        if student_id is None:
            raise NotFound('Santri tidak ditemukan')
        for child in ParentService.children_of(parent):
            if child.id == student_id:
                return child
        if not db.session.get(Student, student_id):
            raise NotFound('Santri tidak ditemukan')
        raise Forbidden('Anda tidak memiliki akses ke data santri ini')

    @staticmethod
    def outstanding_total(student_id):
        total = db.session.query(func.sum(Bill.remaining_amount)).filter(
            Bill.student_id == student_id,
            Bill.status.in_(OPEN_STATUSES),
        ).scalar()
        return float(total or 0)

    @staticmethod
    def child_summary(student):
        progress = student.hafalan_progress
        return {
            **student.to_dict(),
            'hafalan': {
                'level': progress.level.name if progress and progress.level else 'PEMULA',
                'total_ayat': progress.total_ayat if progress else 0,
                'total_surah': progress.total_surah if progress else 0,
                'overall_progress': progress.overall_progress if progress else 0,
            },
            'outstanding_total': ParentService.outstanding_total(student.id),
            'attendance_rate': AcademicService.monthly_attendance_rate(student.id),
        }

    @staticmethod
    def dashboard(parent, user):
        from pondok.utils.announcements import get_announcements_for_user

        children = ParentService.children_of(parent)
        child_ids = [c.id for c in children]
        summaries = [ParentService.child_summary(child) for child in children]

        recent_hafalan = []
        recent_payments = []
        if child_ids:
            recent_hafalan = HafalanRecord.query.filter(HafalanRecord.student_id.in_(child_ids)) \
                .order_by(HafalanRecord.date.desc()).limit(5).all()
            recent_payments = BillPayment.query.join(Bill, Bill.id == BillPayment.bill_id) \
                .filter(Bill.student_id.in_(child_ids),
                        BillPayment.verification_status == VerificationStatus.VERIFIED) \
                .order_by(BillPayment.payment_date.desc()).limit(5).all()

        _, announcements, unread_count = get_announcements_for_user(user, limit=5)
        return {
            'parent': parent.to_dict(),
            'children': summaries,
            'total_outstanding': sum(s['outstanding_total'] for s in summaries),
            'recent_hafalan': [r.to_dict() for r in recent_hafalan],
            'recent_payments': [p.to_dict() for p in recent_payments],
            'announcements': announcements,
            'unread_announcements': unread_count,
        }

    @staticmethod
    def hafalan(student, limit=20):
        progress = student.hafalan_progress
        records = HafalanRecord.query.filter_by(student_id=student.id) \
            .order_by(HafalanRecord.date.desc()).limit(limit).all()
        sessions = HafalanSession.query.filter_by(student_id=student.id) \
            .order_by(HafalanSession.session_date.desc()).limit(limit).all()
        return {
            'student': student.to_dict(),
            'progress': progress.to_dict() if progress else None,
            'records': [r.to_dict() for r in records],
            'sessions': [s.to_dict() for s in sessions],
        }

    @staticmethod
    def payments(student):
        bills = Bill.query.filter_by(student_id=student.id) \
            .order_by(Bill.due_date.desc(), Bill.id.desc()).all()
        payments = BillPayment.query.join(Bill, Bill.id == BillPayment.bill_id) \
            .filter(Bill.student_id == student.id) \
            .order_by(BillPayment.payment_date.desc()).all()
        return {
            'student': student.to_dict(),
            'bills': [b.to_dict() for b in bills],
            'payments': [p.to_dict() for p in payments],
            'outstanding_total': ParentService.outstanding_total(student.id),
        }
