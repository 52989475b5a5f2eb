import logging
from datetime import date, datetime

from pondok.errors import ValidationFailed, NotFound, Conflict
from pondok.extensions import db
from pondok.models import OTAProgram, OTASponsor, OTAReport

logger = logging.getLogger(__name__)


def previous_month(month):
    year, month_num = (int(part) for part in month.split('-'))
    if month_num == 1:
        return f'{year - 1}-12'
    return f'{year}-{month_num - 1:02d}'


def initials(full_name):
    parts = [p for p in (full_name or '').split() if p]
    return '.'.join(p[0].upper() for p in parts) + '.' if parts else '-'


def _paid_total(sponsors):
    return sum(s.amount for s in sponsors if s.is_paid)


class OTAService:
    @staticmethod
    def current_month(today=None):
        return (today or date.today()).strftime('%Y-%m')

    @staticmethod
    def public_programs(today=None):
        month = OTAService.current_month(today)
        programs = OTAProgram.query.filter_by(is_active=True).order_by(OTAProgram.id).all()
        items = []
        for program in programs:
            sponsors = OTASponsor.query.filter_by(program_id=program.id, month=month).all()
            collected = _paid_total(sponsors)
            student = program.student
            items.append({
                'id': program.id,
                'student_initials': initials(student.full_name) if student else '-',
                'institution_type': student.institution_type.name if student and student.institution_type else None,
                'grade': student.grade if student else None,
                'description': program.description,
                'monthly_target': program.monthly_target,
                'collected': collected,
                'progress': round(min(100, collected / program.monthly_target * 100), 2) if program.monthly_target else 0,
                'sponsor_count': sum(1 for s in sponsors if s.is_paid),
                'months_completed': program.months_completed,
                'month': month,
            })
        return items

    @staticmethod
    def pledge(form, today=None):
        program = db.session.get(OTAProgram, form.program_id.data)
        if not program or not program.is_active:
            raise NotFound('Program OTA tidak ditemukan')

        month = form.month.data or OTAService.current_month(today)
        try:
            datetime.strptime(month, '%Y-%m')
        except ValueError:
            raise ValidationFailed('Format bulan harus YYYY-MM')

        sponsor = OTASponsor(
            program_id=program.id,
            donor_name=form.donor_name.data,
            donor_email=form.donor_email.data or None,
            donor_phone=form.donor_phone.data or None,
            amount=form.amount.data,
            month=month,
            is_paid=False,
        )
        sponsor.save()
        return sponsor

    @staticmethod
    def mark_paid(sponsor_id):
        sponsor = db.session.get(OTASponsor, sponsor_id)
        if not sponsor:
            raise NotFound('Data sponsor tidak ditemukan')
        if sponsor.is_paid:
            raise Conflict('Sponsor sudah ditandai lunas')

        program = sponsor.program
        sponsor.is_paid = True
        sponsor.paid_at = datetime.utcnow()
        if program.current_month in (None, sponsor.month):
            program.current_month = sponsor.month
            paid = _paid_total(OTASponsor.query.filter_by(program_id=program.id, month=sponsor.month).all())
            program.monthly_progress = paid
        program.last_update = datetime.utcnow()
        db.session.commit()
        return sponsor

    @staticmethod
    def build_report(month):
        """Hitung data laporan bulanan (belum disimpan)."""
        sponsored_ids = {
            row[0] for row in db.session.query(OTASponsor.program_id).filter(OTASponsor.month == month).all()
        }
        programs = OTAProgram.query.filter(
            db.or_(OTAProgram.is_active.is_(True), OTAProgram.id.in_(sponsored_ids) if sponsored_ids else db.false())
        ).order_by(OTAProgram.id).all()

        total_target = total_collected = total_pending = 0
        fully = partial = unfunded = 0
        details = []
        paid_sponsors = []

        for program in programs:
            sponsors = OTASponsor.query.filter_by(program_id=program.id, month=month).all()
            paid = _paid_total(sponsors)
            pending = sum(s.amount for s in sponsors if not s.is_paid)
            target = program.monthly_target or 0
            paid_sponsors.extend(s for s in sponsors if s.is_paid)

            total_target += target
            total_collected += paid
            total_pending += pending

            if paid >= target:
                fully += 1
                status = 'FULLY_FUNDED'
            elif paid > 0:
                partial += 1
                status = 'PARTIALLY_FUNDED'
            else:
                unfunded += 1
                status = 'UNFUNDED'

            student = program.student
            details.append({
                'program_id': program.id,
                'student_initials': initials(student.full_name) if student else '-',
                'institution_type': student.institution_type.name if student and student.institution_type else None,
                'monthly_target': target,
                'collected_amount': paid,
                'pending_amount': pending,
                'donor_count': sum(1 for s in sponsors if s.is_paid),
                'completion_percentage': round(paid / target * 100) if target else 0,
                'status': status,
            })

        prev = previous_month(month)
        prev_donors = {
            s.donor_key() for s in OTASponsor.query.filter_by(month=prev, is_paid=True).all()
        }
        new_donors = sum(1 for s in paid_sponsors if s.donor_key() not in prev_donors)

        prev_report = OTAReport.query.filter_by(month=prev, report_type='MONTHLY').first()
        carry_over = prev_report.surplus_amount if prev_report else 0

        return {
            'total_target': total_target,
            'total_collected': total_collected,
            'total_distributed': total_collected,
            'total_pending': total_pending,
            'total_orphans': len(programs),
            'fully_funded_count': fully,
            'partial_funded_count': partial,
            'unfunded_count': unfunded,
            'total_donors': len({s.donor_key() for s in paid_sponsors}),
            'new_donors': new_donors,
            'recurring_donors': len(paid_sponsors) - new_donors,
            'carry_over_amount': carry_over,
            'surplus_amount': max(0, total_collected + carry_over - total_target),
            'details': details,
        }

    @staticmethod
    def monthly_reset(today=None):
        today = today or date.today()
        current = OTAService.current_month(today)
        prev = previous_month(current)

        try:
            report = OTAReport.query.filter_by(month=prev, report_type='MONTHLY').first()
            report_generated = False
            if not report:
                report = OTAReport(month=prev, year=prev[:4], report_type='MONTHLY',
                                   generated_by='SYSTEM', status='FINAL', **OTAService.build_report(prev))
                db.session.add(report)
                db.session.flush()
                report_generated = True

            programs = OTAProgram.query.filter_by(is_active=True).all()
            promoted = reset = 0
            for program in programs:
                if program.current_month == current:
                    continue
                paid = _paid_total(OTASponsor.query.filter_by(program_id=program.id, month=prev).all())
                if program.monthly_target and paid >= program.monthly_target:
                    program.months_completed = (program.months_completed or 0) + 1
                    promoted += 1
                program.current_month = current
                program.monthly_progress = 0
                program.last_update = datetime.utcnow()
                reset += 1
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise

        logger.info("Reset OTA %s selesai, laporan %s", current, prev)
        return {
            'current_month': current,
            'previous_month': prev,
            'report_generated': report_generated,
            'report_id': report.id,
            'total_programs_reset': reset,
            'total_programs_promoted': promoted,
            'carry_over_amount': report.surplus_amount,
        }
