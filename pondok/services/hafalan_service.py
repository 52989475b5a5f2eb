import logging
from collections import defaultdict
from datetime import datetime

from sqlalchemy import func

from pondok.data.quran import TOTAL_AYAT, JUZ30_TOTAL_AYAT
from pondok.errors import ValidationFailed, NotFound, Forbidden
from pondok.extensions import db
from pondok.models import (
    Student, QuranSurah, HafalanRecord, HafalanSession, HafalanProgress,
    HafalanAchievement, HafalanStatus, HafalanQuality, HafalanSessionType,
    HafalanLevel, UserRole,
)

logger = logging.getLogger(__name__)

QUALITY_SCORES = {
    HafalanQuality.A: 4,
    HafalanQuality.B: 3,
    HafalanQuality.C: 2,
}

COUNTED_STATUSES = (HafalanStatus.LANCAR, HafalanStatus.MUTQIN)


def determine_level(completed_surah, overall_progress):
    if completed_surah >= 30 or overall_progress >= 80:
        return HafalanLevel.HAFIDZ
    if completed_surah >= 10 or overall_progress >= 40:
        return HafalanLevel.LANJUT
    if completed_surah >= 3 or overall_progress >= 15:
        return HafalanLevel.MENENGAH
    return HafalanLevel.PEMULA


def achievement_level(total_ayat):
    if total_ayat <= 50:
        return 'BRONZE'
    if total_ayat <= 100:
        return 'SILVER'
    return 'GOLD'


def calculate_progress(records, surahs):
    """
    Hitung agregat hafalan dari daftar record.
    Ayat yang tumpang tindih antar record hanya dihitung sekali.
    """
    covered = defaultdict(set)
    mutqin = defaultdict(set)
    quality_scores = []

    for record in records:
        if record.status not in COUNTED_STATUSES:
            continue
        surah = surahs.get(record.surah_number)
        if not surah:
            continue

        start = max(1, record.start_ayat)
        end = min(record.end_ayat, surah.total_ayat)
        ayat_range = range(start, end + 1)
        covered[surah.number].update(ayat_range)
        if record.status == HafalanStatus.MUTQIN:
            mutqin[surah.number].update(ayat_range)

        # Nilai kosong dihitung setara C
        quality_scores.append(QUALITY_SCORES.get(record.quality, QUALITY_SCORES[HafalanQuality.C]))

    total_ayat = sum(len(ayat) for ayat in covered.values())
    completed = sorted(
        number for number, ayat in mutqin.items()
        if len(ayat) >= surahs[number].total_ayat
    )
    juz_covered = {surahs[number].juz for number, ayat in covered.items() if ayat}
    juz30_ayat = sum(len(ayat) for number, ayat in covered.items() if surahs[number].juz == 30)

    overall_progress = min(100.0, total_ayat / TOTAL_AYAT * 100)
    juz30_progress = min(100.0, juz30_ayat / JUZ30_TOTAL_AYAT * 100)
    avg_quality = sum(quality_scores) / len(quality_scores) if quality_scores else 0

    return {
        'total_surah': len(completed),
        'completed_surahs': completed,
        'total_ayat': total_ayat,
        'total_juz': len(juz_covered),
        'juz30_progress': juz30_progress,
        'overall_progress': overall_progress,
        'avg_quality': avg_quality,
        'level': determine_level(len(completed), overall_progress),
    }


class HafalanService:
    @staticmethod
    def get_surah(surah_number):
        surah = db.session.get(QuranSurah, surah_number)
        if not surah:
            raise NotFound('Surat tidak ditemukan')
        return surah

    @staticmethod
    def validate_range(surah_number, start_ayat, end_ayat):
        surah = HafalanService.get_surah(surah_number)
        if start_ayat > end_ayat:
            raise ValidationFailed('Ayat awal tidak boleh lebih besar dari ayat akhir')
        if end_ayat > surah.total_ayat:
            raise ValidationFailed(f'Surat {surah.name} hanya memiliki {surah.total_ayat} ayat')
        return surah

    @staticmethod
    def get_student(student_id):
        student = db.session.get(Student, student_id)
        if not student or student.is_deleted:
            raise NotFound('Santri tidak ditemukan')
        return student

    @staticmethod
    def update_student_progress(student_id, awarded_by=None):
        records = HafalanRecord.query.filter(
            HafalanRecord.student_id == student_id,
            HafalanRecord.status.in_(COUNTED_STATUSES),
        ).all()
        surahs = {s.number: s for s in QuranSurah.query.all()}
        stats = calculate_progress(records, surahs)

        total_sessions = HafalanSession.query.filter_by(student_id=student_id).count()
        last_session = db.session.query(func.max(HafalanSession.session_date)) \
            .filter(HafalanSession.student_id == student_id).scalar()
        last_record = db.session.query(func.max(HafalanRecord.date)) \
            .filter(HafalanRecord.student_id == student_id).scalar()
        last_dates = [d for d in (last_session, last_record) if d]

        progress = HafalanProgress.query.filter_by(student_id=student_id).first()
        if not progress:
            progress = HafalanProgress(student_id=student_id)
            db.session.add(progress)

        progress.total_surah = stats['total_surah']
        progress.total_ayat = stats['total_ayat']
        progress.total_juz = stats['total_juz']
        progress.juz30_progress = stats['juz30_progress']
        progress.overall_progress = stats['overall_progress']
        progress.avg_quality = stats['avg_quality']
        progress.level = stats['level']
        progress.total_sessions = total_sessions
        progress.last_setoran_date = max(last_dates) if last_dates else None
        progress.last_updated = datetime.utcnow()

        HafalanService._award_completed_surahs(student_id, stats['completed_surahs'], surahs, awarded_by)
        db.session.commit()
        return progress

    @staticmethod
    def _award_completed_surahs(student_id, completed, surahs, awarded_by=None):
        if not completed:
            return []
        awarded = {
            row[0] for row in db.session.query(HafalanAchievement.surah_number).filter(
                HafalanAchievement.student_id == student_id,
                HafalanAchievement.type == 'SURAH_COMPLETE',
            ).execution_options(include_deleted=True).all()
        }

        new_items = []
        for number in completed:
            if number in awarded:
                continue
            surah = surahs[number]
            achievement = HafalanAchievement(
                student_id=student_id,
                type='SURAH_COMPLETE',
                surah_number=number,
                title=f'Hafal Surat {surah.name}',
                description=f'Menyelesaikan hafalan surat {surah.name} ({surah.total_ayat} ayat) dengan status mutqin',
                level=achievement_level(surah.total_ayat),
                points=surah.total_ayat * 10,
                verified_by=awarded_by,
                verified_at=datetime.utcnow(),
            )
            db.session.add(achievement)
            new_items.append(achievement)
            logger.info("Santri %s menyelesaikan surat %s", student_id, surah.name)
        return new_items

    @staticmethod
    def create_record(form, teacher):
        HafalanService.get_student(form.student_id.data)
        HafalanService.validate_range(form.surah_number.data, form.start_ayat.data, form.end_ayat.data)

        record = HafalanRecord(
            student_id=form.student_id.data,
            teacher_id=teacher.id,
            surah_number=form.surah_number.data,
            start_ayat=form.start_ayat.data,
            end_ayat=form.end_ayat.data,
            status=HafalanStatus[form.status.data],
            quality=HafalanQuality[form.quality.data] if form.quality.data else HafalanQuality.B,
            fluency=form.fluency.data or None,
            tajweed=form.tajweed.data or None,
            makharijul=form.makharijul.data or None,
            duration=form.duration.data,
            method=form.method.data or 'INDIVIDUAL',
            notes=form.notes.data or None,
            corrections=form.corrections.data or None,
        )
        try:
            db.session.add(record)
            db.session.flush()
            HafalanService.update_student_progress(record.student_id, awarded_by=teacher.id)
        except Exception:
            db.session.rollback()
            raise
        return record

    @staticmethod
    def _check_owner(item, user):
        if item.teacher_id != user.id and not user.has_role(UserRole.ADMIN):
            raise Forbidden('Hanya pembuat data atau admin yang dapat mengubah')

    @staticmethod
    def update_record(record, form, payload, user):
        HafalanService._check_owner(record, user)

        start = form.start_ayat.data if 'start_ayat' in payload else record.start_ayat
        end = form.end_ayat.data if 'end_ayat' in payload else record.end_ayat
        HafalanService.validate_range(record.surah_number, start, end)
        record.start_ayat = start
        record.end_ayat = end

        if form.status.data:
            record.status = HafalanStatus[form.status.data]
        if form.quality.data:
            record.quality = HafalanQuality[form.quality.data]
        for field in ('fluency', 'tajweed', 'makharijul', 'notes', 'corrections'):
            if field in payload:
                setattr(record, field, getattr(form, field).data or None)

        db.session.flush()
        HafalanService.update_student_progress(record.student_id, awarded_by=user.id)
        return record

    @staticmethod
    def create_setoran(form, teacher):
        """Satu sesi setoran beserta seluruh isinya ditulis dalam satu transaksi."""
        HafalanService.get_student(form.student_id.data)

        contents = form.content.data
        for item in contents:
            HafalanService.validate_range(item['surah_number'], item['start_ayat'], item['end_ayat'])

        session_date = form.session_date.data or datetime.utcnow()
        overall_quality = HafalanQuality[form.overall_quality.data] if form.overall_quality.data else HafalanQuality.B

        try:
            setoran = HafalanSession(
                student_id=form.student_id.data,
                teacher_id=teacher.id,
                session_date=session_date,
                type=HafalanSessionType[form.type.data] if form.type.data else HafalanSessionType.SETORAN_BARU,
                duration=form.duration.data or 15,
                location=form.location.data or 'KELAS',
                total_ayat=sum(item['end_ayat'] - item['start_ayat'] + 1 for item in contents),
                overall_quality=overall_quality,
                overall_fluency=form.overall_fluency.data or 'CUKUP',
                student_mood=form.student_mood.data or 'NORMAL',
                engagement=form.engagement.data or 'GOOD',
                improvements=form.improvements.data or None,
                challenges=form.challenges.data or None,
                homework=form.homework.data or None,
                next_target=form.next_target.data or None,
                notes=form.notes.data or None,
            )
            db.session.add(setoran)
            db.session.flush()

            for item in contents:
                db.session.add(HafalanRecord(
                    student_id=setoran.student_id,
                    teacher_id=teacher.id,
                    session_id=setoran.id,
                    surah_number=item['surah_number'],
                    start_ayat=item['start_ayat'],
                    end_ayat=item['end_ayat'],
                    status=HafalanStatus[item['status']],
                    quality=HafalanQuality[item['quality']] if item.get('quality') else overall_quality,
                    fluency=item.get('fluency') or None,
                    tajweed=item.get('tajweed') or None,
                    notes=item.get('notes') or None,
                    date=session_date,
                ))
            db.session.flush()
            progress = HafalanService.update_student_progress(setoran.student_id, awarded_by=teacher.id)
        except Exception:
            db.session.rollback()
            raise

        logger.info("Setoran %s untuk santri %s disimpan (%s ayat)", setoran.id, setoran.student_id, setoran.total_ayat)
        return setoran, progress

    @staticmethod
    def delete_setoran(setoran, user):
        HafalanService._check_owner(setoran, user)
        try:
            for record in setoran.records:
                record.is_deleted = True
            setoran.is_deleted = True
            db.session.flush()
            HafalanService.update_student_progress(setoran.student_id)
        except Exception:
            db.session.rollback()
            raise

    @staticmethod
    def statistics(limit=10):
        leaderboard = db.session.query(HafalanProgress, Student) \
            .join(Student, Student.id == HafalanProgress.student_id) \
            .order_by(HafalanProgress.total_ayat.desc(), HafalanProgress.avg_quality.desc()) \
            .limit(limit).all()

        level_counts = dict(
            db.session.query(HafalanProgress.level, func.count(HafalanProgress.id))
            .group_by(HafalanProgress.level).all()
        )
        averages = db.session.query(
            func.avg(HafalanProgress.total_ayat),
            func.avg(HafalanProgress.overall_progress),
        ).one()

        return {
            'leaderboard': [
                {
                    'rank': index,
                    'student_id': student.id,
                    'full_name': student.full_name,
                    'nis': student.nis,
                    'total_ayat': progress.total_ayat,
                    'total_surah': progress.total_surah,
                    'level': progress.level.name if progress.level else None,
                }
                for index, (progress, student) in enumerate(leaderboard, start=1)
            ],
            'levels': {level.name: level_counts.get(level, 0) for level in HafalanLevel},
            'total_students': sum(level_counts.values()),
            'avg_total_ayat': round(averages[0] or 0, 2),
            'avg_overall_progress': round(averages[1] or 0, 2),
            'total_sessions': HafalanSession.query.count(),
        }
