from datetime import datetime
from pondok.models import Student, User, InstitutionType


def generate_nis(level=InstitutionType.PONDOK, year=None):
    """NIS format: <LEVEL><yy><urut 3 digit>, contoh PONDOK25001."""
    target_year = year or datetime.now().year
    prefix = f"{level.name}{str(target_year)[-2:]}"

    sequence = Student.query.execution_options(include_deleted=True).filter(
        Student.institution_type == level,
        Student.enrollment_year == str(target_year),
    ).count() + 1

    while True:
        nis = f"{prefix}{sequence:03d}"
        taken = Student.query.execution_options(include_deleted=True).filter_by(nis=nis).first()
        if not taken and not User.query.filter_by(username=nis).first():
            return nis
        sequence += 1
