from pondok.models import UserRole


STAFF_ROLES = (UserRole.ADMIN, UserRole.TU)

ROLE_LABELS = {
    UserRole.ADMIN: 'Admin',
    UserRole.GURU: 'Guru',
    UserRole.TU: 'Staf TU',
    UserRole.WALI_MURID: 'Wali Murid',
    UserRole.SISWA: 'Santri',
}


def parse_role(raw):
    if not raw:
        return None

    if isinstance(raw, UserRole):
        return raw

    if isinstance(raw, str):
        normalized = raw.strip()
        if not normalized:
            return None

        try:
            return UserRole[normalized]
        except KeyError:
            pass

        for role in UserRole:
            if normalized.lower() == role.value.lower():
                return role

    return None


def role_label(role_or_raw):
    role = parse_role(role_or_raw)
    if not role:
        return '-'
    return ROLE_LABELS.get(role, role.value)


def is_staff(user):
    return bool(user and user.is_authenticated and user.has_role(*STAFF_ROLES))
