from sqlalchemy import and_, or_

from pondok.extensions import db
from pondok.models import Announcement, AnnouncementRead, UserRole


def visible_announcements_query(user, class_ids=None, user_ids=None):
    class_ids = [cid for cid in (class_ids or []) if cid]
    user_ids = [uid for uid in (user_ids or []) if uid]

    filters = [
        Announcement.target_scope == 'ALL',
        and_(Announcement.target_scope == 'ROLE', Announcement.target_role == user.role.name),
    ]

    if class_ids:
        filters.append(and_(Announcement.target_scope == 'CLASS', Announcement.target_class_id.in_(class_ids)))

    if user_ids:
        filters.append(and_(Announcement.target_scope == 'USER', Announcement.target_user_id.in_(user_ids)))

    return Announcement.query.filter(
        Announcement.is_active.is_(True),
        or_(*filters)
    )


def announcement_author_label(announcement):
    author = announcement.author
    if not author:
        return "Sistem"

    if author.role == UserRole.TU:
        return "Staf TU"
    if author.role == UserRole.GURU:
        if announcement.target_class and announcement.target_class.homeroom_teacher and \
                announcement.target_class.homeroom_teacher.user_id == author.id:
            return f"Wali Kelas {announcement.target_class.name}"
        return "Guru"
    if author.role == UserRole.ADMIN:
        return "Admin"
    return author.username


def scope_for_user(user):
    """Kelas dan user id yang relevan untuk filter pengumuman."""
    class_ids = []
    user_ids = [user.id]

    if user.role == UserRole.SISWA and user.student_profile:
        class_ids.append(user.student_profile.current_class_id)
    elif user.role == UserRole.WALI_MURID and user.parent_profile:
        from pondok.services.parent_service import ParentService
        for child in ParentService.children_of(user.parent_profile):
            class_ids.append(child.current_class_id)
            if child.user_id:
                user_ids.append(child.user_id)
    elif user.role == UserRole.GURU and user.teacher_profile and user.teacher_profile.homeroom_class:
        class_ids.append(user.teacher_profile.homeroom_class.id)

    return class_ids, user_ids


def get_announcements_for_user(user, limit=None):
    class_ids, user_ids = scope_for_user(user)
    base_query = visible_announcements_query(user, class_ids=class_ids, user_ids=user_ids)
    ordered_query = base_query.order_by(Announcement.created_at.desc(), Announcement.id.desc())
    announcements = ordered_query.limit(limit).all() if limit else ordered_query.all()

    all_visible_ids = [row[0] for row in base_query.with_entities(Announcement.id).all()]
    unread_count = 0
    read_ids = set()
    if all_visible_ids:
        read_ids = {
            row[0] for row in db.session.query(AnnouncementRead.announcement_id).filter(
                AnnouncementRead.user_id == user.id,
                AnnouncementRead.announcement_id.in_(all_visible_ids)
            ).all()
        }
        unread_count = len(set(all_visible_ids) - read_ids)

    items = []
    for item in announcements:
        data = item.to_dict()
        data['is_unread'] = item.id not in read_ids
        data['author_label'] = announcement_author_label(item)
        items.append(data)

    return announcements, items, unread_count


def mark_announcements_as_read(user, announcements):
    if not announcements:
        return

    ann_ids = [a.id for a in announcements if a]
    if not ann_ids:
        return

    existing = {
        row[0] for row in db.session.query(AnnouncementRead.announcement_id).filter(
            AnnouncementRead.user_id == user.id,
            AnnouncementRead.announcement_id.in_(ann_ids)
        ).all()
    }
    new_items = [
        AnnouncementRead(user_id=user.id, announcement_id=ann_id)
        for ann_id in ann_ids if ann_id not in existing
    ]
    if new_items:
        db.session.add_all(new_items)
        db.session.commit()
