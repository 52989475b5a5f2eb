from types import SimpleNamespace

from pondok.models import HafalanLevel, HafalanProgress, HafalanQuality, HafalanStatus
from pondok.services.hafalan_service import calculate_progress, determine_level, achievement_level

from conftest import login

SURAHS = {
    1: SimpleNamespace(number=1, name='Al-Fatihah', total_ayat=7, juz=1),
    112: SimpleNamespace(number=112, name='Al-Ikhlas', total_ayat=4, juz=30),
}


def _record(surah_number, start, end, status=HafalanStatus.LANCAR, quality=HafalanQuality.B):
    return SimpleNamespace(surah_number=surah_number, start_ayat=start, end_ayat=end,
                           status=status, quality=quality)


def test_calculate_progress_counts_overlap_once():
    records = [
        _record(1, 1, 4),
        _record(1, 3, 7),
        _record(112, 1, 4, status=HafalanStatus.BARU),
    ]

    stats = calculate_progress(records, SURAHS)

    assert stats['total_ayat'] == 7
    assert stats['total_surah'] == 0
    assert stats['total_juz'] == 1
    assert stats['level'] == HafalanLevel.PEMULA


def test_calculate_progress_completed_surah_needs_mutqin():
    records = [
        _record(112, 1, 2, status=HafalanStatus.MUTQIN, quality=HafalanQuality.A),
        _record(112, 3, 4, status=HafalanStatus.MUTQIN, quality=HafalanQuality.C),
        _record(1, 1, 7, status=HafalanStatus.LANCAR),
    ]

    stats = calculate_progress(records, SURAHS)

    assert stats['completed_surahs'] == [112]
    assert stats['total_ayat'] == 11
    assert stats['total_juz'] == 2
    assert stats['avg_quality'] == 3


def test_calculate_progress_empty_quality_scored_as_c():
    records = [
        _record(1, 1, 3, quality=HafalanQuality.A),
        _record(1, 4, 7, quality=None),
    ]

    stats = calculate_progress(records, SURAHS)

    assert stats['avg_quality'] == 3


def test_determine_level_thresholds():
    assert determine_level(0, 0) == HafalanLevel.PEMULA
    assert determine_level(3, 0) == HafalanLevel.MENENGAH
    assert determine_level(0, 15) == HafalanLevel.MENENGAH
    assert determine_level(10, 0) == HafalanLevel.LANJUT
    assert determine_level(30, 0) == HafalanLevel.HAFIDZ
    assert determine_level(0, 80) == HafalanLevel.HAFIDZ


def test_achievement_level():
    assert achievement_level(4) == 'BRONZE'
    assert achievement_level(75) == 'SILVER'
    assert achievement_level(286) == 'GOLD'


def test_record_mutqin_awards_achievement(app, guru, factory):
    client, _, _ = guru
    student_id = factory.student('PONDOK25001')

    response = client.post('/api/hafalan/record', json={
        'student_id': student_id,
        'surah_number': 112,
        'start_ayat': 1,
        'end_ayat': 4,
        'status': 'MUTQIN',
        'quality': 'A',
    })

    assert response.status_code == 201
    progress = response.get_json()['progress']
    assert progress['total_ayat'] == 4
    assert progress['total_surah'] == 1

    detail = client.get(f'/api/hafalan/progress/{student_id}').get_json()
    assert len(detail['achievements']) == 1
    achievement = detail['achievements'][0]
    assert achievement['level'] == 'BRONZE'
    assert achievement['points'] == 40

    # Record kedua untuk surat yang sama tidak menambah penghargaan
    client.post('/api/hafalan/record', json={
        'student_id': student_id, 'surah_number': 112, 'start_ayat': 1, 'end_ayat': 4, 'status': 'MUTQIN',
    })
    detail = client.get(f'/api/hafalan/progress/{student_id}').get_json()
    assert len(detail['achievements']) == 1
    assert detail['progress']['total_ayat'] == 4


def test_record_rejects_ayat_out_of_range(guru, factory):
    client, _, _ = guru
    student_id = factory.student('PONDOK25001')

    too_long = client.post('/api/hafalan/record', json={
        'student_id': student_id, 'surah_number': 112, 'start_ayat': 1, 'end_ayat': 5, 'status': 'LANCAR',
    })
    reversed_range = client.post('/api/hafalan/record', json={
        'student_id': student_id, 'surah_number': 112, 'start_ayat': 3, 'end_ayat': 2, 'status': 'LANCAR',
    })

    assert too_long.status_code == 400
    assert reversed_range.status_code == 400


def test_record_unknown_student(guru):
    client, _, _ = guru

    response = client.post('/api/hafalan/record', json={
        'student_id': 999, 'surah_number': 112, 'start_ayat': 1, 'end_ayat': 4, 'status': 'LANCAR',
    })

    assert response.status_code == 404


def test_setoran_lifecycle(app, guru, factory):
    client, user_id, _ = guru
    student_id = factory.student('PONDOK25001')

    response = client.post('/api/hafalan/setoran', json={
        'student_id': student_id,
        'session_date': '2025-08-01T07:30',
        'overall_quality': 'A',
        'content': [
            {'surah_number': 1, 'start_ayat': 1, 'end_ayat': 7, 'status': 'LANCAR'},
            {'surah_number': 112, 'start_ayat': 1, 'end_ayat': 4, 'status': 'MUTQIN'},
        ],
    })

    assert response.status_code == 201
    body = response.get_json()
    setoran_id = body['setoran']['id']
    assert body['setoran']['total_ayat'] == 11
    assert body['setoran']['teacher_id'] == user_id
    assert len(body['setoran']['records']) == 2
    assert body['progress']['total_ayat'] == 11
    assert body['progress']['total_sessions'] == 1

    factory.teacher('guru02')
    other = app.test_client()
    login(other, 'guru02')
    assert other.delete(f'/api/hafalan/setoran/{setoran_id}').status_code == 403

    assert client.delete(f'/api/hafalan/setoran/{setoran_id}').status_code == 200
    assert client.get(f'/api/hafalan/setoran/{setoran_id}').status_code == 404

    with app.app_context():
        progress = HafalanProgress.query.filter_by(student_id=student_id).first()
        assert progress.total_ayat == 0
        assert progress.total_sessions == 0


def test_setoran_requires_content(guru, factory):
    client, _, _ = guru
    student_id = factory.student('PONDOK25001')

    response = client.post('/api/hafalan/setoran', json={'student_id': student_id, 'content': []})

    assert response.status_code == 400


def test_update_record_by_owner(guru, factory):
    client, _, _ = guru
    student_id = factory.student('PONDOK25001')
    record = client.post('/api/hafalan/record', json={
        'student_id': student_id, 'surah_number': 1, 'start_ayat': 1, 'end_ayat': 3, 'status': 'LANCAR',
    }).get_json()['record']

    response = client.put('/api/hafalan/record', json={'id': record['id'], 'end_ayat': 7, 'notes': 'Lancar'})

    assert response.status_code == 200
    assert response.get_json()['record']['end_ayat'] == 7
    progress = client.get(f'/api/hafalan/progress/{student_id}').get_json()['progress']
    assert progress['total_ayat'] == 7


def test_statistics_leaderboard(guru, factory):
    client, _, _ = guru
    first = factory.student('PONDOK25001', full_name='Muhammad Arsyad')
    second = factory.student('PONDOK25002', full_name='Muhammad Faqih')
    client.post('/api/hafalan/record', json={
        'student_id': first, 'surah_number': 112, 'start_ayat': 1, 'end_ayat': 4, 'status': 'LANCAR',
    })
    client.post('/api/hafalan/record', json={
        'student_id': second, 'surah_number': 1, 'start_ayat': 1, 'end_ayat': 7, 'status': 'LANCAR',
    })

    response = client.get('/api/hafalan/statistics')

    assert response.status_code == 200
    body = response.get_json()
    assert [row['student_id'] for row in body['leaderboard']] == [second, first]
    assert body['total_students'] == 2
    assert body['levels']['PEMULA'] == 2


def test_parent_sees_child_progress_only(app, factory):
    _, parent_id = factory.parent('wali01')
    own = factory.student('PONDOK25001', parent_id=parent_id)
    other = factory.student('PONDOK25002')

    client = app.test_client()
    login(client, 'wali01')

    assert client.get(f'/api/hafalan/progress/{own}').status_code == 200
    assert client.get(f'/api/hafalan/progress/{other}').status_code == 403
    assert client.post('/api/hafalan/record', json={}).status_code == 403
