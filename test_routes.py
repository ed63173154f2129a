import logging

from app import configure_logging
from conftest import add_mark, add_student, components_of
from db_migrations import NATURAL_KEYS, check_and_update_database
from models import db, AttainmentThreshold, CourseResult
from sqlalchemy import inspect, text


def post_threshold(client, degree, name, low, high, threshold_type='PLO'):
    return client.post('/api/attainment-thresholds', json={
        'degree_id': degree.id, 'threshold_type': threshold_type, 'level_name': name,
        'min_percentage': low, 'max_percentage': high
    })


def test_threshold_endpoints(client, degree):
    assert post_threshold(client, degree, 'Not Attained', 0, 59).status_code == 201
    assert post_threshold(client, degree, 'Attained', 60, 100).status_code == 201

    overlap = post_threshold(client, degree, 'Excellent', 90, 100)
    assert overlap.status_code == 409
    assert overlap.get_json()['success'] is False

    assert post_threshold(client, degree, 'Broken', 80, 20).status_code == 400

    evaluated = client.post('/api/attainment-thresholds/evaluate',
                            json={'degree_id': degree.id, 'threshold_type': 'PLO', 'percentage': 59.999})
    assert evaluated.status_code == 200
    assert evaluated.get_json()['data']['level_name'] == 'Not Attained'

    missing = client.post('/api/attainment-thresholds/evaluate',
                          json={'degree_id': degree.id, 'threshold_type': 'CLO', 'percentage': 50})
    assert missing.status_code == 404

    listed = client.get(f'/api/attainment-thresholds?degree_id={degree.id}&order_by=min_percentage&order=desc')
    assert [t['level_name'] for t in listed.get_json()['data']] == ['Attained', 'Not Attained']

    bad_order = client.get('/api/attainment-thresholds?order_by=level_name;drop')
    assert bad_order.status_code == 400

    upper = AttainmentThreshold.query.filter_by(level_name='Attained').one()
    assert client.put(f'/api/attainment-thresholds/{upper.id}', json={'max_percentage': 95}).status_code == 200
    assert client.delete(f'/api/attainment-thresholds/{upper.id}').status_code == 200
    assert client.delete(f'/api/attainment-thresholds/{upper.id}').status_code == 404
    assert client.delete(f'/api/attainment-thresholds/degree/{degree.id}').get_json()['data']['deleted'] == 1


def test_course_result_endpoints(client, offering, grade_scale):
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    add_mark(student, midterm, 80)
    add_mark(student, final, 40)

    calculated = client.post('/api/course-results/calculate',
                             json={'student_id': student.id, 'course_offering_id': offering.id})
    assert calculated.status_code == 200
    assert calculated.get_json()['data']['letter_grade'] == 'A'

    batch = client.post('/api/course-results/calculate-all', json={'course_offering_id': offering.id})
    assert batch.get_json()['data'] == {'calculated': 1, 'failed': 0, 'errors': []}

    published = client.patch(f'/api/course-results/publish/{offering.id}', json={'is_published': True})
    assert published.get_json()['data']['affected_rows'] == 1

    listed = client.get(f'/api/course-results/course-offering/{offering.id}?published_only=true&order_by=percentage')
    assert len(listed.get_json()['data']) == 1

    stats = client.get(f'/api/course-results/statistics/{offering.id}').get_json()['data']
    assert stats['passed'] == 1

    result = CourseResult.query.one()
    remarks = client.patch(f'/api/course-results/{result.id}/remarks', json={'remarks': 'Checked'})
    assert remarks.get_json()['data']['remarks'] == 'Checked'

    missing = client.post('/api/course-results/calculate', json={'student_id': student.id, 'course_offering_id': 999})
    assert missing.status_code == 404


def test_course_result_requires_active_grade_scale(client, offering):
    student = add_student('S1', offering=offering)
    response = client.post('/api/course-results/calculate',
                           json={'student_id': student.id, 'course_offering_id': offering.id})
    assert response.status_code == 400
    assert 'grade scale' in response.get_json()['message']


def test_course_result_csv_export(client, offering, grade_scale):
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    add_mark(student, midterm, 80)
    add_mark(student, final, 40)
    client.post('/api/course-results/calculate-all', json={'course_offering_id': offering.id})

    response = client.get(f'/api/course-results/course-offering/{offering.id}/export')

    assert response.status_code == 200
    assert response.headers['Content-Type'].startswith('text/csv')
    assert 'attachment' in response.headers['Content-Disposition']
    body = response.data
    assert body.startswith(b'\xef\xbb\xbf')
    lines = body[3:].decode('utf-8').splitlines()
    assert lines[0] == 'sep=;'
    assert lines[1].startswith('Registration Number;Total Marks;Percentage')
    assert lines[2].startswith('S1;80.0;80.0;A;4.0;3.0;Pass')


def test_program_and_indirect_endpoints(client, degree):
    calculated = client.post('/api/program-attainment/calculate', json={'degree_id': degree.id,
                                                                         'recalculate_students': True})
    assert calculated.status_code == 200
    assert calculated.get_json()['data']['summaries'] == []

    assert client.post('/api/program-attainment/compare', json={'degree_ids': []}).status_code == 400
    assert client.get(f'/api/program-attainment/degree/{degree.id}/trends?limit=0').status_code == 400
    assert client.post('/api/program-attainment/calculate', json={'degree_id': 999}).status_code == 404

    assert client.post('/api/indirect-attainment/calculate', json={'survey_id': 42}).status_code == 404
    assert client.get('/api/indirect-attainment/outcome/PEO/1').status_code == 400


def test_unknown_route_answers_json(client):
    response = client.get('/api/does-not-exist')
    assert response.status_code == 404
    assert response.get_json() == {'success': False, 'message': 'Resource not found'}


def test_natural_key_indexes_are_restored(app):
    engine = db.engine
    with engine.begin() as connection:
        connection.execute(text('DROP TABLE program_plo_attainment_snapshot'))
        connection.execute(text(
            'CREATE TABLE program_plo_attainment_snapshot (id INTEGER PRIMARY KEY, degree_id INTEGER, '
            'plo_id INTEGER, period VARCHAR(7), total_students INTEGER, average_attainment NUMERIC(10, 2), '
            'achievement_rate NUMERIC(10, 2), overall_status VARCHAR(20), calculated_at DATETIME)'
        ))

    created = check_and_update_database(app)

    assert created == ['uq_program_plo_attainment_snapshot_natural_key']
    indexes = inspect(engine).get_indexes('program_plo_attainment_snapshot')
    assert any(index['unique'] and set(index['column_names']) == set(NATURAL_KEYS['program_plo_attainment_snapshot'])
               for index in indexes)
    assert check_and_update_database(app) == []


def test_log_level_comes_from_environment(monkeypatch, tmp_path):
    monkeypatch.setenv('LOG_FILE', str(tmp_path / 'attainment.log'))
    monkeypatch.setenv('LOG_LEVEL', 'debug')
    assert configure_logging() == logging.DEBUG
    monkeypatch.setenv('LOG_LEVEL', 'verbose')
    assert configure_logging() == logging.WARNING
