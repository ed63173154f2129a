from decimal import Decimal

import pytest

from attainment_utils import NotFoundError
from conftest import add_plo, add_student, score_questions
from models import db, Degree, StudentPLOAttainment
from routes.clo_routes import calculate_student_clo_attainment
from routes.plo_routes import (calculate_all_students_plo_attainment, calculate_student_plo_attainment,
                               get_plo_breakdown_by_course, get_student_plo_summary)


def scored_student(mapped_course, registration, marks):
    student = add_student(registration, degree=mapped_course.degree, offering=mapped_course.offering)
    score_questions(student, mapped_course, marks)
    calculate_student_clo_attainment(student.id, mapped_course.offering.id)
    return student


def test_clo_marks_pool_into_plos(mapped_course):
    student = scored_student(mapped_course, 'S1', [8, 10, 6, 5])

    plo1, plo2, plo3 = calculate_student_plo_attainment(student.id, mapped_course.degree.id)

    # PLO1 pools CLO1 (14/20) and CLO2 (10/20)
    assert plo1.total_marks_obtained == Decimal('24.00')
    assert plo1.total_possible_marks == Decimal('40.00')
    assert plo1.attainment_percentage == Decimal('60.00')
    assert plo1.attainment_status == 'Achieved'

    assert plo2.attainment_percentage == Decimal('50.00')
    assert plo2.attainment_status == 'Not Achieved'

    assert plo3.total_possible_marks == 0
    assert plo3.attainment_percentage == 0
    assert plo3.attainment_status == 'Not Achieved'


def test_status_matches_target_and_possible_marks(mapped_course):
    for index, marks in enumerate([[10, 20, 10, 5], [0, 0, 0, 0], [6, 12, 6, 0], [5, 11, 6, 0]]):
        student = scored_student(mapped_course, f'S{index}', marks)
        for row in calculate_student_plo_attainment(student.id, mapped_course.degree.id):
            target = next(p.target_attainment for p in mapped_course.plos if p.id == row.plo_id)
            expected = row.total_possible_marks > 0 and row.attainment_percentage >= target
            assert (row.attainment_status == 'Achieved') == expected


def test_zero_target_without_marks_is_not_achieved(mapped_course):
    free = add_plo(mapped_course.degree, 'PLO4', target=0)
    student = scored_student(mapped_course, 'S1', [8, 10, 6, 5])

    row = calculate_student_plo_attainment(student.id, mapped_course.degree.id, free.id)
    assert row.total_possible_marks == 0
    assert row.attainment_status == 'Not Achieved'


def test_single_plo_outside_degree_returns_none(mapped_course):
    other_degree = Degree(code='BSEE', name='Electrical Engineering')
    db.session.add(other_degree)
    db.session.commit()
    foreign = add_plo(other_degree, 'PLO1')
    student = scored_student(mapped_course, 'S1', [8, 10, 6, 5])

    assert calculate_student_plo_attainment(student.id, mapped_course.degree.id, foreign.id) is None


def test_unknown_student_raises(mapped_course):
    with pytest.raises(NotFoundError):
        calculate_student_plo_attainment(9999, mapped_course.degree.id)


def test_plo_recalculation_does_not_duplicate(mapped_course):
    student = scored_student(mapped_course, 'S1', [8, 10, 6, 5])

    first = [r.to_dict() for r in calculate_student_plo_attainment(student.id, mapped_course.degree.id)]
    second = [r.to_dict() for r in calculate_student_plo_attainment(student.id, mapped_course.degree.id)]

    assert first == second
    assert StudentPLOAttainment.query.count() == 3


def test_all_students_batch(mapped_course):
    scored_student(mapped_course, 'S1', [8, 10, 6, 5])
    scored_student(mapped_course, 'S2', [10, 20, 10, 5])
    add_student('S3', degree=mapped_course.degree)

    batch = calculate_all_students_plo_attainment(mapped_course.degree.id)

    assert batch.calculated == 3
    assert batch.failed == 0
    assert StudentPLOAttainment.query.count() == 9


def test_student_summary_and_breakdown(mapped_course):
    student = scored_student(mapped_course, 'S1', [8, 10, 6, 5])
    calculate_student_plo_attainment(student.id, mapped_course.degree.id)

    summary = get_student_plo_summary(student.id, mapped_course.degree.id)
    assert summary['total_plos'] == 3
    assert summary['plos_achieved'] == 1
    assert summary['max_attainment'] == 60.0
    assert summary['min_attainment'] == 0.0

    breakdown = get_plo_breakdown_by_course(student.id, mapped_course.degree.id, mapped_course.plos[0].id)
    assert len(breakdown) == 1
    assert breakdown[0]['course_code'] == 'CS101'
    assert breakdown[0]['clo_count'] == 2
    assert breakdown[0]['attainment_percentage'] == 60.0
