from decimal import Decimal

import pytest

from attainment_utils import NotFoundError, ValidationError
from conftest import add_mark, add_student, components_of
from models import db, AssessmentComponent, CourseOffering, CourseResult, GradePoint, GradeScale, Log
from routes.result_routes import (calculate_all_course_results, calculate_course_result, get_active_grade_scale,
                                  get_course_results, get_course_statistics, publish_course_results,
                                  update_result_remarks)


def test_weighted_result_passes(offering, grade_scale):
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    add_mark(student, midterm, 80)
    add_mark(student, final, 40)

    result = calculate_course_result(student.id, offering.id, grade_scale)

    assert result.percentage == Decimal('80.00')
    assert result.total_marks == Decimal('80.00')
    assert result.letter_grade == 'A'
    assert result.grade_point == Decimal('4.00')
    assert result.status == 'Pass'
    assert result.credit_earned == Decimal('3.00')


def test_absent_component_makes_result_incomplete(offering, grade_scale):
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    add_mark(student, midterm, 80)
    add_mark(student, final, is_absent=True)

    result = calculate_course_result(student.id, offering.id, grade_scale)

    # Renormalized over the midterm only
    assert result.percentage == Decimal('80.00')
    assert result.letter_grade == 'A'
    assert result.status == 'Incomplete'


def test_missing_mark_row_is_incomplete(offering, grade_scale):
    student = add_student('S1', offering=offering)
    midterm, _ = components_of(offering)
    add_mark(student, midterm, 100)

    result = calculate_course_result(student.id, offering.id, grade_scale)
    assert result.status == 'Incomplete'
    assert result.percentage == Decimal('100.00')


def test_exempted_component_equals_removed_component(offering, grade_scale):
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    add_mark(student, midterm, 70)
    add_mark(student, final, 10, is_exempted=True)

    exempted = calculate_course_result(student.id, offering.id, grade_scale).percentage

    db.session.delete(final)
    db.session.commit()
    removed = calculate_course_result(student.id, offering.id, grade_scale)

    assert exempted == removed.percentage == Decimal('70.00')
    assert removed.status == 'Pass'


def test_all_components_exempted_gives_zero(offering, grade_scale):
    student = add_student('S1', offering=offering)
    for component in components_of(offering):
        add_mark(student, component, 50, is_exempted=True)

    result = calculate_course_result(student.id, offering.id, grade_scale)
    assert result.percentage == Decimal('0.00')
    assert result.letter_grade == 'F'
    assert result.status == 'Fail'
    assert result.credit_earned == 0


def test_failing_grade_earns_no_credit(offering, grade_scale):
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    add_mark(student, midterm, 20)
    add_mark(student, final, 10)

    result = calculate_course_result(student.id, offering.id, grade_scale)
    assert result.percentage == Decimal('20.00')
    assert result.grade_point == 0
    assert result.status == 'Fail'
    assert result.credit_earned == 0


def test_no_matching_band_leaves_grade_empty(offering):
    scale = GradeScale(name='Partial', is_active=True)
    db.session.add(scale)
    db.session.commit()
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    add_mark(student, midterm, 80)
    add_mark(student, final, 40)

    result = calculate_course_result(student.id, offering.id, scale)
    assert result.letter_grade is None
    assert result.grade_point is None
    assert result.status is None
    assert result.credit_earned == 0


def test_percentage_in_wide_grade_gap_leaves_grade_empty(offering):
    scale = GradeScale(name='Sparse', is_active=True)
    db.session.add(scale)
    db.session.flush()
    db.session.add_all([
        GradePoint(grade_scale_id=scale.id, letter_grade='A', grade_point='4.00', min_percentage=75,
                   max_percentage=100),
        GradePoint(grade_scale_id=scale.id, letter_grade='F', grade_point='0.00', min_percentage=0,
                   max_percentage=40)
    ])
    db.session.commit()
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    add_mark(student, midterm, 60)
    add_mark(student, final, 30)

    result = calculate_course_result(student.id, offering.id, scale)

    assert result.percentage == Decimal('60.00')
    assert result.letter_grade is None
    assert result.status is None
    assert result.credit_earned == 0


def test_marks_outside_component_range_are_rejected(offering, grade_scale):
    midterm, final = components_of(offering)
    over = add_student('S1', offering=offering)
    add_mark(over, midterm, 150)
    add_mark(over, final, 50)
    negative = add_student('S2', offering=offering)
    add_mark(negative, midterm, -5)
    add_mark(negative, final, 50)

    with pytest.raises(ValidationError):
        calculate_course_result(over.id, offering.id, grade_scale)
    with pytest.raises(ValidationError):
        calculate_course_result(negative.id, offering.id, grade_scale)
    db.session.rollback()

    batch = calculate_all_course_results(offering.id, grade_scale)
    assert batch.calculated == 0
    assert batch.failed == 2
    assert CourseResult.query.count() == 0


def test_percentage_stays_within_bounds(offering, grade_scale):
    midterm, final = components_of(offering)
    for index, (first, second) in enumerate([(0, 0), (100, 50), (33, 17), (99.5, 0.5)]):
        student = add_student(f'S{index}', offering=offering)
        add_mark(student, midterm, first)
        add_mark(student, final, second)
        result = calculate_course_result(student.id, offering.id, grade_scale)
        assert Decimal('0') <= result.percentage <= Decimal('100')


def test_missing_inputs_raise(offering, grade_scale):
    student = add_student('S1', offering=offering)
    with pytest.raises(NotFoundError):
        calculate_course_result(student.id, 9999, grade_scale)
    with pytest.raises(NotFoundError):
        calculate_course_result(9999, offering.id, grade_scale)

    empty = CourseOffering(course_id=offering.course_id, semester='2025-Spring')
    db.session.add(empty)
    db.session.commit()
    with pytest.raises(NotFoundError):
        calculate_course_result(student.id, empty.id, grade_scale)


def test_zero_max_marks_is_rejected(offering, grade_scale):
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    final.max_marks = 0
    db.session.commit()
    add_mark(student, midterm, 80)
    add_mark(student, final, 0)

    with pytest.raises(ValidationError):
        calculate_course_result(student.id, offering.id, grade_scale)


def test_recalculation_is_idempotent(offering, grade_scale):
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    add_mark(student, midterm, 65)
    add_mark(student, final, 30)

    first = calculate_course_result(student.id, offering.id, grade_scale).to_dict()
    second = calculate_course_result(student.id, offering.id, grade_scale).to_dict()

    assert first == second
    assert CourseResult.query.count() == 1


def test_calculate_all_continues_after_failures(offering, grade_scale):
    midterm, final = components_of(offering)
    good = add_student('S1', offering=offering)
    add_mark(good, midterm, 90)
    add_mark(good, final, 45)
    add_student('S2', offering=offering, status='Dropped')
    other = add_student('S3', offering=offering)
    add_mark(other, midterm, 50)
    add_mark(other, final, 25)

    broken = AssessmentComponent(course_offering_id=offering.id, name='Lab', weightage=0, max_marks=0,
                                 sequence_number=3)
    db.session.add(broken)
    db.session.commit()
    add_mark(other, broken, 5)

    batch = calculate_all_course_results(offering.id, grade_scale)

    assert batch.calculated == 1
    assert batch.failed == 1
    summary = batch.to_dict()
    assert summary['errors'][0]['student_id'] == other.id
    assert CourseResult.query.count() == 1


def test_publish_and_statistics(offering, grade_scale):
    midterm, final = components_of(offering)
    for registration, first, second in [('S1', 90, 45), ('S2', 20, 10), ('S3', 70, None)]:
        student = add_student(registration, offering=offering)
        add_mark(student, midterm, first)
        if second is not None:
            add_mark(student, final, second)
    calculate_all_course_results(offering.id, grade_scale)

    assert publish_course_results(offering.id) == 3
    assert Log.query.filter_by(action='PUBLISH_RESULTS').count() == 1
    assert len(get_course_results(offering.id, published_only=True)) == 3

    stats = get_course_statistics(offering.id)
    assert stats['total_students'] == 3
    assert stats['passed'] == 1
    assert stats['failed'] == 1
    assert stats['incomplete'] == 1
    assert stats['published'] == 3
    assert stats['highest_percentage'] == 90.0
    assert stats['lowest_percentage'] == 20.0
    assert stats['grade_distribution'] == {'A': 1, 'F': 1, 'B': 1}

    assert publish_course_results(offering.id, False) == 3
    assert get_course_results(offering.id, published_only=True) == []


def test_recalculation_keeps_publication_and_remarks(offering, grade_scale):
    student = add_student('S1', offering=offering)
    midterm, final = components_of(offering)
    add_mark(student, midterm, 80)
    add_mark(student, final, 40)
    result = calculate_course_result(student.id, offering.id, grade_scale)
    publish_course_results(offering.id)
    update_result_remarks(result.id, 'Reviewed')

    again = calculate_course_result(student.id, offering.id, grade_scale)
    assert again.is_published is True
    assert again.remarks == 'Reviewed'


def test_active_grade_scale_required(app):
    with pytest.raises(ValidationError):
        get_active_grade_scale()
