from flask import Blueprint, jsonify, request
from models import (db, AssessmentComponent, CourseEnrollment, CourseOffering, CourseResult, GradeScale,
                    Log, Student, StudentAssessmentMark)
from attainment_utils import (AttainmentError, BatchResult, NotFoundError, ValidationError, apply_ordering,
                              find_band, quantize_percentage, upsert_by_natural_key, HUNDRED, ZERO)
from routes.utility_routes import export_report_csv
from decimal import Decimal
from sqlalchemy import and_
import logging

result_bp = Blueprint('result', __name__, url_prefix='/api/course-results')

STATUS_PASS = 'Pass'
STATUS_FAIL = 'Fail'
STATUS_INCOMPLETE = 'Incomplete'

RESULT_ORDERING = {
    'percentage': CourseResult.percentage,
    'total_marks': CourseResult.total_marks,
    'letter_grade': CourseResult.letter_grade,
    'status': CourseResult.status,
    'student_id': CourseResult.student_id,
    'registration_number': Student.registration_number
}

def get_active_grade_scale():
    grade_scale = GradeScale.query.filter_by(is_active=True).order_by(GradeScale.id.desc()).first()
    if grade_scale is None:
        raise ValidationError('No active grade scale configured')
    return grade_scale

def calculate_course_result(student_id, course_offering_id, grade_scale):
    """
    Calculate and store the final result of a student in a course offering.

    Exempted components are skipped. Absent or ungraded components mark the
    result Incomplete and stay out of the sums, so the percentage is the
    weighted score over the graded components only:

        percentage = sum(marks / max_marks * weightage) / sum(weightage) * 100

    The grade band is looked up in grade_scale on the rounded percentage.
    """
    offering = db.session.get(CourseOffering, course_offering_id)
    if offering is None:
        raise NotFoundError(f"Course offering {course_offering_id} not found")
    if db.session.get(Student, student_id) is None:
        raise NotFoundError(f"Student {student_id} not found")

    rows = db.session.query(AssessmentComponent, StudentAssessmentMark).outerjoin(
        StudentAssessmentMark,
        and_(StudentAssessmentMark.assessment_component_id == AssessmentComponent.id,
             StudentAssessmentMark.student_id == student_id)
    ).filter(
        AssessmentComponent.course_offering_id == course_offering_id
    ).order_by(
        AssessmentComponent.sequence_number.is_(None), AssessmentComponent.sequence_number, AssessmentComponent.id
    ).all()

    if not rows:
        raise NotFoundError(f"No assessment components found for course offering {course_offering_id}")

    weighted_marks = ZERO
    weightage_sum = ZERO
    has_incomplete = False

    for component, mark in rows:
        if mark is not None and mark.is_exempted:
            continue
        if mark is None or mark.is_absent or mark.marks_obtained is None:
            has_incomplete = True
            continue

        max_marks = Decimal(str(component.max_marks))
        if max_marks <= 0:
            raise ValidationError(f"Assessment component '{component.name}' has no maximum marks")
        marks_obtained = Decimal(str(mark.marks_obtained))
        if marks_obtained < 0 or marks_obtained > max_marks:
            raise ValidationError(f"Marks {marks_obtained} of '{component.name}' are outside 0-{max_marks}")
        weightage = Decimal(str(component.weightage))
        weighted_marks += marks_obtained / max_marks * weightage
        weightage_sum += weightage

    percentage = quantize_percentage(weighted_marks / weightage_sum * HUNDRED if weightage_sum > 0 else ZERO)

    band = find_band(grade_scale.points, percentage)
    grade_point_id = letter_grade = grade_point = status = None
    credit_earned = ZERO
    if band is not None:
        grade_point_id = band.id
        letter_grade = band.letter_grade
        grade_point = Decimal(str(band.grade_point))
        if grade_point > 0:
            status = STATUS_PASS
            credit_earned = Decimal(str(offering.course.credit_hours))
        else:
            status = STATUS_FAIL
    else:
        logging.warning(f"No grade band in scale {grade_scale.id} covers {percentage}% "
                        f"(student {student_id}, offering {course_offering_id})")

    if has_incomplete:
        status = STATUS_INCOMPLETE

    result = upsert_by_natural_key(
        CourseResult,
        {'student_id': student_id, 'course_offering_id': course_offering_id},
        {
            'total_marks': quantize_percentage(weighted_marks),
            'percentage': percentage,
            'grade_point_id': grade_point_id,
            'letter_grade': letter_grade,
            'grade_point': grade_point,
            'credit_earned': credit_earned,
            'status': status
        }
    )
    db.session.commit()
    return result

def calculate_all_course_results(course_offering_id, grade_scale):
    """Calculate results for every actively enrolled student; failures are collected, not raised"""
    if db.session.get(CourseOffering, course_offering_id) is None:
        raise NotFoundError(f"Course offering {course_offering_id} not found")

    student_ids = [row.student_id for row in CourseEnrollment.query.filter_by(
        course_offering_id=course_offering_id, status='Active'
    ).order_by(CourseEnrollment.student_id).all()]

    batch = BatchResult(key_name='student_id')
    for student_id in student_ids:
        try:
            batch.add_success(calculate_course_result(student_id, course_offering_id, grade_scale))
        except Exception as e:
            db.session.rollback()
            logging.error(f"Error calculating result of student {student_id} in offering {course_offering_id}: {str(e)}")
            batch.add_failure(student_id, e)

    logging.info(f"Course results for offering {course_offering_id}: {batch.calculated} calculated, {batch.failed} failed")
    return batch

def publish_course_results(course_offering_id, publish_status=True):
    """Set the visibility flag of all results of an offering; returns the number of rows changed"""
    affected = CourseResult.query.filter_by(course_offering_id=course_offering_id).update(
        {'is_published': bool(publish_status)}, synchronize_session=False
    )
    db.session.add(Log(action='PUBLISH_RESULTS' if publish_status else 'UNPUBLISH_RESULTS',
                       description=f"{affected} results of course offering {course_offering_id} "
                                   f"{'published' if publish_status else 'unpublished'}"))
    db.session.commit()
    return affected

def get_course_results(course_offering_id, published_only=False, order_by=None, order='asc'):
    query = CourseResult.query.join(Student, Student.id == CourseResult.student_id).filter(
        CourseResult.course_offering_id == course_offering_id
    )
    if published_only:
        query = query.filter(CourseResult.is_published.is_(True))
    query = apply_ordering(query, RESULT_ORDERING, order_by, order, default='registration_number')
    return query.all()

def get_course_statistics(course_offering_id):
    results = CourseResult.query.filter_by(course_offering_id=course_offering_id).all()
    percentages = [Decimal(str(r.percentage)) for r in results]

    grade_distribution = {}
    for result in results:
        if result.letter_grade:
            grade_distribution[result.letter_grade] = grade_distribution.get(result.letter_grade, 0) + 1

    return {
        'total_students': len(results),
        'average_percentage': float(quantize_percentage(sum(percentages) / len(percentages))) if percentages else 0.0,
        'highest_percentage': float(max(percentages)) if percentages else 0.0,
        'lowest_percentage': float(min(percentages)) if percentages else 0.0,
        'passed': sum(1 for r in results if r.status == STATUS_PASS),
        'failed': sum(1 for r in results if r.status == STATUS_FAIL),
        'incomplete': sum(1 for r in results if r.status == STATUS_INCOMPLETE),
        'published': sum(1 for r in results if r.is_published),
        'grade_distribution': grade_distribution
    }

def update_result_remarks(result_id, remarks):
    result = db.session.get(CourseResult, result_id)
    if result is None:
        raise NotFoundError(f"Course result {result_id} not found")
    result.remarks = remarks
    db.session.commit()
    return result

@result_bp.route('/calculate', methods=['POST'])
def calculate():
    data = request.get_json(silent=True) or {}
    if not data.get('student_id') or not data.get('course_offering_id'):
        return jsonify({'success': False, 'message': 'student_id and course_offering_id are required'}), 400

    try:
        result = calculate_course_result(int(data['student_id']), int(data['course_offering_id']),
                                         get_active_grade_scale())
        return jsonify({'success': True, 'message': 'Course result calculated', 'data': result.to_dict()})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error calculating course result: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@result_bp.route('/calculate-all', methods=['POST'])
def calculate_all():
    data = request.get_json(silent=True) or {}
    if not data.get('course_offering_id'):
        return jsonify({'success': False, 'message': 'course_offering_id is required'}), 400

    try:
        batch = calculate_all_course_results(int(data['course_offering_id']), get_active_grade_scale())
        return jsonify({'success': True,
                        'message': f'Calculated {batch.calculated} results, {batch.failed} failed',
                        'data': batch.to_dict()})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error calculating course results: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@result_bp.route('/publish/<int:course_offering_id>', methods=['PATCH'])
def publish(course_offering_id):
    data = request.get_json(silent=True) or {}
    try:
        affected = publish_course_results(course_offering_id, data.get('is_published', True))
        return jsonify({'success': True, 'message': f'{affected} results updated', 'data': {'affected_rows': affected}})
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error publishing results of offering {course_offering_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@result_bp.route('/course-offering/<int:course_offering_id>', methods=['GET'])
def list_results(course_offering_id):
    try:
        results = get_course_results(
            course_offering_id,
            published_only=request.args.get('published_only', 'false').lower() == 'true',
            order_by=request.args.get('order_by'),
            order=request.args.get('order', 'asc')
        )
        return jsonify({'success': True, 'data': [r.to_dict() for r in results]})
    except AttainmentError as e:
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        logging.error(f"Error loading results of offering {course_offering_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@result_bp.route('/statistics/<int:course_offering_id>', methods=['GET'])
def statistics(course_offering_id):
    try:
        return jsonify({'success': True, 'data': get_course_statistics(course_offering_id)})
    except Exception as e:
        logging.error(f"Error computing statistics of offering {course_offering_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@result_bp.route('/<int:result_id>/remarks', methods=['PATCH'])
def remarks(result_id):
    data = request.get_json(silent=True) or {}
    try:
        result = update_result_remarks(result_id, data.get('remarks'))
        return jsonify({'success': True, 'data': result.to_dict()})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error updating remarks of result {result_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@result_bp.route('/course-offering/<int:course_offering_id>/export', methods=['GET'])
def export_results(course_offering_id):
    try:
        results = get_course_results(course_offering_id)
        rows = [{
            'Registration Number': db.session.get(Student, r.student_id).registration_number,
            'Total Marks': float(r.total_marks),
            'Percentage': float(r.percentage),
            'Letter Grade': r.letter_grade,
            'Grade Point': float(r.grade_point) if r.grade_point is not None else None,
            'Credit Earned': float(r.credit_earned),
            'Status': r.status,
            'Published': r.is_published
        } for r in results]
        headers = ['Registration Number', 'Total Marks', 'Percentage', 'Letter Grade', 'Grade Point',
                   'Credit Earned', 'Status', 'Published']
        return export_report_csv(rows, f"course_results_{course_offering_id}", headers)
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error exporting results of offering {course_offering_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500
