from flask import Blueprint, jsonify, request
from models import (db, AssessmentComponent, CourseEnrollment, CourseLearningOutcome, CourseOffering, Question,
                    Student, StudentCLOAttainment, StudentQuestionMark)
from attainment_utils import (AttainmentError, BatchResult, NotFoundError, percentage_of, quantize_percentage,
                              upsert_by_natural_key, ZERO)
from decimal import Decimal
from sqlalchemy import and_
import logging

clo_bp = Blueprint('clo', __name__, url_prefix='/api/clo-attainment')

ACHIEVED = 'Achieved'
NOT_ACHIEVED = 'Not Achieved'

def calculate_student_clo_attainment(student_id, course_offering_id, clo_id=None):
    """
    Roll a student's question marks up to the CLOs of a course offering.

    Only CLOs with at least one tagged question in the offering get a row.
    With clo_id the single row is returned, or None when that CLO has no
    questions in the offering; otherwise the list of rows.
    """
    offering = db.session.get(CourseOffering, course_offering_id)
    if offering is None:
        raise NotFoundError(f"Course offering {course_offering_id} not found")
    if db.session.get(Student, student_id) is None:
        raise NotFoundError(f"Student {student_id} not found")

    query = db.session.query(Question, CourseLearningOutcome, StudentQuestionMark.marks_obtained).join(
        AssessmentComponent, Question.assessment_component_id == AssessmentComponent.id
    ).join(
        CourseLearningOutcome, Question.clo_id == CourseLearningOutcome.id
    ).outerjoin(
        StudentQuestionMark,
        and_(StudentQuestionMark.question_id == Question.id, StudentQuestionMark.student_id == student_id)
    ).filter(
        AssessmentComponent.course_offering_id == course_offering_id,
        CourseLearningOutcome.course_id == offering.course_id
    )
    if clo_id is not None:
        query = query.filter(Question.clo_id == clo_id)

    totals = {}
    for question, clo, marks_obtained in query.all():
        entry = totals.setdefault(clo.id, {'clo': clo, 'obtained': ZERO, 'possible': ZERO})
        entry['possible'] += Decimal(str(question.marks))
        if marks_obtained is not None:
            entry['obtained'] += Decimal(str(marks_obtained))

    records = []
    for entry in sorted(totals.values(), key=lambda e: e['clo'].code):
        clo = entry['clo']
        percentage = percentage_of(entry['obtained'], entry['possible'])
        achieved = entry['possible'] > 0 and percentage >= Decimal(str(clo.target_attainment))
        records.append(upsert_by_natural_key(
            StudentCLOAttainment,
            {'student_id': student_id, 'course_offering_id': course_offering_id, 'clo_id': clo.id},
            {
                'attainment_percentage': percentage,
                'attainment_status': ACHIEVED if achieved else NOT_ACHIEVED,
                'total_marks_obtained': entry['obtained'],
                'total_possible_marks': entry['possible']
            }
        ))
    db.session.commit()

    if clo_id is not None:
        return records[0] if records else None
    return records

def calculate_all_clo_attainment(course_offering_id):
    if db.session.get(CourseOffering, course_offering_id) is None:
        raise NotFoundError(f"Course offering {course_offering_id} not found")

    student_ids = [row.student_id for row in CourseEnrollment.query.filter_by(
        course_offering_id=course_offering_id, status='Active'
    ).order_by(CourseEnrollment.student_id).all()]

    batch = BatchResult(key_name='student_id')
    for student_id in student_ids:
        try:
            batch.add_success(calculate_student_clo_attainment(student_id, course_offering_id))
        except Exception as e:
            db.session.rollback()
            logging.error(f"Error calculating CLO attainment of student {student_id} in offering {course_offering_id}: {str(e)}")
            batch.add_failure(student_id, e)
    return batch

def get_clo_summary(course_offering_id):
    """Average attainment and achieved count per CLO of an offering"""
    rows = StudentCLOAttainment.query.filter_by(course_offering_id=course_offering_id).all()

    grouped = {}
    for row in rows:
        grouped.setdefault(row.clo_id, []).append(row)

    summary = []
    for clo_id, clo_rows in grouped.items():
        clo = db.session.get(CourseLearningOutcome, clo_id)
        total = len(clo_rows)
        achieved = sum(1 for r in clo_rows if r.attainment_status == ACHIEVED)
        average = sum(Decimal(str(r.attainment_percentage)) for r in clo_rows) / total
        summary.append({
            'clo_id': clo_id,
            'clo_code': clo.code,
            'target_attainment': float(clo.target_attainment),
            'total_students': total,
            'students_achieved': achieved,
            'average_attainment': float(quantize_percentage(average)),
            'achievement_rate': float(percentage_of(achieved, total))
        })
    return sorted(summary, key=lambda item: item['clo_code'])

@clo_bp.route('/calculate', methods=['POST'])
def calculate():
    data = request.get_json(silent=True) or {}
    if not data.get('student_id') or not data.get('course_offering_id'):
        return jsonify({'success': False, 'message': 'student_id and course_offering_id are required'}), 400

    try:
        clo_id = data.get('clo_id')
        result = calculate_student_clo_attainment(int(data['student_id']), int(data['course_offering_id']),
                                                  int(clo_id) if clo_id else None)
        if clo_id:
            if result is None:
                return jsonify({'success': False, 'message': 'CLO has no questions in this course offering'}), 404
            return jsonify({'success': True, 'data': result.to_dict()})
        return jsonify({'success': True, 'data': [r.to_dict() for r in result]})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error calculating CLO attainment: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@clo_bp.route('/calculate-all', methods=['POST'])
def calculate_all():
    data = request.get_json(silent=True) or {}
    if not data.get('course_offering_id'):
        return jsonify({'success': False, 'message': 'course_offering_id is required'}), 400

    try:
        batch = calculate_all_clo_attainment(int(data['course_offering_id']))
        return jsonify({'success': True,
                        'message': f'Calculated CLO attainment for {batch.calculated} students, {batch.failed} failed',
                        'data': batch.to_dict()})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error calculating CLO attainment for offering: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@clo_bp.route('/summary/<int:course_offering_id>', methods=['GET'])
def summary(course_offering_id):
    try:
        return jsonify({'success': True, 'data': get_clo_summary(course_offering_id)})
    except Exception as e:
        logging.error(f"Error building CLO summary of offering {course_offering_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@clo_bp.route('/student/<int:student_id>/course-offering/<int:course_offering_id>', methods=['GET'])
def student_attainment(student_id, course_offering_id):
    rows = StudentCLOAttainment.query.filter_by(
        student_id=student_id, course_offering_id=course_offering_id
    ).order_by(StudentCLOAttainment.clo_id).all()
    return jsonify({'success': True, 'data': [r.to_dict() for r in rows]})
