from flask import Blueprint, jsonify, request
from models import (db, CourseOffering, Degree, ProgramLearningOutcome, Student, StudentCLOAttainment,
                    StudentPLOAttainment)
from attainment_utils import (AttainmentError, BatchResult, NotFoundError, percentage_of, quantize_percentage,
                              upsert_by_natural_key, ZERO)
from decimal import Decimal
import logging

plo_bp = Blueprint('plo', __name__, url_prefix='/api/plo-attainment')

ACHIEVED = 'Achieved'
NOT_ACHIEVED = 'Not Achieved'

def _mapped_clo_ids(plo):
    return [clo.id for clo in plo.course_outcomes]

def calculate_student_plo_attainment(student_id, degree_id, plo_id=None):
    """
    Roll a student's stored CLO attainments up to the PLOs of a degree.

    Marks are pooled across every CLO mapped to the PLO, in every course
    offering, so a CLO with more possible marks weighs more:

        percentage = sum(obtained) / sum(possible) * 100

    With plo_id the single row is returned, or None when the PLO does not
    belong to the degree.
    """
    if db.session.get(Student, student_id) is None:
        raise NotFoundError(f"Student {student_id} not found")
    if db.session.get(Degree, degree_id) is None:
        raise NotFoundError(f"Degree {degree_id} not found")

    query = ProgramLearningOutcome.query.filter_by(degree_id=degree_id)
    if plo_id is not None:
        query = query.filter_by(id=plo_id)
    plos = query.order_by(ProgramLearningOutcome.code).all()

    records = []
    for plo in plos:
        clo_ids = _mapped_clo_ids(plo)
        obtained = possible = ZERO
        if clo_ids:
            for row in StudentCLOAttainment.query.filter(
                StudentCLOAttainment.student_id == student_id,
                StudentCLOAttainment.clo_id.in_(clo_ids)
            ).all():
                obtained += Decimal(str(row.total_marks_obtained))
                possible += Decimal(str(row.total_possible_marks))

        percentage = percentage_of(obtained, possible)
        achieved = possible > 0 and percentage >= Decimal(str(plo.target_attainment))
        records.append(upsert_by_natural_key(
            StudentPLOAttainment,
            {'student_id': student_id, 'degree_id': degree_id, 'plo_id': plo.id},
            {
                'attainment_percentage': percentage,
                'attainment_status': ACHIEVED if achieved else NOT_ACHIEVED,
                'total_marks_obtained': obtained,
                'total_possible_marks': possible
            }
        ))
    db.session.commit()

    if plo_id is not None:
        return records[0] if records else None
    return records

def calculate_all_students_plo_attainment(degree_id):
    """Recalculate every student of a degree, continuing past individual failures"""
    if db.session.get(Degree, degree_id) is None:
        raise NotFoundError(f"Degree {degree_id} not found")

    student_ids = [s.id for s in Student.query.filter_by(degree_id=degree_id).order_by(Student.id).all()]

    batch = BatchResult(key_name='student_id')
    for student_id in student_ids:
        try:
            batch.add_success(calculate_student_plo_attainment(student_id, degree_id))
        except Exception as e:
            db.session.rollback()
            logging.error(f"Error calculating PLO attainment of student {student_id} in degree {degree_id}: {str(e)}")
            batch.add_failure(student_id, e)

    logging.info(f"PLO attainment for degree {degree_id}: {batch.calculated} students calculated, {batch.failed} failed")
    return batch

def get_student_plo_summary(student_id, degree_id):
    rows = StudentPLOAttainment.query.filter_by(student_id=student_id, degree_id=degree_id).all()
    percentages = [Decimal(str(r.attainment_percentage)) for r in rows]
    achieved = sum(1 for r in rows if r.attainment_status == ACHIEVED)

    return {
        'total_plos': len(rows),
        'plos_achieved': achieved,
        'plos_not_achieved': len(rows) - achieved,
        'average_attainment': float(quantize_percentage(sum(percentages) / len(percentages))) if percentages else 0.0,
        'min_attainment': float(min(percentages)) if percentages else 0.0,
        'max_attainment': float(max(percentages)) if percentages else 0.0,
        'achievement_rate': float(percentage_of(achieved, len(rows)))
    }

def get_plo_breakdown_by_course(student_id, degree_id, plo_id):
    """Contribution of each course offering to one PLO of a student"""
    plo = ProgramLearningOutcome.query.filter_by(id=plo_id, degree_id=degree_id).first()
    if plo is None:
        raise NotFoundError(f"PLO {plo_id} not found in degree {degree_id}")

    clo_ids = _mapped_clo_ids(plo)
    if not clo_ids:
        return []

    per_offering = {}
    for row in StudentCLOAttainment.query.filter(
        StudentCLOAttainment.student_id == student_id,
        StudentCLOAttainment.clo_id.in_(clo_ids)
    ).all():
        entry = per_offering.setdefault(row.course_offering_id, {'obtained': ZERO, 'possible': ZERO, 'clos': 0})
        entry['obtained'] += Decimal(str(row.total_marks_obtained))
        entry['possible'] += Decimal(str(row.total_possible_marks))
        entry['clos'] += 1

    breakdown = []
    for offering_id, entry in per_offering.items():
        offering = db.session.get(CourseOffering, offering_id)
        breakdown.append({
            'course_offering_id': offering_id,
            'course_code': offering.course.code,
            'course_title': offering.course.title,
            'semester': offering.semester,
            'clo_count': entry['clos'],
            'total_marks_obtained': float(entry['obtained']),
            'total_possible_marks': float(entry['possible']),
            'attainment_percentage': float(percentage_of(entry['obtained'], entry['possible']))
        })
    return sorted(breakdown, key=lambda item: (item['semester'], item['course_code']))

@plo_bp.route('/student/calculate', methods=['POST'])
def calculate_student():
    data = request.get_json(silent=True) or {}
    if not data.get('student_id') or not data.get('degree_id'):
        return jsonify({'success': False, 'message': 'student_id and degree_id are required'}), 400

    try:
        plo_id = data.get('plo_id')
        result = calculate_student_plo_attainment(int(data['student_id']), int(data['degree_id']),
                                                  int(plo_id) if plo_id else None)
        if plo_id:
            if result is None:
                return jsonify({'success': False, 'message': 'PLO not found in this degree'}), 404
            return jsonify({'success': True, 'data': result.to_dict()})
        return jsonify({'success': True, 'data': [r.to_dict() for r in result]})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error calculating student PLO attainment: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@plo_bp.route('/calculate-all', methods=['POST'])
def calculate_all():
    data = request.get_json(silent=True) or {}
    if not data.get('degree_id'):
        return jsonify({'success': False, 'message': 'degree_id is required'}), 400

    try:
        batch = calculate_all_students_plo_attainment(int(data['degree_id']))
        return jsonify({'success': True,
                        'message': f'Calculated PLO attainment for {batch.calculated} students, {batch.failed} failed',
                        'data': batch.to_dict()})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error calculating PLO attainment for degree: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@plo_bp.route('/student/<int:student_id>/degree/<int:degree_id>', methods=['GET'])
def student_report(student_id, degree_id):
    rows = StudentPLOAttainment.query.filter_by(student_id=student_id, degree_id=degree_id).order_by(
        StudentPLOAttainment.plo_id).all()
    return jsonify({'success': True, 'data': {
        'attainments': [r.to_dict() for r in rows],
        'summary': get_student_plo_summary(student_id, degree_id)
    }})

@plo_bp.route('/student/<int:student_id>/degree/<int:degree_id>/plo/<int:plo_id>/breakdown', methods=['GET'])
def course_breakdown(student_id, degree_id, plo_id):
    try:
        return jsonify({'success': True, 'data': get_plo_breakdown_by_course(student_id, degree_id, plo_id)})
    except AttainmentError as e:
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        logging.error(f"Error building PLO breakdown: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500
