from flask import Blueprint, current_app, jsonify, request
from models import (db, Degree, ProgramLearningOutcome, ProgramPLOAttainmentSnapshot, ProgramPLOAttainmentSummary,
                    StudentPLOAttainment)
from attainment_utils import (AttainmentError, ValidationError, NotFoundError, percentage_of, quantize_percentage,
                              upsert_by_natural_key, ZERO)
from routes.plo_routes import ACHIEVED, NOT_ACHIEVED, calculate_all_students_plo_attainment
from routes.utility_routes import export_report_csv
from datetime import datetime
from decimal import Decimal
import numpy as np
import logging

program_bp = Blueprint('program', __name__, url_prefix='/api/program-attainment')

TARGET_MET = 'Target Met'
NEAR_TARGET = 'Near Target'
BELOW_TARGET = 'Below Target'

DEFAULT_NEAR_TARGET_RATIO = Decimal('0.8')

# Lower bound of each bucket, highest first
DISTRIBUTION_BUCKETS = [
    ('90-100%', Decimal('90')),
    ('80-89%', Decimal('80')),
    ('70-79%', Decimal('70')),
    ('60-69%', Decimal('60')),
    ('50-59%', Decimal('50')),
    ('Below 50%', None)
]

def _near_target_ratio(near_target_ratio=None):
    if near_target_ratio is None:
        near_target_ratio = current_app.config.get('NEAR_TARGET_RATIO', DEFAULT_NEAR_TARGET_RATIO)
    return Decimal(str(near_target_ratio))

def determine_overall_status(average_attainment, target_attainment, near_target_ratio=DEFAULT_NEAR_TARGET_RATIO):
    average_attainment = Decimal(str(average_attainment))
    target_attainment = Decimal(str(target_attainment))
    if average_attainment >= target_attainment:
        return TARGET_MET
    if average_attainment >= Decimal(str(near_target_ratio)) * target_attainment:
        return NEAR_TARGET
    return BELOW_TARGET

def _summarize_plo(degree_id, plo, ratio):
    rows = StudentPLOAttainment.query.filter_by(degree_id=degree_id, plo_id=plo.id).all()

    total_students = len({row.student_id for row in rows})
    achieved = sum(1 for row in rows if row.attainment_status == ACHIEVED)
    not_achieved = sum(1 for row in rows if row.attainment_status == NOT_ACHIEVED)
    percentages = [Decimal(str(row.attainment_percentage)) for row in rows]

    if percentages:
        average = quantize_percentage(sum(percentages) / len(percentages))
        minimum = min(percentages)
        maximum = max(percentages)
        # Population standard deviation over every student of the PLO
        std_deviation = quantize_percentage(np.std(np.array([float(p) for p in percentages]), ddof=0))
        overall_status = determine_overall_status(average, plo.target_attainment, ratio)
    else:
        average = minimum = maximum = std_deviation = ZERO
        overall_status = BELOW_TARGET

    return {
        'total_students': total_students,
        'students_achieved': achieved,
        'students_not_achieved': not_achieved,
        'average_attainment': average,
        'min_attainment': minimum,
        'max_attainment': maximum,
        'std_deviation': std_deviation,
        'total_marks_obtained': sum((Decimal(str(r.total_marks_obtained)) for r in rows), ZERO),
        'total_possible_marks': sum((Decimal(str(r.total_possible_marks)) for r in rows), ZERO),
        'achievement_rate': percentage_of(achieved, total_students),
        'overall_status': overall_status
    }

def calculate_program_summary(degree_id, plo_id=None, near_target_ratio=None):
    """
    Aggregate stored student PLO attainments into program level statistics.

    One summary row per PLO of the degree is upserted, together with the
    snapshot of the current month used for trends. A PLO without student
    rows gets all statistics at 0; callers can check total_students.
    """
    if db.session.get(Degree, degree_id) is None:
        raise NotFoundError(f"Degree {degree_id} not found")
    ratio = _near_target_ratio(near_target_ratio)

    query = ProgramLearningOutcome.query.filter_by(degree_id=degree_id)
    if plo_id is not None:
        query = query.filter_by(id=plo_id)
    plos = query.order_by(ProgramLearningOutcome.code).all()

    period = datetime.now().strftime('%Y-%m')
    summaries = []
    for plo in plos:
        stats = _summarize_plo(degree_id, plo, ratio)
        summaries.append(upsert_by_natural_key(
            ProgramPLOAttainmentSummary, {'degree_id': degree_id, 'plo_id': plo.id}, stats
        ))
        upsert_by_natural_key(
            ProgramPLOAttainmentSnapshot,
            {'degree_id': degree_id, 'plo_id': plo.id, 'period': period},
            {
                'total_students': stats['total_students'],
                'average_attainment': stats['average_attainment'],
                'achievement_rate': stats['achievement_rate'],
                'overall_status': stats['overall_status']
            }
        )
    db.session.commit()

    if plo_id is not None:
        return summaries[0] if summaries else None
    return summaries

def get_student_distribution(degree_id, plo_id):
    """Count of students per attainment bucket; every bucket is listed, highest first"""
    rows = StudentPLOAttainment.query.filter_by(degree_id=degree_id, plo_id=plo_id).all()
    counts = {label: 0 for label, _ in DISTRIBUTION_BUCKETS}

    for row in rows:
        percentage = Decimal(str(row.attainment_percentage))
        for label, floor in DISTRIBUTION_BUCKETS:
            if floor is None or percentage >= floor:
                counts[label] += 1
                break

    total = len(rows)
    return [{
        'range': label,
        'count': counts[label],
        'percentage': float(percentage_of(counts[label], total))
    } for label, _ in DISTRIBUTION_BUCKETS]

def compare_programs(degree_ids):
    """Side by side PLO summaries of several degrees, one row per (degree, PLO)"""
    if not degree_ids:
        raise ValidationError('At least one degree_id is required')

    rows = db.session.query(ProgramPLOAttainmentSummary, Degree).join(
        Degree, Degree.id == ProgramPLOAttainmentSummary.degree_id
    ).join(
        ProgramLearningOutcome, ProgramLearningOutcome.id == ProgramPLOAttainmentSummary.plo_id
    ).filter(
        ProgramPLOAttainmentSummary.degree_id.in_(degree_ids)
    ).order_by(ProgramLearningOutcome.code, Degree.name).all()

    comparison = []
    for summary, degree in rows:
        item = summary.to_dict()
        item['degree_code'] = degree.code
        item['degree_name'] = degree.name
        comparison.append(item)
    return comparison

def get_trends(degree_id, plo_id=None, limit=5):
    """Monthly snapshots grouped by period, newest period first"""
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        raise ValidationError('limit must be an integer')
    if limit < 1:
        raise ValidationError('limit must be at least 1')

    query = ProgramPLOAttainmentSnapshot.query.filter_by(degree_id=degree_id)
    if plo_id is not None:
        query = query.filter_by(plo_id=plo_id)

    period_rows = query.with_entities(ProgramPLOAttainmentSnapshot.period).distinct().order_by(
        ProgramPLOAttainmentSnapshot.period.desc()).limit(limit).all()
    periods = [row.period for row in period_rows]
    if not periods:
        return []

    snapshots = query.filter(ProgramPLOAttainmentSnapshot.period.in_(periods)).all()
    grouped = {period: [] for period in periods}
    for snapshot in snapshots:
        grouped[snapshot.period].append({
            'plo_id': snapshot.plo_id,
            'plo_code': snapshot.plo.code,
            'total_students': snapshot.total_students,
            'average_attainment': float(snapshot.average_attainment),
            'achievement_rate': float(snapshot.achievement_rate),
            'overall_status': snapshot.overall_status
        })

    return [{
        'period': period,
        'plos': sorted(grouped[period], key=lambda item: item['plo_code'])
    } for period in periods]

def get_program_overall_stats(degree_id):
    summaries = ProgramPLOAttainmentSummary.query.filter_by(degree_id=degree_id).all()
    students_assessed = db.session.query(StudentPLOAttainment.student_id).filter(
        StudentPLOAttainment.degree_id == degree_id).distinct().count()
    averages = [Decimal(str(s.average_attainment)) for s in summaries]
    rates = [Decimal(str(s.achievement_rate)) for s in summaries]

    return {
        'total_plos': len(summaries),
        'plos_target_met': sum(1 for s in summaries if s.overall_status == TARGET_MET),
        'plos_near_target': sum(1 for s in summaries if s.overall_status == NEAR_TARGET),
        'plos_below_target': sum(1 for s in summaries if s.overall_status == BELOW_TARGET),
        'students_assessed': students_assessed,
        'average_attainment': float(quantize_percentage(sum(averages) / len(averages))) if averages else 0.0,
        'average_achievement_rate': float(quantize_percentage(sum(rates) / len(rates))) if rates else 0.0
    }

@program_bp.route('/calculate', methods=['POST'])
def calculate():
    data = request.get_json(silent=True) or {}
    if not data.get('degree_id'):
        return jsonify({'success': False, 'message': 'degree_id is required'}), 400

    try:
        degree_id = int(data['degree_id'])
        plo_id = int(data['plo_id']) if data.get('plo_id') else None
        response = {}
        if data.get('recalculate_students'):
            response['students'] = calculate_all_students_plo_attainment(degree_id).to_dict()

        result = calculate_program_summary(degree_id, plo_id)
        if plo_id is not None:
            if result is None:
                return jsonify({'success': False, 'message': 'PLO not found in this degree'}), 404
            response['summary'] = result.to_dict()
        else:
            response['summaries'] = [s.to_dict() for s in result]
        return jsonify({'success': True, 'message': 'Program attainment calculated', 'data': response})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error calculating program summary: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@program_bp.route('/degree/<int:degree_id>', methods=['GET'])
def program_summary(degree_id):
    summaries = ProgramPLOAttainmentSummary.query.filter_by(degree_id=degree_id).order_by(
        ProgramPLOAttainmentSummary.plo_id).all()
    return jsonify({'success': True, 'data': {
        'summaries': [s.to_dict() for s in summaries],
        'overall': get_program_overall_stats(degree_id)
    }})

@program_bp.route('/degree/<int:degree_id>/plo/<int:plo_id>/distribution', methods=['GET'])
def distribution(degree_id, plo_id):
    return jsonify({'success': True, 'data': get_student_distribution(degree_id, plo_id)})

@program_bp.route('/compare', methods=['POST'])
def compare():
    data = request.get_json(silent=True) or {}
    try:
        degree_ids = [int(d) for d in data.get('degree_ids') or []]
        return jsonify({'success': True, 'data': compare_programs(degree_ids)})
    except (TypeError, ValueError):
        return jsonify({'success': False, 'message': 'degree_ids must be a list of integers'}), 400
    except AttainmentError as e:
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        logging.error(f"Error comparing programs: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@program_bp.route('/degree/<int:degree_id>/trends', methods=['GET'])
def trends(degree_id):
    try:
        data = get_trends(degree_id, request.args.get('plo_id', type=int), request.args.get('limit', 5))
        return jsonify({'success': True, 'data': data})
    except AttainmentError as e:
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        logging.error(f"Error loading trends of degree {degree_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@program_bp.route('/degree/<int:degree_id>/export', methods=['GET'])
def export_summary(degree_id):
    try:
        summaries = ProgramPLOAttainmentSummary.query.filter_by(degree_id=degree_id).all()
        rows = [{
            'PLO': s.plo.code,
            'Target (%)': float(s.plo.target_attainment),
            'Students': s.total_students,
            'Achieved': s.students_achieved,
            'Not Achieved': s.students_not_achieved,
            'Average (%)': float(s.average_attainment),
            'Min (%)': float(s.min_attainment),
            'Max (%)': float(s.max_attainment),
            'Std Dev': float(s.std_deviation),
            'Achievement Rate (%)': float(s.achievement_rate),
            'Status': s.overall_status
        } for s in sorted(summaries, key=lambda s: s.plo.code)]
        headers = ['PLO', 'Target (%)', 'Students', 'Achieved', 'Not Achieved', 'Average (%)', 'Min (%)',
                   'Max (%)', 'Std Dev', 'Achievement Rate (%)', 'Status']
        return export_report_csv(rows, f"program_attainment_{degree_id}", headers)
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error exporting program summary of degree {degree_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500
