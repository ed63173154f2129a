from flask import Blueprint, jsonify, request
from models import db, AttainmentThreshold, Degree, Log
from attainment_utils import (AttainmentError, ValidationError, ConflictError, NotFoundError,
                              to_decimal, find_band, apply_ordering, HUNDRED, ZERO)
import logging

threshold_bp = Blueprint('threshold', __name__, url_prefix='/api/attainment-thresholds')

THRESHOLD_TYPES = ('CLO', 'PLO', 'PEO')

THRESHOLD_ORDERING = {
    'level_name': AttainmentThreshold.level_name,
    'min_percentage': AttainmentThreshold.min_percentage,
    'max_percentage': AttainmentThreshold.max_percentage,
    'threshold_type': AttainmentThreshold.threshold_type,
    'created_at': AttainmentThreshold.created_at
}

def _validate_threshold_type(threshold_type):
    normalized = (threshold_type or '').strip().upper()
    if normalized not in THRESHOLD_TYPES:
        raise ValidationError(f"Invalid threshold type '{threshold_type}'. Must be one of: {', '.join(THRESHOLD_TYPES)}")
    return normalized

def _validate_percentage(value, field_name):
    percentage = to_decimal(value, field_name)
    if percentage < ZERO or percentage > HUNDRED:
        raise ValidationError(f"{field_name} must be between 0 and 100")
    return percentage

def evaluate_threshold(degree_id, outcome_type, percentage):
    """
    Find the attainment band of a degree covering a percentage.

    Returns the AttainmentThreshold or None when no band matches. The raw
    percentage is compared, unrounded.
    """
    outcome_type = _validate_threshold_type(outcome_type)
    percentage = _validate_percentage(percentage, 'percentage')

    bands = AttainmentThreshold.query.filter_by(degree_id=degree_id, threshold_type=outcome_type).all()
    return find_band(bands, percentage)

def validate_no_overlap(degree_id, outcome_type, min_percentage, max_percentage, exclude_id=None):
    """True when [min, max] does not intersect any other band of (degree, type)"""
    query = AttainmentThreshold.query.filter(
        AttainmentThreshold.degree_id == degree_id,
        AttainmentThreshold.threshold_type == outcome_type,
        AttainmentThreshold.min_percentage <= max_percentage,
        AttainmentThreshold.max_percentage >= min_percentage
    )
    if exclude_id is not None:
        query = query.filter(AttainmentThreshold.id != exclude_id)
    return query.first() is None

def save_threshold(data, threshold_id=None):
    """
    Create a threshold band, or update the one with threshold_id.

    Raises ValidationError, ConflictError or NotFoundError; nothing is written
    when the band is rejected.
    """
    if not data:
        raise ValidationError('No data provided')

    threshold = None
    if threshold_id is not None:
        threshold = db.session.get(AttainmentThreshold, threshold_id)
        if threshold is None:
            raise NotFoundError(f"Attainment threshold {threshold_id} not found")
        merged = threshold.to_dict()
        merged.update({k: v for k, v in data.items() if v is not None})
        data = merged
    else:
        missing = [name for name in ('degree_id', 'threshold_type', 'level_name', 'min_percentage', 'max_percentage')
                   if data.get(name) is None or data.get(name) == '']
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    try:
        degree_id = int(data['degree_id'])
    except (TypeError, ValueError):
        raise ValidationError('degree_id must be an integer')
    threshold_type = _validate_threshold_type(data['threshold_type'])
    level_name = str(data['level_name']).strip()
    if not level_name:
        raise ValidationError('level_name must not be empty')
    min_percentage = _validate_percentage(data['min_percentage'], 'min_percentage')
    max_percentage = _validate_percentage(data['max_percentage'], 'max_percentage')
    if min_percentage > max_percentage:
        raise ValidationError('min_percentage cannot be greater than max_percentage')
    is_attained = data.get('is_attained', True)
    if isinstance(is_attained, str):
        is_attained = is_attained.strip().lower() in ('true', '1', 'yes', 'on')

    if db.session.get(Degree, degree_id) is None:
        raise NotFoundError(f"Degree {degree_id} not found")

    duplicate = AttainmentThreshold.query.filter_by(
        degree_id=degree_id, threshold_type=threshold_type, level_name=level_name
    ).first()
    if duplicate and duplicate.id != threshold_id:
        raise ConflictError(f"A {threshold_type} level named '{level_name}' already exists for this degree")

    if not validate_no_overlap(degree_id, threshold_type, min_percentage, max_percentage, exclude_id=threshold_id):
        raise ConflictError(f"Range {min_percentage}-{max_percentage}% overlaps an existing {threshold_type} threshold")

    if threshold is None:
        threshold = AttainmentThreshold(degree_id=degree_id, threshold_type=threshold_type)
        db.session.add(threshold)
        action = 'ADD_ATTAINMENT_THRESHOLD'
    else:
        threshold.degree_id = degree_id
        threshold.threshold_type = threshold_type
        action = 'UPDATE_ATTAINMENT_THRESHOLD'

    threshold.level_name = level_name
    threshold.min_percentage = min_percentage
    threshold.max_percentage = max_percentage
    threshold.is_attained = bool(is_attained)

    db.session.add(Log(action=action,
                       description=f"{threshold_type} threshold '{level_name}' ({min_percentage}-{max_percentage}%) for degree {degree_id}"))
    db.session.commit()
    logging.info(f"{action}: {threshold}")
    return threshold

def delete_threshold(threshold_id):
    threshold = db.session.get(AttainmentThreshold, threshold_id)
    if threshold is None:
        raise NotFoundError(f"Attainment threshold {threshold_id} not found")

    description = f"Deleted {threshold.threshold_type} threshold '{threshold.level_name}' for degree {threshold.degree_id}"
    db.session.delete(threshold)
    db.session.add(Log(action='DELETE_ATTAINMENT_THRESHOLD', description=description))
    db.session.commit()
    return True

def delete_thresholds_for_degree(degree_id):
    """Delete every band of a degree, returns the number removed"""
    deleted = AttainmentThreshold.query.filter_by(degree_id=degree_id).delete(synchronize_session=False)
    db.session.add(Log(action='DELETE_ATTAINMENT_THRESHOLD',
                       description=f"Deleted {deleted} thresholds for degree {degree_id}"))
    db.session.commit()
    return deleted

def get_thresholds(degree_id=None, threshold_type=None, order_by=None, order='asc'):
    query = AttainmentThreshold.query
    if degree_id is not None:
        query = query.filter(AttainmentThreshold.degree_id == degree_id)
    if threshold_type:
        query = query.filter(AttainmentThreshold.threshold_type == _validate_threshold_type(threshold_type))
    query = apply_ordering(query, THRESHOLD_ORDERING, order_by, order, default='min_percentage')
    return query.all()

@threshold_bp.route('', methods=['GET'])
def list_thresholds():
    try:
        thresholds = get_thresholds(
            degree_id=request.args.get('degree_id', type=int),
            threshold_type=request.args.get('threshold_type'),
            order_by=request.args.get('order_by'),
            order=request.args.get('order', 'asc')
        )
        return jsonify({'success': True, 'data': [t.to_dict() for t in thresholds]})
    except AttainmentError as e:
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        logging.error(f"Error listing attainment thresholds: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@threshold_bp.route('', methods=['POST'])
def create_threshold():
    try:
        threshold = save_threshold(request.get_json(silent=True))
        return jsonify({'success': True, 'message': 'Attainment threshold created', 'data': threshold.to_dict()}), 201
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error creating attainment threshold: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@threshold_bp.route('/<int:threshold_id>', methods=['PUT'])
def update_threshold(threshold_id):
    try:
        threshold = save_threshold(request.get_json(silent=True), threshold_id=threshold_id)
        return jsonify({'success': True, 'message': 'Attainment threshold updated', 'data': threshold.to_dict()})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error updating attainment threshold {threshold_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@threshold_bp.route('/<int:threshold_id>', methods=['DELETE'])
def remove_threshold(threshold_id):
    try:
        delete_threshold(threshold_id)
        return jsonify({'success': True, 'message': 'Attainment threshold deleted'})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error deleting attainment threshold {threshold_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@threshold_bp.route('/degree/<int:degree_id>', methods=['DELETE'])
def remove_degree_thresholds(degree_id):
    try:
        deleted = delete_thresholds_for_degree(degree_id)
        return jsonify({'success': True, 'message': f'{deleted} thresholds deleted', 'data': {'deleted': deleted}})
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error deleting thresholds of degree {degree_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@threshold_bp.route('/evaluate', methods=['POST'])
def evaluate():
    data = request.get_json(silent=True) or {}
    if data.get('degree_id') is None or data.get('percentage') is None:
        return jsonify({'success': False, 'message': 'degree_id and percentage are required'}), 400

    try:
        threshold = evaluate_threshold(data['degree_id'], data.get('threshold_type', 'PLO'), data['percentage'])
        if threshold is None:
            return jsonify({'success': False, 'message': 'No threshold band covers this percentage'}), 404
        return jsonify({'success': True, 'data': threshold.to_dict()})
    except AttainmentError as e:
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        logging.error(f"Error evaluating threshold: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500
