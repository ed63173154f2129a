from flask import Blueprint, jsonify, request
from models import (db, CourseLearningOutcome, IndirectAttainmentResult, ProgramLearningOutcome,
                    ProgramPLOAttainmentSummary, Survey, SurveyAnswer, SurveyOutcomeMapping, SurveyQuestion)
from attainment_utils import AttainmentError, NotFoundError, ValidationError, quantize_percentage, upsert_by_natural_key
from dataclasses import dataclass, field, asdict
from decimal import Decimal, InvalidOperation
from typing import List, Optional
import json
import logging

indirect_bp = Blueprint('indirect', __name__, url_prefix='/api/indirect-attainment')

OUTCOME_TYPES = ('PLO', 'CLO')
AFFIRMATIVE_ANSWERS = {'yes', 'y', 'true', '1'}
ACHIEVED = 'Achieved'
NOT_ACHIEVED = 'Not Achieved'

@dataclass
class QuestionSummary:
    question_id: int
    question_text: str
    question_type: str
    average_response: Optional[float] = None

@dataclass
class IndirectAttainment:
    survey_id: int
    outcome_type: str
    outcome_id: int
    outcome_code: str
    target_attainment: float
    total_responses: int
    attainment_percentage: Optional[Decimal]
    attainment_status: str
    questions: List[QuestionSummary] = field(default_factory=list)

    def to_dict(self):
        data = asdict(self)
        if self.attainment_percentage is not None:
            data['attainment_percentage'] = float(self.attainment_percentage)
        return data

def _parse_options(options):
    if not options:
        return {}
    if isinstance(options, dict):
        return options
    try:
        parsed = json.loads(options)
    except (TypeError, ValueError):
        logging.warning(f"Unparsable survey question options: {options!r}")
        return {}
    return parsed if isinstance(parsed, dict) else {}

def _to_number(value):
    if value is None:
        return None
    try:
        number = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    return number if number.is_finite() else None

def _is_affirmative(answer_text):
    return str(answer_text).strip().lower() in AFFIRMATIVE_ANSWERS

def normalize_answer(question_type, answer_text, options):
    """
    Map one survey answer to the 0-100 scale.

    rating: value / max_value * 100
    likert: (value - 1) / (scale_size - 1) * 100
    yes_no: 100 when affirmative, else 0
    Anything else, or an answer that cannot be read, gives None.
    """
    if answer_text is None or str(answer_text).strip() == '':
        return None

    if question_type == 'yes_no':
        return Decimal('100') if _is_affirmative(answer_text) else Decimal('0')

    value = _to_number(answer_text)
    if value is None:
        return None

    options = _parse_options(options)
    if question_type == 'rating':
        max_value = _to_number(options.get('max_value'))
        if max_value is None or max_value <= 0:
            return None
        return value / max_value * Decimal('100')
    if question_type == 'likert':
        scale_size = _to_number(options.get('scale_size'))
        if scale_size is None or scale_size <= 1:
            return None
        return (value - 1) / (scale_size - 1) * Decimal('100')
    return None

def raw_answer_value(question_type, answer_text):
    """Answer as a plain number for per-question averages; yes_no counts as 1 or 0"""
    if answer_text is None or str(answer_text).strip() == '':
        return None
    if question_type == 'yes_no':
        return Decimal('1') if _is_affirmative(answer_text) else Decimal('0')
    if question_type in ('rating', 'likert'):
        return _to_number(answer_text)
    return None

def _get_outcome(outcome_type, outcome_id):
    model = ProgramLearningOutcome if outcome_type == 'PLO' else CourseLearningOutcome
    return db.session.get(model, outcome_id)

def _mean(values):
    return quantize_percentage(sum(values) / len(values)) if values else None

def calculate_from_survey(survey_id, outcome_type='PLO', outcome_id=None, persist=None):
    """
    Compute survey based attainment for the outcomes mapped to a survey.

    Every normalized answer of every mapped question is pooled into one mean.
    Results are stored when calculating all outcomes of the survey, or when
    persist is True. Returns a list of IndirectAttainment.
    """
    outcome_type = (outcome_type or '').upper()
    if outcome_type not in OUTCOME_TYPES:
        raise ValidationError('Outcome type must be either PLO or CLO')
    if db.session.get(Survey, survey_id) is None:
        raise NotFoundError(f"Survey {survey_id} not found")
    if persist is None:
        persist = outcome_id is None

    query = db.session.query(SurveyOutcomeMapping.outcome_id, SurveyQuestion).join(
        SurveyQuestion, SurveyQuestion.id == SurveyOutcomeMapping.question_id
    ).filter(
        SurveyQuestion.survey_id == survey_id,
        SurveyOutcomeMapping.outcome_type == outcome_type
    )
    if outcome_id is not None:
        query = query.filter(SurveyOutcomeMapping.outcome_id == outcome_id)

    questions_by_outcome = {}
    for mapped_outcome_id, question in query.order_by(SurveyQuestion.id).all():
        questions_by_outcome.setdefault(mapped_outcome_id, []).append(question)

    results = []
    for mapped_outcome_id, questions in questions_by_outcome.items():
        outcome = _get_outcome(outcome_type, mapped_outcome_id)
        if outcome is None:
            logging.warning(f"Survey {survey_id} maps to missing {outcome_type} {mapped_outcome_id}, skipping")
            continue

        normalized = []
        responses = set()
        summaries = []
        for question in questions:
            raw_values = []
            for answer in SurveyAnswer.query.filter_by(question_id=question.id).all():
                responses.add(answer.response_id)
                value = normalize_answer(question.question_type, answer.answer_text, question.options)
                if value is not None:
                    normalized.append(value)
                raw = raw_answer_value(question.question_type, answer.answer_text)
                if raw is not None:
                    raw_values.append(raw)
            average = _mean(raw_values)
            summaries.append(QuestionSummary(
                question_id=question.id,
                question_text=question.question_text,
                question_type=question.question_type,
                average_response=float(average) if average is not None else None
            ))

        percentage = _mean(normalized)
        target = Decimal(str(outcome.target_attainment))
        achieved = percentage is not None and percentage >= target
        results.append(IndirectAttainment(
            survey_id=survey_id,
            outcome_type=outcome_type,
            outcome_id=mapped_outcome_id,
            outcome_code=outcome.code,
            target_attainment=float(target),
            total_responses=len(responses),
            attainment_percentage=percentage,
            attainment_status=ACHIEVED if achieved else NOT_ACHIEVED,
            questions=summaries
        ))

    results.sort(key=lambda r: r.outcome_code)

    if persist and results:
        for result in results:
            upsert_by_natural_key(
                IndirectAttainmentResult,
                {'survey_id': survey_id, 'outcome_type': outcome_type, 'outcome_id': result.outcome_id},
                {
                    'total_responses': result.total_responses,
                    'attainment_percentage': result.attainment_percentage,
                    'attainment_status': result.attainment_status,
                    'target_attainment': Decimal(str(result.target_attainment)),
                    'question_details': json.dumps([asdict(q) for q in result.questions])
                }
            )
        db.session.commit()

    return results

def recalculate_survey(survey_id):
    """Recalculate and store both PLO and CLO results of a survey"""
    return {outcome_type: calculate_from_survey(survey_id, outcome_type, persist=True)
            for outcome_type in OUTCOME_TYPES}

def result_to_dict(row):
    return {
        'id': row.id,
        'survey_id': row.survey_id,
        'survey_title': row.survey.title if row.survey else None,
        'outcome_type': row.outcome_type,
        'outcome_id': row.outcome_id,
        'total_responses': row.total_responses,
        'attainment_percentage': float(row.attainment_percentage) if row.attainment_percentage is not None else None,
        'attainment_status': row.attainment_status,
        'target_attainment': float(row.target_attainment) if row.target_attainment is not None else None,
        'question_details': json.loads(row.question_details) if row.question_details else [],
        'calculated_at': row.calculated_at.isoformat() if row.calculated_at else None
    }

def get_indirect_results(survey_id, outcome_type=None):
    query = IndirectAttainmentResult.query.filter_by(survey_id=survey_id)
    if outcome_type:
        query = query.filter_by(outcome_type=outcome_type.upper())
    return query.order_by(IndirectAttainmentResult.outcome_type, IndirectAttainmentResult.outcome_id).all()

def get_results_for_outcome(outcome_type, outcome_id):
    outcome_type = (outcome_type or '').upper()
    if outcome_type not in OUTCOME_TYPES:
        raise ValidationError('Outcome type must be either PLO or CLO')
    return IndirectAttainmentResult.query.filter_by(
        outcome_type=outcome_type, outcome_id=outcome_id
    ).order_by(IndirectAttainmentResult.calculated_at.desc()).all()

def _indirect_average(rows):
    return _mean([Decimal(str(r.attainment_percentage)) for r in rows if r.attainment_percentage is not None])

def get_program_indirect_report(degree_id):
    """Stored survey results of every PLO of a degree"""
    report = []
    for plo in ProgramLearningOutcome.query.filter_by(degree_id=degree_id).order_by(ProgramLearningOutcome.code).all():
        rows = get_results_for_outcome('PLO', plo.id)
        average = _indirect_average(rows)
        report.append({
            'plo_id': plo.id,
            'plo_code': plo.code,
            'target_attainment': float(plo.target_attainment),
            'surveys': [result_to_dict(r) for r in rows],
            'average_indirect_attainment': float(average) if average is not None else None
        })
    return report

def get_direct_indirect_comparison(degree_id):
    """
    Direct (marks) and indirect (survey) attainment of each PLO side by side.

    The two signals are never combined into a single number.
    """
    comparison = []
    for plo in ProgramLearningOutcome.query.filter_by(degree_id=degree_id).order_by(ProgramLearningOutcome.code).all():
        summary = ProgramPLOAttainmentSummary.query.filter_by(degree_id=degree_id, plo_id=plo.id).first()
        indirect = _indirect_average(get_results_for_outcome('PLO', plo.id))
        target = Decimal(str(plo.target_attainment))
        direct = Decimal(str(summary.average_attainment)) if summary and summary.total_students else None

        comparison.append({
            'plo_id': plo.id,
            'plo_code': plo.code,
            'target_attainment': float(target),
            'direct_attainment': float(direct) if direct is not None else None,
            'direct_status': (ACHIEVED if direct >= target else NOT_ACHIEVED) if direct is not None else None,
            'indirect_attainment': float(indirect) if indirect is not None else None,
            'indirect_status': (ACHIEVED if indirect >= target else NOT_ACHIEVED) if indirect is not None else None
        })
    return comparison

@indirect_bp.route('/calculate', methods=['POST'])
def calculate():
    data = request.get_json(silent=True) or {}
    if not data.get('survey_id'):
        return jsonify({'success': False, 'message': 'survey_id is required'}), 400

    try:
        outcome_id = data.get('outcome_id')
        results = calculate_from_survey(
            int(data['survey_id']),
            data.get('outcome_type', 'PLO'),
            int(outcome_id) if outcome_id else None,
            persist=data.get('persist')
        )
        return jsonify({'success': True, 'data': [r.to_dict() for r in results]})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error calculating indirect attainment: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@indirect_bp.route('/recalculate/<int:survey_id>', methods=['POST'])
def recalculate(survey_id):
    try:
        results = recalculate_survey(survey_id)
        return jsonify({'success': True, 'message': 'Indirect attainment recalculated',
                        'data': {k: [r.to_dict() for r in v] for k, v in results.items()}})
    except AttainmentError as e:
        db.session.rollback()
        return jsonify({'success': False, 'message': e.message}), e.status_code
    except Exception as e:
        db.session.rollback()
        logging.error(f"Error recalculating survey {survey_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@indirect_bp.route('/survey/<int:survey_id>', methods=['GET'])
def survey_results(survey_id):
    rows = get_indirect_results(survey_id, request.args.get('outcome_type'))
    return jsonify({'success': True, 'data': [result_to_dict(r) for r in rows]})

@indirect_bp.route('/outcome/<outcome_type>/<int:outcome_id>', methods=['GET'])
def outcome_results(outcome_type, outcome_id):
    try:
        rows = get_results_for_outcome(outcome_type, outcome_id)
        return jsonify({'success': True, 'data': [result_to_dict(r) for r in rows]})
    except AttainmentError as e:
        return jsonify({'success': False, 'message': e.message}), e.status_code

@indirect_bp.route('/report/program/<int:degree_id>', methods=['GET'])
def program_report(degree_id):
    try:
        return jsonify({'success': True, 'data': get_program_indirect_report(degree_id)})
    except Exception as e:
        logging.error(f"Error building indirect report of degree {degree_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500

@indirect_bp.route('/comparison/program/<int:degree_id>', methods=['GET'])
def direct_indirect(degree_id):
    try:
        return jsonify({'success': True, 'data': get_direct_indirect_comparison(degree_id)})
    except Exception as e:
        logging.error(f"Error comparing direct and indirect attainment of degree {degree_id}: {str(e)}")
        return jsonify({'success': False, 'message': f'Server error: {str(e)}'}), 500
