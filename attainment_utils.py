import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError

from models import db

TWO_PLACES = Decimal('0.01')
HUNDRED = Decimal('100')
ZERO = Decimal('0')
# Widest gap between adjacent bands that still belongs to the lower band
BAND_GAP_TOLERANCE = Decimal('1')

class AttainmentError(Exception):
    """Base error of the attainment pipeline; carries the HTTP status routes answer with"""
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message

class ValidationError(AttainmentError):
    status_code = 400

class ConflictError(AttainmentError):
    status_code = 409

class NotFoundError(AttainmentError):
    status_code = 404

@dataclass
class BatchResult:
    """Outcome of a continue-on-error batch loop"""
    key_name: str = 'student_id'
    succeeded: list = field(default_factory=list)
    failures: list = field(default_factory=list)

    @property
    def calculated(self):
        return len(self.succeeded)

    @property
    def failed(self):
        return len(self.failures)

    def add_success(self, item):
        self.succeeded.append(item)

    def add_failure(self, key, error):
        self.failures.append((key, str(error)))

    def to_dict(self):
        return {
            'calculated': self.calculated,
            'failed': self.failed,
            'errors': [{self.key_name: key, 'error': error} for key, error in self.failures]
        }

def to_decimal(value, field_name='value'):
    """Convert a number or numeric string to Decimal, raising ValidationError otherwise"""
    if isinstance(value, Decimal):
        result = value
    elif value is None or isinstance(value, bool):
        raise ValidationError(f"{field_name} must be numeric")
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"{field_name} must be numeric")
    if not result.is_finite():
        raise ValidationError(f"{field_name} must be a finite number")
    return result

def quantize_percentage(value):
    """Round to two decimals, half up"""
    return Decimal(str(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)

def percentage_of(obtained, possible):
    """obtained / possible * 100 rounded to two decimals; 0 when nothing was possible"""
    obtained = Decimal(str(obtained))
    possible = Decimal(str(possible))
    if possible <= 0:
        return ZERO.quantize(TWO_PLACES)
    return quantize_percentage(obtained / possible * HUNDRED)

def find_band(bands, value, min_attr='min_percentage', max_attr='max_percentage'):
    """
    Return the band covering value, or None.

    A band covers value when min <= value <= max. A value inside a gap of at
    most one point between a band's max and the next band's min belongs to
    the lower band, so 59.999 falls in [0, 59] and 60.0 in [60, 100]. Wider
    gaps, and values outside the lowest floor or highest ceiling, match nothing.
    """
    value = Decimal(str(value))
    ordered = sorted(bands, key=lambda band: Decimal(str(getattr(band, min_attr))))

    for index, band in enumerate(ordered):
        band_min = Decimal(str(getattr(band, min_attr)))
        band_max = Decimal(str(getattr(band, max_attr)))
        if band_min <= value <= band_max:
            return band
        if value > band_max and index + 1 < len(ordered):
            next_min = Decimal(str(getattr(ordered[index + 1], min_attr)))
            if value < next_min and next_min - band_max <= BAND_GAP_TOLERANCE:
                return band
    return None

def apply_ordering(query, allowed, order_by=None, order='asc', default=None):
    """
    Order a query by an allow-listed key.

    allowed maps public sort keys to ORM column expressions. Unknown keys or
    directions raise ValidationError; nothing from the request reaches SQL text.
    """
    direction = (order or 'asc').lower()
    if direction not in ('asc', 'desc'):
        raise ValidationError(f"Invalid sort direction: {order}")

    key = order_by or default
    if key is None:
        return query
    if key not in allowed:
        raise ValidationError(f"Invalid sort field: {order_by}")

    column = allowed[key]
    return query.order_by(column.desc() if direction == 'desc' else column.asc())

def upsert_with_savepoint(model, key, values):
    """Select-then-insert guarded by a savepoint; a concurrent insert turns into an update"""
    existing = model.query.filter_by(**key).one_or_none()
    if existing is None:
        try:
            with db.session.begin_nested():
                db.session.add(model(**key, **values))
            return
        except IntegrityError:
            logging.info(f"Concurrent insert on {model.__tablename__} {key}, updating existing row")
            existing = model.query.filter_by(**key).one()

    for name, value in values.items():
        setattr(existing, name, value)
    db.session.flush()

def upsert_by_natural_key(model, key, values):
    """
    Insert or update the row of model identified by the natural key columns in key.

    SQLite and PostgreSQL get a single INSERT ... ON CONFLICT DO UPDATE; other
    backends use the savepoint fallback. Returns the refreshed ORM instance.
    The caller owns the transaction.
    """
    values = dict(values)
    if 'calculated_at' in model.__table__.columns and 'calculated_at' not in values:
        values['calculated_at'] = datetime.now()

    dialect_name = db.session.get_bind().dialect.name
    if dialect_name in ('sqlite', 'postgresql'):
        # Pending ORM changes must reach the database before the Core statement
        db.session.flush()
        dialect_insert = sqlite_insert if dialect_name == 'sqlite' else postgresql_insert
        statement = dialect_insert(model.__table__).values(**key, **values)
        statement = statement.on_conflict_do_update(index_elements=list(key.keys()), set_=values)
        db.session.execute(statement)
    else:
        upsert_with_savepoint(model, key, values)

    return db.session.execute(
        select(model).filter_by(**key).execution_options(populate_existing=True)
    ).scalar_one()
