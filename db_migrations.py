import logging
from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError

# Natural keys of the derived tables; recalculation upserts rely on these being unique
NATURAL_KEYS = {
    'course_result': ('student_id', 'course_offering_id'),
    'student_clo_attainment': ('student_id', 'course_offering_id', 'clo_id'),
    'student_plo_attainment': ('student_id', 'degree_id', 'plo_id'),
    'program_plo_attainment_summary': ('degree_id', 'plo_id'),
    'program_plo_attainment_snapshot': ('degree_id', 'plo_id', 'period'),
    'indirect_attainment_result': ('survey_id', 'outcome_type', 'outcome_id'),
    'attainment_threshold': ('degree_id', 'threshold_type', 'level_name'),
    'student_assessment_mark': ('student_id', 'assessment_component_id'),
}

def _has_unique_key(inspector, table_name, columns):
    wanted = set(columns)
    for constraint in inspector.get_unique_constraints(table_name):
        if set(constraint['column_names']) == wanted:
            return True
    for index in inspector.get_indexes(table_name):
        if index.get('unique') and set(index['column_names']) == wanted:
            return True
    return False

def check_and_update_database(app):
    """
    Check the database schema at app startup.

    Tables created by older versions may lack the unique constraints that
    keep derived rows one per natural key; the missing ones are added as
    unique indexes. Returns the names of the indexes created.
    """
    logging.info("Checking database schema for natural key constraints...")
    created = []

    with app.app_context():
        from models import db
        engine = db.engine
        inspector = inspect(engine)
        table_names = inspector.get_table_names()

        for table_name, columns in NATURAL_KEYS.items():
            if table_name not in table_names:
                logging.warning(f"{table_name} table not found. It will be created when the app runs.")
                continue

            if _has_unique_key(inspector, table_name, columns):
                logging.info(f"Unique key on {table_name}({', '.join(columns)}) already exists")
                continue

            index_name = f"uq_{table_name}_natural_key"
            logging.info(f"Adding unique index {index_name} to {table_name}")
            try:
                with engine.begin() as connection:
                    connection.execute(text(
                        f"CREATE UNIQUE INDEX {index_name} ON {table_name} ({', '.join(columns)})"
                    ))
                created.append(index_name)
                logging.info(f"Successfully added unique index {index_name}")
            except SQLAlchemyError as e:
                # Existing duplicate rows block the index; they have to be cleaned up by hand
                logging.error(f"Could not add unique index {index_name} to {table_name}: {str(e)}")

    return created
