import os
import logging
import argparse
from flask import Flask, jsonify
from flask_migrate import Migrate

from models import db
from db_migrations import check_and_update_database

def configure_logging():
    """Route attainment calculation and batch failure logs to LOG_FILE at LOG_LEVEL"""
    log_level = os.environ.get('LOG_LEVEL', 'WARNING').upper()

    level_mapping = {
        'DEBUG': logging.DEBUG,
        'INFO': logging.INFO,
        'WARNING': logging.WARNING,
        'ERROR': logging.ERROR,
        'CRITICAL': logging.CRITICAL
    }

    actual_level = level_mapping.get(log_level, logging.WARNING)

    # Per-student batch failures are logged at ERROR, above the default level
    logging.basicConfig(
        filename=os.environ.get('LOG_FILE', 'app.log'),
        level=actual_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    return actual_level

def create_app(test_config=None):
    app = Flask(__name__)

    # Get the absolute path to the current directory
    base_dir = os.path.abspath(os.path.dirname(__file__))

    # Configuration
    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev_key_for_local_use')
    app.config['SQLALCHEMY_DATABASE_URI'] = os.environ.get(
        'DATABASE_URL', f'sqlite:///{os.path.join(base_dir, "instance", "attainment_data.db")}'
    )
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False
    app.config['NEAR_TARGET_RATIO'] = float(os.environ.get('NEAR_TARGET_RATIO', '0.8'))

    if test_config:
        app.config.update(test_config)

    # Ensure instance folder exists for the default SQLite database
    if app.config['SQLALCHEMY_DATABASE_URI'].startswith('sqlite:///') and ':memory:' not in app.config['SQLALCHEMY_DATABASE_URI']:
        os.makedirs(os.path.join(base_dir, 'instance'), exist_ok=True)

    # Configure logging
    log_level = configure_logging()

    # Log the current configuration
    if log_level <= logging.INFO:
        logging.info(f"Application started with log level: {logging.getLevelName(log_level)}")

    # Initialize extensions with app
    db.init_app(app)
    Migrate(app, db)

    # Register blueprints
    from routes.threshold_routes import threshold_bp
    from routes.result_routes import result_bp
    from routes.clo_routes import clo_bp
    from routes.plo_routes import plo_bp
    from routes.program_routes import program_bp
    from routes.indirect_routes import indirect_bp

    app.register_blueprint(threshold_bp)
    app.register_blueprint(result_bp)
    app.register_blueprint(clo_bp)
    app.register_blueprint(plo_bp)
    app.register_blueprint(program_bp)
    app.register_blueprint(indirect_bp)

    # Create tables if they don't exist
    with app.app_context():
        db.create_all()
        # Make sure natural key constraints exist on databases created by older versions
        check_and_update_database(app)

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'success': False, 'message': 'Resource not found'}), 404

    @app.errorhandler(405)
    def method_not_allowed(error):
        return jsonify({'success': False, 'message': 'Method not allowed'}), 405

    @app.errorhandler(500)
    def server_error(error):
        db.session.rollback()
        logging.error(f"Unhandled server error: {str(error)}")
        return jsonify({'success': False, 'message': 'Internal server error'}), 500

    @app.route('/api/health')
    def health():
        return jsonify({'success': True, 'message': 'ok'})

    return app

if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Outcome attainment service')
    parser.add_argument('port', nargs='?', type=int, default=5000, help='Port to listen on')
    parser.add_argument('--host', default='127.0.0.1', help='Interface to bind')
    parser.add_argument('--debug', action='store_true', help='Enable Flask debug mode')
    args = parser.parse_args()

    app = create_app()
    app.run(host=args.host, port=args.port, debug=args.debug)
