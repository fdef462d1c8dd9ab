"""
app.py - Application Factory
Entry point for the school management API.
Uses the Application Factory pattern for modularity and testing.
"""

import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from config import config
from extensions import db, migrate, login_manager, bcrypt, mail
from services.errors import GradingError


def create_app(config_name='development'):
    """
    Application Factory Function

    Args:
        config_name (str): Configuration to use ('development', 'production', 'testing')

    Returns:
        Flask: Configured Flask application instance
    """
    app = Flask(__name__)

    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    configure_logging(app)

    # Initialize extensions with the app
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    bcrypt.init_app(app)
    mail.init_app(app)

    # Stateless API: the current user comes from the bearer token only
    @login_manager.request_loader
    def load_user_from_request(request):
        from services.tokens import user_from_request
        return user_from_request(request)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({
            'success': False,
            'error': 'unauthenticated',
            'message': 'Authentication required. Send a bearer token.'
        }), 401

    register_blueprints(app)
    register_error_handlers(app)
    register_commands(app)

    # Import models so Flask-Migrate can detect them
    with app.app_context():
        import models  # noqa: F401

    return app


def configure_logging(app):
    """Apply LOG_LEVEL to the app logger and the service loggers"""
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger('services').setLevel(level)
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=level,
            format='%(asctime)s %(levelname)s [%(name)s] %(message)s'
        )


def register_blueprints(app):
    """
    Register all application blueprints (modular route handlers)
    """
    from blueprints.auth.routes import auth_bp
    from blueprints.admin.routes import admin_bp
    from blueprints.teacher.routes import teacher_bp
    from blueprints.student.routes import student_bp
    from blueprints.parent.routes import parent_bp
    from blueprints.common.routes import common_bp

    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(admin_bp, url_prefix='/admin')
    app.register_blueprint(teacher_bp, url_prefix='/teacher')
    app.register_blueprint(student_bp, url_prefix='/student')
    app.register_blueprint(parent_bp, url_prefix='/parent')
    app.register_blueprint(common_bp, url_prefix='/common')

    @app.route('/api/health')
    def health():
        """Public liveness check"""
        return jsonify({'success': True, 'status': 'online'})


def register_error_handlers(app):
    """
    Every error leaves the API as JSON
    """
    @app.errorhandler(GradingError)
    def grading_error(error):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error):
        return jsonify({
            'success': False,
            'error': error.name.lower().replace(' ', '_'),
            'message': error.description
        }), error.code

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()  # Rollback any failed database transactions
        app.logger.exception("Unhandled error")
        return jsonify({
            'success': False,
            'error': 'internal_error',
            'message': 'An unexpected error occurred'
        }), 500


def register_commands(app):
    from cli import register_cli
    register_cli(app)


# Run the application
if __name__ == '__main__':
    app = create_app('development')
    app.run(host='0.0.0.0', port=5000, debug=True)
