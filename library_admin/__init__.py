import logging
from datetime import datetime, timezone

from flask import Flask, jsonify
from flask_cors import CORS
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import ConflictRetryExhausted, LibraryError, StoreUnavailable
from .extensions import bcrypt, db, jwt
from .lending import parse_rate

logger = logging.getLogger(__name__)


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    try:
        app.config['FINE_PER_DAY'] = parse_rate(app.config['FINE_PER_DAY'])
    except ValueError as e:
        raise RuntimeError(f'Invalid configuration: {e}') from e

    db.init_app(app)
    bcrypt.init_app(app)
    jwt.init_app(app)
    CORS(app, resources={r"/api/*": {"origins": app.config['FRONTEND_URL']}}, supports_credentials=True)

    from . import auth, catalog, cli, members, reports, transactions

    app.register_blueprint(auth.bp)
    app.register_blueprint(catalog.bp)
    app.register_blueprint(members.bp)
    app.register_blueprint(transactions.bp)
    app.register_blueprint(reports.stats_bp)
    app.register_blueprint(reports.reports_bp)
    app.register_blueprint(cli.bp)

    register_error_handlers(app)

    @app.route('/health', methods=['GET'])
    def health():
        return jsonify({
            'message': 'Library Management System API is running',
            'timestamp': datetime.now(timezone.utc).isoformat(),
        }), 200

    with app.app_context():
        db.create_all()

    return app


def register_error_handlers(app):
    @app.errorhandler(LibraryError)
    def library_error(e):
        db.session.rollback()
        if e.status_code >= 500:
            logger.error(f"{e.kind}: {e.message}")
        else:
            logger.warning(f"Rejected request: {e.kind} {e.reason or ''} {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(StaleDataError)
    def stale_data(e):
        db.session.rollback()
        logger.warning(f"Concurrent update rejected: {e}")
        error = ConflictRetryExhausted()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(SQLAlchemyError)
    def database_error(e):
        db.session.rollback()
        logger.exception("Database error")
        error = StoreUnavailable()
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({'error': e.name, 'message': e.description}), e.code
