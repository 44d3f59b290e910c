# app/__init__.py

import logging
import os
import time
from flask import Flask, request, jsonify
from flask_cors import CORS
from sqlalchemy import text
from werkzeug.exceptions import HTTPException
from .config import Config
from db.extensions import db, migrate, check_redis_health
from services.errors import OrderServiceError
from services.fanout import init_fanout
from services.order_service import init_order_service
from services.payment_gateway import init_payment_gateway
from controllers.order_controller import order_bp
from controllers.payment_controller import payment_bp
from controllers.table_controller import table_bp
from controllers.realtime_controller import realtime_bp

# Register every model with the mapper before the first query
from models import user, menuItem, table, order, orderItem  # noqa: F401


def create_app(config_object=Config, redis_client=None):
    app = Flask(__name__)

    # Load configuration
    app.config.from_object(config_object)

    # CORS with credentials support for the dashboard and menu pages
    CORS(app,
         origins=app.config['CORS_ORIGINS'],
         methods=['GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'OPTIONS'],
         allow_headers=['Content-Type', 'Authorization'],
         supports_credentials=True,
         expose_headers=['Content-Type', 'Authorization'],
         max_age=3600
    )

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Fan-out first: the coordinator publishes through it
    publisher = init_fanout(app, redis_client=redis_client)
    order_service = init_order_service(app, publisher)
    init_payment_gateway(app, order_service)

    # Register blueprints
    app.register_blueprint(order_bp, url_prefix='/api')
    app.register_blueprint(payment_bp, url_prefix='/api')
    app.register_blueprint(table_bp, url_prefix='/api')
    app.register_blueprint(realtime_bp, url_prefix='/api')

    # Configure logging
    debug_mode = os.getenv("DEBUG_MODE", "false").lower() == "true"
    log_level = logging.DEBUG if debug_mode else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    app.logger.setLevel(log_level)

    # Request timing middleware for performance monitoring
    @app.before_request
    def before_request():
        request.start_time = time.time()
        if debug_mode:
            app.logger.debug(f"🚀 Started {request.method} {request.path}")

    @app.after_request
    def after_request(response):
        if hasattr(request, 'start_time'):
            elapsed = (time.time() - request.start_time) * 1000

            # Log slow requests (over 500ms); event streams stay open on purpose
            if elapsed > 500 and response.mimetype != 'text/event-stream':
                app.logger.warning(
                    f"⚠️  SLOW REQUEST: {request.method} {request.path} "
                    f"took {elapsed:.2f}ms - Status: {response.status_code}"
                )
            elif debug_mode:
                app.logger.info(
                    f"✅ {request.method} {request.path} "
                    f"took {elapsed:.2f}ms - Status: {response.status_code}"
                )

        return response

    @app.errorhandler(OrderServiceError)
    def handle_order_service_error(e):
        app.logger.info(f"[{request.endpoint}] {e.status_code}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({'error': e.description}), e.code

    # Global error handler
    @app.errorhandler(Exception)
    def handle_exception(e):
        db.session.rollback()
        app.logger.error(f"❌ Unhandled exception: {str(e)}", exc_info=True)
        return {
            'success': False,
            'message': 'Internal server error. Please try again.'
        }, 500

    # Health check endpoint
    @app.route('/api/health', methods=['GET'])
    def health_check():
        """Health check endpoint for monitoring"""
        try:
            # Test database connection
            db.session.execute(text('SELECT 1'))

            # Test Redis connection
            redis_status = 'not configured'
            if app.config['REALTIME_BACKEND'] == 'redis':
                if not check_redis_health(app.extensions['redis']):
                    raise ConnectionError("Redis ping failed")
                redis_status = 'connected'

            return {
                'status': 'ok',
                'database': 'connected',
                'redis': redis_status,
                'timestamp': time.time()
            }, 200
        except Exception as e:
            app.logger.error(f"❌ Health check failed: {str(e)}")
            return {
                'status': 'error',
                'message': str(e),
                'timestamp': time.time()
            }, 500

    return app
