import logging

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS

# Environment (.env) must be loaded before the config classes read it
load_dotenv()

from .config import config_by_name
from .database import close_db

logger = logging.getLogger(__name__)


def create_app(config_name='default', overrides=None):
    """Create and configure an instance of the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])
    if overrides:
        app.config.update(overrides)

    # Enable CORS
    CORS(app, resources={r"/api/*": {"origins": app.config['CORS_ORIGINS']}})

    from .monitoring import register_monitoring
    register_monitoring(app)

    from .api import api_blueprint
    app.register_blueprint(api_blueprint, url_prefix='/api')

    @app.teardown_appcontext
    def teardown_db(exception):
        close_db(exception)

    @app.route('/health', methods=['GET'])
    def health_check():
        return jsonify({"status": "ok"}), 200

    logger.info(f"FMEA backend created with '{config_name}' configuration, data file {app.config['DATA_PATH']}")
    return app
