# dashboard/__init__.py
import atexit

from flask import Flask
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from apscheduler.schedulers.background import BackgroundScheduler
from config import Config

db = SQLAlchemy()
migrate = Migrate()
# Initialize scheduler as None first
scheduler = None


def create_app(config_class=Config, console=None):
    app = Flask(__name__)
    CORS(app)  # Enable CORS
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Polls and debounced searches run as one-shot jobs on a shared scheduler
    global scheduler
    if scheduler is None:
        scheduler = BackgroundScheduler(job_defaults={'misfire_grace_time': None, 'coalesce': True})
    if app.config['SCHEDULER_AUTOSTART'] and not scheduler.running:
        scheduler.start()

    if console is None:
        from dashboard.console import ScriptConsole
        console = ScriptConsole.from_config(app.config, scheduler)
        atexit.register(console.shutdown)
    app.extensions['script_console'] = console

    # Register blueprints
    from dashboard.api import bp as api_bp
    app.register_blueprint(api_bp, url_prefix='/api')

    return app
