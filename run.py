# run.py
from dashboard import create_app, db
from dashboard.models import Preference

app = create_app()

@app.shell_context_processor
def make_shell_context():
    console = app.extensions['script_console']
    return {
        'db': db,
        'Preference': Preference,
        'console': console,
        'tracker': console.tracker,
        'registry': console.registry
    }
