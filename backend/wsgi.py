# Overview: WSGI entry point; also the FLASK_APP target for CLI commands.

from posledger import create_app

app = create_app()
