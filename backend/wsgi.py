# backend/wsgi.py
from medhub import create_app

app = create_app()
