# backend/wsgi.py
from admission_engine import create_app

app = create_app()
