# backend/wsgi.py
from medbill import create_app

app = create_app()
