# backend/wsgi.py
from washbay import create_app

app = create_app()
