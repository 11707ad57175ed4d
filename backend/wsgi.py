# backend/wsgi.py
from optiledger import create_app

app = create_app()
