from app.openmics import create_app

app = create_app()
