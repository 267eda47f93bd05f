from app.saleshub import create_app

app = create_app()
