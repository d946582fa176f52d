from app.medblog import create_app

app = create_app()
