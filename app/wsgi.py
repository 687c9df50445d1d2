from app.feebook import create_app

app = create_app()
