from app.boards import create_app

app = create_app()
