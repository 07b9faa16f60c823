from barbertab import create_app

app = create_app()
