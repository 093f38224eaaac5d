from chaintrack import create_app

app = create_app()
