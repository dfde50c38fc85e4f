from .api.rest.main import run

run()
