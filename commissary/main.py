from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from commissary.logging_config import setup_logging
from commissary.routers import items, locations, transfers

setup_logging()

app = FastAPI(title='Commissary Inventory Service')

app.include_router(items.router)
app.include_router(transfers.router)
app.include_router(locations.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
