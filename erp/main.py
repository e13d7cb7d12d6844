import logging

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from erp.config import settings
from erp.error_handlers import install_error_handlers
from erp.routers import admin, auth, finance, inventory
from erp.security.csrf import install_csrf_cookie_middleware
from erp.security.headers import install_security_headers
from erp.security.sessions import install_auth_session_middleware

logging.basicConfig(
    level=settings.log_level.upper(),
    format='%(asctime)s %(levelname)s %(name)s: %(message)s',
)

app = FastAPI(title='Branch ERP')

install_error_handlers(app)
install_security_headers(app)
install_csrf_cookie_middleware(app)
install_auth_session_middleware(app)

app.include_router(auth.router)
app.include_router(inventory.router)
app.include_router(finance.router)
app.include_router(admin.router)


@app.get('/health')
def health() -> dict:
    return {'status': 'ok'}


@app.get('/robots.txt', response_class=PlainTextResponse)
def robots_txt() -> str:
    return 'User-agent: *\nDisallow: /\n'
