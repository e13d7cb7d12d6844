from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import select
from sqlalchemy.orm import Session

from erp.auth import CallerContext, get_current_caller
from erp.config import settings
from erp.db import get_db
from erp.dependencies import get_client_ip, get_user_agent
from erp.models import User
from erp.schemas import LoginRequest, camelize
from erp.security.csrf import verify_csrf
from erp.security.passwords import verify_password
from erp.security.sessions import create_web_session, revoke_web_session
from erp.services.audit_service import log_audit, log_auth_event
from erp.services.permission_service import list_role_permissions

logger = logging.getLogger(__name__)

router = APIRouter(tags=['auth'])


def _rejected() -> JSONResponse:
    return JSONResponse({'error': 'UNAUTHENTICATED', 'message': 'Invalid username or password'}, status_code=401)


@router.post('/login')
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    _: None = Depends(verify_csrf),
):
    username = payload.username.strip()
    ip = get_client_ip(request)
    user_agent = get_user_agent(request)

    user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
    failure_reason = None
    if not user:
        failure_reason = 'UNKNOWN_USERNAME'
    elif not user.is_active:
        failure_reason = 'INACTIVE_USER'
    else:
        valid, updated_hash = verify_password(payload.password, user.password_hash)
        if not valid:
            failure_reason = 'BAD_PASSWORD'
        elif updated_hash:
            user.password_hash = updated_hash

    if failure_reason:
        log_auth_event(
            db,
            attempted_username=username,
            success=False,
            failure_reason=failure_reason,
            user_id=user.id if user else None,
            ip=ip,
            user_agent=user_agent,
        )
        db.commit()
        logger.info('Rejected sign-in for %r: %s', username, failure_reason)
        return _rejected()

    token = create_web_session(db, user.id, ip=ip, user_agent=user_agent)
    log_auth_event(db, attempted_username=username, success=True, user_id=user.id, ip=ip, user_agent=user_agent)
    log_audit(db, actor_user_id=user.id, action='AUTH_LOGIN', metadata={'username': username, 'ip': ip})
    db.commit()

    response = JSONResponse({'id': user.id, 'username': user.username, 'fullName': user.full_name})
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        max_age=settings.session_ttl_minutes * 60,
    )
    return response


@router.post('/logout')
def logout(request: Request, db: Session = Depends(get_db), _: None = Depends(verify_csrf)):
    caller = getattr(request.state, 'caller', None)
    token = request.cookies.get(settings.session_cookie_name)
    if token:
        revoke_web_session(db, token)

    log_audit(
        db,
        actor_user_id=caller.user_id if caller else None,
        action='AUTH_LOGOUT',
        metadata={'ip': get_client_ip(request)},
    )
    db.commit()

    response = JSONResponse({'ok': True})
    response.delete_cookie(settings.session_cookie_name)
    return response


@router.get('/me')
def me(caller: CallerContext = Depends(get_current_caller), db: Session = Depends(get_db)):
    permissions = list_role_permissions(db, role_id=caller.role_id) if caller.role_id else []
    return {
        'userId': caller.user_id,
        'username': caller.username,
        'roleCode': caller.role_code,
        'branchId': caller.branch_id,
        'isAdmin': caller.is_admin,
        'permissions': camelize(permissions),
    }
