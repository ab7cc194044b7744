# showcase/app.py
from wsgiref.simple_server import make_server
from http.cookies import CookieError, SimpleCookie
from urllib.parse import parse_qs
import base64
import binascii
import json
import logging
import re

from showcase.config import Settings, settings as default_settings
from showcase.database.database import create_db_engine, create_session_factory
from showcase.database.db_init import initialize_db
from showcase.repositories.sqlalchemy import SqlalchemyProjectRepository, SqlalchemyPendingCleanupRepository
from showcase.services.access_service import AccessService
from showcase.services.attachment_service import AttachmentService
from showcase.services.project_service import ProjectService, Upload
from showcase.services.exceptions import *

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------
## 요청 처리 유틸리티 함수
# --------------------------------------------------------------------------

def get_request_data(environ):
    try:
        content_length = int(environ.get("CONTENT_LENGTH") or 0)
        data = json.loads(environ["wsgi.input"].read(content_length)) if content_length > 0 else {}
    except (ValueError, json.JSONDecodeError):
        raise ValueError("Invalid or missing JSON body.")
    if not isinstance(data, dict):
        raise ValueError("JSON body must be an object.")
    return data

def get_bearer_token(environ, cookie_name):
    """Authorization 헤더의 Bearer 토큰, 없으면 인증 쿠키 값을 반환합니다."""
    auth_header = environ.get('HTTP_AUTHORIZATION', '')
    if auth_header.startswith('Bearer '):
        return auth_header[len('Bearer '):].strip() or None
    try:
        cookies = SimpleCookie(environ.get('HTTP_COOKIE', ''))
    except CookieError:
        return None
    morsel = cookies.get(cookie_name)
    return morsel.value if morsel else None

def authorize(environ):
    token = get_bearer_token(environ, environ['settings'].AUTH_COOKIE_NAME)
    return environ['services']['access'].authorize(token)

def parse_project_id(raw_id):
    if not raw_id.isdigit():
        raise ValueError("Invalid project id.")
    return int(raw_id)

def parse_upload(item, field_name):
    """{"filename": ..., "content": <base64>, "member_uid": ...} 형태의 업로드를 디코딩합니다."""
    if not isinstance(item, dict) or not isinstance(item.get("content"), str):
        raise ValueError(f"'{field_name}' entries must be objects with base64 'content'.")
    try:
        content = base64.b64decode(item["content"], validate=True)
    except (binascii.Error, ValueError):
        raise ValueError(f"'{field_name}' content is not valid base64.")
    member_uid = item.get("member_uid")
    if member_uid is not None and not isinstance(member_uid, str):
        raise ValueError(f"'{field_name}' member_uid must be a string.")
    return Upload(filename=str(item.get("filename") or ""), content=content, member_uid=member_uid)

def parse_upload_list(data, field_name):
    items = data.get(field_name) or []
    if not isinstance(items, list):
        raise ValueError(f"'{field_name}' must be a list of uploads.")
    return [parse_upload(item, field_name) for item in items]

def get_project_form(data):
    return {
        "title": data.get("title"),
        "date": data.get("date", ""),
        "courses": data.get("courses", ""),
        "description": data.get("description", ""),
        "members": data.get("members"),
        "cover": parse_upload(data["cover"], "cover") if data.get("cover") else None,
        "member_images": parse_upload_list(data, "member_images"),
        "gallery": parse_upload_list(data, "gallery"),
    }

def handle_exception(e):
    error_map = {
        TokenInvalidError: ("401 Unauthorized", "auth"),
        PermissionDeniedError: ("403 Forbidden", "forbidden"),
        ProjectNotFoundError: ("404 Not Found", "not_found"),
        ValueError: ("400 Bad Request", "validation"),
        ProjectValidationError: ("400 Bad Request", "validation"),
        ConcurrentModificationError: ("409 Conflict", "conflict"),
        ProjectTransactionError: ("500 Internal Server Error", "transaction"),
        DirectoryServiceError: ("502 Bad Gateway", "directory"),
    }
    status, error_type = error_map.get(type(e), ("500 Internal Server Error", "internal"))
    if error_type == "internal":
        logger.exception("Unhandled error while processing request")
        message = "Internal server error."
    else:
        message = str(e)
    return status, json.dumps({"error": message, "type": error_type})

# --------------------------------------------------------------------------
## WSGI 애플리케이션 (의존성 주입 및 라우팅)
# --------------------------------------------------------------------------

def create_app(session_factory, access_service: AccessService, app_settings: Settings = default_settings):
    """
    명시적으로 만든 핸들(세션 팩토리, 디렉터리 클라이언트)을 받아 WSGI 애플리케이션을 만듭니다.
    요청마다 새 세션과 리포지토리/서비스 객체를 만들고, 요청이 끝나면 세션을 닫습니다.
    """

    def application(environ, start_response):
        db_session = session_factory()
        try:
            # 1. 의존성 생성 (Repositories -> Services)
            project_repo = SqlalchemyProjectRepository(db_session)
            cleanup_repo = SqlalchemyPendingCleanupRepository(db_session)

            attachment_service = AttachmentService(
                app_settings.UPLOAD_DIR,
                cleanup_repo,
                max_attempts=app_settings.CLEANUP_MAX_ATTEMPTS,
                retry_delay=app_settings.CLEANUP_RETRY_DELAY,
            )
            project_service = ProjectService(
                project_repo, attachment_service, max_gallery_files=app_settings.MAX_GALLERY_FILES
            )

            # 2. 생성된 서비스 객체들을 environ을 통해 핸들러에 전달
            environ['settings'] = app_settings
            environ['services'] = {
                'projects': project_service,
                'attachments': attachment_service,
                'access': access_service,
            }

            # 3. 라우팅 및 핸들러 실행
            path = environ.get("PATH_INFO", "")
            method = environ.get("REQUEST_METHOD", "")

            handler, path_args = None, []
            for route_method, pattern, route_handler in ROUTES:
                if method == route_method and (match := re.match(pattern, path)):
                    handler, path_args = route_handler, match.groups()
                    break

            if handler:
                status, response_body = handler(environ, *path_args)
            else:
                status, response_body = '404 Not Found', json.dumps({'error': 'Not Found', 'type': 'not_found'})

        except Exception as e:
            status, response_body = handle_exception(e)
        finally:
            db_session.close()

        start_response(status, [("Content-Type", "application/json")])
        return [response_body.encode("utf-8")]

    return application

# --------------------------------------------------------------------------
## 핸들러 함수
# --------------------------------------------------------------------------

def list_projects_handler(environ, *args):
    projects = environ['services']['projects'].list_projects()
    return '200 OK', json.dumps({"projects": projects})

def get_project_handler(environ, project_id):
    project = environ['services']['projects'].get_project(parse_project_id(project_id))
    return '200 OK', json.dumps(project)

def create_project_handler(environ, *args):
    authorize(environ)
    data = get_request_data(environ)
    result = environ['services']['projects'].create_project(**get_project_form(data))
    return '201 Created', json.dumps(result)

def update_project_handler(environ, project_id):
    authorize(environ)
    project_id = parse_project_id(project_id)
    data = get_request_data(environ)
    result = environ['services']['projects'].update_project(
        project_id,
        previous_member_images=data.get("previous_member_images"),
        gallery_remove=data.get("gallery_remove"),
        version=data.get("version"),
        **get_project_form(data)
    )
    return '200 OK', json.dumps(result)

def delete_project_handler(environ, project_id):
    authorize(environ)
    project_id = parse_project_id(project_id)
    query = parse_qs(environ.get("QUERY_STRING", ""))
    version = query.get("version", [None])[0]
    environ['services']['projects'].delete_project(project_id, version=version)
    return '200 OK', json.dumps({"message": f"Project '{project_id}' deleted."})

def me_handler(environ, *args):
    principal = authorize(environ)
    return '200 OK', json.dumps(principal)

def reconcile_attachments_handler(environ, *args):
    authorize(environ)
    unreferenced = environ['services']['projects'].reconcile_attachments()
    return '200 OK', json.dumps({"unreferenced": unreferenced})

def retry_cleanup_handler(environ, *args):
    authorize(environ)
    result = environ['services']['attachments'].retry_pending_cleanups()
    return '200 OK', json.dumps(result)

ROUTES = [
    ('GET', r'^/v1/projects$', list_projects_handler),
    ('POST', r'^/v1/projects$', create_project_handler),
    ('GET', r'^/v1/projects/([^/]+)$', get_project_handler),
    ('PUT', r'^/v1/projects/([^/]+)$', update_project_handler),
    ('DELETE', r'^/v1/projects/([^/]+)$', delete_project_handler),
    ('GET', r'^/v1/me$', me_handler),
    ('POST', r'^/v1/actions/reconcile$', reconcile_attachments_handler),
    ('POST', r'^/v1/actions/cleanup$', retry_cleanup_handler),
]

# --------------------------------------------------------------------------
## 서버 실행
# --------------------------------------------------------------------------

def main():
    logging.basicConfig(
        level=default_settings.LOG_LEVEL,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    engine = create_db_engine(default_settings.DATABASE_URL)
    initialize_db(engine)
    access_service = AccessService(
        default_settings.DIRECTORY_URL,
        default_settings.allowed_roles_list,
        role_field=default_settings.ROLE_FIELD,
        timeout=default_settings.DIRECTORY_TIMEOUT,
    )
    application = create_app(create_session_factory(engine), access_service)
    try:
        with make_server(default_settings.HOST, default_settings.PORT, application) as httpd:
            logger.info("Serving Project Showcase on port %s...", default_settings.PORT)
            httpd.serve_forever()
    finally:
        access_service.close()
        engine.dispose()

if __name__ == "__main__":
    main()
