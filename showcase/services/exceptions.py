# showcase/services/exceptions.py

# --- General Exceptions ---
class ProjectNotFoundError(Exception):
    """프로젝트를 찾을 수 없을 때"""
    pass

# --- Validation Exceptions ---
class ProjectValidationError(Exception):
    """요청 형식이 잘못되었거나 필수 필드가 없거나 멤버 불변식(책임자 1명)을 어길 때"""
    pass

# --- Transaction Exceptions ---
class ProjectTransactionError(Exception):
    """트랜잭션 내부의 SQL 문이 실패하여 전체가 롤백되었을 때"""
    pass

class ConcurrentModificationError(Exception):
    """스냅샷을 읽은 뒤 다른 요청이 같은 프로젝트를 먼저 변경했을 때"""
    pass

# --- Attachment Exceptions ---
class AttachmentCleanupError(Exception):
    """커밋 이후 첨부 파일 삭제가 실패했을 때 (로그만 남기고 호출자에게 전파하지 않음)"""
    pass

# --- Auth Exceptions ---
class TokenInvalidError(Exception):
    """토큰이 없거나, 유효하지 않거나, 만료되었을 때"""
    pass

class PermissionDeniedError(Exception):
    """인증은 되었지만 허용되지 않은 역할일 때"""
    pass

class DirectoryServiceError(Exception):
    """외부 디렉터리 서비스에 접근할 수 없거나 응답이 비정상일 때"""
    pass
