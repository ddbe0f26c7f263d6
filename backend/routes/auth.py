"""인증 API 라우터.

송출자 패스키 검증 엔드포인트를 제공합니다.
"""

from fastapi import APIRouter, HTTPException, Form

from . import deps

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/verify")
async def verify_passkey(passkey: str = Form("")):
    """송출자 패스키를 검증합니다.

    프론트엔드에서 송출 페이지 진입 전 검증 요청에 사용됩니다.

    Args:
        passkey: 검증할 패스키

    Returns:
        dict: 인증 결과 {"success": bool, "message": str}
    """
    if not deps.BROADCASTER_PASSKEY:
        return {"success": True, "message": "No passkey required"}
    if passkey == deps.BROADCASTER_PASSKEY:
        return {"success": True, "message": "Authenticated"}
    raise HTTPException(status_code=401, detail="Invalid passkey")
