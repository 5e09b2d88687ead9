# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

from flask import Blueprint, current_app, g, request

from ..decorators import require_auth
from ..errors import AuthenticationError
from ..services import auth_service, session_service
from ..time_utils import to_utc_z


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


@auth_bp.post("/login")
def login_route():
    """Authenticate and return a bearer token."""
    try:
        data = request.get_json(silent=True) or {}
        username = data.get("username") or data.get("email")
        password = data.get("password")

        if not all([username, password]):
            return {"error": "username/email and password required"}, 400

        user = auth_service.authenticate(username, password)
        if not user:
            e = AuthenticationError("Invalid credentials")
            return e.to_dict(), e.status_code

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )

        return {
            "user": user.to_dict(),
            "token": token,
            "expires_at": to_utc_z(session.expires_at),
            "message": "Login successful",
        }, 200

    except Exception:
        current_app.logger.exception("Failed to login user")
        return {"error": "Internal server error"}, 500


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.session_token)
    return {"message": "Logged out"}, 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return {"user": g.current_user.to_dict()}, 200
