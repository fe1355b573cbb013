from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from models.user import User
from routes.auth import current_roles, current_user_id, is_admin
from services.dashboard import get_stats
from services.errors import CRMError
from services.parsing import parse_bool, parse_int

dashboard_bp = Blueprint("dashboard", __name__, url_prefix="/api/dashboard")


@dashboard_bp.route("/stats", methods=["GET"])
@jwt_required()
def stats():
    refresh = parse_bool(request.args.get("refresh"), False)
    # admins see everything unless they ask for one counselor
    if is_admin():
        counselor_id = parse_int(request.args.get("counselor_id"), "counselor_id")
        if counselor_id and not User.query.filter_by(id=counselor_id, role="counselor").first():
            raise CRMError("counselor_id must reference a counselor")
        data, cached = get_stats(counselor_id, refresh=refresh)
    elif "marketing" in current_roles():
        data, cached = get_stats(refresh=refresh, marketing_id=current_user_id())
    else:
        data, cached = get_stats(current_user_id(), refresh=refresh)
    return jsonify({"success": True, "cached": cached, "data": data})
