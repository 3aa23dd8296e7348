from fastapi import Depends, HTTPException
from .dependencies import get_current_user


def _role_required(*allowed_roles: str):
    def check_role(user=Depends(get_current_user)):
        if user.get("role") not in allowed_roles:
            raise HTTPException(status_code=403, detail=f"{allowed_roles[0].capitalize()} access only")
        return user
    return check_role


admin_only = _role_required("admin")
# Recruiters can browse entities and candidates; only admins change them.
staff_only = _role_required("admin", "recruiter")
