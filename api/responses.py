"""Response envelope shared by the API routers."""
from typing import Any, Optional

from results import ServiceResult

def success(data: Any = None, message: Optional[str] = None) -> dict:
    """Wrap data in the {success: true, data} envelope."""
    return ServiceResult.ok(data, message).to_dict()

def failure(error: Any) -> dict:
    """Build the {success: false, error} envelope."""
    return ServiceResult.fail(error).to_dict()
